"""Synthetic wine catalogs and rating sets for tests and demos.

Users belong to taste groups that favour one wine type, so ratings inside a
group are positively correlated and the collaborative engine has real signal
to find.
"""

import random
from typing import Any

WINE_TYPES = ["red", "white", "rose", "sparkling"]
REGIONS = ["Bordeaux", "Burgundy", "Napa Valley", "Tuscany", "Rioja", "Mosel"]
GRAPES = {
    "red": ["Cabernet Sauvignon", "Pinot Noir", "Sangiovese", "Tempranillo"],
    "white": ["Chardonnay", "Riesling", "Sauvignon Blanc"],
    "rose": ["Grenache", "Pinot Noir"],
    "sparkling": ["Chardonnay", "Pinot Noir"],
}
TASTING_NOTES = [
    "cherry",
    "oak",
    "citrus",
    "mineral",
    "vanilla",
    "berry",
    "floral",
    "toast",
    "spice",
    "honey",
]


def generate_wines(num_wines: int = 30, seed: int = 42) -> list[dict[str, Any]]:
    """Generate a catalog of wine records with ids 1..num_wines.

    Args:
        num_wines: Number of wines to generate.
        seed: Random seed.

    Returns:
        List of wine dicts in the catalog format.
    """
    rng = random.Random(seed)
    wines = []
    for wine_id in range(1, num_wines + 1):
        wine_type = WINE_TYPES[(wine_id - 1) % len(WINE_TYPES)]
        notes = rng.sample(TASTING_NOTES, 3)
        wines.append(
            {
                "id": wine_id,
                "name": f"Test Wine {wine_id}",
                "type": wine_type,
                "region": rng.choice(REGIONS),
                "grape_variety": rng.choice(GRAPES[wine_type]),
                "price": round(rng.uniform(12, 180), 2),
                "quality_score": round(rng.uniform(70, 100), 1),
                "vintage_year": rng.randint(2005, 2022),
                "stock_quantity": rng.choice([0, 3, 6, 12, 24]),
                "description": f"{wine_type} wine with notes of {', '.join(notes)}",
            }
        )
    return wines


def generate_ratings(
    wines: list[dict[str, Any]],
    num_users: int = 20,
    num_ratings: int = 200,
    num_groups: int = 2,
    noise: float = 0.5,
    seed: int = 42,
) -> list[dict[str, Any]]:
    """Generate ratings from users with group-level taste.

    Each user is assigned a favourite wine type by group; a rating is a base
    score, a bonus for the favourite type, a quality term and uniform noise,
    rounded and clipped to 1-5. Ratings are spread evenly over users.

    Args:
        wines: Catalog the users rate.
        num_users: Number of users, with ids "user_1".."user_N".
        num_ratings: Total number of ratings to generate.
        num_groups: Number of taste groups.
        noise: Half-width of the uniform rating noise.
        seed: Random seed.

    Returns:
        List of rating dicts.
    """
    rng = random.Random(seed)
    per_user, remainder = divmod(num_ratings, num_users) if num_users else (0, 0)
    ratings = []
    for index in range(num_users):
        user_id = f"user_{index + 1}"
        favourite = WINE_TYPES[index % num_groups % len(WINE_TYPES)]
        count = min(len(wines), per_user + (1 if index < remainder else 0))
        for wine in rng.sample(wines, count):
            score = 2.5 + (1.5 if wine["type"] == favourite else -0.5)
            score += (wine["quality_score"] - 85) / 15
            score += rng.uniform(-noise, noise)
            ratings.append(
                {
                    "user_id": user_id,
                    "wine_id": wine["id"],
                    "rating": float(min(5, max(1, round(score)))),
                    "timestamp": 1_700_000_000 + rng.randint(0, 15_000_000),
                }
            )
    return ratings


def generate_test_data(
    num_users: int = 20,
    num_wines: int = 30,
    num_ratings: int = 200,
    seed: int = 42,
) -> dict[str, list]:
    """Generate a matching set of users, wines and ratings."""
    wines = generate_wines(num_wines, seed=seed)
    ratings = generate_ratings(
        wines, num_users=num_users, num_ratings=num_ratings, seed=seed
    )
    users = [{"user_id": f"user_{i + 1}"} for i in range(num_users)]
    return {"users": users, "wines": wines, "ratings": ratings}
