"""Shared test fixtures for the wine recommendation engine test suite."""

import tempfile
from pathlib import Path

import pytest

from winerec.data.synthetic import generate_test_data
from winerec.models.collaborative import CollaborativeFilter
from winerec.models.content_based import ContentBasedFilter


@pytest.fixture
def test_data() -> dict[str, list]:
    """Create the 20 users x 30 wines x 200 ratings synthetic data set."""
    return generate_test_data(num_users=20, num_wines=30, num_ratings=200, seed=42)


@pytest.fixture
def sample_wines() -> list[dict]:
    """Create a small hand-written wine catalog."""
    return [
        {
            "id": 1,
            "type": "red",
            "region": "Bordeaux",
            "grape_variety": "Cabernet Sauvignon",
            "price": 45.0,
            "quality_score": 92,
            "vintage_year": 2015,
            "stock_quantity": 12,
            "description": "Full bodied red with blackcurrant and cedar",
        },
        {
            "id": 2,
            "type": "red",
            "region": "Bordeaux",
            "grape_variety": "Merlot",
            "price": 38.0,
            "quality_score": 88,
            "vintage_year": 2016,
            "stock_quantity": 6,
            "description": "Soft red with plum and cedar notes",
        },
        {
            "id": 3,
            "type": "white",
            "region": "Mosel",
            "grape_variety": "Riesling",
            "price": 25.0,
            "quality_score": 90,
            "vintage_year": 2020,
            "stock_quantity": 0,
            "description": "Crisp white with lime and slate minerality",
        },
        {
            "id": 4,
            "type": "sparkling",
            "region": "Champagne",
            "grape_variety": "Chardonnay",
            "price": 95.0,
            "quality_score": 94,
            "vintage_year": 2012,
            "stock_quantity": 3,
            "description": "Elegant sparkling with brioche and citrus",
        },
        {
            "id": 5,
            "type": "white",
            "region": "Burgundy",
            "grape_variety": "Chardonnay",
            "price": 60.0,
            "quality_score": 91,
            "vintage_year": 2018,
            "stock_quantity": 8,
        },
    ]


@pytest.fixture
def sample_ratings() -> list[dict]:
    """Create a small rating set where users 1 and 2 agree and user 3 disagrees."""
    return [
        {"user_id": 1, "wine_id": 1, "rating": 5.0, "timestamp": 1},
        {"user_id": 1, "wine_id": 2, "rating": 4.0, "timestamp": 2},
        {"user_id": 1, "wine_id": 3, "rating": 2.0, "timestamp": 3},
        {"user_id": 2, "wine_id": 1, "rating": 5.0, "timestamp": 4},
        {"user_id": 2, "wine_id": 2, "rating": 4.0, "timestamp": 5},
        {"user_id": 2, "wine_id": 3, "rating": 1.0, "timestamp": 6},
        {"user_id": 2, "wine_id": 4, "rating": 5.0, "timestamp": 7},
        {"user_id": 3, "wine_id": 1, "rating": 1.0, "timestamp": 8},
        {"user_id": 3, "wine_id": 2, "rating": 2.0, "timestamp": 9},
        {"user_id": 3, "wine_id": 3, "rating": 5.0, "timestamp": 10},
        {"user_id": 3, "wine_id": 5, "rating": 4.0, "timestamp": 11},
    ]


@pytest.fixture
def content_engine(test_data: dict) -> ContentBasedFilter:
    """Create a content engine fitted on the synthetic catalog."""
    return ContentBasedFilter().initialize(test_data["wines"])


@pytest.fixture
def cf_engine(test_data: dict, content_engine: ContentBasedFilter) -> CollaborativeFilter:
    """Create a collaborative engine initialized on the synthetic data set."""
    engine = CollaborativeFilter(content_engine=content_engine)
    return engine.initialize(test_data["ratings"], test_data["wines"])


@pytest.fixture
def tmp_dir() -> Path:
    """Create a temporary directory for test artifacts."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config_yaml(tmp_dir: Path) -> Path:
    """Create a temporary config YAML file for testing."""
    config_path = tmp_dir / "config.yaml"
    config_path.write_text(
        """
app:
  name: test-engine
  version: 0.1.0

collaborative:
  min_similarity: 0.5
  min_common_items: 3

redis:
  host: localhost
  port: 6379
  db: 0
  recommendation_ttl: 3600
  similarity_ttl: 86400

sqlite:
  path: data/test.db
"""
    )
    return config_path
