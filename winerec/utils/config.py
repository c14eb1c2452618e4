"""Configuration for the wine recommendation engine.

Engine defaults live in configs/config.yaml. Values may reference
environment variables as ${VAR} or ${VAR:default}; after substitution every
section is validated against a pydantic model, so missing keys fall back to
their defaults and out-of-range values fail at load time instead of deep
inside an engine.
"""

import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "configs" / "config.yaml"

_ENV_REF = re.compile(r"\$\{(\w+)(?::([^}]*))?\}")


class Settings(BaseSettings):
    """Process-level settings read from the environment or a .env file.

    Attributes:
        redis_host: Hostname of the Redis server backing the result cache.
        redis_port: Port of the Redis server.
        config_path: YAML file holding the engine configuration.
    """

    redis_host: str = Field(default="localhost")
    redis_port: int = Field(default=6379)
    config_path: str = Field(default=str(DEFAULT_CONFIG_PATH))

    model_config = {"env_file": ".env", "extra": "ignore"}


class _Section(BaseModel):
    model_config = ConfigDict(extra="allow")


class AppSection(_Section):
    name: str = "winerec"
    version: str = "0.1.0"


class CollaborativeSection(_Section):
    min_similarity: float = Field(default=0.3, ge=-1.0, le=1.0)
    min_common_items: int = Field(default=2, ge=1)
    k_neighbors: int = Field(default=20, ge=1)
    out_of_stock_penalty: float = Field(default=0.9, ge=0.0, le=1.0)
    user_weight: float = Field(default=0.6, ge=0.0)
    item_weight: float = Field(default=0.4, ge=0.0)


class ColdStartSection(_Section):
    full_cf_ratings: int = Field(default=6, ge=1)
    popularity_method: Literal["count", "count_weighted"] = "count_weighted"
    popularity_confidence_min: float = Field(default=0.1, ge=0.0, le=1.0)
    popularity_confidence_max: float = Field(default=0.4, ge=0.0, le=1.0)


class ContentBasedSection(_Section):
    """Group weights scale how much a shared attribute counts in similarity."""

    type_weight: float = Field(default=3.0, ge=0.0)
    grape_weight: float = Field(default=2.5, ge=0.0)
    region_weight: float = Field(default=2.0, ge=0.0)
    price_weight: float = Field(default=1.0, ge=0.0)
    vintage_weight: float = Field(default=1.0, ge=0.0)
    text_weight: float = Field(default=0.5, ge=0.0)
    quality_influence: float = Field(default=0.15, ge=0.0, le=1.0)
    out_of_stock_penalty: float = Field(default=0.9, ge=0.0, le=1.0)


class HybridSection(_Section):
    max_ratings: int = Field(default=20, ge=1)
    alpha: float = Field(default=0.7, ge=0.0, le=1.0)
    candidate_multiplier: int = Field(default=3, ge=1)


class ModelManagerSection(_Section):
    min_training_ratings: int = Field(default=1, ge=0)
    test_ratio: float = Field(default=0.2, gt=0.0, lt=1.0)
    recommend_threshold: float = Field(default=4.0, ge=1.0, le=5.0)
    ab_test_seed: int = 42
    models_path: str = "data/models/"


class RedisSection(_Section):
    host: str = "localhost"
    port: int = 6379
    db: int = Field(default=0, ge=0)
    recommendation_ttl: int = Field(default=3600, gt=0)
    similarity_ttl: int = Field(default=86400, gt=0)


class SqliteSection(_Section):
    path: str = "data/winerec.db"


class EngineConfig(_Section):
    """The complete configuration; unknown top-level sections are kept."""

    app: AppSection = Field(default_factory=AppSection)
    collaborative: CollaborativeSection = Field(default_factory=CollaborativeSection)
    cold_start: ColdStartSection = Field(default_factory=ColdStartSection)
    content_based: ContentBasedSection = Field(default_factory=ContentBasedSection)
    hybrid: HybridSection = Field(default_factory=HybridSection)
    model_manager: ModelManagerSection = Field(default_factory=ModelManagerSection)
    redis: RedisSection = Field(default_factory=RedisSection)
    sqlite: SqliteSection = Field(default_factory=SqliteSection)


def _resolve_env_vars(value: Any) -> Any:
    """Substitute ${VAR} and ${VAR:default} references in a string.

    A reference to an unset variable without a default becomes an empty
    string. Non-string values are returned unchanged.
    """
    if not isinstance(value, str) or "${" not in value:
        return value
    return _ENV_REF.sub(
        lambda match: os.environ.get(match.group(1), match.group(2) or ""), value
    )


def _resolve_config(node: Any) -> Any:
    if isinstance(node, dict):
        return {key: _resolve_config(value) for key, value in node.items()}
    if isinstance(node, list):
        return [_resolve_config(value) for value in node]
    return _resolve_env_vars(node)


def load_config(path: str = str(DEFAULT_CONFIG_PATH)) -> dict[str, Any]:
    """Load, resolve and validate a YAML configuration file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        The configuration as nested dicts with every default filled in.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        pydantic.ValidationError: If a value is missing its expected type or
            falls outside its allowed range.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path) as f:
        raw_config = yaml.safe_load(f) or {}

    return EngineConfig.model_validate(_resolve_config(raw_config)).model_dump()


settings = Settings()
config = load_config(settings.config_path)
