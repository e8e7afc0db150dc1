"""
Engine configuration via pydantic-settings.
All config read from environment variables (prefix GEO_) with defaults
that match the repository layout used by the site build.
"""

from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Layout
    data_dir: Path = Path("src/data")
    out_dir: Path = Path("__ai")

    clusters_file: str = "areas.clusters.json"
    adjacency_file: str = "areas.adj.json"
    coverage_file: str = "serviceCoverage.json"
    config_file: str = "geo.config.json"
    proximity_file: str = "proximity.json"
    cluster_map_file: str = "cluster_map.json"

    # Modes
    strict: bool = Field(default=False, validation_alias=AliasChoices("GEO_STRICT", "CI"))
    tolerant: bool = Field(
        default=False,
        validation_alias=AliasChoices("GEO_TOLERANT", "GEO_ALLOW_MISSING"),
    )

    # Doctor
    default_limit: int = Field(default=6, ge=1, le=24)
    large_cluster_threshold: int = Field(default=120, ge=1)
    diff_sample: int = Field(default=60, ge=1)
    explain_top: int = Field(default=12, ge=1)

    # Cluster splitting
    split_default_k: int = Field(default=3, ge=2)
    kmeans_max_iterations: int = Field(default=50, ge=1)
    kmeans_epsilon: float = Field(default=1e-9, ge=0.0)

    model_config = {"env_prefix": "GEO_", "env_file": ".env", "extra": "ignore", "populate_by_name": True}


settings = Settings()
