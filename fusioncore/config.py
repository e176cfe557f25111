"""Configuration models and loading for identity fusion."""

import os
import json
import copy
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ConfigurationError


class MergeStrategy(str, Enum):
    """How values contributed by several sources collapse into one attribute."""

    FIRST = "first"
    LIST = "list"
    CONCATENATE = "concatenate"
    SOURCE = "source"


class MatchingPolicy(BaseModel):
    """Per-attribute rule used to compare an account against a candidate."""

    model_config = ConfigDict(frozen=True)

    attribute: str = Field(min_length=1)
    algorithm: str = "lig3"
    threshold: float = Field(default=80.0, ge=0.0, le=100.0)
    mandatory: bool = False

    @field_validator("algorithm")
    @classmethod
    def normalize_algorithm(cls, value: str) -> str:
        return value.strip().lower().replace("_", "-")


class AttributeMap(BaseModel):
    """Maps one or more source attributes onto a fused attribute."""

    new_attribute: str = Field(min_length=1)
    existing_attributes: List[str] = Field(default_factory=list)
    merge: Optional[MergeStrategy] = None
    source: Optional[str] = None


class FusionConfig(BaseModel):
    """Explicit configuration passed to every resolution component."""

    sources: List[str] = Field(default_factory=list)
    matching_policies: List[MatchingPolicy] = Field(default_factory=list)
    attribute_maps: List[AttributeMap] = Field(default_factory=list)
    attribute_merge: MergeStrategy = MergeStrategy.FIRST
    history_limit: int = Field(default=50, ge=1)
    use_average_score: bool = False
    average_score: float = Field(default=80.0, ge=0.0, le=100.0)
    review_without_candidates: bool = False
    correlate_on_resolution: bool = False
    refresh_threshold_seconds: int = Field(default=60, ge=0)
    report_attributes: List[str] = Field(default_factory=list)
    delete_empty: bool = False
    global_reviewer: Optional[str] = None

    @field_validator("sources")
    @classmethod
    def unique_sources(cls, value: List[str]) -> List[str]:
        if len(set(value)) != len(value):
            raise ValueError("sources must be unique")
        return value

    def policy_attributes(self) -> List[str]:
        """Attributes covered by at least one matching policy, in order."""
        seen: List[str] = []
        for policy in self.matching_policies:
            if policy.attribute not in seen:
                seen.append(policy.attribute)
        return seen


class ConfigManager:
    """Manages configuration loading and validation."""

    DEFAULT_CONFIG: Dict[str, Any] = {
        "sources": [],
        "matching_policies": [
            {"attribute": "name", "algorithm": "lig3", "threshold": 80.0, "mandatory": False},
            {"attribute": "email", "algorithm": "exact", "threshold": 100.0, "mandatory": True},
        ],
        "attribute_maps": [],
        "attribute_merge": "first",
        "history_limit": 50,
        "use_average_score": False,
        "average_score": 80.0,
        "review_without_candidates": False,
        "correlate_on_resolution": False,
        "refresh_threshold_seconds": 60,
        "report_attributes": ["email"],
        "delete_empty": False,
        "global_reviewer": None,
    }

    ENV_OVERRIDES = {
        "FUSION_HISTORY_LIMIT": ("history_limit", int),
        "FUSION_AVERAGE_SCORE": ("average_score", float),
        "FUSION_USE_AVERAGE_SCORE": ("use_average_score", "bool"),
        "FUSION_REVIEW_WITHOUT_CANDIDATES": ("review_without_candidates", "bool"),
        "FUSION_CORRELATE_ON_RESOLUTION": ("correlate_on_resolution", "bool"),
        "FUSION_REFRESH_THRESHOLD_SECONDS": ("refresh_threshold_seconds", int),
        "FUSION_DELETE_EMPTY": ("delete_empty", "bool"),
        "FUSION_GLOBAL_REVIEWER": ("global_reviewer", str),
    }

    def __init__(self, config_path: Optional[str] = None):
        """Initialize config manager.

        Args:
            config_path: Path to a JSON config file. If None, uses defaults + env vars
        """
        self.config_path = Path(config_path) if config_path else None
        self._config: Optional[FusionConfig] = None

    def load(self) -> FusionConfig:
        """Load configuration from file and environment.

        Raises:
            ConfigurationError: The named config file does not exist
        """
        if self._config:
            return self._config

        config_dict = copy.deepcopy(self.DEFAULT_CONFIG)

        if self.config_path:
            if not self.config_path.exists():
                raise ConfigurationError(
                    f"Config file not found: {self.config_path}", setting="config_path"
                )
            with open(self.config_path, "r") as f:
                file_config = json.load(f)
                config_dict = self._deep_merge(config_dict, file_config)

        config_dict = self._apply_env_overrides(config_dict)

        self._config = FusionConfig(**config_dict)
        return self._config

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries. Lists replace rather than extend."""
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides."""
        for env_key, (setting, kind) in self.ENV_OVERRIDES.items():
            raw = os.getenv(env_key)
            if raw is None or raw == "":
                continue
            if kind == "bool":
                config[setting] = raw.lower() in ("true", "1", "yes")
            else:
                config[setting] = kind(raw)

        sources = os.getenv("FUSION_SOURCES")
        if sources:
            config["sources"] = [s.strip() for s in sources.split(",") if s.strip()]

        return config

    def save_template(self, path: str) -> None:
        """Save a configuration template file."""
        with open(path, "w") as f:
            json.dump(self.DEFAULT_CONFIG, f, indent=2)

    @property
    def config(self) -> FusionConfig:
        """Get the loaded configuration."""
        if not self._config:
            self._config = self.load()
        return self._config
