"""
Settings for TaskNest.

Values come from ``<data_dir>/config.yml`` when it exists and are then
overridden by ``TASKNEST_*`` environment variables.
"""
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .logs import get_logger
from .recovery import CorruptionError, FileOperationError

log = get_logger("config")

DEFAULT_DATA_DIR = Path(".tasknest")
CONFIG_FILENAME = "config.yml"
ENV_PREFIX = "TASKNEST_"


class Settings(BaseModel):
    data_dir: Path = Field(default=DEFAULT_DATA_DIR, description="Directory holding tasks.yml and config.yml")
    search_threshold: float = Field(default=0.3, description="Minimum score for search results")
    dedup_threshold: float = Field(default=0.5, description="Minimum score for duplicate candidates on create/triage")
    auto_merge_threshold: float = Field(default=0.8, description="Minimum score before a duplicate is merged automatically")
    primary_weight: float = Field(default=0.7, description="Weight of the token score when combined with the fuzzy score")
    fuzzy_threshold_offset: float = Field(default=0.2, description="Added to the threshold for the fuzzy pass")
    fuzzy_threshold_cap: float = Field(default=0.8, description="Upper bound of the fuzzy pass threshold")
    use_fuzzy: bool = Field(default=True, description="Combine token similarity with edit-distance similarity")

    @field_validator('search_threshold', 'dedup_threshold', 'auto_merge_threshold',
                     'primary_weight', 'fuzzy_threshold_cap')
    @classmethod
    def validate_unit_interval(cls, v):
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"value must be between 0 and 1, got {v}")
        return v

    @field_validator('fuzzy_threshold_offset')
    @classmethod
    def validate_offset(cls, v):
        if not -1.0 <= v <= 1.0:
            raise ValueError(f"offset must be between -1 and 1, got {v}")
        return v

    @model_validator(mode='after')
    def validate_merge_threshold(self):
        if self.auto_merge_threshold < self.dedup_threshold:
            log.warning("auto_merge_threshold %.2f is below dedup_threshold %.2f",
                        self.auto_merge_threshold, self.dedup_threshold)
        return self

    @property
    def tasks_file(self) -> Path:
        return Path(self.data_dir) / "tasks.yml"

    @property
    def config_file(self) -> Path:
        return Path(self.data_dir) / CONFIG_FILENAME

    def fuzzy_threshold(self, threshold: float) -> float:
        """Threshold used by the fuzzy pass for a given primary threshold."""
        return min(threshold + self.fuzzy_threshold_offset, self.fuzzy_threshold_cap)

    def to_file_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data.pop("data_dir", None)
        return data


def _env_overrides(environ) -> Dict[str, Any]:
    overrides = {}
    for name in Settings.model_fields:
        key = ENV_PREFIX + name.upper()
        if key in environ and environ[key] != "":
            overrides[name] = environ[key]
    return overrides


def load_settings(data_dir: Optional[Union[str, Path]] = None, environ=None) -> Settings:
    """
    Build the effective settings.

    Args:
        data_dir: Project data directory; defaults to $TASKNEST_DATA_DIR or .tasknest
        environ: Mapping used for overrides, os.environ when omitted

    Raises:
        CorruptionError: config.yml is not valid YAML or holds invalid values
        FileOperationError: config.yml exists but cannot be read
    """
    environ = os.environ if environ is None else environ
    overrides = _env_overrides(environ)
    base_dir = Path(data_dir) if data_dir is not None else Path(overrides.get("data_dir", DEFAULT_DATA_DIR))

    values: Dict[str, Any] = {}
    config_path = base_dir / CONFIG_FILENAME
    if config_path.exists():
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise CorruptionError(f"YAML syntax error in {config_path}: {e}") from e
        except OSError as e:
            raise FileOperationError(f"Failed to read file {config_path}: {e}") from e
        if not isinstance(loaded, dict):
            raise CorruptionError(f"File {config_path} contains invalid data structure")
        values.update(loaded)
        log.debug(f"Loaded settings from {config_path}")

    values.update(overrides)
    values["data_dir"] = base_dir

    try:
        return Settings.model_validate(values)
    except ValidationError as e:
        raise CorruptionError(f"Invalid settings: {e}") from e
