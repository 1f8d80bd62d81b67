from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineConfig:
    date_col: str = "ds"
    target_col: str = "y"
    assess: Optional[int] = None
    conf_level: float = 0.95
    interval_method: str = "normal"
    season_length: int = 1
    max_workers: Optional[int] = 1
    timeout: Optional[float] = None

    def __post_init__(self) -> None:
        if not 0 < self.conf_level < 1:
            raise ValueError("conf_level must be between 0 and 1.")
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError("max_workers must be at least 1.")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive.")

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "PipelineConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(raw) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**dict(raw))

    def with_overrides(self, **overrides: Any) -> "PipelineConfig":
        """Apply overrides whose value is not None, e.g. parsed CLI arguments."""
        return replace(self, **{key: value for key, value in overrides.items() if value is not None})


def load_config(path: Optional[Path]) -> PipelineConfig:
    if path is None:
        return PipelineConfig()
    with open(path, encoding="utf-8") as handle:
        raw = json.load(handle)
    if not isinstance(raw, Mapping):
        raise ValueError(f"Configuration file {path} must hold a JSON object.")
    logger.info("Loaded configuration from %s", path)
    return PipelineConfig.from_mapping(raw)
