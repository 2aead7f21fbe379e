from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional
import json
import logging
import os

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Settings:
    # Storage
    data_dir: str = os.getenv("MEMREASON_DATA_DIR", ".memreason")
    database_url: str = os.getenv("DATABASE_URL", "")

    # Belief engine
    confidence_decay_per_day: float = float(os.getenv("CONFIDENCE_DECAY_PER_DAY", "0.01"))
    min_confidence_floor: float = float(os.getenv("MIN_CONFIDENCE_FLOOR", "0.3"))
    contradiction_threshold: int = int(os.getenv("CONTRADICTION_THRESHOLD", "3"))
    default_confidence: float = float(os.getenv("DEFAULT_CONFIDENCE", "0.7"))
    default_importance: int = int(os.getenv("DEFAULT_IMPORTANCE", "5"))
    fingerprint_dims: int = int(os.getenv("FINGERPRINT_DIMS", "384"))

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{Path(self.data_dir) / 'memory.db'}"

    def validate(self) -> "Settings":
        if not 0.0 <= self.min_confidence_floor <= 1.0:
            raise ConfigError(f"min_confidence_floor must be within [0, 1], got {self.min_confidence_floor}")
        if self.confidence_decay_per_day < 0:
            raise ConfigError(f"confidence_decay_per_day must be >= 0, got {self.confidence_decay_per_day}")
        if self.contradiction_threshold < 1:
            raise ConfigError(f"contradiction_threshold must be >= 1, got {self.contradiction_threshold}")
        if self.fingerprint_dims < 1:
            raise ConfigError(f"fingerprint_dims must be >= 1, got {self.fingerprint_dims}")
        if not 0.0 <= self.default_confidence <= 1.0:
            raise ConfigError(f"default_confidence must be within [0, 1], got {self.default_confidence}")
        if self.default_importance < 1:
            raise ConfigError(f"default_importance must be >= 1, got {self.default_importance}")
        return self


settings = Settings()


def load_settings(config_path: Optional[str] = None, base: Optional[Settings] = None) -> Settings:
    """
    Environment defaults, overlaid with the JSON config file:
      - explicit config_path, else <data_dir>/config.json
      - missing file -> defaults unchanged
      - unknown keys are ignored (logged)
    """
    base = base or settings
    path = Path(config_path) if config_path else Path(base.data_dir) / "config.json"

    if not path.exists():
        return base.validate()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Unreadable config file {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")

    known = {f.name for f in fields(Settings)}
    overrides = {}
    for key, value in raw.items():
        if key not in known:
            logger.warning("Ignoring unknown config key %r in %s", key, path)
            continue
        overrides[key] = value

    try:
        merged = replace(base, **overrides).validate()
    except TypeError as e:
        raise ConfigError(f"Invalid config file {path}: {e}") from e

    logger.debug("Loaded %d config override(s) from %s", len(overrides), path)
    return merged
