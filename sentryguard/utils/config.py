"""Runtime configuration: the operator-facing settings of one device."""
from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

SENSITIVITY_RANGE = (10, 90)
HEARTBEAT_RANGE = (0, 60)


@dataclass(frozen=True)
class Config:
    sensitivity: int = 70
    webhook_url: str = ""
    location_name: str = ""
    heartbeat_interval_minutes: int = 0
    use_external_classifier: bool = False

    @property
    def threshold(self) -> float:
        """Band volume a tick has to exceed to count as loud."""
        return 100.0 - self.sensitivity


def validate_config(config: Config) -> Tuple[bool, Optional[str]]:
    """Validate ranges and types of a Config."""
    if isinstance(config.sensitivity, bool) or not isinstance(config.sensitivity, int):
        return False, "sensitivity must be an integer"
    lo, hi = SENSITIVITY_RANGE
    if not lo <= config.sensitivity <= hi:
        return False, f"sensitivity must be between {lo} and {hi}"
    if isinstance(config.heartbeat_interval_minutes, bool) or not isinstance(
        config.heartbeat_interval_minutes, int
    ):
        return False, "heartbeat_interval_minutes must be an integer"
    lo, hi = HEARTBEAT_RANGE
    if not lo <= config.heartbeat_interval_minutes <= hi:
        return False, f"heartbeat_interval_minutes must be between {lo} and {hi}"
    if not isinstance(config.webhook_url, str):
        return False, "webhook_url must be a string"
    if not isinstance(config.location_name, str):
        return False, "location_name must be a string"
    if not isinstance(config.use_external_classifier, bool):
        return False, "use_external_classifier must be a boolean"
    return True, None


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from a JSON file, merging it over defaults.

    Args:
        config_path: Path to the file. ``None`` or a missing file yields defaults.

    Returns:
        A validated Config.

    Raises:
        ValueError: If the file is not valid JSON or holds invalid values.
    """
    if config_path is None or not config_path.exists():
        logger.info("Config file %s not found, using defaults", config_path)
        return Config()

    try:
        with config_path.open(encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file {config_path}: {e}") from e
    if not isinstance(raw, dict):
        raise ValueError(f"Config file {config_path} must contain a JSON object")

    known = {f.name for f in fields(Config)}
    unknown = sorted(set(raw) - known)
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
    config = Config(**{k: v for k, v in raw.items() if k in known})

    is_valid, error_msg = validate_config(config)
    if not is_valid:
        raise ValueError(f"Invalid configuration: {error_msg}")

    logger.info("Loaded configuration from %s", config_path)
    return config


class ConfigStore:
    """Holds the current Config; updates replace it as a whole under a lock."""

    def __init__(self, config: Optional[Config] = None) -> None:
        self._config = config or Config()
        self._lock = threading.Lock()

    @property
    def current(self) -> Config:
        with self._lock:
            return self._config

    def update(self, **changes: Any) -> Config:
        with self._lock:
            candidate = replace(self._config, **changes)
            is_valid, error_msg = validate_config(candidate)
            if not is_valid:
                raise ValueError(f"Invalid configuration update: {error_msg}")
            self._config = candidate
            return candidate

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self.current)
