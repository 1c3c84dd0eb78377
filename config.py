"""
config.py
=========
Settings for JDK detection, read from ``jdk_detect.json`` with environment
variable overrides.

Environment overrides:
  JDK_DETECT_DEBOUNCE_MS   – debounce window for directory watchers
  JDK_DETECT_LOG_LEVEL     – DEBUG | INFO | WARNING | ERROR
  JDK_DETECT_PATHS         – extra JDK paths, separated by os.pathsep
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "jdk_detect.json"


@dataclass
class Settings:
    """Tunable detection settings."""

    java_home_env: str = "JAVA_HOME"
    compiler: str = "javac"
    debounce_ms: int = 250
    watch_recursive: bool = False
    jdk_paths: List[str] = field(default_factory=list)
    ignore_platform_paths: bool = False
    log_level: str = "INFO"

    @property
    def debounce_seconds(self) -> float:
        return max(self.debounce_ms, 0) / 1000.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown settings: %s", ", ".join(unknown))
        settings = cls(**{k: v for k, v in data.items() if k in known})
        if isinstance(settings.jdk_paths, str):
            settings.jdk_paths = [settings.jdk_paths]
        return settings


def load_settings(path: Optional[str | Path] = None) -> Settings:
    """
    Load settings from ``path`` (default ``jdk_detect.json``).

    A missing or unreadable file falls back to the defaults.
    """
    config_path = Path(path or DEFAULT_CONFIG_PATH)
    data: Dict[str, Any] = {}

    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
            if not isinstance(data, dict):
                logger.error("Config %s must hold a JSON object", config_path)
                data = {}
            else:
                logger.debug("Config loaded from %s", config_path)
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Failed to load config: %s", exc)
            data = {}
    else:
        logger.debug("Config file %s not found, using defaults", config_path)

    try:
        settings = Settings.from_dict(data)
    except TypeError as exc:
        logger.error("Invalid config %s: %s", config_path, exc)
        settings = Settings()

    _apply_env_overrides(settings)
    return settings


def _apply_env_overrides(settings: Settings) -> None:
    debounce = os.environ.get("JDK_DETECT_DEBOUNCE_MS")
    if debounce:
        try:
            settings.debounce_ms = int(debounce)
        except ValueError:
            logger.warning("Ignoring JDK_DETECT_DEBOUNCE_MS=%r (not an integer)", debounce)

    level = os.environ.get("JDK_DETECT_LOG_LEVEL")
    if level:
        settings.log_level = level.upper()

    extra = os.environ.get("JDK_DETECT_PATHS")
    if extra:
        settings.jdk_paths = settings.jdk_paths + [p for p in extra.split(os.pathsep) if p]
