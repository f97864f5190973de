"""
Configuration Management
========================

Handles loading configuration from environment variables and config files.
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, Any
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Default configuration values
DEFAULT_HOME = Path.home() / ".sessionlens"
CONFIG_FILENAME = "sessionlens_config.json"

ENV_LOG_DIR = "SESSIONLENS_LOG_DIR"
ENV_DB = "SESSIONLENS_DB"
ENV_PATTERNS_DIR = "SESSIONLENS_PATTERNS_DIR"
ENV_EXPORT_PATTERNS = "SESSIONLENS_EXPORT_PATTERNS"
ENV_STABLE_IDS = "SESSIONLENS_STABLE_IDS"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


@dataclass
class LensConfig:
    """SessionLens Configuration."""
    log_dir: Path
    db_path: Path
    patterns_dir: Path
    export_pattern_documents: bool = True
    stable_pattern_ids: bool = False

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "LensConfig":
        """
        Load configuration from multiple sources in precedence order:
        1. Environment variables
        2. Local config file (sessionlens_config.json)
        3. Default values
        """
        # Start with defaults
        config = {
            "log_dir": DEFAULT_HOME / "logs",
            "db_path": DEFAULT_HOME / "analytics.db",
            "patterns_dir": DEFAULT_HOME / "patterns",
            "export_pattern_documents": True,
            "stable_pattern_ids": False,
        }

        # Load from config file if exists
        config_path = Path(config_path) if config_path else Path(CONFIG_FILENAME)
        if config_path.exists():
            try:
                with open(config_path, "r") as f:
                    file_config = json.load(f)
                if not isinstance(file_config, dict):
                    raise ValueError("top-level value must be an object")
                config.update({k: v for k, v in file_config.items() if k in config})
            except (OSError, ValueError) as e:
                logger.warning("Failed to load config file %s: %s", config_path, e)

        # Override with environment variables
        env_paths = {
            "log_dir": ENV_LOG_DIR,
            "db_path": ENV_DB,
            "patterns_dir": ENV_PATTERNS_DIR,
        }
        for key, env_name in env_paths.items():
            value = os.environ.get(env_name)
            if value:
                config[key] = value

        env_export = os.environ.get(ENV_EXPORT_PATTERNS)
        if env_export:
            config["export_pattern_documents"] = env_export
        env_stable = os.environ.get(ENV_STABLE_IDS)
        if env_stable:
            config["stable_pattern_ids"] = env_stable

        return cls(
            log_dir=Path(config["log_dir"]).expanduser(),
            db_path=Path(config["db_path"]).expanduser(),
            patterns_dir=Path(config["patterns_dir"]).expanduser(),
            export_pattern_documents=_as_bool(config["export_pattern_documents"]),
            stable_pattern_ids=_as_bool(config["stable_pattern_ids"]),
        )
