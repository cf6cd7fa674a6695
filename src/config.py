"""
Settings - Engine configuration.

Loaded from settings.json in the application data directory. Missing keys
fall back to defaults; unknown keys are ignored.
"""

import json
import logging
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Optional

from custody.crypto import DEFAULT_KDF_ITERATIONS
from services.secret_store import ARGON2_MEMORY_COST, ARGON2_PARALLELISM, ARGON2_TIME_COST
from utils import get_settings_path

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    """Tunable parameters of the custody engine."""
    kdf_iterations: int = DEFAULT_KDF_ITERATIONS
    keystore_subdir: str = "keystore"
    secrets_filename: str = "secrets.vault"
    argon2_time_cost: int = ARGON2_TIME_COST
    argon2_memory_cost: int = ARGON2_MEMORY_COST
    argon2_parallelism: int = ARGON2_PARALLELISM
    max_workers: int = 4
    log_level: str = "INFO"
    log_retention_days: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @property
    def log_level_value(self) -> int:
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.INFO


def load_settings(path: Optional[Path] = None) -> Settings:
    """Load settings from disk (defaults if missing or unreadable)."""
    settings_path = path or get_settings_path()
    if settings_path.exists():
        try:
            with open(settings_path, 'r') as f:
                return Settings.from_dict(json.load(f))
        except (OSError, json.JSONDecodeError, TypeError, AttributeError) as e:
            logger.warning(f"Failed to load settings: {e}")
    return Settings()


def save_settings(settings: Settings, path: Optional[Path] = None) -> None:
    """Save settings to disk."""
    settings_path = path or get_settings_path()
    with open(settings_path, 'w') as f:
        json.dump(settings.to_dict(), f, indent=2)
