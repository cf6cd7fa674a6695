"""
Shared utility functions for the custody engine.

Contains path helpers and file permission handling used across packages.
"""

import os
import sys
from pathlib import Path

# Secure file permissions (Unix only)
SECURE_FILE_MODE = 0o600  # Owner read/write only

APP_HOME_ENV = "ETHER_CUSTODY_HOME"


def set_secure_permissions(filepath: Path) -> None:
    """
    Set restrictive file permissions on Unix systems.

    Sets file to mode 0600 (owner read/write only) to protect key material.
    No-op on Windows (NTFS uses ACLs, not Unix permissions).
    """
    if os.name == 'posix':
        try:
            os.chmod(filepath, SECURE_FILE_MODE)
        except OSError:
            # Best effort - don't fail save operation if chmod fails
            pass


def get_app_dir() -> Path:
    """Get the application data directory."""
    override = os.environ.get(APP_HOME_ENV)
    if override:
        app_dir = Path(override)
    elif getattr(sys, 'frozen', False):
        # Running as compiled
        app_dir = Path(sys.executable).parent / "data"
    else:
        app_dir = Path.home() / ".ether-custody"

    app_dir.mkdir(parents=True, exist_ok=True)
    return app_dir


def get_keystore_dir(subdir: str = "keystore") -> Path:
    """Get the keystore record directory."""
    return get_app_dir() / subdir


def get_secrets_path(filename: str = "secrets.vault") -> Path:
    """Get path to the secret store vault."""
    return get_app_dir() / filename


def get_settings_path() -> Path:
    """Get path to settings file."""
    return get_app_dir() / "settings.json"


def get_logs_dir() -> Path:
    """Get the logs directory."""
    logs_dir = get_app_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir
