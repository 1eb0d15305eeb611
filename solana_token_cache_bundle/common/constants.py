# solana_token_cache_bundle/common/constants.py
from __future__ import annotations

import os
import platform
from pathlib import Path
from typing import Optional, Final

# Public API re-exported by common/__init__.py
__all__ = [
    "APP_NAME",
    "local_appdata_dir",
    "appdata_dir",
    "appdata_join",
    "logs_dir",
    "config_path",
    "env_path",
    "db_path",
    "ensure_app_dirs",
    "BASIC_TABLE",
    "ENRICHED_TABLE",
    "TABLES",
    "BASIC_TOKENS_KEY",
    "ENRICHED_TOKENS_KEY",
    "DEX_ETAG_KEY",
    "DEX_BODY_KEY",
    "META_KEY_PREFIX",
    "CACHE_EXPIRY",
    "ENRICHED_CACHE_EXPIRY",
    "METADATA_CACHE_EXPIRY",
    "MAX_TOKENS",
    "MIN_MARKET_CAP",
    "BATCH_SIZE",
    "TARGET_CHAIN",
    "REQUEST_TIMEOUT",
    "USER_AGENT",
]

# -----------------------------------------------------------------------------
# App naming
# -----------------------------------------------------------------------------
APP_NAME: Final[str] = "SolanaTokenCache"  # used as the directory name across platforms

# -----------------------------------------------------------------------------
# Cache layout
# -----------------------------------------------------------------------------
BASIC_TABLE: Final[str] = "basic_tokens"
ENRICHED_TABLE: Final[str] = "enriched_tokens"
TABLES: Final[tuple] = (BASIC_TABLE, ENRICHED_TABLE)

BASIC_TOKENS_KEY: Final[str] = "solana:tokens:latest"
ENRICHED_TOKENS_KEY: Final[str] = "solana:tokens:enriched"
DEX_ETAG_KEY: Final[str] = "dex:latest:etag"
DEX_BODY_KEY: Final[str] = "dex:latest:body"
META_KEY_PREFIX: Final[str] = "solana:token:meta:"

# Defaults (seconds / USD); config.yaml `cache:` section overrides these.
CACHE_EXPIRY: Final[int] = 300
ENRICHED_CACHE_EXPIRY: Final[int] = 300
METADATA_CACHE_EXPIRY: Final[int] = 3600
MAX_TOKENS: Final[int] = 50
MIN_MARKET_CAP: Final[float] = 25_000.0
BATCH_SIZE: Final[int] = 20
TARGET_CHAIN: Final[str] = "solana"
REQUEST_TIMEOUT: Final[float] = 10.0
USER_AGENT: Final[str] = "SolTools-Bot/1.0"

# -----------------------------------------------------------------------------
# Platform-aware base dirs
# -----------------------------------------------------------------------------
def _windows_local_appdata() -> Optional[Path]:
    """Return Windows LocalAppData (LOCALAPPDATA), or None."""
    val = os.getenv("LOCALAPPDATA") or os.getenv("APPDATA")
    if not val:
        return None
    p = Path(val).expanduser()
    if p.exists() or p.parent.exists():
        return p
    return None


def _xdg_data_home() -> Path:
    """Linux/Unix XDG data home root."""
    val = os.getenv("XDG_DATA_HOME")
    return Path(val).expanduser() if val else (Path.home() / ".local" / "share")


def local_appdata_dir() -> Path:
    r"""
    Cross-platform "local app data" root for this user.

    - Windows:  %LOCALAPPDATA%
    - macOS:    ~/Library/Application Support
    - Linux:    ~/.local/share
    """
    system = platform.system().lower()
    if system.startswith("win"):
        return _windows_local_appdata() or Path.home()
    if system == "darwin":
        return Path.home() / "Library" / "Application Support"
    return _xdg_data_home()


def appdata_dir() -> Path:
    """Full application data directory (<local appdata>/SolanaTokenCache)."""
    return local_appdata_dir() / APP_NAME


def appdata_join(*parts: str) -> Path:
    return appdata_dir().joinpath(*parts)


def logs_dir() -> Path:
    """Directory where rotating logs are stored."""
    return appdata_dir() / "logs"


def config_path() -> Path:
    """Default location for YAML config."""
    return appdata_dir() / "config.yaml"


def env_path() -> Path:
    """Default location for a .env file (optional)."""
    return appdata_dir() / ".env"


def db_path() -> Path:
    """Default SQLite location for the durable cache tier."""
    return appdata_dir() / "tokens.db"

# -----------------------------------------------------------------------------
# Utilities
# -----------------------------------------------------------------------------
def ensure_app_dirs() -> None:
    """
    Create the app data hierarchy if missing. Safe to call multiple times.
    Never raises on filesystem errors.
    """
    try:
        appdata_dir().mkdir(parents=True, exist_ok=True)
        logs_dir().mkdir(parents=True, exist_ok=True)
    except OSError:
        # never crash import for FS reasons
        pass
