# solana_token_cache_bundle/utils/env_loader.py
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from solana_token_cache_bundle.common.constants import env_path

logger = logging.getLogger(__name__)

_ENV_TEMPLATE = (
    "HELIUS_API_KEY=\n"
    "USE_REDIS=false\n"
    "REDIS_URL=redis://localhost:6379\n"
)


def _package_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _candidate_env_paths() -> list[Path]:
    return [
        Path.cwd() / ".env",      # project CWD (dev)
        _package_root() / ".env",  # alongside the checkout
    ]


def load_env_first_found(override: bool = False) -> Optional[Path]:
    """
    Priority:
      1) DOTENV_PATH env var (if set and exists)
      2) Per-user appdata path: <appdata>/SolanaTokenCache/.env
      3) Fallback to candidate list (CWD, checkout root)
    Returns the Path loaded or None.
    """
    dotenv_override = os.environ.get("DOTENV_PATH")
    if dotenv_override:
        p = Path(dotenv_override)
        if p.exists():
            load_dotenv(dotenv_path=str(p), override=override)
            logger.info("Loaded .env from DOTENV_PATH: %s", str(p))
            return p
        logger.warning("DOTENV_PATH set but file not found: %s", str(p))

    preferred = env_path()
    if preferred.exists():
        load_dotenv(dotenv_path=str(preferred), override=override)
        logger.info("Loaded preferred .env from appdata: %s", str(preferred))
        return preferred

    for p in _candidate_env_paths():
        if p.exists():
            load_dotenv(dotenv_path=str(p), override=override)
            logger.info("Loaded .env from candidate path: %s", str(p))
            return p

    logger.debug("No .env file found by loader.")
    return None


def ensure_appdata_env_bootstrap() -> Path:
    """Create a skeleton appdata .env (copied from ./.env when present)."""
    dst = env_path()
    dst.parent.mkdir(parents=True, exist_ok=True)
    if dst.exists():
        return dst

    src = Path.cwd() / ".env"
    if src.exists():
        dst.write_text(src.read_text(encoding="utf-8"), encoding="utf-8")
        logger.info("Bootstrapped appdata .env from %s to %s", str(src), str(dst))
        return dst

    dst.write_text(_ENV_TEMPLATE, encoding="utf-8")
    logger.info("Created skeleton appdata .env at %s", str(dst))
    return dst


def get_helius_api_key() -> Optional[str]:
    v = os.environ.get("HELIUS_API_KEY")
    if not v:
        return None
    v = v.strip().strip('"').strip("'")
    return v or None


__all__ = [
    "load_env_first_found",
    "ensure_appdata_env_bootstrap",
    "get_helius_api_key",
]
