# solana_token_cache_bundle/token_cache/utils_exec.py
from __future__ import annotations

import asyncio
import logging
import math
import time
from email.utils import parsedate_to_datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Coroutine, Dict, List, Mapping, Optional

import yaml

from solana_token_cache_bundle.common.constants import (
    config_path as _config_path_fn,
    appdata_dir,
    db_path,
    logs_dir,
)

logger = logging.getLogger("TokenCache")

# -----------------------------------------------------------------------------
# Config & logging helpers
# -----------------------------------------------------------------------------
_missing_cfg_last_log_ts: float = 0.0

def _resolve_config_path(path: Optional[str] = None) -> Path:
    candidates: List[Path] = []
    if path:
        candidates.append(Path(path))
    candidates.append(_config_path_fn())
    candidates.append(Path.cwd() / "config.yaml")
    for c in candidates:
        if c.exists():
            return c
    # Nothing on disk yet: explicit path wins, otherwise the appdata default
    return Path(path) if path else _config_path_fn()

def _default_config() -> Dict[str, Any]:
    return {
        "logging": {
            "file": str(logs_dir() / "token_cache.log"),
            "log_level": "INFO",
            "log_rotation_size_mb": 10,
            "log_max_files": 5,
        },
        "cache": {
            "db_path": str(db_path()),
            "use_redis": False,
            "redis_url": "redis://localhost:6379",
            "basic_ttl_seconds": 300,
            "enriched_ttl_seconds": 300,
            "metadata_ttl_seconds": 3600,
            "max_tokens": 50,
            "min_market_cap": 25000,
            "batch_size": 20,
            "refresh_interval_seconds": 300,
        },
        "rate_limits": {
            "dexscreener": {"reservoir": 50, "max_concurrent": 1},
            "helius": {"reservoir": 60, "max_concurrent": 2},
        },
        "enrichment": {"enabled": True},
    }

def _create_default_config(cfg_path: Path) -> None:
    try:
        if not cfg_path.exists() or (cfg_path.stat().st_size == 0):
            cfg_path.parent.mkdir(parents=True, exist_ok=True)
            cfg_path.write_text("# Auto-generated default config\n" + yaml.safe_dump(_default_config()), encoding="utf-8")
    except OSError as e:
        logger.debug("Could not create default config at %s: %s", cfg_path, e)

def load_config(path: str | None = None) -> Dict:
    global _missing_cfg_last_log_ts
    cfg_path = _resolve_config_path(path)
    _create_default_config(cfg_path)
    try:
        with open(cfg_path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
        logger.debug("Loaded configuration from %s", cfg_path)
        return config if isinstance(config, dict) else {}
    except (OSError, yaml.YAMLError) as e:
        now = time.time()
        if now - _missing_cfg_last_log_ts > 30:
            logger.error("Failed to load config from %s: %s", cfg_path, e)
            _missing_cfg_last_log_ts = now
        return {}

_LOG_SENTINEL_ATTR = "_token_cache_logging_file"

def setup_logging(config: dict[str, Any] | None) -> logging.Logger:
    log_cfg = (config or {}).get("logging", {}) if isinstance(config, dict) else {}

    raw_file = log_cfg.get("file") or (logs_dir() / "token_cache.log")
    log_file = Path(raw_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level_name = str(log_cfg.get("log_level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    max_size_mb = int(log_cfg.get("log_rotation_size_mb", 10))
    max_files = int(log_cfg.get("log_max_files", 5))

    root = logging.getLogger()
    root.setLevel(level)

    if getattr(root, _LOG_SENTINEL_ATTR, None) == str(log_file):
        for h in root.handlers:
            h.setLevel(level)
        return logging.getLogger("TokenCache")

    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
    file_handler: Optional[RotatingFileHandler] = None
    for h in list(root.handlers):
        if isinstance(h, RotatingFileHandler) and getattr(h, "baseFilename", None) == str(log_file):
            file_handler = h
            break
    if file_handler is None:
        file_handler = RotatingFileHandler(
            str(log_file),
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=max_files,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    file_handler.setLevel(level)

    has_console = any(isinstance(h, logging.StreamHandler) and not hasattr(h, "baseFilename") for h in root.handlers)
    if not has_console:
        sh = logging.StreamHandler()
        sh.setFormatter(formatter)
        sh.setLevel(level)
        root.addHandler(sh)

    lx = logging.getLogger("TokenCache")
    lx.handlers.clear()
    lx.propagate = True
    lx.setLevel(level)

    setattr(root, _LOG_SENTINEL_ATTR, str(log_file))
    lx.info("Logging configured: level=%s, file=%s (appdata=%s)", level_name, str(log_file), appdata_dir())
    return lx

# -----------------------------------------------------------------------------
# Background tasks
# -----------------------------------------------------------------------------
def safe_create_task(coro: Coroutine[Any, Any, Any], *, name: Optional[str] = None) -> asyncio.Task:
    """
    Schedule a coroutine on the running loop and log (never re-raise) its failure.
    Must be called from inside a running event loop.
    """
    label = name or "<task>"
    task = asyncio.get_running_loop().create_task(coro, name=label)

    def _done_cb(t: asyncio.Task) -> None:
        if t.cancelled():
            logger.info("Background task %s cancelled", label)
            return
        exc = t.exception()
        if exc is not None:
            logger.error("Background task %s raised exception: %s", label, exc, exc_info=exc)

    task.add_done_callback(_done_cb)
    return task

# -----------------------------------------------------------------------------
# HTTP helpers
# -----------------------------------------------------------------------------
def parse_retry_after_seconds(headers: Optional[Mapping[str, Any]], default: float = 0.0) -> float:
    """
    Parse Retry-After header (seconds or HTTP-date) into seconds remaining.
    Returns `default` if not present or not parseable.
    """
    if not headers:
        return default
    ra = headers.get("Retry-After") or headers.get("retry-after")
    if not ra:
        return default
    try:
        return max(0.0, float(ra))
    except (TypeError, ValueError):
        pass
    try:
        dt = parsedate_to_datetime(str(ra))
    except (TypeError, ValueError):
        return default
    if dt is None:
        return default
    return max(0.0, dt.timestamp() - time.time())

# -----------------------------------------------------------------------------
# Defensive numeric helpers
# -----------------------------------------------------------------------------
def to_non_negative_float(v: Any, default: float = 0.0) -> float:
    """Coerce numbers/numeric strings to a finite float >= 0 (else `default`)."""
    if v is None or v == "" or isinstance(v, bool):
        return default
    try:
        if isinstance(v, str):
            v = v.strip().replace(",", "").replace("$", "")
        f = float(v)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(f) or f < 0:
        return default
    return f
