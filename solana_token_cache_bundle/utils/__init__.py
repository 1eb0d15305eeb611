# solana_token_cache_bundle/utils/__init__.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from .env_loader import (
    load_env_first_found,
    ensure_appdata_env_bootstrap,
    get_helius_api_key,
)

__all__ = [
    "load_env_first_found",
    "ensure_appdata_env_bootstrap",
    "get_helius_api_key",
]
