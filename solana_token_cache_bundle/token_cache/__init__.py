# solana_token_cache_bundle/token_cache/__init__.py
from __future__ import annotations

import importlib as _importlib

__all__ = [
    "database",
    "enrichment",
    "fetching",
    "models",
    "service",
    "settings",
    "single_flight",
    "store",
    "swr",
    "utils_exec",
]


def __getattr__(name: str):
    if name in __all__:
        return _importlib.import_module(f"{__name__}.{name}")
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__():
    return sorted(list(globals().keys()) + __all__)
