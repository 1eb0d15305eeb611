# solana_token_cache_bundle/common/feature_flags.py
import os

def _env_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    v = str(v).strip().lower()
    return v in ("1", "true", "yes", "y", "on")

def is_enabled_redis(cfg: dict) -> bool:
    # Hard env kill-switch wins
    if _env_bool("FORCE_DISABLE_REDIS", False):
        return False
    # USE_REDIS mirrors the original deployment .env; config can also opt in
    if os.getenv("USE_REDIS") is not None:
        return _env_bool("USE_REDIS", False)
    return bool((cfg or {}).get("cache", {}).get("use_redis", False))

def enrichment_toggle(cfg: dict) -> bool:
    # Operator switch only; says nothing about whether a key is present
    if _env_bool("FORCE_DISABLE_ENRICHMENT", False):
        return False
    return bool((cfg or {}).get("enrichment", {}).get("enabled", True))

def is_enabled_enrichment(cfg: dict) -> bool:
    # Enrichment needs a Helius key; config toggle defaults on
    key_ok = bool((os.getenv("HELIUS_API_KEY") or "").strip())
    return key_ok and enrichment_toggle(cfg)

def resolved_run_flags(cfg: dict) -> dict:
    # unify & truthify what we print in logs
    return {
        "redis": is_enabled_redis(cfg),
        "enrichment": is_enabled_enrichment(cfg),
        "env": {
            "USE_REDIS": os.getenv("USE_REDIS"),
            "HELIUS_API_KEY": "set" if os.getenv("HELIUS_API_KEY") else "missing",
        },
    }
