import logging

import pytest

from solana_token_cache_bundle.common.feature_flags import is_enabled_enrichment, is_enabled_redis
from solana_token_cache_bundle.token_cache.settings import CacheSettings
from solana_token_cache_bundle.token_cache.utils_exec import (
    load_config,
    parse_retry_after_seconds,
    setup_logging,
    to_non_negative_float,
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))
    for name in ("USE_REDIS", "FORCE_DISABLE_REDIS", "REDIS_URL", "HELIUS_API_KEY",
                 "TOKEN_CACHE_DB_PATH", "FORCE_DISABLE_ENRICHMENT"):
        monkeypatch.delenv(name, raising=False)


def test_explicit_config_file_is_loaded(tmp_path):
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text("cache:\n  max_tokens: 7\n  batch_size: 5\n", encoding="utf-8")
    cfg = load_config(str(cfg_file))
    assert cfg["cache"]["max_tokens"] == 7


def test_default_config_generated_in_appdata(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    cfg = load_config()
    assert cfg["cache"]["min_market_cap"] == 25000
    assert (tmp_path / "xdg" / "SolanaTokenCache" / "config.yaml").exists()


def test_broken_yaml_gives_empty_config(tmp_path):
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text("cache: [unclosed\n", encoding="utf-8")
    assert load_config(str(cfg_file)) == {}


def test_settings_from_config_and_env(monkeypatch, tmp_path):
    cfg = {
        "cache": {"max_tokens": 10, "min_market_cap": 1000, "use_redis": True, "db_path": "/tmp/a.db"},
        "rate_limits": {"helius": {"reservoir": 5, "max_concurrent": 3}},
    }
    s = CacheSettings.from_config(cfg)
    assert s.max_tokens == 10
    assert s.min_market_cap == 1000.0
    assert s.use_redis is True
    assert s.db_path == "/tmp/a.db"
    assert (s.helius_limits.reservoir, s.helius_limits.max_concurrent) == (5, 3)
    assert s.dexscreener_limits.reservoir == 50
    assert s.helius_api_key is None

    monkeypatch.setenv("USE_REDIS", "false")
    monkeypatch.setenv("TOKEN_CACHE_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("HELIUS_API_KEY", "  abc  ")
    s = CacheSettings.from_config(cfg)
    assert s.use_redis is False
    assert s.db_path == str(tmp_path / "env.db")
    assert s.helius_api_key == "abc"
    assert s.enrichment_enabled is True

    assert CacheSettings.from_config({"enrichment": {"enabled": False}}).enrichment_enabled is False
    monkeypatch.setenv("FORCE_DISABLE_ENRICHMENT", "1")
    assert CacheSettings.from_config({}).enrichment_enabled is False


def test_feature_flags(monkeypatch):
    assert is_enabled_redis({"cache": {"use_redis": True}}) is True
    monkeypatch.setenv("FORCE_DISABLE_REDIS", "1")
    assert is_enabled_redis({"cache": {"use_redis": True}}) is False

    assert is_enabled_enrichment({}) is False
    monkeypatch.setenv("HELIUS_API_KEY", "k")
    assert is_enabled_enrichment({}) is True
    assert is_enabled_enrichment({"enrichment": {"enabled": False}}) is False


def test_setup_logging_is_idempotent(tmp_path):
    cfg = {"logging": {"file": str(tmp_path / "logs" / "cache.log"), "log_level": "DEBUG"}}
    root = logging.getLogger()
    before = list(root.handlers)
    level_before = root.level
    try:
        lg = setup_logging(cfg)
        n = len(root.handlers)
        setup_logging(cfg)
        assert len(root.handlers) == n
        assert lg.name == "TokenCache"
        assert (tmp_path / "logs").is_dir()
    finally:
        for h in list(root.handlers):
            if h not in before:
                root.removeHandler(h)
                h.close()
        if hasattr(root, "_token_cache_logging_file"):
            delattr(root, "_token_cache_logging_file")
        root.setLevel(level_before)


def test_retry_after_parsing():
    assert parse_retry_after_seconds({"Retry-After": "12"}) == 12.0
    assert parse_retry_after_seconds({}, default=2.0) == 2.0
    assert parse_retry_after_seconds({"Retry-After": "soon"}, default=3.0) == 3.0
    assert parse_retry_after_seconds({"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}) == 0.0


def test_to_non_negative_float():
    assert to_non_negative_float("$1,234.5") == 1234.5
    assert to_non_negative_float(-1) == 0.0
    assert to_non_negative_float(True) == 0.0
    assert to_non_negative_float("nan") == 0.0
    assert to_non_negative_float(None, default=7.0) == 7.0
