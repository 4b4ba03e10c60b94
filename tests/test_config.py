import pytest

from aad_rop import EngineConfig


def test_defaults():
    cfg = EngineConfig()
    assert cfg.cache_enabled
    assert cfg.cache_max_floats == 0
    assert cfg.check_delta == 1e-5
    assert cfg.check_prec == 1e-5


def test_from_env():
    cfg = EngineConfig.from_env({
        "AAD_ROP_CACHE_ENABLED": "false",
        "AAD_ROP_CACHE_MAX_FLOATS": "4096",
        "AAD_ROP_CHECK_DELTA": "1e-6",
        "AAD_ROP_CHECK_PREC": "1e-4",
    })
    assert not cfg.cache_enabled
    assert cfg.cache_max_floats == 4096
    assert cfg.check_delta == 1e-6
    assert cfg.check_prec == 1e-4
    assert cfg.new_cache() is None


def test_from_env_ignores_unset(monkeypatch):
    monkeypatch.delenv("AAD_ROP_CACHE_ENABLED", raising=False)
    monkeypatch.setenv("AAD_ROP_CACHE_MAX_FLOATS", "10")
    cfg = EngineConfig.from_env()
    assert cfg.cache_enabled
    assert cfg.new_cache().max_floats == 10


def test_invalid_values():
    with pytest.raises(ValueError):
        EngineConfig(cache_max_floats=-1)
    with pytest.raises(ValueError):
        EngineConfig(check_delta=0)
    with pytest.raises(ValueError):
        EngineConfig.from_env({"AAD_ROP_CACHE_MAX_FLOATS": "-5"})
