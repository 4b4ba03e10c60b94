# aad_rop/config.py
"""
Engine configuration.

Every tunable used by the engine lives here so the rest of the package never
hardcodes a cache budget or gradient-check tolerance.
"""

import os
from dataclasses import dataclass
from typing import Optional

from .core.vector_cache import VectorCache


def _env_bool(value: str) -> bool:
    return value.strip().lower() not in ("0", "false", "no", "off", "")


@dataclass
class EngineConfig:
    """Configuration for vector reuse and numeric gradient checking."""

    # Vector-reuse cache
    cache_enabled: bool = True
    cache_max_floats: int = 0  # 0 means unlimited

    # Finite-difference checking (aad_rop.functest)
    check_delta: float = 1e-5
    check_prec: float = 1e-5

    def __post_init__(self):
        if self.cache_max_floats < 0:
            raise ValueError(f"cache_max_floats must be >= 0, got {self.cache_max_floats}")
        if self.check_delta <= 0 or self.check_prec <= 0:
            raise ValueError("check_delta and check_prec must be positive")

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "EngineConfig":
        """
        Build a config from AAD_ROP_* environment variables, falling back to
        the dataclass defaults for anything unset.
        """
        env = os.environ if environ is None else environ
        cfg = cls()
        if "AAD_ROP_CACHE_ENABLED" in env:
            cfg.cache_enabled = _env_bool(env["AAD_ROP_CACHE_ENABLED"])
        if "AAD_ROP_CACHE_MAX_FLOATS" in env:
            cfg.cache_max_floats = int(env["AAD_ROP_CACHE_MAX_FLOATS"])
        if "AAD_ROP_CHECK_DELTA" in env:
            cfg.check_delta = float(env["AAD_ROP_CHECK_DELTA"])
        if "AAD_ROP_CHECK_PREC" in env:
            cfg.check_prec = float(env["AAD_ROP_CHECK_PREC"])
        cfg.__post_init__()
        return cfg

    def new_cache(self) -> Optional[VectorCache]:
        """Return a fresh VectorCache, or None when caching is disabled."""
        if not self.cache_enabled:
            return None
        return VectorCache(max_floats=self.cache_max_floats)
