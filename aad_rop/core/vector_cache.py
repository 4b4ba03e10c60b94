# aad_rop/core/vector_cache.py
from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

import numpy as np

logger = logging.getLogger(__name__)


class VectorCache:
    """
    Concurrency-safe pool of float64 buffers, bucketed by length.

    Buffers handed back with `free` are kept for later `alloc` calls of the
    same length. The cache never holds more than `max_floats` floats at once
    (0 means unlimited); anything over budget is simply dropped and left to
    the garbage collector.

    The cache is purely a performance device. Passing `cache=None` anywhere
    the engine accepts one always allocates fresh buffers and must give the
    same numbers.

    Attributes
    ----------
    max_floats : int
        Upper bound on the number of cached float64 values.
    """

    def __init__(self, max_floats: int = 0):
        if max_floats < 0:
            raise ValueError(f"max_floats must be >= 0, got {max_floats}")
        self.max_floats = max_floats
        self._lock = threading.Lock()
        self._buckets: Dict[int, List[np.ndarray]] = {}
        self._float_count = 0

    def __repr__(self):
        return f"VectorCache(max_floats={self.max_floats}, float_count={self.float_count()})"

    def alloc(self, size: int) -> np.ndarray:
        """Return a zero-filled vector of length `size`, reusing one if possible."""
        with self._lock:
            bucket = self._buckets.get(size)
            if not bucket:
                vec = None
            else:
                vec = bucket.pop()
                self._float_count -= size
        if vec is None:
            return np.zeros(size, dtype=np.float64)
        vec.fill(0.0)
        return vec

    def free(self, vec: np.ndarray) -> None:
        """Give `vec` back to the cache. The caller must not touch it afterwards."""
        # Views would alias memory owned by someone else.
        if vec.ndim != 1 or vec.dtype != np.float64 or not vec.flags.owndata:
            return
        size = len(vec)
        with self._lock:
            if self.max_floats and self._float_count + size > self.max_floats:
                logger.debug("dropping %d-float buffer: cache at %d/%d floats",
                             size, self._float_count, self.max_floats)
                return
            self._buckets.setdefault(size, []).append(vec)
            self._float_count += size

    def float_count(self) -> int:
        """Number of float64 values currently held by the cache."""
        with self._lock:
            return self._float_count

    def clear(self) -> None:
        """Drop every cached buffer."""
        with self._lock:
            logger.debug("clearing vector cache (%d floats)", self._float_count)
            self._buckets = {}
            self._float_count = 0


# ---------------- helpers tolerating a disabled (None) cache ---------------- #

def alloc(cache: Optional[VectorCache], size: int) -> np.ndarray:
    """Zeroed vector from `cache`, or a fresh one when `cache` is None."""
    if cache is None:
        return np.zeros(size, dtype=np.float64)
    return cache.alloc(size)


def free(cache: Optional[VectorCache], vec: Optional[np.ndarray]) -> None:
    """Return `vec` to `cache`; a no-op when either is None."""
    if cache is not None and vec is not None:
        cache.free(vec)
