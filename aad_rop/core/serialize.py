# aad_rop/core/serialize.py
"""
Binary format for leaf parameters.

    <Q  element count N (little-endian uint64)
    <f8 N IEEE-754 doubles (little-endian)

Round trips are bit-exact, including nan payloads, infinities and -0.0.
"""
from __future__ import annotations

import logging
import struct
import sys
from typing import BinaryIO

import numpy as np

from ..errors import DeserializationError

logger = logging.getLogger(__name__)

_HEADER = struct.Struct("<Q")
_ITEM = np.dtype("<f8")
_MAX_COUNT = sys.maxsize // 8
_CHUNK = 1 << 20  # bytes per stream read


def encode_vector(vec: np.ndarray) -> bytes:
    vec = np.asarray(vec, dtype=np.float64)
    return _HEADER.pack(len(vec)) + vec.astype(_ITEM, copy=False).tobytes()


def decode_vector(data: bytes) -> np.ndarray:
    """Decode exactly one encoded vector; truncated or trailing bytes are errors."""
    if len(data) < _HEADER.size:
        logger.debug("leaf data too short for header: %d bytes", len(data))
        raise DeserializationError(f"need {_HEADER.size} header bytes, got {len(data)}")
    (count,) = _HEADER.unpack_from(data)
    expected = _HEADER.size + count * _ITEM.itemsize
    if len(data) != expected:
        logger.debug("leaf data size mismatch: header says %d floats, got %d bytes",
                     count, len(data))
        raise DeserializationError(
            f"header declares {count} values ({expected} bytes), got {len(data)} bytes"
        )
    return np.frombuffer(data, dtype=_ITEM, count=count,
                         offset=_HEADER.size).astype(np.float64)


def write_variable(stream: BinaryIO, variable) -> None:
    """Write `variable`'s vector to a binary stream."""
    stream.write(variable.serialize())


def read_variable(stream: BinaryIO):
    """Read one Variable written by `write_variable` from a binary stream."""
    from .var import Variable

    header = stream.read(_HEADER.size)
    if len(header) != _HEADER.size:
        logger.debug("stream ended inside header: %d bytes", len(header))
        raise DeserializationError(f"need {_HEADER.size} header bytes, got {len(header)}")
    (count,) = _HEADER.unpack(header)
    if count > _MAX_COUNT:
        logger.debug("header declares %d values, more than fit in memory", count)
        raise DeserializationError(f"header declares {count} values")
    size = count * _ITEM.itemsize
    # The header is untrusted: grow the body chunk by chunk so a short
    # stream fails before anything near `size` is allocated.
    body = bytearray()
    while len(body) < size:
        want = min(_CHUNK, size - len(body))
        chunk = stream.read(want)
        body += chunk
        if len(chunk) != want:
            logger.debug("stream ended inside body: wanted %d bytes, got %d", size, len(body))
            raise DeserializationError(f"need {size} data bytes, got {len(body)}")
    return Variable(decode_vector(header + bytes(body)))
