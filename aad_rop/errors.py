# aad_rop/errors.py
"""
Exception types raised by the engine.

ShapeError is a caller programming error (mismatched lengths, bad slice
bounds, batch counts that do not divide a vector) and is raised while a node
is being constructed. DeserializationError comes from untrusted bytes and is
only raised by the leaf-parameter decoding functions.

Numeric degeneracies (division by zero, fractional powers of negative
numbers) are not errors: they yield nan/inf exactly like IEEE-754 arithmetic.
"""


class ShapeError(ValueError):
    """Vector or matrix dimensions do not fit the requested operation."""


class DeserializationError(ValueError):
    """Persisted leaf-parameter data is truncated or malformed."""
