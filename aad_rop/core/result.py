# aad_rop/core/result.py
"""
Node protocol for the engine.

`Result` is a node that knows its forward value and can push an adjoint back
to the leaf parameters it depends on. `RResult` additionally carries the
directional derivative (R-output) of its value and pushes adjoint and
adjoint-tangent together.

Collaborators only need to implement the protocol methods; the base classes
below are a convenience used by every built-in node.
"""
from __future__ import annotations

from typing import Iterable, List, Optional, Protocol, Sequence, runtime_checkable

import numpy as np

from ..errors import ShapeError
from .vector_cache import VectorCache, alloc, free


@runtime_checkable
class Result(Protocol):
    def output(self) -> np.ndarray:
        ...

    def constant(self, grad) -> bool:
        ...

    def propagate_gradient(self, upstream: np.ndarray, grad) -> None:
        ...

    def release(self) -> None:
        ...


@runtime_checkable
class RResult(Protocol):
    def output(self) -> np.ndarray:
        ...

    def r_output(self) -> np.ndarray:
        ...

    def constant(self, rgrad, grad=None) -> bool:
        ...

    def propagate_r_gradient(self, upstream: np.ndarray, upstream_r: np.ndarray,
                             rgrad, grad=None) -> None:
        ...

    def release(self) -> None:
        ...


class ResultBase:
    """
    Common state of a built-in forward node.

    Attributes
    ----------
    output_vec : np.ndarray | None
        Forward value; set to None once the node has been released.
    inputs : tuple
        Input nodes, referenced (never owned).
    cache : VectorCache | None
        Where owned buffers are allocated from and returned to.
    """

    __array_priority__ = 1000  # keep numpy from broadcasting over nodes

    def __init__(self, output_vec: np.ndarray, inputs: Iterable = (),
                 cache: Optional[VectorCache] = None, owned: bool = True):
        self.output_vec = output_vec
        self.inputs = tuple(inputs)
        self.cache = cache
        self._owned: List[np.ndarray] = [output_vec] if owned else []
        self._released = False

    def __repr__(self):
        size = None if self.output_vec is None else len(self.output_vec)
        return f"{type(self).__name__}(size={size})"

    def output(self) -> np.ndarray:
        return self.output_vec

    def constant(self, grad) -> bool:
        return all(inp.constant(grad) for inp in self.inputs)

    def propagate_gradient(self, upstream: np.ndarray, grad) -> None:
        raise NotImplementedError

    def release(self) -> None:
        """Return owned buffers to the cache and release the inputs. Idempotent."""
        if self._released:
            return
        self._released = True
        for buf in self._owned:
            free(self.cache, buf)
        self._owned = []
        self.output_vec = None
        for inp in self.inputs:
            inp.release()

    # ----------------------------- scratch buffers ----------------------------- #
    def _alloc(self, size: int) -> np.ndarray:
        return alloc(self.cache, size)

    def _free(self, vec: Optional[np.ndarray]) -> None:
        free(self.cache, vec)


class RResultBase(ResultBase):
    """
    Common state of a built-in forward-tangent node.

    Attributes
    ----------
    r_output_vec : np.ndarray | None
        Directional derivative of `output_vec` along the caller's RVector.
    """

    def __init__(self, output_vec: np.ndarray, r_output_vec: np.ndarray,
                 inputs: Iterable = (), cache: Optional[VectorCache] = None,
                 owned: bool = True):
        super().__init__(output_vec, inputs, cache, owned)
        self.r_output_vec = r_output_vec
        if owned:
            self._owned.append(r_output_vec)

    def r_output(self) -> np.ndarray:
        return self.r_output_vec

    def constant(self, rgrad, grad=None) -> bool:
        return all(inp.constant(rgrad, grad) for inp in self.inputs)

    def propagate_r_gradient(self, upstream: np.ndarray, upstream_r: np.ndarray,
                             rgrad, grad=None) -> None:
        raise NotImplementedError

    def release(self) -> None:
        if self._released:
            return
        super().release()
        self.r_output_vec = None


def check_same_length(op: str, results: Sequence) -> int:
    """Length shared by every result's output; ShapeError otherwise."""
    sizes = [len(r.output()) for r in results]
    if len(set(sizes)) > 1:
        raise ShapeError(f"{op}: input lengths differ: {sizes}")
    return sizes[0]
