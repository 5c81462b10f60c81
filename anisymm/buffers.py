"""
Length-checked views of caller-owned buffers.

The caller allocates and owns every buffer. Input buffers are only read;
output buffers are written in place through a reshaped view and never
retained after the call returns. Numpy arrays are wrapped without copying
(torch.from_numpy), so results land in the caller's array.
"""

import math
from typing import Optional, Sequence, Union

import numpy as np
import torch

from .exceptions import BufferShapeError

__all__ = ["input_view", "output_view"]

ArrayLike = Union[torch.Tensor, np.ndarray, Sequence[float]]


def _as_tensor(array: ArrayLike) -> torch.Tensor:
    if isinstance(array, torch.Tensor):
        return array
    if isinstance(array, np.ndarray):
        return torch.from_numpy(array)
    # Python floats are double precision; keep them that way
    return torch.from_numpy(np.asarray(array, dtype=np.float64))


def input_view(
    array: ArrayLike,
    shape: Sequence[int],
    name: str,
    dtype: torch.dtype = torch.float64,
    device: str = "cpu",
) -> torch.Tensor:
    """
    Read-only view of an input buffer with the expected shape.

    Any layout holding exactly prod(shape) values in row-major order is
    accepted (e.g. a flat array or the full shape).

    Raises
    ------
        BufferShapeError: If the number of values differs from prod(shape)
    """
    tensor = _as_tensor(array)
    expected = math.prod(shape)
    if tensor.numel() != expected:
        raise BufferShapeError(
            name, f"expected {expected} values {tuple(shape)}, "
            f"got {tensor.numel()}")
    return tensor.to(device=device, dtype=dtype).reshape(tuple(shape))


def output_view(
    buffer: Optional[ArrayLike],
    shape: Sequence[int],
    name: str,
    dtype: torch.dtype = torch.float64,
    device: str = "cpu",
) -> torch.Tensor:
    """
    Zeroed, writable view of an output buffer with the expected shape.

    A new tensor is allocated when `buffer` is None.

    Raises
    ------
        BufferShapeError: If the buffer has the wrong number of values,
            the wrong dtype or device, or is not contiguous
    """
    shape = tuple(shape)
    if buffer is None:
        return torch.zeros(shape, dtype=dtype, device=device)
    tensor = _as_tensor(buffer)
    expected = math.prod(shape)
    if tensor.numel() != expected:
        raise BufferShapeError(
            name, f"expected {expected} values {shape}, "
            f"got {tensor.numel()}")
    if tensor.dtype != dtype:
        raise BufferShapeError(
            name, f"expected dtype {dtype}, got {tensor.dtype}")
    if tensor.device != torch.device(device):
        raise BufferShapeError(
            name, f"expected device {device}, got {tensor.device}")
    if not tensor.is_contiguous():
        raise BufferShapeError(name, "buffer must be contiguous")
    view = tensor.view(shape)
    view.zero_()
    return view
