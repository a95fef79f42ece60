"""
DoubleBufferingArray (DBA): read-old / write-new field storage with O(1) swap.

The atmosphere keeps one of these per gas: the field is loaded and swapped
to `.read`, the mixed state is computed into `.write`, and `swap()` makes it
visible. Readers never observe a half updated field, so neighbour sampling
in the mixing passes does not depend on visiting order.

- __getitem__ reads from .read
- __setitem__ writes to .write (first write after a swap mirrors .read first)
- __array__ exposes .read for NumPy interop
- __array_ufunc__ routes np.ufunc calls; out=DBA writes .write

Tests: tests/test_double_buffering.py
"""

from __future__ import annotations

from typing import Any

import numpy as _np


class DoubleBufferingArray:
    """
    Double-buffered ND array with explicit read/write and O(1) swap.

      dba = DoubleBufferingArray((height, width), dtype=float, initial_value=0.0)
      dba.write[:] = dba.read + 1.0
      dba.swap()
    """

    __slots__ = ("_a", "_b", "_read_idx", "_write_synced", "__weakref__")
    __array_priority__ = 1000

    def __init__(self, shape: tuple[int, ...], dtype: Any = _np.float64, initial_value: Any = 0.0):
        self._a = _np.full(shape, initial_value, dtype=dtype)
        self._b = _np.full(shape, initial_value, dtype=dtype)
        self._read_idx = 0  # 0 => _a is read, _b is write
        self._write_synced = False

    @property
    def read(self) -> _np.ndarray:
        return self._a if self._read_idx == 0 else self._b

    @property
    def write(self) -> _np.ndarray:
        return self._b if self._read_idx == 0 else self._a

    def swap(self) -> None:
        self._read_idx ^= 1
        self._write_synced = False

    @property
    def shape(self) -> tuple[int, ...]:
        return self.read.shape

    @property
    def dtype(self) -> _np.dtype:
        return self.read.dtype

    def __getitem__(self, key):
        return self.read[key]

    def __setitem__(self, key, value):
        if value is self:
            raise ValueError(
                "DoubleBufferingArray: self-aliasing write is not allowed (dba[...] = dba)."
            )
        if not self._write_synced:
            self.write[...] = self.read
            self._write_synced = True
        self.write[key] = value

    def __array__(self, dtype=None, copy=None):
        arr = self.read
        if dtype is not None:
            return _np.asarray(arr, dtype=dtype)
        return arr

    def __array_ufunc__(self, ufunc, method, *inputs, **kwargs):
        if method != "__call__":
            return NotImplemented

        proc_inputs = [x.read if isinstance(x, DoubleBufferingArray) else x for x in inputs]

        out = kwargs.get("out", None)
        if out is None:
            return ufunc(*proc_inputs, **kwargs)

        if not isinstance(out, tuple):
            out = (out,)
        for y in out:
            if isinstance(y, DoubleBufferingArray) and not y._write_synced:
                y.write[...] = y.read
                y._write_synced = True

        kwargs["out"] = tuple(y.write if isinstance(y, DoubleBufferingArray) else y for y in out)
        return ufunc(*proc_inputs, **kwargs)

    def __repr__(self) -> str:
        return (
            f"DoubleBufferingArray(shape={self.shape}, dtype={self.dtype}, "
            f"read=buf{self._read_idx}, write=buf{1 ^ self._read_idx})"
        )
