from __future__ import annotations

from contextlib import ExitStack
from typing import Any

import attrs
import numpy as np

from .backends import GemmBackend
from .config import MatrixSize


@attrs.define(frozen=True, slots=True)
class HostBuffers:
    a: np.ndarray
    b: np.ndarray
    c_ref: np.ndarray
    c: np.ndarray


@attrs.define(frozen=True, slots=True)
class DeviceBuffers:
    a: Any
    b: Any
    c_ref: Any
    c: Any


def allocate_host_buffers(size: MatrixSize) -> HostBuffers:
    return HostBuffers(
        a=np.empty((size.ha, size.wa), dtype=np.float32),
        b=np.empty((size.hb, size.wb), dtype=np.float32),
        c_ref=np.empty((size.hc, size.wc), dtype=np.float32),
        c=np.empty((size.hc, size.wc), dtype=np.float32),
    )


def init_inputs(host: HostBuffers, seed: int) -> None:
    """Fill A then B with independent uniform [0, 1) draws from one seeded generator."""
    rng = np.random.default_rng(seed)
    host.a[...] = rng.random(host.a.shape, dtype=np.float32)
    host.b[...] = rng.random(host.b.shape, dtype=np.float32)


def acquire_device_buffers(stack: ExitStack, backend: GemmBackend, size: MatrixSize) -> DeviceBuffers:
    """Allocate the four device buffers, registering each release on `stack` as soon as it exists.

    A failed allocation leaves the earlier buffers registered, so unwinding the
    stack frees everything that was acquired.
    """

    def _acquire(rows: int, cols: int) -> Any:
        buf = backend.malloc(rows, cols)
        stack.callback(backend.free, buf)
        return buf

    return DeviceBuffers(
        a=_acquire(size.ha, size.wa),
        b=_acquire(size.hb, size.wb),
        c_ref=_acquire(size.hc, size.wc),
        c=_acquire(size.hc, size.wc),
    )
