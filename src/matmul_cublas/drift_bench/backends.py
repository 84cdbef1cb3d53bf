from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import numpy as np

from .config import MatrixSize


class DeviceCallError(RuntimeError):
    """A compute/transfer library call returned a non-success status."""

    def __init__(self, call: str, device_index: int, detail: str) -> None:
        super().__init__(f"{call} failed on device {device_index}: {detail}")
        self.call = call
        self.device_index = device_index
        self.detail = detail


class GemmBackend:
    """Buffer, transfer, timing and SGEMM primitives used by the benchmark driver.

    Backends are context managers: entering creates the library handle and
    timing events, exiting releases them. Device buffers are released
    individually through `free`.
    """

    name = "base"
    library = "none"
    value_label = "VAL"

    def __init__(self, device_index: int = 0) -> None:
        self.device_index = device_index

    def __enter__(self) -> "GemmBackend":
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def open(self) -> None:
        pass

    def close(self) -> None:
        pass

    def device_name(self) -> str:
        raise NotImplementedError

    def malloc(self, rows: int, cols: int) -> Any:
        raise NotImplementedError

    def free(self, buf: Any) -> None:
        raise NotImplementedError

    def upload(self, dst: Any, src: np.ndarray) -> None:
        raise NotImplementedError

    def download(self, dst: np.ndarray, src: Any) -> None:
        raise NotImplementedError

    def sgemm(self, size: MatrixSize, a: Any, b: Any, c: Any) -> None:
        """Compute row-major C = A * B into `c`."""
        raise NotImplementedError

    def elapsed_ms(self, fn: Callable[[], None]) -> float:
        """Run `fn` as a single timed region and return its duration in milliseconds."""
        raise NotImplementedError

    def timed_sgemm(self, size: MatrixSize, a: Any, b: Any, c: Any) -> float:
        return self.elapsed_ms(lambda: self.sgemm(size, a, b, c))


class HostBackend(GemmBackend):
    """NumPy host execution; "device" buffers are plain host arrays."""

    name = "host"
    library = "NumPy BLAS"
    value_label = "HOST"

    def device_name(self) -> str:
        return "host"

    def malloc(self, rows: int, cols: int) -> np.ndarray:
        return np.empty((rows, cols), dtype=np.float32)

    def free(self, buf: np.ndarray) -> None:
        pass

    def upload(self, dst: np.ndarray, src: np.ndarray) -> None:
        np.copyto(dst, src.reshape(dst.shape))

    def download(self, dst: np.ndarray, src: np.ndarray) -> None:
        np.copyto(dst, src.reshape(dst.shape))

    def sgemm(self, size: MatrixSize, a: np.ndarray, b: np.ndarray, c: np.ndarray) -> None:
        np.matmul(a, b, out=c)

    def elapsed_ms(self, fn: Callable[[], None]) -> float:
        st = time.perf_counter()
        fn()
        return (time.perf_counter() - st) * 1e3


def make_backend(kind: str, *, device_index: int = 0) -> GemmBackend:
    if kind == "host":
        return HostBackend(device_index)
    if kind == "cuda":
        # Imported on demand so host-only runs do not initialize CUDA.
        from .cuda_backend import CudaBackend

        return CudaBackend(device_index)
    raise ValueError(f"Unknown backend={kind!r}. Known: ['cuda', 'host']")
