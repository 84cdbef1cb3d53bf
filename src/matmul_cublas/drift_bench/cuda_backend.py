"""cuBLAS SGEMM backend on raw CUDA runtime allocations (via CuPy bindings).

cuBLAS assumes column-major storage while the host buffers are row-major.
Handing a row-major matrix to cuBLAS is an implicit transpose, so instead of
transposing anything we ask for C^T = B^T * A^T, i.e. call SGEMM with the
operands swapped: `sgemm(N, N, wB, hA, wA, B, wB, A, wA, C, wB)`. The column-major
C^T that cuBLAS writes is exactly the row-major C the host expects.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import attrs
import cupy
import numpy as np
from cupy.cuda import cublas, runtime

from .backends import DeviceCallError, GemmBackend
from .config import MatrixSize

_FLOAT32_BYTES = 4


@attrs.define(frozen=True, slots=True)
class DeviceBuffer:
    ptr: int
    rows: int
    cols: int

    @property
    def nbytes(self) -> int:
        return self.rows * self.cols * _FLOAT32_BYTES


class CudaBackend(GemmBackend):
    name = "cuda"
    library = "CUBLAS"
    value_label = "GPU"

    def __init__(self, device_index: int = 0) -> None:
        super().__init__(device_index)
        self._handle: int | None = None
        self._start: cupy.cuda.Event | None = None
        self._stop: cupy.cuda.Event | None = None
        # cuBLAS default pointer mode reads alpha/beta from host memory.
        self._alpha = np.array(1.0, dtype=np.float32)
        self._beta = np.array(0.0, dtype=np.float32)

    def _call(self, call: str, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return fn(*args)
        except (runtime.CUDARuntimeError, cublas.CUBLASError) as e:
            raise DeviceCallError(call, self.device_index, str(e)) from e

    def open(self) -> None:
        self._call("cudaSetDevice", runtime.setDevice, self.device_index)
        self._start = self._call("cudaEventCreate", cupy.cuda.Event)
        self._stop = self._call("cudaEventCreate", cupy.cuda.Event)
        self._handle = self._call("cublasCreate", cublas.create)

    def close(self) -> None:
        handle, self._handle = self._handle, None
        self._start = None
        self._stop = None
        if handle is not None:
            self._call("cublasDestroy", cublas.destroy, handle)

    def device_name(self) -> str:
        props = self._call("cudaGetDeviceProperties", runtime.getDeviceProperties, self.device_index)
        name = props.get("name", b"unknown")
        return name.decode(errors="replace") if isinstance(name, bytes) else str(name)

    def malloc(self, rows: int, cols: int) -> DeviceBuffer:
        nbytes = rows * cols * _FLOAT32_BYTES
        ptr = self._call("cudaMalloc", runtime.malloc, nbytes)
        return DeviceBuffer(ptr=ptr, rows=rows, cols=cols)

    def free(self, buf: DeviceBuffer) -> None:
        self._call("cudaFree", runtime.free, buf.ptr)

    def upload(self, dst: DeviceBuffer, src: np.ndarray) -> None:
        host = np.ascontiguousarray(src, dtype=np.float32)
        if host.nbytes != dst.nbytes:
            raise ValueError(f"upload size mismatch: host {host.nbytes} bytes, device {dst.nbytes} bytes")
        self._call("cudaMemcpy", runtime.memcpy, dst.ptr, host.ctypes.data, host.nbytes, runtime.memcpyHostToDevice)

    def download(self, dst: np.ndarray, src: DeviceBuffer) -> None:
        if dst.dtype != np.float32 or not dst.flags.c_contiguous:
            raise ValueError("download target must be a C-contiguous float32 array")
        if dst.nbytes != src.nbytes:
            raise ValueError(f"download size mismatch: host {dst.nbytes} bytes, device {src.nbytes} bytes")
        self._call("cudaMemcpy", runtime.memcpy, dst.ctypes.data, src.ptr, src.nbytes, runtime.memcpyDeviceToHost)

    def sgemm(self, size: MatrixSize, a: DeviceBuffer, b: DeviceBuffer, c: DeviceBuffer) -> None:
        if self._handle is None:
            raise RuntimeError("CudaBackend is not open")
        self._call(
            "cublasSgemm",
            cublas.sgemm,
            self._handle,
            cublas.CUBLAS_OP_N,
            cublas.CUBLAS_OP_N,
            size.wb,
            size.ha,
            size.wa,
            self._alpha.ctypes.data,
            b.ptr,
            size.wb,
            a.ptr,
            size.wa,
            self._beta.ctypes.data,
            c.ptr,
            size.wb,
        )

    def elapsed_ms(self, fn: Callable[[], None]) -> float:
        if self._start is None or self._stop is None:
            raise RuntimeError("CudaBackend is not open")
        self._call("cudaEventRecord", self._start.record)
        fn()
        self._call("cudaEventRecord", self._stop.record)
        self._call("cudaEventSynchronize", self._stop.synchronize)
        return float(self._call("cudaEventElapsedTime", cupy.cuda.get_elapsed_time, self._start, self._stop))
