from __future__ import annotations

import os
from typing import Literal

import attrs

BackendKind = Literal["cuda", "host"]
PowerMode = Literal["off", "low"]

BACKENDS: tuple[str, ...] = ("cuda", "host")
POWER_MODES: tuple[str, ...] = ("off", "low")

DEFAULT_SIZE = 10240
DEFAULT_ITERATIONS = 100
DEFAULT_SEED = 2006

# Strict gate for PASS/FAIL vs. the looser threshold used only for the diff listing.
L2_TOLERANCE = 1.0e-10
LIST_TOLERANCE = 1.0e-5
LIST_LENGTH = 100

# Host reference runs in float64; the GPU result is float32 with a different
# summation order, so it cannot meet the drift tolerance.
HOST_REFERENCE_TOLERANCE = 1.0e-6

DEVICE_ENV = "MATMUL_CUBLAS_DEVICE"


def default_device_index() -> int:
    env = os.environ.get(DEVICE_ENV)
    if not env:
        return 0
    try:
        idx = int(env)
    except ValueError:
        raise ValueError(f"{DEVICE_ENV} must be an integer device index, got {env!r}") from None
    if idx < 0:
        raise ValueError(f"{DEVICE_ENV} must be >= 0, got {idx}")
    return idx


@attrs.define(frozen=True, slots=True)
class MatrixSize:
    """Widths/heights of A, B and C for C = A * B (row-major)."""

    wa: int
    ha: int
    wb: int
    hb: int
    wc: int
    hc: int

    def __attrs_post_init__(self) -> None:
        for name in ("wa", "ha", "wb", "hb", "wc", "hc"):
            if getattr(self, name) <= 0:
                raise ValueError(f"MatrixSize.{name} must be positive, got {getattr(self, name)}")
        if self.wa != self.hb:
            raise ValueError(f"width(A)={self.wa} != height(B)={self.hb}")
        if self.wc != self.wb:
            raise ValueError(f"width(C)={self.wc} != width(B)={self.wb}")
        if self.hc != self.ha:
            raise ValueError(f"height(C)={self.hc} != height(A)={self.ha}")

    @staticmethod
    def square(n: int) -> "MatrixSize":
        return MatrixSize(wa=n, ha=n, wb=n, hb=n, wc=n, hc=n)

    @property
    def flop_count(self) -> int:
        return 2 * self.hc * self.wc * self.hb


@attrs.define(frozen=True, slots=True)
class BenchConfig:
    size: int = DEFAULT_SIZE
    iterations: int = DEFAULT_ITERATIONS
    seed: int = DEFAULT_SEED
    device_index: int = 0
    backend: BackendKind = "cuda"
    power_mode: PowerMode = "off"
    l2_tolerance: float = L2_TOLERANCE
    list_tolerance: float = LIST_TOLERANCE
    list_length: int = LIST_LENGTH
    check_host_reference: bool = False

    def __attrs_post_init__(self) -> None:
        if self.size <= 0:
            raise ValueError(f"size must be positive, got {self.size}")
        if self.iterations <= 0:
            raise ValueError(f"iterations must be positive, got {self.iterations}")
        if self.device_index < 0:
            raise ValueError(f"device_index must be >= 0, got {self.device_index}")
        if self.backend not in BACKENDS:
            raise ValueError(f"Unknown backend={self.backend!r}. Known: {sorted(BACKENDS)}")
        if self.power_mode not in POWER_MODES:
            raise ValueError(f"Unknown power_mode={self.power_mode!r}. Known: {sorted(POWER_MODES)}")
        if self.l2_tolerance < 0 or self.list_tolerance < 0:
            raise ValueError("tolerances must be >= 0")
        if self.list_length < 0:
            raise ValueError(f"list_length must be >= 0, got {self.list_length}")

    @property
    def matrix_size(self) -> MatrixSize:
        return MatrixSize.square(self.size)

    def to_dict(self) -> dict[str, object]:
        return {
            "size": self.size,
            "iterations": self.iterations,
            "seed": self.seed,
            "device_index": self.device_index,
            "backend": self.backend,
            "power_mode": self.power_mode,
            "l2_tolerance": self.l2_tolerance,
            "list_tolerance": self.list_tolerance,
            "list_length": self.list_length,
            "check_host_reference": self.check_host_reference,
        }
