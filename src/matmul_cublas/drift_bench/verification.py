from __future__ import annotations

import math

import attrs
import numpy as np

# Reference squared norms below this are treated as an empty reference.
_MIN_REF_NORM_SQ = 1.0e-7


@attrs.define(frozen=True, slots=True)
class L2Comparison:
    passed: bool
    error: float | None
    tolerance: float

    @property
    def status(self) -> str:
        return "PASS" if self.passed else "FAIL"


@attrs.define(frozen=True, slots=True)
class Mismatch:
    col: int
    row: int
    reference: float
    value: float
    diff: float


@attrs.define(frozen=True, slots=True)
class DiffReport:
    tolerance: float
    list_length: int
    total: int
    listed: tuple[Mismatch, ...]


def compare_l2fe(reference: np.ndarray, data: np.ndarray, epsilon: float) -> L2Comparison:
    """Relative L2 error ||ref - data|| / ||ref||; passes when strictly below `epsilon`.

    Sums are accumulated in float64. A reference with (near) zero norm never passes,
    and neither does data holding NaN or Inf; both report `error=None`.
    """
    if epsilon < 0:
        raise ValueError(f"epsilon must be >= 0, got {epsilon}")
    ref = np.asarray(reference, dtype=np.float64).ravel()
    val = np.asarray(data, dtype=np.float64).ravel()
    if ref.shape != val.shape:
        raise ValueError(f"shape mismatch: reference {ref.shape} vs data {val.shape}")

    diff = ref - val
    ref_sq = float(np.dot(ref, ref))
    if abs(ref_sq) < _MIN_REF_NORM_SQ:
        return L2Comparison(passed=False, error=None, tolerance=epsilon)

    error = math.sqrt(float(np.dot(diff, diff))) / math.sqrt(ref_sq)
    if not math.isfinite(error):
        return L2Comparison(passed=False, error=None, tolerance=epsilon)
    return L2Comparison(passed=error < epsilon, error=error, tolerance=epsilon)


def diff_listing(
    reference: np.ndarray,
    data: np.ndarray,
    *,
    width: int,
    height: int,
    list_length: int,
    tolerance: float,
) -> DiffReport:
    """Locate elements with |ref - data| > tolerance in row-major order.

    Only the first `list_length` locations are kept; `total` counts all of them.
    """
    ref = np.asarray(reference, dtype=np.float32).reshape(height, width)
    val = np.asarray(data, dtype=np.float32).reshape(height, width)
    abs_diff = np.abs(ref - val)
    # NaN never compares <= tolerance, so non-finite elements count as mismatches.
    flat = np.flatnonzero(~(abs_diff <= tolerance))

    listed: list[Mismatch] = []
    for k in flat[:list_length]:
        row, col = divmod(int(k), width)
        listed.append(
            Mismatch(
                col=col,
                row=row,
                reference=float(ref[row, col]),
                value=float(val[row, col]),
                diff=float(abs_diff[row, col]),
            )
        )
    return DiffReport(tolerance=tolerance, list_length=list_length, total=int(flat.size), listed=tuple(listed))


def format_diff_report(report: DiffReport, *, value_label: str = "GPU") -> list[str]:
    lines = [f"Listing first {report.list_length} Differences > {report.tolerance:.6f}..."]
    current_row: int | None = None
    for m in report.listed:
        if m.row != current_row:
            current_row = m.row
            lines.append(f"  Row {m.row}:")
        lines.append(f"    Loc({m.col},{m.row})\tREF={m.reference:.5f}\t{value_label}={m.value:.5f}\tDiff={m.diff:.6f}")
    lines.append(f"  Total Errors = {report.total}")
    return lines


def matmul_host_reference(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Row-major C = A * B on the host with float64 accumulation, returned as float32."""
    if a.ndim != 2 or b.ndim != 2 or a.shape[1] != b.shape[0]:
        raise ValueError(f"non-conformable operands: {a.shape} x {b.shape}")
    return (a.astype(np.float64) @ b.astype(np.float64)).astype(np.float32)
