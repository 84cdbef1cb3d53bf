from __future__ import annotations

from collections.abc import Callable

import numpy as np
import pytest

from matmul_cublas.drift_bench import runner
from matmul_cublas.drift_bench.backends import DeviceCallError, HostBackend
from matmul_cublas.drift_bench.config import BenchConfig, MatrixSize
from matmul_cublas.drift_bench.runner import run_benchmark
from matmul_cublas.drift_bench.stats import gflops


class _ScriptedBackend(HostBackend):
    """Host execution with scripted elapsed times and optional output corruption.

    Downloads are counted from 0: download 0 is the reference, download j+1 is iteration j.
    """

    def __init__(
        self,
        *,
        times_ms: list[float],
        corrupt_downloads: dict[int, tuple[int, int, float]] | None = None,
        fail_on_sgemm: int | None = None,
    ) -> None:
        super().__init__(0)
        self._times = iter(times_ms)
        self.corrupt_downloads = corrupt_downloads or {}
        self.fail_on_sgemm = fail_on_sgemm
        self.downloads = 0
        self.sgemms = 0
        self.mallocs = 0
        self.frees = 0
        self.opened = False
        self.closed = False

    def open(self) -> None:
        self.opened = True

    def close(self) -> None:
        self.closed = True

    def malloc(self, rows: int, cols: int) -> np.ndarray:
        self.mallocs += 1
        return super().malloc(rows, cols)

    def free(self, buf: np.ndarray) -> None:
        self.frees += 1

    def sgemm(self, size: MatrixSize, a: np.ndarray, b: np.ndarray, c: np.ndarray) -> None:
        if self.fail_on_sgemm is not None and self.sgemms == self.fail_on_sgemm:
            raise DeviceCallError("cublasSgemm", self.device_index, "CUBLAS_STATUS_EXECUTION_FAILED")
        self.sgemms += 1
        super().sgemm(size, a, b, c)

    def download(self, dst: np.ndarray, src: np.ndarray) -> None:
        super().download(dst, src)
        corrupt = self.corrupt_downloads.get(self.downloads)
        if corrupt is not None:
            row, col, delta = corrupt
            dst[row, col] += np.float32(delta)
        self.downloads += 1

    def elapsed_ms(self, fn: Callable[[], None]) -> float:
        fn()
        return next(self._times)


# 4x4 GEMM is 128 FLOPs; microsecond-scale times give readable GFlop/s.
_TIMES_MS = [1.0e-6, 1.0e-6, 2.0e-6, 4.0e-6]


def test_end_to_end_all_iterations_pass(capsys: pytest.CaptureFixture[str]) -> None:
    backend = _ScriptedBackend(times_ms=list(_TIMES_MS))
    run = run_benchmark(BenchConfig(size=4, iterations=3, backend="host"), backend=backend)
    out = capsys.readouterr().out

    assert out.count(": PASS") == 3
    assert ": FAIL" not in out
    assert "total test: 3, failed: 0." in out
    assert "failure rate: 0.000000." in out

    per_iter = [gflops(128, t) for t in _TIMES_MS[1:]]
    assert [it.timing.gflops for it in run.iterations] == per_iter
    assert run.totals.average_gflops == sum(per_iter) / 3
    assert f"average perf: {sum(per_iter) / 3:.2f}." in out
    assert "[0]Performance=" in out and "[2]Performance=" in out
    assert run.reference.time_ms == _TIMES_MS[0]


def test_end_to_end_one_corrupted_iteration(capsys: pytest.CaptureFixture[str]) -> None:
    backend = _ScriptedBackend(times_ms=list(_TIMES_MS), corrupt_downloads={2: (1, 2, 1.0)})
    run = run_benchmark(BenchConfig(size=4, iterations=3, backend="host"), backend=backend)
    out = capsys.readouterr().out

    assert "total test: 3, failed: 1." in out
    assert "failure rate: 0.333333." in out
    assert out.count(": PASS") == 2
    assert out.count(": FAIL") == 1
    loc_lines = [ln for ln in out.splitlines() if ln.strip().startswith("Loc(")]
    assert len(loc_lines) == 1
    assert loc_lines[0].strip().startswith("Loc(2,1)")
    assert "\tHOST=" in loc_lines[0]
    assert "Total Errors = 1" in out

    assert [it.passed for it in run.iterations] == [True, False, True]
    assert run.iterations[1].mismatch_count == 1
    assert run.totals.failure_rate == 1 / 3


def test_nan_output_fails_and_counts_as_mismatch(capsys: pytest.CaptureFixture[str]) -> None:
    backend = _ScriptedBackend(times_ms=list(_TIMES_MS), corrupt_downloads={2: (1, 2, float("nan"))})
    run = run_benchmark(BenchConfig(size=4, iterations=3, backend="host"), backend=backend)
    out = capsys.readouterr().out

    bad = run.iterations[1]
    assert not bad.passed
    assert bad.l2_error is None
    assert bad.mismatch_count == 1
    assert "Total Errors = 1" in out
    assert run.totals.failures == 1


def test_all_resources_released_on_normal_path() -> None:
    backend = _ScriptedBackend(times_ms=list(_TIMES_MS))
    run_benchmark(BenchConfig(size=4, iterations=3, backend="host"), backend=backend)
    assert backend.opened and backend.closed
    assert backend.mallocs == 4
    assert backend.frees == 4


def test_library_failure_mid_loop_releases_everything() -> None:
    backend = _ScriptedBackend(times_ms=list(_TIMES_MS), fail_on_sgemm=2)
    with pytest.raises(DeviceCallError, match="cublasSgemm failed on device 0"):
        run_benchmark(BenchConfig(size=4, iterations=3, backend="host"), backend=backend)
    assert backend.closed
    assert backend.frees == backend.mallocs == 4


def test_low_power_mode_wraps_repeated_phase(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []
    monkeypatch.setattr(runner, "restore_default_power", lambda *, device_index: calls.append("restore") or [])
    monkeypatch.setattr(runner, "apply_low_power", lambda *, device_index: calls.append("low") or [])

    backend = _ScriptedBackend(times_ms=list(_TIMES_MS))
    run_benchmark(BenchConfig(size=4, iterations=3, backend="host", power_mode="low"), backend=backend)
    assert calls == ["restore", "low", "restore"]


def test_power_mode_off_never_touches_nvml(monkeypatch: pytest.MonkeyPatch) -> None:
    def _boom(**_: object) -> list:
        raise AssertionError("NVML should not be called")

    monkeypatch.setattr(runner, "restore_default_power", _boom)
    monkeypatch.setattr(runner, "apply_low_power", _boom)
    run_benchmark(BenchConfig(size=4, iterations=3, backend="host"), backend=_ScriptedBackend(times_ms=list(_TIMES_MS)))


def test_host_reference_check_is_reported_separately(capsys: pytest.CaptureFixture[str]) -> None:
    backend = _ScriptedBackend(times_ms=list(_TIMES_MS))
    run = run_benchmark(BenchConfig(size=4, iterations=3, backend="host", check_host_reference=True), backend=backend)
    out = capsys.readouterr().out

    assert run.host_check is not None and run.host_check.passed
    assert "with host reference: PASS" in out
    assert run.totals.failures == 0


def test_host_backend_runs_without_scripting() -> None:
    run = run_benchmark(BenchConfig(size=8, iterations=2, backend="host"))
    assert run.backend == "host"
    assert run.totals.iterations == 2
    assert run.totals.failures == 0
