from __future__ import annotations

from contextlib import ExitStack
from datetime import datetime, timezone
from typing import Any

import attrs

from matmul_cublas.power.nvml_control import apply_low_power, restore_default_power

from .backends import GemmBackend, make_backend
from .buffers import DeviceBuffers, HostBuffers, acquire_device_buffers, allocate_host_buffers, init_inputs
from .config import HOST_REFERENCE_TOLERANCE, BenchConfig, MatrixSize
from .stats import IterationResult, RunTotals, TimedGemm, format_performance, reduce_iterations
from .verification import L2Comparison, compare_l2fe, diff_listing, format_diff_report, matmul_host_reference


@attrs.define(frozen=True, slots=True)
class BenchmarkRun:
    config: BenchConfig
    matrix_size: MatrixSize
    backend: str
    device_name: str
    started_at: str
    finished_at: str
    reference: TimedGemm
    iterations: tuple[IterationResult, ...]
    totals: RunTotals
    host_check: L2Comparison | None = None


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _run_iteration(
    index: int,
    *,
    config: BenchConfig,
    backend: GemmBackend,
    size: MatrixSize,
    host: HostBuffers,
    dev: DeviceBuffers,
) -> IterationResult:
    msec = backend.timed_sgemm(size, dev.a, dev.b, dev.c)
    timing = TimedGemm.from_elapsed(msec, size.flop_count)
    print(format_performance(gflops_value=timing.gflops, msec=msec, flop_count=size.flop_count, index=index))

    backend.download(host.c, dev.c)
    cmp = compare_l2fe(host.c_ref, host.c, config.l2_tolerance)

    mismatch_count = 0
    if not cmp.passed:
        report = diff_listing(
            host.c_ref,
            host.c,
            width=size.wc,
            height=size.hc,
            list_length=config.list_length,
            tolerance=config.list_tolerance,
        )
        mismatch_count = report.total
        for line in format_diff_report(report, value_label=backend.value_label):
            print(line)

    print(f"Comparing {backend.library} Matrix Multiply with reference results: {cmp.status}")
    return IterationResult(
        index=index,
        timing=timing,
        passed=cmp.passed,
        l2_error=cmp.error,
        mismatch_count=mismatch_count,
    )


def run_benchmark(config: BenchConfig, *, backend: GemmBackend | None = None) -> BenchmarkRun:
    """Time one reference SGEMM, then `config.iterations` repeats compared against it.

    Every buffer, event and library handle acquired here is released when the
    run ends, including when a library call raises `DeviceCallError` partway.
    """
    size = config.matrix_size
    if backend is None:
        backend = make_backend(config.backend, device_index=config.device_index)
    low_power = config.power_mode == "low"
    started_at = _utc_now_iso()

    with ExitStack() as stack:
        stack.enter_context(backend)
        if low_power:
            stack.callback(restore_default_power, device_index=config.device_index)

        device_name = backend.device_name()
        host = allocate_host_buffers(size)
        dev = acquire_device_buffers(stack, backend, size)

        init_inputs(host, config.seed)
        backend.upload(dev.a, host.a)
        backend.upload(dev.b, host.b)

        print(f"Computing result using {backend.library} (normal power)...")
        if low_power:
            restore_default_power(device_index=config.device_index)
        ref_ms = backend.timed_sgemm(size, dev.a, dev.b, dev.c_ref)
        reference = TimedGemm.from_elapsed(ref_ms, size.flop_count)
        print(format_performance(gflops_value=reference.gflops, msec=ref_ms, flop_count=size.flop_count))
        backend.download(host.c_ref, dev.c_ref)

        host_check: L2Comparison | None = None
        if config.check_host_reference:
            host_check = compare_l2fe(matmul_host_reference(host.a, host.b), host.c_ref, HOST_REFERENCE_TOLERANCE)
            print(f"Comparing {backend.library} reference with host reference: {host_check.status}")

        print(f"Computing result using {backend.library} ({'low' if low_power else 'normal'} power)...")
        if low_power:
            apply_low_power(device_index=config.device_index)

        results = [
            _run_iteration(j, config=config, backend=backend, size=size, host=host, dev=dev)
            for j in range(config.iterations)
        ]
        totals = reduce_iterations(results)

        for line in totals.summary_lines():
            print(line)

    return BenchmarkRun(
        config=config,
        matrix_size=size,
        backend=backend.name,
        device_name=device_name,
        started_at=started_at,
        finished_at=_utc_now_iso(),
        reference=reference,
        iterations=tuple(results),
        totals=totals,
        host_check=host_check,
    )


def run_summary(run: BenchmarkRun) -> dict[str, Any]:
    return {
        "total": run.totals.iterations,
        "failed": run.totals.failures,
        "failure_rate": run.totals.failure_rate,
        "average_gflops": run.totals.average_gflops,
    }
