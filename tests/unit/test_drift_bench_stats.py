from __future__ import annotations

import pytest

from matmul_cublas.drift_bench.stats import (
    IterationResult,
    RunTotals,
    TimedGemm,
    format_performance,
    gflops,
    reduce_iterations,
)


def _result(index: int, *, passed: bool, gflops_value: float) -> IterationResult:
    return IterationResult(
        index=index,
        timing=TimedGemm(time_ms=1.0, gflops=gflops_value, flop_count=128),
        passed=passed,
        l2_error=0.0 if passed else 1.0,
    )


def test_gflops_from_flop_count_and_msec() -> None:
    assert gflops(2_000_000_000, 1000.0) == pytest.approx(2.0)
    assert gflops(2 * 1024**3, 10.0) == pytest.approx(2 * 1024**3 * 1e-9 / 0.01)
    assert gflops(128, 0.0) == 0.0


def test_format_performance_matches_reference_and_iteration_lines() -> None:
    assert format_performance(gflops_value=1.5, msec=2.0, flop_count=128) == (
        "Performance= 1.50 GFlop/s, Time= 2.000 msec, Size= 128 Ops"
    )
    assert format_performance(gflops_value=1.5, msec=2.0, flop_count=128, index=7).startswith("[7]Performance= 1.50")


@pytest.mark.parametrize("n,f", [(1, 0), (1, 1), (3, 1), (7, 3), (100, 100), (100, 0)])
def test_failure_rate_is_failures_over_iterations(n: int, f: int) -> None:
    results = [_result(i, passed=i >= f, gflops_value=1.0) for i in range(n)]
    totals = reduce_iterations(results)
    assert totals.iterations == n
    assert totals.failures == f
    assert totals.failure_rate == f / n


def test_average_is_arithmetic_mean_of_iterations() -> None:
    values = [128.0, 64.0, 32.0, 17.25]
    totals = reduce_iterations(_result(i, passed=True, gflops_value=v) for i, v in enumerate(values))
    assert totals.average_gflops == sum(values) / len(values)


def test_add_returns_new_totals() -> None:
    start = RunTotals()
    after = start.add(_result(0, passed=False, gflops_value=2.0))
    assert start == RunTotals()
    assert after == RunTotals(iterations=1, failures=1, gflops_sum=2.0)


def test_empty_totals_report_zero() -> None:
    totals = reduce_iterations([])
    assert totals.failure_rate == 0.0
    assert totals.average_gflops == 0.0


def test_summary_lines() -> None:
    totals = reduce_iterations(_result(i, passed=i != 1, gflops_value=3.0) for i in range(3))
    assert totals.summary_lines() == [
        "total test: 3, failed: 1.",
        "failure rate: 0.333333.",
        "average perf: 3.00.",
    ]
