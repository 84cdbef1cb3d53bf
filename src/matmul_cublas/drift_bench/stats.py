from __future__ import annotations

import functools
from collections.abc import Iterable

import attrs


def gflops(flop_count: int, msec: float) -> float:
    if msec <= 0:
        return 0.0
    return (flop_count * 1.0e-9) / (msec / 1000.0)


def format_performance(*, gflops_value: float, msec: float, flop_count: int, index: int | None = None) -> str:
    prefix = "" if index is None else f"[{index}]"
    return f"{prefix}Performance= {gflops_value:.2f} GFlop/s, Time= {msec:.3f} msec, Size= {float(flop_count):.0f} Ops"


@attrs.define(frozen=True, slots=True)
class TimedGemm:
    time_ms: float
    gflops: float
    flop_count: int

    @staticmethod
    def from_elapsed(msec: float, flop_count: int) -> "TimedGemm":
        return TimedGemm(time_ms=msec, gflops=gflops(flop_count, msec), flop_count=flop_count)


@attrs.define(frozen=True, slots=True)
class IterationResult:
    index: int
    timing: TimedGemm
    passed: bool
    l2_error: float | None
    mismatch_count: int = 0

    @property
    def status(self) -> str:
        return "PASS" if self.passed else "FAIL"


@attrs.define(frozen=True, slots=True)
class RunTotals:
    iterations: int = 0
    failures: int = 0
    gflops_sum: float = 0.0

    def add(self, result: IterationResult) -> "RunTotals":
        return RunTotals(
            iterations=self.iterations + 1,
            failures=self.failures + (0 if result.passed else 1),
            gflops_sum=self.gflops_sum + result.timing.gflops,
        )

    @property
    def failure_rate(self) -> float:
        if self.iterations == 0:
            return 0.0
        return self.failures / self.iterations

    @property
    def average_gflops(self) -> float:
        if self.iterations == 0:
            return 0.0
        return self.gflops_sum / self.iterations

    def summary_lines(self) -> list[str]:
        return [
            f"total test: {self.iterations}, failed: {self.failures}.",
            f"failure rate: {self.failure_rate:f}.",
            f"average perf: {self.average_gflops:.2f}.",
        ]


def reduce_iterations(results: Iterable[IterationResult]) -> RunTotals:
    return functools.reduce(RunTotals.add, results, RunTotals())
