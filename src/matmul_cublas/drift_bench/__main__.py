from __future__ import annotations

import argparse
import sys
from pathlib import Path

from matmul_cublas.power.model import DEFAULT_POWER, LOW_POWER, PowerProfile
from matmul_cublas.power.nvml_control import all_passed, apply_profile

from .backends import DeviceCallError
from .config import (
    BACKENDS,
    DEFAULT_ITERATIONS,
    DEFAULT_SEED,
    DEFAULT_SIZE,
    POWER_MODES,
    BenchConfig,
    default_device_index,
)
from .export import export_run
from .report import report_run
from .runner import run_benchmark


def _abs_path(p: str) -> Path:
    return Path(p).expanduser().resolve()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="matmul_cublas.drift_bench",
        description="cuBLAS SGEMM throughput and run-to-run drift benchmark.",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    run = sub.add_parser("run", help="Run the reference + repeated SGEMM benchmark.")
    run.add_argument("--size", type=int, default=DEFAULT_SIZE, help=f"Square matrix dimension (default: {DEFAULT_SIZE}).")
    run.add_argument("--iters", type=int, default=DEFAULT_ITERATIONS, help=f"Repeated iterations (default: {DEFAULT_ITERATIONS}).")
    run.add_argument("--seed", type=int, default=DEFAULT_SEED, help=f"Input PRNG seed (default: {DEFAULT_SEED}).")
    run.add_argument("--device", type=int, default=None, help="CUDA device index (default: $MATMUL_CUBLAS_DEVICE or 0).")
    run.add_argument("--backend", default="cuda", choices=list(BACKENDS))
    run.add_argument("--power-mode", default="off", choices=list(POWER_MODES), help="'low' runs the repeated phase under the low power profile.")
    run.add_argument("--check-host-reference", action="store_true", help="Also compare the reference output against a host float64 GEMM.")
    run.add_argument("--out-dir", type=_abs_path, default=None, help="Write results.json and report.md here.")

    report = sub.add_parser("report", help="Regenerate report.md from results.json (no benchmark run).")
    report.add_argument("--out-dir", type=_abs_path, required=True)

    low = sub.add_parser("power-low", help="Lower the power limit, pin application clocks, disable autoboost.")
    low.add_argument("--device", type=int, default=0)
    low.add_argument("--limit-mw", type=int, default=LOW_POWER.power_limit_mw)
    low.add_argument("--mem-clock", type=int, default=LOW_POWER.mem_clock_mhz, help="Memory clock in MHz.")
    low.add_argument("--graphics-clock", type=int, default=LOW_POWER.graphics_clock_mhz, help="Graphics clock in MHz.")

    reset = sub.add_parser("power-reset", help="Restore the power limit, reset clocks, enable autoboost.")
    reset.add_argument("--device", type=int, default=0)
    reset.add_argument("--limit-mw", type=int, default=DEFAULT_POWER.power_limit_mw)

    return parser


def _cmd_run(parser: argparse.ArgumentParser, ns: argparse.Namespace) -> int:
    try:
        device = default_device_index() if ns.device is None else ns.device
        config = BenchConfig(
            size=ns.size,
            iterations=ns.iters,
            seed=ns.seed,
            device_index=device,
            backend=ns.backend,
            power_mode=ns.power_mode,
            check_host_reference=ns.check_host_reference,
        )
    except ValueError as e:
        parser.error(str(e))

    print("[Matrix Multiply CUBLAS] - Starting...")
    try:
        run = run_benchmark(config)
    except DeviceCallError as e:
        print(str(e), file=sys.stderr)
        return 1

    if ns.out_dir is not None:
        results_path = export_run(run, out_dir=ns.out_dir)
        report_run(out_dir=ns.out_dir)
        print(f"Wrote {results_path} and {ns.out_dir / 'report.md'}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    ns = parser.parse_args(argv)

    if ns.cmd == "run":
        return _cmd_run(parser, ns)
    if ns.cmd == "report":
        return report_run(out_dir=ns.out_dir)
    if ns.cmd in {"power-low", "power-reset"}:
        try:
            if ns.cmd == "power-low":
                profile = PowerProfile(
                    power_limit_mw=ns.limit_mw,
                    mem_clock_mhz=ns.mem_clock,
                    graphics_clock_mhz=ns.graphics_clock,
                    auto_boost=False,
                )
            else:
                profile = PowerProfile(power_limit_mw=ns.limit_mw, mem_clock_mhz=None, graphics_clock_mhz=None, auto_boost=True)
        except ValueError as e:
            parser.error(str(e))
        return 0 if all_passed(apply_profile(profile, device_index=ns.device)) else 1

    raise AssertionError(f"Unhandled cmd: {ns.cmd}")


if __name__ == "__main__":
    raise SystemExit(main())
