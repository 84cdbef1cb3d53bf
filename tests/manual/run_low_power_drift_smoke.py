from __future__ import annotations

import argparse
import shutil
from pathlib import Path

from matmul_cublas.drift_bench.config import BenchConfig
from matmul_cublas.drift_bench.export import export_run
from matmul_cublas.drift_bench.report import report_run
from matmul_cublas.drift_bench.runner import run_benchmark


def _abs_path(p: str) -> Path:
    return Path(p).expanduser().resolve()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Manual smoke: drift run with the repeated phase under the low power profile.")
    parser.add_argument("--out-dir", type=_abs_path, required=True)
    parser.add_argument("--size", type=int, default=2048)
    parser.add_argument("--iters", type=int, default=10)
    ns = parser.parse_args(argv)

    if shutil.which("nvidia-smi") is None:
        print("nvidia-smi not found on PATH; skipping low power smoke.")
        return 0

    run = run_benchmark(BenchConfig(size=ns.size, iterations=ns.iters, power_mode="low"))
    export_run(run, out_dir=ns.out_dir)
    return report_run(out_dir=ns.out_dir)


if __name__ == "__main__":
    raise SystemExit(main())
