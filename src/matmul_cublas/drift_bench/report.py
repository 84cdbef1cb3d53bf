from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from mdutils.mdutils import MdUtils  # type: ignore[import-untyped]

REPORT_TITLE = "GEMM Drift Benchmark Report"


def _load_results(path: Path) -> dict[str, Any]:
    return json.loads(path.read_text())


def _format_float(v: float | None, digits: int = 3) -> str:
    if v is None:
        return "NA"
    return f"{v:.{digits}f}"


def _format_error(v: float | None) -> str:
    if v is None:
        return "NA"
    return f"{v:.3e}"


def write_report(results: dict[str, Any], *, out_dir: Path) -> Path:
    run = results.get("run", {})
    git = run.get("git", {})
    gpu = run.get("environment", {}).get("gpu", {})
    shape = results.get("shape", {})
    summary = results.get("summary", {})
    reference = results.get("reference", {})

    md = MdUtils(file_name=str(out_dir / "report"), title=REPORT_TITLE)
    md.new_list(
        [
            f"Branch: `{git.get('branch', '')}`",
            f"Commit: `{git.get('commit', '')}`",
            f"Status: `{run.get('status', '')}`",
            f"Backend: `{run.get('backend', '')}` on `{gpu.get('device_name', 'unknown')}`",
            f"Shape (MxNxK): `{shape.get('m')}x{shape.get('n')}x{shape.get('k')}`",
        ]
    )

    md.new_header(level=1, title="Summary")
    md.new_list(
        [
            f"Reference: {_format_float(reference.get('gflops'), 2)} GFlop/s in {_format_float(reference.get('time_ms'))} msec",
            f"Total iterations: {summary.get('total', 0)}",
            f"Failed iterations: {summary.get('failed', 0)}",
            f"Failure rate: {summary.get('failure_rate', 0.0):.6f}",
            f"Average perf: {_format_float(summary.get('average_gflops'), 2)} GFlop/s",
        ]
    )
    host_check = results.get("host_check")
    if host_check is not None:
        md.new_paragraph(
            f"Host reference check: `{host_check.get('status')}` "
            f"(relative L2 error {_format_error(host_check.get('l2_error'))}, tolerance {host_check.get('tolerance')})"
        )

    md.new_header(level=1, title="Iterations")
    header = ["index", "time_ms", "gflops", "l2_error", "mismatches", "status"]
    cells: list[str] = list(header)
    iterations = results.get("iterations", [])
    for rec in iterations:
        cells += [
            str(rec.get("index")),
            _format_float(rec.get("time_ms")),
            _format_float(rec.get("gflops"), 2),
            _format_error(rec.get("l2_error")),
            str(rec.get("mismatch_count", 0)),
            str(rec.get("status", "")).upper(),
        ]
    if iterations:
        md.new_table(columns=len(header), rows=len(iterations) + 1, text=cells, text_align="left")
    else:
        md.new_paragraph("No iterations recorded.")

    md.new_header(level=1, title="Column Definitions")
    md.new_list(
        [
            "`time_ms`: device-event time of one SGEMM call in milliseconds.",
            "`gflops`: `2*M*N*K` FLOPs over `time_ms`.",
            "`l2_error`: relative L2 error against the reference output (`NA` when the reference norm is zero).",
            "`mismatches`: elements differing from the reference by more than the listing tolerance.",
            "`status`: `PASS` when `l2_error` is below the drift tolerance.",
        ]
    )
    md.create_md_file()
    return out_dir / "report.md"


def report_run(*, out_dir: Path) -> int:
    results_path = out_dir / "results.json"
    if not results_path.exists():
        raise FileNotFoundError(f"Missing results.json at {results_path}")

    write_report(_load_results(results_path), out_dir=out_dir)
    return 0
