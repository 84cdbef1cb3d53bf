from __future__ import annotations

import json
import platform
import subprocess
from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator

from .runner import BenchmarkRun, run_summary

SCHEMA_VERSION = "0.1.0"


def find_repo_root() -> Path:
    return Path(__file__).resolve().parents[3]


def _default_results_schema_path() -> Path:
    return Path(__file__).resolve().parent / "contracts" / "results.schema.json"


def validate_results_schema(results: dict[str, Any], *, schema_path: Path | None = None) -> None:
    schema_path = _default_results_schema_path() if schema_path is None else schema_path
    schema = json.loads(schema_path.read_text())
    Draft202012Validator(schema).validate(results)


def _git_info(repo_root: Path) -> tuple[str, str, bool]:
    def _run(cmd: list[str]) -> str:
        out = subprocess.check_output(cmd, cwd=repo_root, stderr=subprocess.DEVNULL)
        return out.decode().strip()

    try:
        branch = _run(["git", "branch", "--show-current"])
        commit = _run(["git", "rev-parse", "HEAD"])
        dirty = bool(_run(["git", "status", "--porcelain=v1"]))
        return branch, commit, dirty
    except Exception:
        return "unknown", "unknown", False


def _run_capture(cmd: list[str]) -> str | None:
    try:
        out = subprocess.check_output(cmd, stderr=subprocess.STDOUT)
    except Exception:
        return None
    return out.decode(errors="replace").strip()


def _detect_nvidia_driver_version() -> str | None:
    out = _run_capture(["nvidia-smi", "--query-gpu=driver_version", "--format=csv,noheader"])
    if not out:
        return None
    return out.splitlines()[0].strip()


def build_results(run: BenchmarkRun, *, git_branch: str, git_commit: str, git_dirty: bool) -> dict[str, Any]:
    size = run.matrix_size
    gpu: dict[str, Any] = {"device_index": run.config.device_index, "device_name": run.device_name}
    if run.backend == "cuda":
        driver_version = _detect_nvidia_driver_version()
        if driver_version is not None:
            gpu["driver_version"] = driver_version

    run_obj: dict[str, Any] = {
        "started_at": run.started_at,
        "finished_at": run.finished_at,
        "status": "pass" if run.totals.failures == 0 else "fail",
        "failure_reason": "" if run.totals.failures == 0 else f"{run.totals.failures} iteration(s) drifted from reference",
        "backend": run.backend,
        "git": {"branch": git_branch, "commit": git_commit, "dirty": git_dirty},
        "environment": {
            "platform": {"os": platform.system().lower(), "arch": platform.machine().lower()},
            "gpu": gpu,
        },
        "settings": run.config.to_dict(),
    }

    records = [
        {
            "index": it.index,
            "time_ms": it.timing.time_ms,
            "gflops": it.timing.gflops,
            "l2_error": it.l2_error,
            "status": it.status.lower(),
            "mismatch_count": it.mismatch_count,
        }
        for it in run.iterations
    ]

    out: dict[str, Any] = {
        "schema_version": SCHEMA_VERSION,
        "run": run_obj,
        "shape": {"m": size.hc, "n": size.wc, "k": size.wa},
        "flop_count": size.flop_count,
        "reference": {"time_ms": run.reference.time_ms, "gflops": run.reference.gflops},
        "iterations": records,
        "summary": run_summary(run),
    }
    if run.host_check is not None:
        out["host_check"] = {
            "status": run.host_check.status.lower(),
            "l2_error": run.host_check.error,
            "tolerance": run.host_check.tolerance,
        }
    validate_results_schema(out)
    return out


def write_results(path: Path, results: dict[str, Any]) -> None:
    path.write_text(json.dumps(results, indent=2, sort_keys=True, allow_nan=False) + "\n")


def export_run(run: BenchmarkRun, *, out_dir: Path) -> Path:
    out_dir.mkdir(parents=True, exist_ok=True)
    branch, commit, dirty = _git_info(find_repo_root())
    results = build_results(run, git_branch=branch, git_commit=commit, git_dirty=dirty)
    results_path = out_dir / "results.json"
    write_results(results_path, results)
    return results_path
