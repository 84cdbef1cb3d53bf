"""cuBLAS SGEMM drift benchmark.

This package times a reference single-precision GEMM on the GPU, repeats it
under identical inputs, compares every repeat against the reference for
numerical drift, and reports per-iteration and average throughput. Results can
be exported to a schema-validated `results.json` and a Markdown report.
"""

from __future__ import annotations
