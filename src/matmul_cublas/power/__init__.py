"""
GPU power/clock control through NVML.

Routines here lower or restore a device's power ceiling and application clocks
around benchmark phases. Failures are reported and stop the routine; they never
terminate the calling process.
"""
