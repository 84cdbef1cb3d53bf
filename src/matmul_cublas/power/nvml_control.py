from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pynvml

from .model import DEFAULT_POWER, LOW_POWER, PowerProfile, PowerStepResult

# (step_name, action phrase for diagnostics, fn(handle))
Step = tuple[str, str, Callable[[Any], None]]


def _profile_steps(profile: PowerProfile) -> list[Step]:
    steps: list[Step] = [
        (
            "set_power_limit",
            "set power limit",
            lambda h: pynvml.nvmlDeviceSetPowerManagementLimit(h, profile.power_limit_mw),
        ),
    ]
    if profile.resets_clocks:
        steps.append(("reset_clocks", "reset clock", lambda h: pynvml.nvmlDeviceResetApplicationsClocks(h)))
    else:
        steps.append(
            (
                "set_clocks",
                "set clock",
                lambda h: pynvml.nvmlDeviceSetApplicationsClocks(h, profile.mem_clock_mhz, profile.graphics_clock_mhz),
            )
        )
    state = pynvml.NVML_FEATURE_ENABLED if profile.auto_boost else pynvml.NVML_FEATURE_DISABLED
    steps.append(
        (
            "enable_autoboost" if profile.auto_boost else "disable_autoboost",
            "enable autoboost" if profile.auto_boost else "disable autoboost",
            lambda h: pynvml.nvmlDeviceSetAutoBoostedClocksEnabled(h, state),
        )
    )
    return steps


def apply_profile(profile: PowerProfile, *, device_index: int = 0) -> list[PowerStepResult]:
    """Apply `profile` to one device, stopping at the first failing NVML call.

    Steps already applied stay applied. Returns one result per attempted step.
    """
    try:
        pynvml.nvmlInit()
    except pynvml.NVMLError as e:
        print(f"Failed to initialize NVML: {e}")
        return [PowerStepResult(step_name="init", status="fail", details=str(e))]

    results: list[PowerStepResult] = [PowerStepResult(step_name="init", status="pass")]
    try:
        try:
            handle = pynvml.nvmlDeviceGetHandleByIndex(device_index)
        except pynvml.NVMLError as e:
            print(f"Failed to get handle for device {device_index}: {e}")
            results.append(PowerStepResult(step_name="get_handle", status="fail", details=str(e)))
            return results
        results.append(PowerStepResult(step_name="get_handle", status="pass"))

        for step_name, action, fn in _profile_steps(profile):
            try:
                fn(handle)
            except pynvml.NVMLError as e:
                print(f"Failed to {action} of device {device_index}: {e}")
                results.append(PowerStepResult(step_name=step_name, status="fail", details=str(e)))
                return results
            results.append(PowerStepResult(step_name=step_name, status="pass"))
        return results
    finally:
        try:
            pynvml.nvmlShutdown()
        except pynvml.NVMLError as e:
            print(f"Failed to shut down NVML: {e}")


def apply_low_power(*, device_index: int = 0, profile: PowerProfile = LOW_POWER) -> list[PowerStepResult]:
    return apply_profile(profile, device_index=device_index)


def restore_default_power(*, device_index: int = 0, profile: PowerProfile = DEFAULT_POWER) -> list[PowerStepResult]:
    return apply_profile(profile, device_index=device_index)


def all_passed(results: list[PowerStepResult]) -> bool:
    return bool(results) and all(r.status == "pass" for r in results)
