from __future__ import annotations

from typing import Any, Literal

import attrs

StepStatus = Literal["pass", "fail"]


@attrs.define(frozen=True, slots=True)
class PowerProfile:
    power_limit_mw: int
    # None resets application clocks to the driver default.
    mem_clock_mhz: int | None
    graphics_clock_mhz: int | None
    auto_boost: bool

    def __attrs_post_init__(self) -> None:
        if self.power_limit_mw <= 0:
            raise ValueError(f"power_limit_mw must be positive, got {self.power_limit_mw}")
        if (self.mem_clock_mhz is None) != (self.graphics_clock_mhz is None):
            raise ValueError("mem_clock_mhz and graphics_clock_mhz must be set together")

    @property
    def resets_clocks(self) -> bool:
        return self.mem_clock_mhz is None


LOW_POWER = PowerProfile(power_limit_mw=30000, mem_clock_mhz=3510, graphics_clock_mhz=1885, auto_boost=False)
DEFAULT_POWER = PowerProfile(power_limit_mw=38500, mem_clock_mhz=None, graphics_clock_mhz=None, auto_boost=True)


@attrs.define(frozen=True, slots=True)
class PowerStepResult:
    step_name: str
    status: StepStatus
    details: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"step_name": self.step_name, "status": self.status, "details": self.details}
