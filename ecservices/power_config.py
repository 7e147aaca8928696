"""Power capabilities and configuration of the power policy service."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PowerCapability:
    """A voltage and current pair.

    Equality compares both fields; ordering compares maximum power.
    """

    voltage_mv: int
    current_ma: int

    def max_power_mw(self) -> int:
        """Maximum power in milliwatts."""
        return self.voltage_mv * self.current_ma // 1000

    def __lt__(self, other: PowerCapability) -> bool:
        if not isinstance(other, PowerCapability):
            return NotImplemented
        return self.max_power_mw() < other.max_power_mw()

    def __le__(self, other: PowerCapability) -> bool:
        if not isinstance(other, PowerCapability):
            return NotImplemented
        return self.max_power_mw() <= other.max_power_mw()

    def __gt__(self, other: PowerCapability) -> bool:
        if not isinstance(other, PowerCapability):
            return NotImplemented
        return self.max_power_mw() > other.max_power_mw()

    def __ge__(self, other: PowerCapability) -> bool:
        if not isinstance(other, PowerCapability):
            return NotImplemented
        return self.max_power_mw() >= other.max_power_mw()


@dataclass(frozen=True)
class Config:
    """Power policy configuration."""

    # Above this total provided power the system is in limited power mode (Type-C 5V@3A)
    limited_power_threshold_mw: int = 15000
    # Every provider in recovery mode; USB3 900mA as the worst case
    provider_recovery: PowerCapability = PowerCapability(voltage_mv=5000, current_ma=900)
    # Every provider in normal power mode (Type-C 5V@3A)
    provider_unlimited: PowerCapability = PowerCapability(voltage_mv=5000, current_ma=3000)
    # Every provider in limited power mode (Type-C 5V@1A5)
    provider_limited: PowerCapability = PowerCapability(voltage_mv=5000, current_ma=1500)