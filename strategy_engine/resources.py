"""
Host resource sampling.

Readings are taken on demand, once per routing decision, and never cached:
a ResourceState describes the machine at the moment a decision is made.
"""

from __future__ import annotations

import logging
import os
import platform
from typing import Protocol

import psutil

from .types import ResourceState

logger = logging.getLogger(__name__)

MB = 1024 * 1024


class ResourceSampler(Protocol):
    """Anything that can produce a fresh ResourceState."""

    def sample(self) -> ResourceState: ...


class ResourceMonitor:
    """
    psutil-backed resource sampler.

    Available RAM is reported conservatively (80% of what the OS reports
    as available) since model loading needs headroom.

    CPU load is measured since the previous sample (the first one since
    construction) unless ``cpu_interval_s`` is set, in which case each
    sample blocks for that long. Leave it unset inside an event loop.
    """

    def __init__(
        self,
        ram_headroom: float = 0.8,
        cpu_interval_s: float | None = None,
        large_gpu_budget_ram_mb: float = 12000,
    ):
        self.ram_headroom = ram_headroom
        self.cpu_interval_s = cpu_interval_s
        self.large_gpu_budget_ram_mb = large_gpu_budget_ram_mb
        if cpu_interval_s is None:
            # Non-blocking reads compare against the previous call
            psutil.cpu_percent(interval=None)

    def sample(self) -> ResourceState:
        mem = psutil.virtual_memory()
        available_ram_mb = mem.available / MB * self.ram_headroom
        gpu_available = self._gpu_available()
        on_battery, battery_percent = self._battery()

        state = ResourceState(
            available_ram_mb=available_ram_mb,
            gpu_available=gpu_available,
            gpu_layers=35 if available_ram_mb > self.large_gpu_budget_ram_mb else 20,
            cpu_threads=psutil.cpu_count(logical=True) or 1,
            cpu_percent=psutil.cpu_percent(interval=self.cpu_interval_s),
            temperature_c=self._temperature(),
            on_battery=on_battery,
            battery_percent=battery_percent,
        )
        logger.debug(
            "Sampled resources: ram=%.0fMB cpu=%.0f%% gpu=%s battery=%s",
            state.available_ram_mb,
            state.cpu_percent,
            state.gpu_available,
            state.battery_percent,
        )
        return state

    @staticmethod
    def _gpu_available() -> bool:
        # Apple Silicon has unified memory; elsewhere trust an explicitly configured Ollama host
        return bool(os.environ.get("OLLAMA_HOST")) or platform.system() == "Darwin"

    @staticmethod
    def _battery() -> tuple[bool, float | None]:
        sensors_battery = getattr(psutil, "sensors_battery", None)
        battery = sensors_battery() if sensors_battery else None
        if battery is None:
            return False, None
        return not battery.power_plugged, float(battery.percent)

    @staticmethod
    def _temperature() -> float | None:
        sensors_temperatures = getattr(psutil, "sensors_temperatures", None)
        if sensors_temperatures is None:
            return None
        readings = [
            entry.current
            for entries in sensors_temperatures().values()
            for entry in entries
            if entry.current
        ]
        return max(readings) if readings else None


class StaticResourceMonitor:
    """Returns a fixed reading. Used for tests and dry runs."""

    def __init__(self, state: ResourceState):
        self.state = state

    def sample(self) -> ResourceState:
        return self.state


__all__ = [
    "ResourceMonitor",
    "ResourceSampler",
    "StaticResourceMonitor",
]
