"""
Unit tests for host resource sampling.
"""

import time
from collections import namedtuple
from unittest.mock import patch

import pytest

from strategy_engine.resources import MB, ResourceMonitor, StaticResourceMonitor
from strategy_engine.types import ResourceState

VirtualMemory = namedtuple("VirtualMemory", ["available"])
Battery = namedtuple("Battery", ["percent", "power_plugged"])
Temp = namedtuple("Temp", ["current"])


def patched_psutil(available_mb=20000, battery=None, temps=None):
    target = "strategy_engine.resources.psutil"
    return (
        patch(f"{target}.virtual_memory", return_value=VirtualMemory(available_mb * MB)),
        patch(f"{target}.cpu_count", return_value=8),
        patch(f"{target}.cpu_percent", return_value=42.0),
        patch(f"{target}.sensors_battery", return_value=battery, create=True),
        patch(f"{target}.sensors_temperatures", return_value=temps or {}, create=True),
    )


class TestResourceMonitor:
    """Tests for the psutil-backed sampler."""

    def test_sample_applies_headroom(self):
        """Reported RAM keeps 20% headroom."""
        patches = patched_psutil(available_mb=20000)
        with patches[0], patches[1], patches[2], patches[3], patches[4]:
            state = ResourceMonitor(cpu_interval_s=0).sample()
        assert state.available_ram_mb == pytest.approx(16000)
        assert state.cpu_threads == 8
        assert state.cpu_percent == 42.0
        assert state.gpu_layers == 35

    def test_low_ram_gets_fewer_gpu_layers(self):
        """Below the large budget, 20 layers are offloaded."""
        patches = patched_psutil(available_mb=10000)
        with patches[0], patches[1], patches[2], patches[3], patches[4]:
            state = ResourceMonitor(cpu_interval_s=0).sample()
        assert state.gpu_layers == 20

    def test_battery_and_temperature(self):
        """Battery and the hottest sensor reading are reported."""
        patches = patched_psutil(
            battery=Battery(percent=15, power_plugged=False),
            temps={"coretemp": [Temp(60.0), Temp(71.5)], "acpi": [Temp(0.0)]},
        )
        with patches[0], patches[1], patches[2], patches[3], patches[4]:
            state = ResourceMonitor(cpu_interval_s=0).sample()
        assert state.on_battery is True
        assert state.battery_percent == 15.0
        assert state.temperature_c == 71.5

    def test_no_battery(self):
        """Machines without a battery are never on battery."""
        patches = patched_psutil(battery=None)
        with patches[0], patches[1], patches[2], patches[3], patches[4]:
            state = ResourceMonitor(cpu_interval_s=0).sample()
        assert state.on_battery is False
        assert state.battery_percent is None
        assert state.temperature_c is None

    def test_default_cpu_reading_does_not_block(self):
        """Without an interval, CPU load is read since the previous call."""
        patches = patched_psutil()
        with patches[0], patches[1], patches[2] as cpu_percent, patches[3], patches[4]:
            monitor = ResourceMonitor()
            monitor.sample()
        assert [c.kwargs for c in cpu_percent.call_args_list] == [
            {"interval": None},
            {"interval": None},
        ]

    def test_default_sample_is_fast(self):
        """A sample with the real CPU counter returns well within a routing budget."""
        patches = patched_psutil()
        with patches[0], patches[1], patches[3], patches[4]:
            monitor = ResourceMonitor()
            start = time.perf_counter()
            monitor.sample()
            elapsed = time.perf_counter() - start
        assert elapsed < 0.05

    def test_gpu_from_ollama_host(self, monkeypatch):
        """An explicit Ollama host marks the GPU available."""
        monkeypatch.setenv("OLLAMA_HOST", "http://gpu-box:11434")
        assert ResourceMonitor._gpu_available() is True


class TestStaticResourceMonitor:
    """Tests for the fixed sampler."""

    def test_returns_fixed_state(self, tight_resources):
        monitor = StaticResourceMonitor(tight_resources)
        assert monitor.sample() is tight_resources
        assert isinstance(monitor.sample(), ResourceState)
