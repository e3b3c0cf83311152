"""
Pytest configuration and fixtures for strategy engine tests.
"""

import asyncio
import os
import sys
import tempfile
from pathlib import Path

import pytest

# Add project root to path so we can import the strategy_engine package
sys.path.insert(0, str(Path(__file__).parent.parent))

from strategy_engine.backend import Completion
from strategy_engine.catalog import ModelCatalog
from strategy_engine.ledger import PerformanceLedger
from strategy_engine.types import BackendError, ResourceState

SMALL = "llama3.2:3b-instruct-q5_K_M"
MID = "qwen2.5-coder:7b-instruct-q5_K_M"
MID_Q4 = "qwen2.5-coder:7b-instruct-q4_K_M"
LARGE = "deepseek-v2:16b-instruct-q4_K_M"


class ScriptedBackend:
    """
    In-memory inference backend.

    Replies are scripted per model: a string, an exception instance to
    raise, or a list consumed one call at a time. Unscripted models answer
    with ``default``. Every call is recorded in ``calls``.
    """

    def __init__(self, replies=None, default="ok", delays=None):
        self.replies = dict(replies or {})
        self.default = default
        self.delays = dict(delays or {})
        self.calls = []
        self.closed = False

    def _next(self, model):
        reply = self.replies.get(model, self.default)
        if isinstance(reply, list):
            reply = reply.pop(0) if len(reply) > 1 else reply[0]
        return reply

    async def chat(self, model, messages, *, temperature, max_tokens):
        self.calls.append(
            {"model": model, "messages": messages, "temperature": temperature, "max_tokens": max_tokens}
        )
        if model in self.delays:
            await asyncio.sleep(self.delays[model])
        reply = self._next(model)
        if isinstance(reply, Exception):
            raise reply
        return Completion(content=reply, model=model, input_tokens=10, output_tokens=20)

    async def stream(self, model, messages, *, temperature, max_tokens):
        self.calls.append(
            {"model": model, "messages": messages, "temperature": temperature, "max_tokens": max_tokens}
        )
        reply = self._next(model)
        if isinstance(reply, Exception):
            raise reply
        for word in reply.split(" "):
            yield word

    async def aclose(self):
        self.closed = True


@pytest.fixture
def catalog():
    """Default model catalog."""
    return ModelCatalog()


@pytest.fixture
def roomy_resources():
    """A machine with plenty of headroom."""
    return ResourceState(
        available_ram_mb=32000,
        gpu_available=True,
        gpu_layers=35,
        cpu_threads=16,
        cpu_percent=20.0,
        temperature_c=55.0,
    )


@pytest.fixture
def tight_resources():
    """A machine short on RAM."""
    return ResourceState(
        available_ram_mb=4000,
        gpu_available=False,
        gpu_layers=20,
        cpu_threads=4,
        cpu_percent=30.0,
    )


@pytest.fixture
def backend():
    """Scripted backend answering "ok" for every model."""
    return ScriptedBackend()


@pytest.fixture
def failing_error():
    """A connection-level backend error."""
    return BackendError(0, "connection refused")


@pytest.fixture
def temp_db_path():
    """Create a temporary database path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    yield path
    if os.path.exists(path):
        os.unlink(path)
    # Also cleanup WAL and SHM files
    for suffix in ["-wal", "-shm"]:
        wal_path = path + suffix
        if os.path.exists(wal_path):
            os.unlink(wal_path)


@pytest.fixture
def ledger(temp_db_path):
    """PerformanceLedger on a temporary database."""
    return PerformanceLedger(temp_db_path)


# Markers
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "hypothesis: property-based tests"
    )
    config.addinivalue_line(
        "markers", "slow: tests that take >1s"
    )
    config.addinivalue_line(
        "markers", "integration: end-to-end tests across the pipeline"
    )
