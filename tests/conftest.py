"""Shared pytest configuration and fixtures."""

import asyncio
import threading

import pytest

from execd_shim.plugins.registry import PluginRegistry
from execd_shim.utils.logger import setup_logger


class ConcurrentBuffer:
    """Thread-safe binary sink standing in for the shim's stdout."""

    def __init__(self):
        self._chunks = []
        self._lock = threading.Lock()
        self.closed = False
        self.flushes = 0

    def write(self, data: bytes) -> int:
        with self._lock:
            if self.closed:
                raise ValueError("write to closed buffer")
            self._chunks.append(bytes(data))
            return len(data)

    def flush(self) -> None:
        with self._lock:
            self.flushes += 1

    def close(self) -> None:
        with self._lock:
            self.closed = True

    def getvalue(self) -> bytes:
        with self._lock:
            return b"".join(self._chunks)

    def lines(self):
        return [line for line in self.getvalue().decode().split("\n") if line]


class BrokenStream(ConcurrentBuffer):
    """Sink whose reader went away."""

    def write(self, data: bytes) -> int:
        raise BrokenPipeError("reader closed the pipe")


async def wait_for(predicate, timeout: float = 5.0, step: float = 0.005):
    """Poll until predicate() is truthy, failing the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met before timeout")
        await asyncio.sleep(step)


@pytest.fixture
def logger():
    """Create logger for tests."""
    return setup_logger("test")


@pytest.fixture
def stdout():
    return ConcurrentBuffer()


@pytest.fixture
def test_registry():
    """Registry isolated from the process-wide one."""
    return PluginRegistry()
