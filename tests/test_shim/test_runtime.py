"""Tests for the Shim runtime."""

import asyncio
import threading
import time
from datetime import timedelta

import pytest

from conftest import BrokenStream, wait_for
from execd_shim.errors import CollectionError, ConfigurationError, StreamError
from execd_shim.plugins.base import PollingBinding, PollingPlugin, ServiceBinding, ServicePlugin
from execd_shim.shim.runtime import Shim

REFERENCE_LINE = "measurement,tag=tag field=1i 1234000005678"


class FixedInput(PollingPlugin):
    """Polling plugin emitting one fixed metric per gather."""

    name = "fixed"

    def __init__(self, delay: float = 0.0):
        super().__init__()
        self.delay = delay
        self.calls = 0
        self.processed = asyncio.Event()

    async def gather(self, acc):
        if self.delay:
            await asyncio.sleep(self.delay)
        acc.add_fields("measurement", {"field": 1}, {"tag": "tag"}, 1234000005678)
        self.calls += 1
        self.processed.set()


class FailingInput(PollingPlugin):
    """Polling plugin whose gather always fails."""

    name = "failing"

    def __init__(self):
        super().__init__()
        self.calls = 0

    async def gather(self, acc):
        self.calls += 1
        raise RuntimeError("device unreachable")


class SyncInput:
    """Plain object with a blocking gather and no base class."""

    name = "sync"

    def __init__(self):
        self.threads = set()

    def gather(self, acc):
        self.threads.add(threading.get_ident())
        acc.add_fields("sync", {"value": 1.5}, timestamp=1)


class PushingService(ServicePlugin):
    """Service plugin pushing metrics from a background thread."""

    name = "pusher"

    def __init__(self, events):
        super().__init__()
        self.events = events
        self._stop = threading.Event()
        self._thread = None

    async def start(self, acc):
        self.events.append(("start", self.name))
        self._thread = threading.Thread(target=self._push, args=(acc,), daemon=True)
        self._thread.start()

    async def stop(self):
        self.events.append(("stop", self.name))
        self._stop.set()
        self._thread.join()

    def _push(self, acc):
        while not self._stop.is_set():
            acc.add_fields("pushed", {"payload": "p" * 300}, {"source": "thread"}, 2)
            time.sleep(0.0005)


class RecordingService:
    """Service plugin recording lifecycle calls, with a gather of its own."""

    def __init__(self, name, events, fail_start=False, fail_stop=False):
        self.name = name
        self.events = events
        self.fail_start = fail_start
        self.fail_stop = fail_stop
        self.gathers = 0

    async def start(self, acc):
        self.events.append(("start", self.name))
        if self.fail_start:
            raise RuntimeError("cannot connect")

    async def stop(self):
        self.events.append(("stop", self.name))
        if self.fail_stop:
            raise RuntimeError("stop failed")

    async def gather(self, acc):
        self.gathers += 1


class OneShotService(ServicePlugin):
    """Service plugin writing a single metric when started."""

    name = "oneshot"

    def __init__(self):
        super().__init__()
        self.write_error = None

    async def start(self, acc):
        try:
            acc.add_fields("started", {"value": 1}, timestamp=1)
        except StreamError as e:
            self.write_error = e

    async def stop(self):
        pass


class Inert:
    """Object without any plugin capability."""

    def describe(self):
        return "nothing"


def make_shim(stdout, logger):
    stdin = asyncio.StreamReader()
    return Shim(stdout=stdout, stdin=stdin, logger=logger), stdin


class TestRegister:
    """Test suite for plugin registration."""

    def test_polling_plugin(self, stdout, logger):
        shim = Shim(stdout=stdout, logger=logger)
        binding = shim.register(FixedInput())

        assert isinstance(binding, PollingBinding)
        assert binding.name == "fixed"
        assert "fixed" in shim.accumulators

    def test_service_plugin_keeps_gather(self, stdout, logger):
        shim = Shim(stdout=stdout, logger=logger)
        binding = shim.register(RecordingService("svc", []))

        assert isinstance(binding, ServiceBinding)
        assert binding.gather is not None

    def test_service_without_gather(self, stdout, logger):
        shim = Shim(stdout=stdout, logger=logger)
        binding = shim.register(PushingService([]))

        assert isinstance(binding, ServiceBinding)
        assert binding.gather is None

    def test_neither_capability(self, stdout, logger):
        shim = Shim(stdout=stdout, logger=logger)

        with pytest.raises(ConfigurationError, match="neither"):
            shim.register(Inert())
        assert shim.bindings == []

    def test_duplicate_name(self, stdout, logger):
        shim = Shim(stdout=stdout, logger=logger)
        shim.register(FixedInput())

        with pytest.raises(ConfigurationError, match="already registered"):
            shim.register(FixedInput())

    def test_name_override(self, stdout, logger):
        shim = Shim(stdout=stdout, logger=logger)
        shim.register(FixedInput())

        assert shim.register(FixedInput(), name="fixed2").name == "fixed2"


class TestRun:
    """Test suite for the collection loop."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("interval", [0, -1, "10s", True, timedelta(0)])
    async def test_rejects_invalid_interval(self, stdout, logger, interval):
        """Test that non-positive or non-numeric intervals are refused up front."""
        shim, _ = make_shim(stdout, logger)

        with pytest.raises(ConfigurationError):
            await shim.run(interval)
        assert not stdout.closed

    @pytest.mark.asyncio
    async def test_timer_emits_reference_line(self, stdout, logger):
        """Test the fixed metric appears on stdout with a 10ms interval."""
        shim, stdin = make_shim(stdout, logger)
        plugin = FixedInput()
        shim.register(plugin)

        task = asyncio.create_task(shim.run(0.01))
        await asyncio.wait_for(plugin.processed.wait(), 5)
        await wait_for(lambda: stdout.getvalue())

        stdin.feed_eof()
        await asyncio.wait_for(task, 5)

        assert stdout.lines()[0] == REFERENCE_LINE
        assert stdout.closed

    @pytest.mark.asyncio
    async def test_timer_cadence(self, stdout, logger):
        """Test that at least floor(elapsed / interval) collections run."""
        shim, stdin = make_shim(stdout, logger)
        plugin = FixedInput()
        shim.register(plugin)

        loop = asyncio.get_running_loop()
        started = loop.time()
        task = asyncio.create_task(shim.run(0.02))
        await wait_for(lambda: plugin.calls >= 5)
        stdin.feed_eof()
        await asyncio.wait_for(task, 5)
        elapsed = loop.time() - started

        assert plugin.calls >= 5
        assert plugin.calls <= int(elapsed / 0.02) + 1
        assert len(stdout.lines()) == plugin.calls

    @pytest.mark.asyncio
    async def test_stdin_signal_collects_once(self, stdout, logger):
        """Test that one newline triggers exactly one collection."""
        shim, stdin = make_shim(stdout, logger)
        plugin = FixedInput()
        shim.register(plugin)

        task = asyncio.create_task(shim.run(40))
        stdin.feed_data(b"\n")
        await asyncio.wait_for(plugin.processed.wait(), 5)

        assert stdout.getvalue() == (REFERENCE_LINE + "\n").encode()

        stdin.feed_eof()
        await asyncio.wait_for(task, 5)
        assert plugin.calls == 1
        assert shim.collections == 1

    @pytest.mark.asyncio
    async def test_no_output_after_close(self, stdout, logger):
        """Test that closing stdin returns cleanly with no further lines."""
        shim, stdin = make_shim(stdout, logger)
        plugin = FixedInput()
        shim.register(plugin)

        task = asyncio.create_task(shim.run(40))
        stdin.feed_data(b"\n")
        await asyncio.wait_for(plugin.processed.wait(), 5)
        stdin.feed_eof()

        assert await asyncio.wait_for(task, 5) is None
        lines = stdout.lines()
        await asyncio.sleep(0.05)
        assert stdout.lines() == lines == [REFERENCE_LINE]

    @pytest.mark.asyncio
    async def test_in_flight_collection_completes(self, stdout, logger):
        """Test that closing stdin waits out a running gather."""
        shim, stdin = make_shim(stdout, logger)
        plugin = FixedInput(delay=0.1)
        shim.register(plugin)

        task = asyncio.create_task(shim.run(40))
        stdin.feed_data(b"\n")
        await asyncio.sleep(0.02)
        stdin.feed_eof()
        await asyncio.wait_for(task, 5)

        assert plugin.calls == 1
        assert stdout.lines() == [REFERENCE_LINE]

    @pytest.mark.asyncio
    async def test_collection_failure_not_fatal(self, stdout, logger):
        """Test that a failing gather is reported and the loop continues."""
        shim, stdin = make_shim(stdout, logger)
        failing = FailingInput()
        fixed = FixedInput()
        shim.register(failing)
        shim.register(fixed)

        task = asyncio.create_task(shim.run(40))
        stdin.feed_data(b"\n\n")
        await wait_for(lambda: fixed.calls == 2)

        assert failing.calls == 2
        assert len(shim.cycle_errors) == 1
        assert isinstance(shim.cycle_errors[0], CollectionError)
        assert "device unreachable" in str(shim.cycle_errors[0])
        assert shim.accumulators["failing"].error_count == 2

        stdin.feed_eof()
        assert await asyncio.wait_for(task, 5) is None

    @pytest.mark.asyncio
    async def test_sync_gather_runs_in_thread(self, stdout, logger):
        """Test that blocking plugins work without blocking the loop."""
        shim, stdin = make_shim(stdout, logger)
        plugin = SyncInput()
        shim.register(plugin)

        task = asyncio.create_task(shim.run(40))
        stdin.feed_data(b"\n")
        await wait_for(lambda: stdout.lines())
        stdin.feed_eof()
        await asyncio.wait_for(task, 5)

        assert stdout.lines() == ["sync value=1.5 1"]
        assert threading.get_ident() not in plugin.threads

    @pytest.mark.asyncio
    async def test_service_lifecycle_order(self, stdout, logger):
        """Test services start before the loop and stop in registration order."""
        events = []
        shim, stdin = make_shim(stdout, logger)
        first = RecordingService("first", events)
        second = RecordingService("second", events, fail_stop=True)
        third = RecordingService("third", events)
        for plugin in (first, second, third):
            shim.register(plugin)

        task = asyncio.create_task(shim.run(40))
        stdin.feed_data(b"\n")
        await wait_for(lambda: third.gathers == 1)
        stdin.feed_eof()
        assert await asyncio.wait_for(task, 5) is None

        assert events == [
            ("start", "first"), ("start", "second"), ("start", "third"),
            ("stop", "first"), ("stop", "second"), ("stop", "third"),
        ]
        assert first.gathers == second.gathers == 1

    @pytest.mark.asyncio
    async def test_service_start_failure_is_fatal(self, stdout, logger):
        """Test that a failed start stops already started services and raises."""
        events = []
        shim, _ = make_shim(stdout, logger)
        shim.register(RecordingService("ok", events))
        shim.register(RecordingService("bad", events, fail_start=True))

        with pytest.raises(CollectionError, match="cannot connect"):
            await asyncio.wait_for(shim.run(40), 5)

        assert events == [("start", "ok"), ("start", "bad"), ("stop", "ok")]
        assert stdout.closed

    @pytest.mark.asyncio
    async def test_service_and_poll_writes_never_interleave(self, stdout, logger):
        """Test concurrent service pushes and polled metrics stay line-atomic."""
        events = []
        shim, stdin = make_shim(stdout, logger)
        service = PushingService(events)
        polled = FixedInput()
        shim.register(service)
        shim.register(polled)

        task = asyncio.create_task(shim.run(0.005))
        await wait_for(lambda: polled.calls >= 10)
        stdin.feed_eof()
        await asyncio.wait_for(task, 5)

        pushed = 'pushed,source=thread payload="' + "p" * 300 + '" 2'
        lines = stdout.lines()
        assert set(lines) == {REFERENCE_LINE, pushed}
        assert lines.count(REFERENCE_LINE) == polled.calls
        assert events == [("start", "pusher"), ("stop", "pusher")]

    @pytest.mark.asyncio
    async def test_broken_stdout_is_fatal(self, logger):
        """Test that an unwritable stdout ends the run with a StreamError."""
        stdin = asyncio.StreamReader()
        shim = Shim(stdout=BrokenStream(), stdin=stdin, logger=logger)
        shim.register(FixedInput())

        stdin.feed_data(b"\n")
        with pytest.raises(StreamError):
            await asyncio.wait_for(shim.run(40), 5)


    @pytest.mark.asyncio
    async def test_signal_before_eof_is_collected(self, stdout, logger):
        """Test that a newline followed by end of input still collects once."""
        shim, stdin = make_shim(stdout, logger)
        plugin = FixedInput()
        shim.register(plugin)

        stdin.feed_data(b"\n")
        stdin.feed_eof()
        await asyncio.wait_for(shim.run(40), 5)

        assert plugin.calls == 1
        assert shim.collections == 1
        assert stdout.lines() == [REFERENCE_LINE]

    @pytest.mark.asyncio
    async def test_broken_stdout_from_service_is_fatal(self, logger):
        """Test that a service write failure is raised even without a later cycle."""
        stdin = asyncio.StreamReader()
        shim = Shim(stdout=BrokenStream(), stdin=stdin, logger=logger)
        service = OneShotService()
        shim.register(service)

        task = asyncio.create_task(shim.run(40))
        await wait_for(lambda: service.write_error is not None)
        stdin.feed_eof()

        with pytest.raises(StreamError, match="reader closed the pipe"):
            await asyncio.wait_for(task, 5)
        assert shim.collections == 0
    @pytest.mark.asyncio
    async def test_request_shutdown(self, stdout, logger):
        """Test that request_shutdown ends the run like closing stdin."""
        shim, _ = make_shim(stdout, logger)
        plugin = FixedInput()
        shim.register(plugin)

        task = asyncio.create_task(shim.run(0.01))
        await asyncio.wait_for(plugin.processed.wait(), 5)
        shim.request_shutdown()

        assert await asyncio.wait_for(task, 5) is None
        assert stdout.closed

    @pytest.mark.asyncio
    async def test_timedelta_interval(self, stdout, logger):
        """Test that a timedelta interval is accepted."""
        shim, stdin = make_shim(stdout, logger)
        plugin = FixedInput()
        shim.register(plugin)

        task = asyncio.create_task(shim.run(timedelta(milliseconds=10)))
        await asyncio.wait_for(plugin.processed.wait(), 5)
        stdin.feed_eof()
        await asyncio.wait_for(task, 5)

        assert plugin.calls >= 1
