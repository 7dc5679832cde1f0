"""Merge timer ticks and stdin signal lines into one trigger sequence."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ..errors import StreamError


class TriggerOrigin(Enum):
    """Where a collection request came from."""

    TIMER = "timer"
    SIGNAL = "signal"


@dataclass(frozen=True)
class Trigger:
    """A request to run the next collection cycle."""

    origin: TriggerOrigin


class TriggerMultiplexer:
    """
    Single-consumer queue fed by a periodic timer and a line reader.

    The timer never has more than one trigger waiting: ticks that fire
    while a timer trigger is still queued are coalesced, so a slow
    collection is not followed by a burst. Every complete input line
    queues one signal trigger. At end of input the timer stops, signal
    triggers already queued are still handed out, and ``next_trigger``
    then returns ``None``. ``close`` stops delivery at once.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        interval: float,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize trigger multiplexer.

        Args:
            reader: Stream delivering signal lines
            interval: Timer period in seconds, strictly positive
            logger: Optional logger instance
        """
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")

        self.reader = reader
        self.interval = interval
        self.logger = logger or logging.getLogger(__name__)
        self.error: Optional[StreamError] = None

        self._queue: "asyncio.Queue[Trigger]" = asyncio.Queue()
        self._stopped = asyncio.Event()
        self._input_done = asyncio.Event()
        self._timer_pending = False
        self._tasks: List[asyncio.Task] = []

    @property
    def closed(self) -> bool:
        """True once no new triggers will be produced."""
        return self._stopped.is_set() or self._input_done.is_set()

    @property
    def pending(self) -> int:
        """Number of queued, undelivered triggers."""
        return self._queue.qsize()

    def start(self) -> None:
        """Spawn the timer and signal reader tasks."""
        if self._tasks:
            raise RuntimeError("multiplexer already started")
        self._tasks = [
            asyncio.create_task(self._run_timer(), name="shim-timer"),
            asyncio.create_task(self._read_signals(), name="shim-signal-reader"),
        ]

    def close(self) -> None:
        """Stop delivering triggers, dropping any still queued."""
        self._stopped.set()

    async def stop(self) -> None:
        """Close and wait for both producer tasks to finish."""
        self.close()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def next_trigger(self) -> Optional[Trigger]:
        """
        Wait for the next trigger.

        Returns:
            Optional[Trigger]: Next trigger, or None once closed or once
                input has ended and no signal is left queued
        """
        if self._stopped.is_set():
            return None
        if self._input_done.is_set():
            return self._next_queued_signal()

        getter = asyncio.ensure_future(self._queue.get())
        stopper = asyncio.ensure_future(self._stopped.wait())
        ender = asyncio.ensure_future(self._input_done.wait())
        try:
            await asyncio.wait({getter, stopper, ender}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in (getter, stopper, ender):
                waiter.cancel()

        if self._stopped.is_set():
            return None
        if getter.done() and not getter.cancelled():
            return self._delivered(getter.result())
        return self._next_queued_signal()

    def _delivered(self, trigger: Trigger) -> Trigger:
        if trigger.origin is TriggerOrigin.TIMER:
            self._timer_pending = False
        return trigger

    def _next_queued_signal(self) -> Optional[Trigger]:
        # Input is over: timer triggers are stale, signals were requested
        while not self._queue.empty():
            trigger = self._delivered(self._queue.get_nowait())
            if trigger.origin is TriggerOrigin.SIGNAL:
                return trigger
        return None

    def _emit(self, origin: TriggerOrigin) -> None:
        if self.closed:
            return
        if origin is TriggerOrigin.TIMER:
            if self._timer_pending:
                self.logger.debug("Timer tick coalesced with pending trigger")
                return
            self._timer_pending = True
        self._queue.put_nowait(Trigger(origin))

    async def _run_timer(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.interval

        while not self.closed:
            await asyncio.sleep(max(0.0, deadline - loop.time()))
            self._emit(TriggerOrigin.TIMER)

            deadline += self.interval
            now = loop.time()
            if deadline <= now:
                # Skip ticks missed while the loop was busy
                missed = int((now - deadline) // self.interval) + 1
                deadline += missed * self.interval

    async def _read_signals(self) -> None:
        try:
            while True:
                try:
                    await self.reader.readuntil(b"\n")
                except asyncio.IncompleteReadError:
                    # End of input, a trailing partial line is not a signal
                    break
                except asyncio.LimitOverrunError as e:
                    # Line longer than the buffer: drop what is buffered, keep reading
                    await self.reader.readexactly(e.consumed)
                    continue
                self._emit(TriggerOrigin.SIGNAL)
            self.logger.info("Input stream closed")
        except OSError as e:
            self.error = StreamError(f"reading input stream failed: {e}")
            self.logger.error(str(self.error))
        finally:
            self._input_done.set()
