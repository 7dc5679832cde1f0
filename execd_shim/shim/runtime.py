"""Shim runtime: drives registered plugins from timer and stdin triggers."""

import asyncio
import logging
import sys
from datetime import timedelta
from numbers import Real
from typing import BinaryIO, Dict, List, Optional, Union

from ..errors import CollectionError, ConfigurationError, StreamError
from ..plugins.base import PluginBinding, ServiceBinding, bind_plugin, call_plugin
from .output import Accumulator, OutputWriter
from .triggers import Trigger, TriggerMultiplexer


async def open_stdin_reader() -> asyncio.StreamReader:
    """Attach the process stdin to an asyncio stream reader."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    protocol = asyncio.StreamReaderProtocol(reader)
    try:
        await loop.connect_read_pipe(lambda: protocol, sys.stdin)
    except (OSError, ValueError) as e:
        raise StreamError(f"cannot read signals from stdin: {e}") from e
    return reader


class Shim:
    """
    Runs input plugins out of process, driven like in-process ones.

    A periodic timer and "collect now" lines on stdin both trigger a
    collection cycle. Cycles never overlap: each registered plugin's
    ``gather`` runs to completion before the next trigger is taken.
    Metrics are written to stdout as they are produced. Closing stdin
    is the normal shutdown request.
    """

    def __init__(
        self,
        stdout: BinaryIO,
        stdin: Optional[asyncio.StreamReader] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize shim.

        Args:
            stdout: Binary stream receiving line protocol output
            stdin: Stream delivering signal lines (process stdin if omitted)
            logger: Optional logger instance
        """
        self.stdin = stdin
        self.logger = logger or logging.getLogger(__name__)
        self.output = OutputWriter(stdout)
        self.bindings: List[PluginBinding] = []
        self.accumulators: Dict[str, Accumulator] = {}
        self.cycle_errors: List[CollectionError] = []
        self.collections = 0
        self._mux: Optional[TriggerMultiplexer] = None
        self._shutdown_requested = False

    def register(self, plugin, name: Optional[str] = None) -> PluginBinding:
        """
        Register a plugin, classifying it as Polling or Service.

        Args:
            plugin: Plugin instance
            name: Optional name override (defaults to the plugin's name)

        Returns:
            PluginBinding: The binding the runtime will drive

        Raises:
            ConfigurationError: If the plugin has no supported capability set
                or the name is already registered
        """
        binding = bind_plugin(plugin, name)
        if binding.name in self.accumulators:
            raise ConfigurationError(f"plugin {binding.name!r} is already registered")

        self.bindings.append(binding)
        self.accumulators[binding.name] = Accumulator(self.output, binding.name, self.logger)
        self.logger.info(f"Registered {type(binding).__name__} for plugin {binding.name}")
        return binding

    def request_shutdown(self) -> None:
        """Stop taking triggers, exactly like closing stdin."""
        self._shutdown_requested = True
        if self._mux is not None:
            self._mux.close()

    async def run(self, interval: Union[float, timedelta]) -> None:
        """
        Run the collection loop until stdin closes.

        Signal lines read before stdin closed are still collected.

        Args:
            interval: Timer period, seconds or a timedelta, strictly positive

        Raises:
            ConfigurationError: If the interval is not a positive duration
            CollectionError: If a Service plugin fails to start
            StreamError: If stdin fails or stdout becomes unwritable
        """
        if isinstance(interval, timedelta):
            interval = interval.total_seconds()
        if isinstance(interval, bool) or not isinstance(interval, Real) or not interval > 0:
            raise ConfigurationError(f"poll interval must be a positive number of seconds, got {interval!r}")

        reader = self.stdin if self.stdin is not None else await open_stdin_reader()
        self._mux = TriggerMultiplexer(reader, float(interval), self.logger)
        if self._shutdown_requested:
            self._mux.close()

        started: List[ServiceBinding] = []
        try:
            for binding in self.bindings:
                if isinstance(binding, ServiceBinding):
                    await self._start_service(binding)
                    started.append(binding)

            self._mux.start()
            self.logger.info(
                f"Shim running with {len(self.bindings)} plugin(s), interval {interval}s"
            )

            while True:
                trigger = await self._mux.next_trigger()
                if trigger is None:
                    break
                await self._collect(trigger)
                if self.output.error is not None:
                    raise self.output.error
        finally:
            await self._shutdown(started)

        # Service plugins may have broken stdout from their own threads
        if self.output.error is not None:
            raise self.output.error
        if self._mux.error is not None:
            raise self._mux.error
        self.logger.info(f"Shim stopped after {self.collections} collection(s)")

    async def _start_service(self, binding: ServiceBinding) -> None:
        self.logger.info(f"Starting service plugin {binding.name}")
        try:
            await call_plugin(binding.start, self.accumulators[binding.name])
        except Exception as e:
            raise CollectionError(binding.name, f"failed to start: {e}") from e

    async def _collect(self, trigger: Trigger) -> None:
        """Run one collection cycle over every plugin that can gather."""
        self.logger.debug(f"Collecting on {trigger.origin.value} trigger")
        self.cycle_errors = []

        for binding in self.bindings:
            if binding.gather is None:
                continue
            acc = self.accumulators[binding.name]
            try:
                await call_plugin(binding.gather, acc)
            except StreamError:
                raise
            except Exception as e:
                error = CollectionError(binding.name, f"gather failed: {e}")
                error.__cause__ = e
                self.cycle_errors.append(error)
                acc.add_error(error)

        self.collections += 1

    async def _shutdown(self, started: List[ServiceBinding]) -> None:
        """Stop producers, stop services in registration order, close stdout."""
        await self._mux.stop()

        for binding in started:
            self.logger.info(f"Stopping service plugin {binding.name}")
            try:
                await call_plugin(binding.stop)
            except Exception as e:
                self.logger.error(f"Stopping plugin {binding.name} failed: {e}", exc_info=True)

        self.output.close()
