"""Output writer and accumulator that plugins push metrics through."""

import logging
import threading
from typing import Any, BinaryIO, Mapping, Optional

from ..errors import EncodingError, StreamError
from ..metrics.metric import Metric, Timestamp
from ..metrics.serializer import LineProtocolSerializer


class OutputWriter:
    """
    Serialize metrics onto the shim's output stream.

    Encoding and appending happen under one lock, so concurrent writers
    (the collection loop and Service plugin threads or tasks) never
    interleave bytes within a line. Once the stream fails the writer is
    broken for good and every later write raises the same StreamError.
    """

    def __init__(self, stream: BinaryIO, serializer: Optional[LineProtocolSerializer] = None):
        """
        Initialize output writer.

        Args:
            stream: Binary stream with ``write``, ``flush`` and ``close``
            serializer: Metric encoder (line protocol by default)
        """
        self.stream = stream
        self.serializer = serializer or LineProtocolSerializer()
        self.error: Optional[StreamError] = None
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, metric: Metric) -> None:
        """
        Encode a metric and append it as one line.

        Raises:
            EncodingError: If the metric cannot be encoded (stream untouched)
            StreamError: If the stream is closed or unwritable
        """
        with self._lock:
            if self.error is not None:
                raise self.error
            if self._closed:
                raise StreamError("output stream already closed")

            line = self.serializer.serialize(metric) + b"\n"
            try:
                self.stream.write(line)
                self.stream.flush()
            except (OSError, ValueError) as e:
                self.error = StreamError(f"output stream unwritable: {e}")
                raise self.error from e

    def close(self) -> None:
        """Flush and close the stream. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                if self.error is None:
                    self.stream.flush()
                self.stream.close()
            except (OSError, ValueError) as e:
                if self.error is None:
                    self.error = StreamError(f"closing output stream failed: {e}")
                    raise self.error from e


class Accumulator:
    """Sink a single plugin writes its metrics and errors into."""

    def __init__(self, writer: OutputWriter, plugin_name: str, logger: Optional[logging.Logger] = None):
        """
        Initialize accumulator.

        Args:
            writer: Shared output writer
            plugin_name: Name used when reporting errors
            logger: Optional parent logger
        """
        self.writer = writer
        self.plugin_name = plugin_name
        self.logger = (logger or logging.getLogger(__name__)).getChild(plugin_name)
        self.error_count = 0

    def add_fields(
        self,
        measurement: str,
        fields: Mapping[str, Any],
        tags: Optional[Mapping[str, str]] = None,
        timestamp: Timestamp = None,
    ) -> bool:
        """
        Build a metric from parts and write it.

        Returns:
            bool: True if the metric reached the output stream
        """
        try:
            metric = Metric.new(measurement, fields, tags, timestamp)
        except (TypeError, ValueError) as e:
            self.add_error(EncodingError(f"invalid metric {measurement!r}: {e}"))
            return False
        return self.add_metric(metric)

    def add_metric(self, metric: Metric) -> bool:
        """
        Write a finished metric.

        Unencodable metrics are dropped and reported; a broken output
        stream is re-raised since it is fatal for the whole shim.
        """
        try:
            self.writer.write(metric)
        except EncodingError as e:
            self.add_error(e)
            return False
        return True

    def add_error(self, error: Exception) -> None:
        """Report a non-fatal plugin error."""
        self.error_count += 1
        # No traceback for dropped metrics
        self.logger.error(
            f"Error in plugin {self.plugin_name}: {error}",
            exc_info=None if isinstance(error, EncodingError) else error,
        )
