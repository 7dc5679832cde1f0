"""Structured JSON logging configuration."""

import logging
import os
import sys
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger


def setup_logger(
    name: str = "execd_shim",
    level: str = "INFO",
    fields: Optional[Dict[str, Any]] = None
) -> logging.Logger:
    """
    Configure structured JSON logging on stderr.

    stdout carries the metric stream, so nothing but line protocol may
    ever be written there. The host usually merges stderr of several
    shims; every record carries the pid plus ``fields`` to tell them apart.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        fields: Extra static fields added to every record

    Returns:
        logging.Logger: Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers to avoid duplicates
    logger.handlers = []

    static_fields = {"pid": os.getpid()}
    static_fields.update(fields or {})

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(jsonlogger.JsonFormatter(
        '%(asctime)s %(name)s %(levelname)s %(message)s',
        timestamp=True,
        static_fields=static_fields,
    ))
    logger.addHandler(handler)

    # Don't propagate to root logger
    logger.propagate = False

    return logger
