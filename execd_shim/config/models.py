"""Pydantic configuration models for the shim process."""

import re
from typing import List, Optional, Union

from pydantic import BaseModel, Field, field_validator

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parse a duration into seconds.

    Accepts plain numbers (seconds) and Go-style duration strings such
    as ``"10ms"``, ``"1s"`` or ``"1m30s"``.

    Args:
        value: Duration as number or string

    Returns:
        float: Duration in seconds

    Raises:
        ValueError: If the string is not a valid duration
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = value.strip()
    try:
        return float(text)
    except ValueError:
        pass

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()

    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return total


class ShimSettings(BaseModel):
    """Settings for one shim process."""
    config_path: str
    poll_interval: float = Field(default=1.0, gt=0)  # Seconds
    plugin_modules: List[str] = Field(default_factory=list)
    log_level: str = "INFO"

    @field_validator('poll_interval', mode='before')
    @classmethod
    def parse_interval(cls, v):
        """Accept duration strings like "10s" as well as seconds."""
        return parse_duration(v)

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate log level name."""
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f'Unknown log level: {v}')
        return level


class PluginSection(BaseModel):
    """One ``inputs.<name>`` section of a plugin configuration document."""
    name: str
    options: dict = Field(default_factory=dict)
    source: Optional[str] = None  # File the section came from
