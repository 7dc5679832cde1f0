"""Environment defaults for the shim command line."""

import os
from typing import Optional


class Settings:
    """Shim defaults taken from environment variables."""

    CONFIG_VAR = "EXECD_SHIM_CONFIG"
    POLL_INTERVAL_VAR = "EXECD_SHIM_POLL_INTERVAL"
    LOG_LEVEL_VAR = "LOG_LEVEL"

    @staticmethod
    def get(key: str, default: Optional[str] = None, required: bool = False) -> str:
        """
        Read one shim setting from the environment.

        The CLI takes its argument defaults from here, so an empty
        variable counts as unset and falls back to ``default``.

        Raises:
            ValueError: If ``required`` and the variable is unset or empty
        """
        value = os.getenv(key) or default
        if required and not value:
            raise ValueError(f"Required environment variable not set: {key}")
        return value or ""

    @classmethod
    def config_path(cls) -> str:
        return cls.get(cls.CONFIG_VAR, "")

    @classmethod
    def poll_interval(cls) -> str:
        return cls.get(cls.POLL_INTERVAL_VAR, "1s")

    @classmethod
    def log_level(cls) -> str:
        return cls.get(cls.LOG_LEVEL_VAR, "INFO")
