"""Disk usage polling plugin."""

import shutil
from typing import List

from pydantic import Field, field_validator

from .base import PluginConfig, PollingPlugin
from .registry import registry
from ..metrics.metric import UnsignedInt


class DiskConfig(PluginConfig):
    """Configuration for disk usage collection."""
    paths: List[str] = Field(default_factory=lambda: ["/"])

    @field_validator('paths')
    @classmethod
    def validate_paths(cls, v: List[str]) -> List[str]:
        """Require at least one path."""
        if not v:
            raise ValueError('At least one path is required')
        return v


@registry.register("disk")
class DiskPlugin(PollingPlugin):
    """Report total, used and free bytes for each configured path."""

    config_model = DiskConfig

    async def gather(self, acc) -> None:
        """
        Emit one ``disk`` metric per path.

        A path that cannot be read is reported and skipped; the
        remaining paths still emit.
        """
        for path in self.config.paths:
            try:
                total, used, free = shutil.disk_usage(path)
            except OSError as e:
                acc.add_error(e)
                continue

            used_percent = (used / total) * 100 if total else 0.0
            acc.add_fields(
                "disk",
                {
                    "total": UnsignedInt(total),
                    "used": UnsignedInt(used),
                    "free": UnsignedInt(free),
                    "used_percent": round(used_percent, 2),
                },
                tags={"path": path},
            )
