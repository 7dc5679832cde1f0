"""Plugin capabilities, base classes and registration-time bindings."""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Union, runtime_checkable

from pydantic import BaseModel, ConfigDict

from ..errors import ConfigurationError


class PluginConfig(BaseModel):
    """Base configuration model; plugins subclass it to declare options."""

    model_config = ConfigDict(extra="forbid")


@runtime_checkable
class PollingCapable(Protocol):
    """Plugin collected once per trigger."""

    def gather(self, acc: Any) -> Any:
        """Collect metrics into the accumulator."""
        ...


@runtime_checkable
class ServiceCapable(Protocol):
    """Plugin running its own background collection."""

    def start(self, acc: Any) -> Any:
        """Start background collection, pushing into the accumulator."""
        ...

    def stop(self) -> Any:
        """Stop background collection."""
        ...


class BasePlugin(ABC):
    """
    Convenience base class for shim plugins.

    Plugins do not have to inherit from it; the shim only looks at which
    operations an instance exposes. Subclasses set ``config_model`` to a
    ``PluginConfig`` subclass so the config loader can validate options.
    """

    config_model = PluginConfig
    name: Optional[str] = None  # Section name, set by the config loader

    def __init__(self, config: Optional[PluginConfig] = None, logger: Optional[logging.Logger] = None):
        """
        Initialize plugin.

        Args:
            config: Validated plugin configuration (defaults if omitted)
            logger: Optional parent logger
        """
        self.config = config if config is not None else self.config_model()
        self.logger = (logger or logging.getLogger(__name__)).getChild(self.__class__.__name__)


class PollingPlugin(BasePlugin):
    """Base class for plugins collected on every trigger."""

    @abstractmethod
    async def gather(self, acc) -> None:
        """
        Collect metrics and add them to the accumulator.

        Args:
            acc: Accumulator to write metrics into

        Raises:
            Exception: Any collection error (reported, never fatal)
        """
        pass


class ServicePlugin(BasePlugin):
    """Base class for plugins that push metrics from their own background work."""

    @abstractmethod
    async def start(self, acc) -> None:
        """Start background collection; called once before the first trigger."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop background collection; called exactly once during shutdown."""
        pass


@dataclass(frozen=True)
class PollingBinding:
    """Registered plugin collected by calling ``gather`` per trigger."""

    name: str
    plugin: Any
    gather: Callable


@dataclass(frozen=True)
class ServiceBinding:
    """Registered plugin with its own lifecycle; ``gather`` only if it also polls."""

    name: str
    plugin: Any
    start: Callable
    stop: Callable
    gather: Optional[Callable] = None


PluginBinding = Union[PollingBinding, ServiceBinding]


def plugin_name(plugin: Any) -> str:
    """Name a plugin instance for logs and error reports."""
    return getattr(plugin, "name", None) or plugin.__class__.__name__


def bind_plugin(plugin: Any, name: Optional[str] = None) -> PluginBinding:
    """
    Classify a plugin by the operations it exposes.

    Args:
        plugin: Plugin instance
        name: Optional name override

    Returns:
        PluginBinding: ServiceBinding if it can start and stop,
        otherwise PollingBinding if it can gather

    Raises:
        ConfigurationError: If the plugin exposes neither capability set
    """
    name = name or plugin_name(plugin)
    gather = getattr(plugin, "gather", None)
    can_gather = isinstance(plugin, PollingCapable) and callable(gather)

    if isinstance(plugin, ServiceCapable) and callable(plugin.start) and callable(plugin.stop):
        return ServiceBinding(
            name=name,
            plugin=plugin,
            start=plugin.start,
            stop=plugin.stop,
            gather=gather if can_gather else None,
        )

    if can_gather:
        return PollingBinding(name=name, plugin=plugin, gather=gather)

    raise ConfigurationError(
        f"plugin {name!r} supports neither polling (gather) "
        "nor service (start/stop) collection"
    )


async def call_plugin(func: Callable, *args) -> Any:
    """Run a plugin operation, in a worker thread unless it is a coroutine function."""
    if inspect.iscoroutinefunction(func):
        return await func(*args)
    return await asyncio.to_thread(func, *args)
