"""Name-to-class lookup for plugins the config loader can build."""

from typing import Callable, Dict, List, Type

from ..errors import ConfigurationError


class PluginRegistry:
    """Maps plugin section names to plugin classes."""

    def __init__(self):
        self._plugins: Dict[str, Type] = {}

    def add(self, name: str, plugin_cls: Type) -> None:
        """
        Register a plugin class under a section name.

        Raises:
            ConfigurationError: If the name is already taken
        """
        if name in self._plugins:
            raise ConfigurationError(f"plugin {name!r} is already registered")
        self._plugins[name] = plugin_cls

    def get(self, name: str) -> Type:
        """
        Look up a plugin class.

        Raises:
            ConfigurationError: If no plugin is registered under the name
        """
        try:
            return self._plugins[name]
        except KeyError:
            known = ", ".join(self.names()) or "none"
            raise ConfigurationError(
                f"undefined plugin {name!r} in section inputs.{name} (registered: {known})"
            ) from None

    def names(self) -> List[str]:
        return sorted(self._plugins)

    def __contains__(self, name: str) -> bool:
        return name in self._plugins

    def register(self, name: str) -> Callable[[Type], Type]:
        """Class decorator form of ``add``."""
        def decorator(plugin_cls: Type) -> Type:
            self.add(name, plugin_cls)
            return plugin_cls
        return decorator


# Process-wide registry used by the CLI
registry = PluginRegistry()
