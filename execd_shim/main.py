"""Command-line entry point running one plugin out of process."""

import argparse
import asyncio
import importlib
import signal
import sys
from typing import List, Optional

from pydantic import ValidationError

from .config.loader import ConfigLoader
from .config.models import LOG_LEVELS, ShimSettings
from .config.settings import Settings
from .errors import ShimError
from .plugins import disk  # noqa: F401  registers the built-in "disk" plugin
from .plugins.registry import registry
from .shim.runtime import Shim
from .utils.logger import setup_logger


class ShimApp:
    """
    Shim process wrapper.

    Loads the plugin configuration, registers the plugin and runs the
    shim on the process's stdin and stdout until stdin closes or a
    termination signal arrives.
    """

    def __init__(self, settings: ShimSettings):
        """
        Initialize shim application.

        Args:
            settings: Validated process settings
        """
        self.settings = settings
        self.logger = setup_logger(
            "execd_shim", settings.log_level, fields={"config": settings.config_path}
        )
        self.shim: Optional[Shim] = None

    def load(self) -> Shim:
        """
        Import plugin modules, load the configuration and register the plugin.

        Raises:
            ConfigurationError: If the plugin cannot be built
        """
        for module in self.settings.plugin_modules:
            self.logger.info(f"Importing plugin module {module}")
            importlib.import_module(module)

        self.logger.info(f"Loading configuration from {self.settings.config_path}")
        plugin = ConfigLoader.load_from_file(self.settings.config_path, registry=registry)

        self.shim = Shim(stdout=sys.stdout.buffer, logger=self.logger)
        self.shim.register(plugin)
        return self.shim

    async def run(self) -> None:
        """Run the shim, mapping SIGTERM/SIGINT to a clean shutdown."""
        shim = self.shim or self.load()

        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, self._signal_handler, signum)
        try:
            await shim.run(self.settings.poll_interval)
        finally:
            for signum in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(signum)

    def _signal_handler(self, signum: int) -> None:
        signal_name = signal.Signals(signum).name
        self.logger.info(f"Received {signal_name}, initiating graceful shutdown...")
        self.shim.request_shutdown()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Run an input plugin out of process, emitting line protocol on stdout',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Collect every 10 seconds and whenever a line arrives on stdin
  execd-shim --config plugin.conf --poll-interval 10s

  # Register plugins from your own module first
  execd-shim --config plugin.conf --plugin-module mypackage.plugins
        """
    )

    parser.add_argument(
        '--config',
        default=Settings.config_path() or None,
        required=not Settings.config_path(),
        help='Path to plugin configuration file (default: EXECD_SHIM_CONFIG env var)'
    )

    parser.add_argument(
        '--poll-interval',
        default=Settings.poll_interval(),
        help='Collection interval, e.g. 10s or 500ms (default: 1s or EXECD_SHIM_POLL_INTERVAL env var)'
    )

    parser.add_argument(
        '--plugin-module',
        action='append',
        default=[],
        dest='plugin_modules',
        help='Module to import before loading the config, may be repeated'
    )

    parser.add_argument(
        '--log-level',
        default=Settings.log_level(),
        choices=LOG_LEVELS,
        help='Logging level (default: INFO or LOG_LEVEL env var)'
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI entry point.

    Returns:
        int: 0 when the shim stopped cleanly, 1 on any error
    """
    args = build_parser().parse_args(argv)

    try:
        settings = ShimSettings(
            config_path=args.config,
            poll_interval=args.poll_interval,
            plugin_modules=args.plugin_modules,
            log_level=args.log_level,
        )
    except ValidationError as e:
        print(f"Invalid arguments: {e}", file=sys.stderr)
        return 1

    app = ShimApp(settings)
    try:
        app.load()
        asyncio.run(app.run())
    except (ShimError, ImportError) as e:
        app.logger.error(f"Shim failed: {e}", exc_info=True)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
