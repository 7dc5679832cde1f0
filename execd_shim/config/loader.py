"""Plugin configuration loader with secret substitution."""

import logging
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import ValidationError

from ..errors import ConfigurationError
from ..plugins.base import PluginConfig
from ..plugins.registry import PluginRegistry, registry as default_registry
from .models import PluginSection
from .secrets import SecretResolver

logger = logging.getLogger(__name__)

YAML_SUFFIXES = (".yaml", ".yml")


class ConfigLoader:
    """Build a ready-to-run plugin from a configuration document."""

    @staticmethod
    def load_from_file(
        config_path: str,
        registry: Optional[PluginRegistry] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> Any:
        """
        Load a plugin from a TOML (or YAML) configuration file.

        Args:
            config_path: Path to the configuration document
            registry: Plugin registry (process-wide one if omitted)
            environ: Variables for secret placeholders (os.environ if omitted)

        Returns:
            Constructed, not yet started, plugin instance

        Raises:
            ConfigurationError: If the file is missing or invalid, a secret
                is unset, or the plugin is unknown
        """
        config_file = Path(config_path)
        if not config_file.is_file():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            text = config_file.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigurationError(f"Reading {config_path} failed: {e}") from e

        fmt = "yaml" if config_file.suffix.lower() in YAML_SUFFIXES else "toml"
        return ConfigLoader.load_from_string(
            text, fmt=fmt, registry=registry, environ=environ, source=str(config_file)
        )

    @staticmethod
    def load_from_string(
        text: str,
        fmt: str = "toml",
        registry: Optional[PluginRegistry] = None,
        environ: Optional[Mapping[str, str]] = None,
        source: Optional[str] = None,
    ) -> Any:
        """
        Load a plugin from configuration text.

        Secrets are substituted before the text is decoded, so the decoder
        never sees placeholder syntax.
        """
        registry = registry or default_registry
        source = source or "<string>"

        resolved = SecretResolver(environ).resolve(text)
        document = ConfigLoader._decode(resolved, fmt, source)
        section = ConfigLoader._single_section(document, source)

        plugin_cls = registry.get(section.name)
        config = ConfigLoader._validate_options(plugin_cls, section)

        plugin = plugin_cls(config)
        if getattr(plugin, "name", None) is None:
            plugin.name = section.name

        logger.info(f"Loaded plugin {section.name} from {source}")
        return plugin

    @staticmethod
    def _decode(text: str, fmt: str, source: str) -> Dict[str, Any]:
        try:
            if fmt == "toml":
                document = tomllib.loads(text)
            elif fmt == "yaml":
                document = yaml.safe_load(text)
            else:
                raise ConfigurationError(f"Unsupported configuration format: {fmt}")
        except (tomllib.TOMLDecodeError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Decoding {source} failed: {e}") from e

        if document is None:
            document = {}
        if not isinstance(document, dict):
            raise ConfigurationError(f"{source}: top level must be a table of sections")
        return document

    @staticmethod
    def _single_section(document: Dict[str, Any], source: str) -> PluginSection:
        """Extract the one ``inputs.<name>`` section of the document."""
        for key in document:
            if key != "inputs":
                logger.warning(f"Ignoring unsupported section {key!r} in {source}")

        inputs = document.get("inputs")
        if not inputs:
            raise ConfigurationError(f"{source}: no [inputs.<name>] plugin section found")
        if not isinstance(inputs, dict):
            raise ConfigurationError(f"{source}: section 'inputs' must be a table")

        sections: List[PluginSection] = []
        for name, body in inputs.items():
            # [[inputs.name]] decodes to a list of tables, [inputs.name] to one table
            tables = body if isinstance(body, list) else [body]
            for table in tables:
                if table is None:
                    table = {}
                if not isinstance(table, dict):
                    raise ConfigurationError(f"{source}: section inputs.{name} must be a table")
                sections.append(PluginSection(name=name, options=table, source=source))

        if len(sections) != 1:
            names = ", ".join(f"inputs.{s.name}" for s in sections)
            raise ConfigurationError(
                f"{source}: expected exactly one plugin section, found {len(sections)} ({names})"
            )
        return sections[0]

    @staticmethod
    def _validate_options(plugin_cls: type, section: PluginSection) -> PluginConfig:
        config_model = getattr(plugin_cls, "config_model", PluginConfig)
        try:
            return config_model.model_validate(section.options)
        except ValidationError as e:
            problems = "; ".join(
                f"inputs.{section.name}.{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            )
            raise ConfigurationError(f"{section.source}: {problems}") from e
