"""Error taxonomy for the plugin shim."""


class ShimError(Exception):
    """Base class for all shim errors."""


class ConfigurationError(ShimError):
    """
    Invalid or missing configuration.

    Raised for unknown plugin names, unresolved secret placeholders,
    decoding failures and plugins with an unsupported capability set.
    Always fatal, and always raised before any collection happens.
    """


class CollectionError(ShimError):
    """A single collection operation failed."""

    def __init__(self, plugin_name: str, message: str):
        self.plugin_name = plugin_name
        super().__init__(f"{plugin_name}: {message}")


class EncodingError(ShimError):
    """A single metric could not be serialized."""


class StreamError(ShimError):
    """The output stream is unwritable or the input stream failed."""
