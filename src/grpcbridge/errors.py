class BridgeError(Exception):
    """Base class for every error raised by the bridge."""


class UserInputError(BridgeError):
    """The caller supplied something that cannot be acted on."""


class BadInputError(UserInputError):
    """The request body is not a valid JSON request envelope."""


class UnknownMethodError(UserInputError):
    """The named RPC method is not exposed."""


class MethodConfigurationError(UserInputError):
    """Configured services or methods do not exist on the server.

    ``missing`` holds every unresolved name, sorted.
    """

    def __init__(self, message, missing=None):
        super().__init__(message)
        self.missing = list(missing or [])


class ReadFailureError(BridgeError):
    """The request body could not be read."""


class TransportError(BridgeError):
    """Dialing the server or talking to its reflection service failed."""


class SymbolNotFoundError(BridgeError, KeyError):
    """A descriptor source has no descriptor for the requested name."""

    def __init__(self, name, message=None):
        super().__init__(message or f"Symbol not found: {name}")
        self.name = name

    def __str__(self):
        return self.args[0]


class InternalError(BridgeError):
    """An unexpected failure inside the bridge."""
