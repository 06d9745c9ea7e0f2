class ConveneError(Exception):
    """Base class for errors raised by convene."""


class ConfigurationError(ConveneError):
    """Raised when the runtime configuration cannot be honoured."""
