class ConfigurationError(ValueError):
    """Raised when a detector description cannot be turned into a valid layout."""


class LayoutOverflowError(ConfigurationError):
    """Raised when the layer stack does not fit inside the declared envelope."""
