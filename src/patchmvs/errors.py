"""Exception types raised by patchmvs."""


class ConfigurationError(ValueError):
    """Raised when a network is built with an unsupported configuration.

    Examples are neighbor counts outside the supported tables or a feature
    channel count that is not divisible by the group-correlation count.
    """


class CheckpointError(RuntimeError):
    """Raised when a weight archive cannot be applied to a model."""
