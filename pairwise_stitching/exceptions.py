"""Errors raised by the pairwise shift pipeline."""


class ConfigurationError(ValueError):
    """The run configuration is invalid; raised before any computation starts."""


class RegistrationFailure(Exception):
    """A strategy could not produce a usable transform for one pair.

    Never escapes the dispatcher: the pair's result becomes ``None``.
    """


class RegistrationAborted(RuntimeError):
    """The run was cancelled; the in-flight batch is discarded."""
