"""Root of the suitekit exception hierarchy."""


class SuitekitError(Exception):
    """Base class for all errors raised by suitekit."""

    pass
