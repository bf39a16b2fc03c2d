"""Errors raised by the data collaborators."""


class ChartError(Exception):
    """Base class for errors with a human-readable message."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NetworkError(ChartError):
    """The upstream provider could not be reached."""


class UpstreamError(ChartError):
    """The upstream provider answered with an error or an unusable payload."""
