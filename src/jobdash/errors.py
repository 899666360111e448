"""Error taxonomy for fetching and configuration."""

from __future__ import annotations

from jobdash.models.state import ErrorKind


class JobdashError(Exception):
    """Base class for all jobdash errors."""


class FetchError(JobdashError):
    """A remote fetch failed. Every kind is transient and retried next cycle."""

    kind: ErrorKind = ErrorKind.TRANSPORT

    def __init__(self, message: str, *, host: str = "", path: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.host = host
        self.path = path

    def __str__(self) -> str:
        if self.host:
            return f"{self.host}:{self.path}: {self.message}"
        return self.message


class HostConnectionError(FetchError):
    """Host unreachable, authentication refused, or the fetch timed out."""

    kind = ErrorKind.CONNECTION


class NotFoundError(FetchError):
    """The remote path does not exist (yet)."""

    kind = ErrorKind.NOT_FOUND


class TransportError(FetchError):
    """The copy failed for any other reason."""

    kind = ErrorKind.TRANSPORT


class ConfigurationError(JobdashError):
    """An invalid configuration file or project entry."""

    def __init__(self, message: str, *, entry: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.entry = entry

    def __str__(self) -> str:
        if self.entry:
            return f"{self.entry}: {self.message}"
        return self.message
