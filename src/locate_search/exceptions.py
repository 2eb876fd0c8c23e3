"""Exception classes for locate search."""

from typing import Optional


class LocateSearchError(Exception):
    """Base exception for locate search errors."""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self):
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationError(LocateSearchError):
    """Exception raised when the configuration file cannot be loaded."""

    pass


class RemotePathError(LocateSearchError):
    """Exception raised when a remote-tagged path cannot be parsed."""

    pass


class RemoteExecutionError(LocateSearchError):
    """Exception raised when the remote command channel fails."""

    pass


class SurfaceBusyError(LocateSearchError):
    """Exception raised when a surface already has a running process."""

    pass
