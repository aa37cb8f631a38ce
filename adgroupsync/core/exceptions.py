"""Shared exceptions module."""

from typing import Optional


class AdGroupSyncException(Exception):
    """Base exception for adgroupsync."""

    def __init__(self, message: Optional[str] = None):
        """Create a new exception.

        Args:
        ----
            message (str, optional): The error message.

        """
        self.message = message
        super().__init__(message)


class ConfigurationError(AdGroupSyncException):
    """Raised when settings are incomplete or inconsistent."""

    pass


class InvalidEntityError(AdGroupSyncException):
    """Raised when a directory record cannot be decoded into an entity."""

    pass


class DirectoryConnectionError(AdGroupSyncException):
    """Raised when a directory server cannot be reached or queried."""

    def __init__(self, host: str, message: Optional[str] = "Directory operation failed"):
        """Create a new DirectoryConnectionError instance.

        Args:
        ----
            host (str): Host name of the directory server.
            message (str, optional): The error message. Has default message.

        """
        self.host = host
        super().__init__(f"{message} ({host})")


class SinkError(AdGroupSyncException):
    """Raised when group definitions could not be delivered."""

    pass


class CrawlError(AdGroupSyncException):
    """Raised when a crawl cycle is aborted and nothing was pushed."""

    pass
