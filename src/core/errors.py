"""Exceptions shared between the core pipeline and its adapters."""

from __future__ import annotations


class RemoteReadError(Exception):
    """Base class for transient failures of the remote log reader."""


class SourceNotFound(RemoteReadError):
    """The remote log file or directory does not exist (yet)."""


class RemoteConnectionError(RemoteReadError):
    """The remote endpoint could not be reached or dropped the session."""


class FileTruncated(RemoteReadError):
    """The remote file holds fewer lines than the stored offset.

    Readers raise this instead of returning lines so that rotation is
    signalled structurally rather than guessed from error text.
    """

    def __init__(self, reported_size: int, message: str = "") -> None:
        super().__init__(message or f"Remote file truncated to {reported_size} lines")
        self.reported_size = reported_size


class ChannelUnavailable(Exception):
    """A notification destination could not be resolved."""
