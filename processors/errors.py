"""Error types raised by the processing pipeline.

Every error here is recovered by the arrival handler; none of them stop the
watcher.
"""
from __future__ import annotations


class RelayError(Exception):
    """Base class for pipeline errors."""


class UnreadableFile(RelayError):
    """A descriptor file could not be read."""


class InvalidDescriptor(RelayError):
    """A descriptor file is malformed or does not match the expected shape."""


class RelocationError(RelayError):
    """A file could not be moved into a terminal directory."""


class LookupFailed(RelayError):
    """An author key could not be resolved to a display name."""


class UploadError(RelayError):
    """Base class for upload failures."""


class NotAnImage(UploadError):
    """The descriptor references a file that is not an image."""


class SourceUnreadable(UploadError):
    """The referenced image does not exist or cannot be opened."""


class SinkUnavailable(UploadError):
    """The sink could not be reached (connection error, timeout)."""


class SinkRejected(UploadError):
    """The sink answered but refused the upload."""
