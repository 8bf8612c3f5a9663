"""Exception types raised by the knowledge-base index."""

from __future__ import annotations

from pathlib import Path


class LexKBError(Exception):
    """Base class for all LexKB errors."""


class ConfigurationError(LexKBError, ValueError):
    """Invalid configuration, e.g. a chunk overlap that leaves no forward progress."""


class SourceDocumentError(LexKBError):
    """A single knowledge-base document could not be parsed."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class EmbeddingServiceError(LexKBError):
    """The embedding backend failed or returned an unusable response."""


class MissingCredentialsError(EmbeddingServiceError):
    """The remote embedding backend has no API key configured."""


class IndexBuildTimeoutError(EmbeddingServiceError):
    """A whole index build took longer than the configured bound."""


class CacheCorruptionError(LexKBError):
    """The on-disk cache payload is unreadable or was written by another version."""


class IndexNotReadyError(LexKBError):
    """The index has not been loaded and the last attempt failed."""
