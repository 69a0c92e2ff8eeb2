from __future__ import annotations


class JudgingError(Exception):
    """Base class for every failure the judging core reports to a caller."""


class ValidationError(JudgingError):
    """Input was rejected before any state was touched."""


class NotFoundError(JudgingError):
    pass


class StorageError(JudgingError):
    """Durable storage could not be read or written."""
