"""
Exceptions raised by the collection API.
"""


class CollectionError(Exception):
    """Base class for errors reported to API callers."""


class InvalidRequestError(CollectionError):
    """Malformed submission (missing app id, unknown platform or strategy)."""


class JobNotFoundError(CollectionError):
    """No job with the given id is tracked."""


class JobNotCancellableError(CollectionError):
    """The job exists but its state does not allow the requested transition."""
