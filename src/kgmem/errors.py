"""Exception hierarchy shared by the store, the graph and the transports.

Every error carries a wire ``code`` so the dispatcher can turn it into a
tagged error response without inspecting the message.
"""

from __future__ import annotations


class KgmemError(Exception):
    """Base class for all kgmem errors."""

    code = "INTERNAL_ERROR"


class ValidationError(KgmemError):
    """A required field is missing or a value cannot be stored."""

    code = "VALIDATION_ERROR"


class NotFoundError(KgmemError):
    """The requested entity or relationship does not exist."""

    code = "NOT_FOUND"


class StorageError(KgmemError):
    """An I/O failure other than a missing file."""

    code = "STORAGE_ERROR"


class LockTimeoutError(KgmemError):
    """A per-file lock could not be acquired within the configured wait."""

    code = "LOCK_TIMEOUT"


class UnsupportedOperationError(KgmemError):
    """The requested operation name is not known."""

    code = "UNSUPPORTED_OPERATION"


ERRORS_BY_CODE: dict[str, type[KgmemError]] = {
    cls.code: cls
    for cls in (
        KgmemError,
        ValidationError,
        NotFoundError,
        StorageError,
        LockTimeoutError,
        UnsupportedOperationError,
    )
}
