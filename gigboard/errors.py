"""Exception types raised by the storage, guard and migration layers."""

from __future__ import annotations

from typing import Any, Dict, Optional


class StorageError(RuntimeError):
    """Base error for anything that goes wrong inside the document store."""

    code = "STORAGE_ERROR"

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.path = path
        self.operation = operation

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": str(self), "code": self.code}
        if self.path is not None:
            payload["path"] = self.path
        if self.operation is not None:
            payload["operation"] = self.operation
        return payload


class StorageIOError(StorageError):
    """Disk or permission failure while touching a document."""

    code = "IO_ERROR"


class CorruptDocumentError(StorageError):
    """A document exists on disk but is not valid JSON."""

    code = "CORRUPT_DOCUMENT"


class InvalidPathError(StorageError):
    """A path failed validation, or a write targeted a read-only location."""

    code = "INVALID_PATH"


class RequestError(StorageError):
    """A caller asked for something malformed: a bad body, field or entity type."""

    code = "BAD_REQUEST"


class EntityNotFoundError(StorageError):
    """Raised by write operations that require an existing entity."""

    code = "NOT_FOUND"


class GuardViolationError(StorageError):
    """A cross-entity transition would leave the store inconsistent."""

    code = "GUARD_VIOLATION"

    def __init__(self, message: str, outcome: Any = None) -> None:
        super().__init__(message, operation="guard")
        self.outcome = outcome

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.outcome is not None:
            payload["details"] = self.outcome.to_dict()
        return payload


class RollbackFailureError(GuardViolationError):
    """Compensation after a failed guard could not complete."""

    code = "ROLLBACK_FAILURE"


__all__ = [
    "CorruptDocumentError",
    "EntityNotFoundError",
    "GuardViolationError",
    "InvalidPathError",
    "RequestError",
    "RollbackFailureError",
    "StorageError",
    "StorageIOError",
]
