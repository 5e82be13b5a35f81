"""Tagged results returned by catalog and billing service operations."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    NO_CURRENT_PRICE = "no_current_price"
    NO_TERM_AVAILABLE = "no_term_available"
    SUBSCRIPTION_LIMIT_EXCEEDED = "subscription_limit_exceeded"
    METADATA_SCHEMA_VIOLATION = "metadata_schema_violation"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    LOCK_CONTENTION = "lock_contention"
    CONFIGURATION_ERROR = "configuration_error"
    IDEMPOTENCY_CONFLICT = "idempotency_conflict"
    INVALID_STATUS_TRANSITION = "invalid_status_transition"


TRANSIENT_ERRORS = frozenset({ErrorKind.LOCK_CONTENTION})


@dataclass(frozen=True)
class ServiceError:
    kind: ErrorKind
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def transient(self) -> bool:
        """Whether the caller may retry the same request unchanged."""
        return self.kind in TRANSIENT_ERRORS

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.kind.value, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


@dataclass(frozen=True)
class ServiceResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[ServiceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "ServiceResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, **details: Any) -> "ServiceResult[T]":
        return cls(error=ServiceError(kind=kind, message=message, details=details))


__all__ = ["ErrorKind", "ServiceError", "ServiceResult", "TRANSIENT_ERRORS"]
