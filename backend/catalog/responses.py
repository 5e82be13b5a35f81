"""Translate service errors into DRF responses."""
from __future__ import annotations

from rest_framework import status
from rest_framework.response import Response

from catalog.results import ErrorKind, ServiceError

ERROR_STATUS = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INACTIVE: status.HTTP_409_CONFLICT,
    ErrorKind.NO_CURRENT_PRICE: status.HTTP_409_CONFLICT,
    ErrorKind.NO_TERM_AVAILABLE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.SUBSCRIPTION_LIMIT_EXCEEDED: status.HTTP_409_CONFLICT,
    ErrorKind.METADATA_SCHEMA_VIOLATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.INSUFFICIENT_CREDITS: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorKind.LOCK_CONTENTION: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.CONFIGURATION_ERROR: status.HTTP_409_CONFLICT,
    ErrorKind.IDEMPOTENCY_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_STATUS_TRANSITION: status.HTTP_409_CONFLICT,
}


def error_response(error: ServiceError) -> Response:
    response = Response({"error": error.as_dict()}, status=ERROR_STATUS.get(error.kind, status.HTTP_400_BAD_REQUEST))
    if error.transient:
        response["Retry-After"] = "1"
    return response
