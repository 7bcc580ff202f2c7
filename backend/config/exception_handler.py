from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


def _error_response(
    *,
    error_status: str,
    message: str,
    http_status: int,
    details: dict[str, list[str]] | None = None,
) -> Response:
    body: dict[str, object] = {
        "error": {
            "status": error_status,
            "message": message,
        }
    }
    if details:
        body["error"]["details"] = details  # type: ignore[index]
    return Response(body, status=http_status)


def _flatten_details(data: Any, path: str = "") -> dict[str, list[str]]:
    out: dict[str, list[str]] = {}
    if isinstance(data, Mapping):
        for key, value in data.items():
            nested = f"{path}.{key}" if path else str(key)
            for nested_key, messages in _flatten_details(value, nested).items():
                out.setdefault(nested_key, []).extend(messages)
        return out
    if isinstance(data, Sequence) and not isinstance(data, (str, bytes, bytearray)):
        for item in data:
            for nested_key, messages in _flatten_details(item, path).items():
                out.setdefault(nested_key, []).extend(messages)
        return out
    out.setdefault(path or "non_field_errors", []).append(str(data))
    return out


_DRF_STATUS_NAMES: tuple[tuple[type[Exception], str], ...] = (
    (drf_exceptions.ValidationError, "validation_error"),
    (drf_exceptions.ParseError, "bad_request"),
    (drf_exceptions.NotAuthenticated, "unauthorized"),
    (drf_exceptions.AuthenticationFailed, "unauthorized"),
    (drf_exceptions.PermissionDenied, "forbidden"),
    (drf_exceptions.NotFound, "not_found"),
    (drf_exceptions.MethodNotAllowed, "method_not_allowed"),
)


def _wrap_drf_error(exc: Exception, response: Response) -> Response:
    error_status = "server_error" if response.status_code >= 500 else "bad_request"
    for exc_type, name in _DRF_STATUS_NAMES:
        if isinstance(exc, exc_type):
            error_status = name
            break

    details = None
    message = "Request failed."
    data = response.data
    if isinstance(exc, drf_exceptions.ValidationError):
        details = _flatten_details(data)
        if len(details) == 1:
            (only_key, messages), = details.items()
            message = messages[0] if messages else "One or more fields failed validation."
        else:
            message = "One or more fields failed validation."
    elif isinstance(data, Mapping) and isinstance(data.get("detail"), str):
        message = data["detail"]

    return _error_response(
        error_status=error_status,
        message=message,
        http_status=response.status_code,
        details=details,
    )


def custom_exception_handler(exc: Exception, context):
    """
    Central exception->HTTP mapping for DRF and cache engine exceptions.

    Views raise; this layer turns errors into the `{"error": ...}` envelope.
    """

    response = drf_exception_handler(exc, context)
    if response is not None:
        return _wrap_drf_error(exc, response)

    # Local import to avoid import-time side effects.
    from autocache import errors

    if isinstance(exc, errors.ConfigurationError):
        logger.warning("Configuration error: %s", exc)
        return _error_response(
            error_status="configuration_error",
            message=str(exc),
            http_status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    if isinstance(exc, errors.AutoCacheError):
        return _error_response(
            error_status="bad_request",
            message=str(exc),
            http_status=status.HTTP_400_BAD_REQUEST,
        )

    logger.exception(
        "Unhandled exception in API view: %s",
        context.get("view").__class__.__name__ if context.get("view") else "unknown",
        exc_info=exc,
    )
    return None
