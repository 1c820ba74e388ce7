"""Uniform response envelope: ``{success, message?, data?, errors?}``."""

from __future__ import annotations

from typing import Any

from django.core.exceptions import PermissionDenied
from django.http import Http404
from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from alumni_portal.core.exceptions import RelayError


def envelope(
    *,
    success: bool = True,
    message: str | None = None,
    data: Any = None,
    errors: list[str] | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {"success": success}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    if errors:
        body["errors"] = errors
    return body


def success_response(
    data: Any = None,
    *,
    message: str | None = None,
    status_code: int = status.HTTP_200_OK,
) -> Response:
    return Response(envelope(message=message, data=data), status=status_code)


def failure_envelope(exc: RelayError) -> dict[str, Any]:
    return envelope(success=False, message=exc.message, errors=exc.errors)


def flatten_errors(detail: Any, prefix: str = "") -> list[str]:
    if isinstance(detail, dict):
        out: list[str] = []
        for key, value in detail.items():
            label = key if key != "non_field_errors" else ""
            out.extend(flatten_errors(value, f"{prefix}{label}: " if label else prefix))
        return out
    if isinstance(detail, list):
        out = []
        for item in detail:
            out.extend(flatten_errors(item, prefix))
        return out
    return [f"{prefix}{detail}"]


def envelope_exception_handler(exc, context):
    """DRF ``EXCEPTION_HANDLER`` rendering every failure as an envelope."""

    if isinstance(exc, RelayError):
        return Response(failure_envelope(exc), status=exc.status_code)

    if isinstance(exc, Http404):
        exc = drf_exceptions.NotFound()
    elif isinstance(exc, PermissionDenied):
        exc = drf_exceptions.PermissionDenied()

    response = exception_handler(exc, context)
    if response is None:
        # Unhandled: let Django's 500 handling take over.
        return None

    if isinstance(exc, drf_exceptions.ValidationError):
        errors = flatten_errors(exc.detail)
        message = "Invalid input."
    else:
        detail = getattr(exc, "detail", None)
        message = str(detail) if detail is not None else "Request failed."
        errors = []

    response.data = envelope(success=False, message=message, errors=errors)
    return response
