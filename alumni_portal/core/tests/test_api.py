from unittest import mock

import pytest
from django.http import Http404
from rest_framework import exceptions as drf_exceptions
from rest_framework import status

from alumni_portal.core.api import envelope
from alumni_portal.core.api import envelope_exception_handler
from alumni_portal.core.api import flatten_errors
from alumni_portal.core.exceptions import ForbiddenError
from alumni_portal.core.exceptions import NotFoundError
from alumni_portal.core.exceptions import TransientError
from alumni_portal.core.exceptions import ValidationError


def test_envelope_omits_empty_members():
    assert envelope() == {"success": True}
    assert envelope(success=False, message="nope", errors=["x"]) == {
        "success": False,
        "message": "nope",
        "errors": ["x"],
    }


@pytest.mark.parametrize(
    ("exc", "code"),
    [
        (ValidationError("Message content is required."), 400),
        (ForbiddenError(), 403),
        (NotFoundError("Chat not found."), 404),
        (TransientError(), 503),
    ],
)
def test_relay_errors_render_as_failure_envelope(exc, code):
    response = envelope_exception_handler(exc, {})
    assert response.status_code == code
    assert response.data["success"] is False
    assert response.data["message"] == exc.message


def test_django_404_is_mapped():
    response = envelope_exception_handler(Http404(), {"view": mock.Mock()})
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.data["success"] is False


def test_drf_validation_errors_are_flattened():
    exc = drf_exceptions.ValidationError({"content": ["This field is required."]})
    response = envelope_exception_handler(exc, {"view": mock.Mock()})
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.data["message"] == "Invalid input."
    assert response.data["errors"] == ["content: This field is required."]


def test_flatten_errors_handles_nested_detail():
    detail = {"non_field_errors": ["bad"], "participant_ids": {"0": ["not int"]}}
    assert flatten_errors(detail) == ["bad", "participant_ids: 0: not int"]


def test_unhandled_exceptions_fall_through():
    assert envelope_exception_handler(RuntimeError("boom"), {}) is None
