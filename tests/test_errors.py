"""
Tests for error envelopes.
"""

import json

from services.events.core.errors import (
    InvalidFieldError,
    OccurrenceAddressError,
    StorageError,
    handle_exception,
)


def test_validation_error_envelope():
    error = InvalidFieldError("endTime", "End time must not be before start time")

    assert error.to_dict() == {
        "error": {
            "code": 400,
            "message": "End time must not be before start time",
            "errors": [
                {
                    "domain": "events",
                    "reason": "invalid",
                    "message": "End time must not be before start time",
                    "location": "endTime",
                    "locationType": "parameter",
                }
            ],
        }
    }


def test_occurrence_address_error():
    error = OccurrenceAddressError("e1_2024-06-10")

    assert error.status_code == 400
    assert error.reason == "occurrenceAddress"
    assert "e1_2024-06-10" in error.message


def test_storage_error_is_a_server_error():
    response = handle_exception(StorageError())

    assert response.status_code == 500
    assert json.loads(response.body)["error"]["errors"][0]["reason"] == "backendError"


def test_unexpected_exception_is_sanitized():
    response = handle_exception(RuntimeError("connection string with password"))

    assert response.status_code == 500
    body = json.loads(response.body)
    assert body["error"]["message"] == "Internal Server Error"
    assert "password" not in response.body.decode()
