"""
Tests for the application exception hierarchy.
"""

from core.exceptions import (
    AuthenticationError,
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)


class TestBaseApplicationError:
    def test_defaults(self):
        error = BaseApplicationError("Something went wrong")

        assert error.message == "Something went wrong"
        assert error.error_code == "APPLICATION_ERROR"
        assert error.details == {}
        assert str(error) == "[APPLICATION_ERROR] Something went wrong"

    def test_custom_code_and_details(self):
        error = NotFoundError(
            "Subscription not found",
            error_code="SUBSCRIPTION_NOT_FOUND",
            details={"subscription_id": "abc"},
        )

        assert error.to_dict() == {
            "error": "Subscription not found",
            "error_code": "SUBSCRIPTION_NOT_FOUND",
            "details": {"subscription_id": "abc"},
        }

    def test_to_dict_omits_empty_details(self):
        assert "details" not in ValidationError("bad").to_dict()

    def test_repr(self):
        assert repr(ConflictError("dup")) == (
            "ConflictError(message='dup', error_code='CONFLICT', details={})"
        )

    def test_subclass_default_codes(self):
        assert ValidationError("x").error_code == "VALIDATION_ERROR"
        assert AuthenticationError("x").error_code == "AUTHENTICATION_FAILED"
        assert NotFoundError("x").error_code == "NOT_FOUND"
        assert ConflictError("x").error_code == "CONFLICT"
        assert ExternalServiceError("x").error_code == "EXTERNAL_SERVICE_ERROR"
        assert isinstance(ExternalServiceError("x"), BaseApplicationError)
