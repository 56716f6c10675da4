from rest_framework import status
from rest_framework.exceptions import APIException


class EnrollmentError(APIException):
    """Base class for seat reservation errors; renders as {"error": detail}."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid request."
    default_code = "invalid"

    def __init__(self, detail=None):
        if detail is None:
            detail = self.default_detail
        self.message = detail
        super().__init__({"error": detail})


class ValidationError(EnrollmentError):
    pass


class NotFoundError(EnrollmentError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found."
    default_code = "not_found"


class ConflictError(EnrollmentError):
    """A guarded update changed no rows: the caller lost a capacity race."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = "The selected option is no longer available. Choose another option and resubmit."
    default_code = "conflict"


class NoSeatsError(ConflictError):
    default_detail = "No seats available in this course."
    default_code = "no_seats"


class InvalidTransitionError(EnrollmentError):
    default_detail = "This request can no longer be changed."
    default_code = "invalid_transition"


class InternalError(EnrollmentError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Internal server error."
    default_code = "internal_error"
