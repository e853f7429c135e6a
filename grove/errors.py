from fastapi import status


class GroveError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class UnauthenticatedError(GroveError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"


class ForbiddenError(GroveError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class NotFoundError(GroveError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ValidationError(GroveError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class ConflictError(GroveError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


class InternalError(GroveError):
    pass
