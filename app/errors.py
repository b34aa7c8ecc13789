"""Error taxonomy shared by the store, the services and the sync layer.

Each error carries the HTTP status it maps to so that ``main.py`` can
translate it with a single exception handler.
"""

from starlette import status


class ChatError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "chat_error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.__class__.__doc__ or self.error
        super().__init__(self.detail)


class NotAuthenticated(ChatError):
    """Could not authenticate business"""

    status_code = status.HTTP_401_UNAUTHORIZED
    error = "not_authenticated"


class Unauthorized(ChatError):
    """Resource does not belong to the acting party"""

    status_code = status.HTTP_403_FORBIDDEN
    error = "unauthorized"


class NotFound(ChatError):
    """Resource not found"""

    status_code = status.HTTP_404_NOT_FOUND
    error = "not_found"


class ValidationError(ChatError):
    """Invalid request"""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error = "validation_error"


class InvalidCursor(ChatError):
    """Malformed pagination cursor"""

    status_code = status.HTTP_400_BAD_REQUEST
    error = "invalid_cursor"


class StoreError(ChatError):
    """Backing store failure"""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error = "store_error"


class DuplicateSend(ChatError):
    """Automated message already delivered to this conversation"""

    status_code = status.HTTP_409_CONFLICT
    error = "duplicate_send"
