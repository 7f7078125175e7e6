"""API error definitions.

All API errors are defined here with their corresponding HTTP status codes.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API.

    Format: E_CATEGORY_NAME
    """

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"
    E_API_KEY_MISSING = "E_API_KEY_MISSING"
    E_API_KEY_INVALID = "E_API_KEY_INVALID"

    # Authorization errors (403)
    E_FORBIDDEN = "E_FORBIDDEN"
    E_ACCESS_DENIED = "E_ACCESS_DENIED"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_PROFILE_NOT_FOUND = "E_PROFILE_NOT_FOUND"
    E_API_KEY_NOT_FOUND = "E_API_KEY_NOT_FOUND"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_INVALID_CURSOR = "E_INVALID_CURSOR"
    E_MESSAGE_EMPTY = "E_MESSAGE_EMPTY"
    E_MESSAGE_TOO_LONG = "E_MESSAGE_TOO_LONG"
    E_AUDIO_INVALID = "E_AUDIO_INVALID"
    E_AUDIO_TOO_LARGE = "E_AUDIO_TOO_LARGE"
    # Inbound webhook targeting a chat of another profile. Reported as 400 with
    # the same message for "missing" and "not yours" so chat ids cannot be probed.
    E_CHAT_NOT_FOUND = "E_CHAT_NOT_FOUND"

    # Server errors
    E_AUTH_UNAVAILABLE = "E_AUTH_UNAVAILABLE"  # 503
    E_INTERNAL = "E_INTERNAL"  # 500
    E_STORAGE_ERROR = "E_STORAGE_ERROR"  # 500


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_API_KEY_MISSING: 401,
    ApiErrorCode.E_API_KEY_INVALID: 401,
    ApiErrorCode.E_FORBIDDEN: 403,
    ApiErrorCode.E_ACCESS_DENIED: 403,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_PROFILE_NOT_FOUND: 404,
    ApiErrorCode.E_API_KEY_NOT_FOUND: 404,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_INVALID_CURSOR: 400,
    ApiErrorCode.E_MESSAGE_EMPTY: 400,
    ApiErrorCode.E_MESSAGE_TOO_LONG: 400,
    ApiErrorCode.E_AUDIO_INVALID: 400,
    ApiErrorCode.E_AUDIO_TOO_LARGE: 400,
    ApiErrorCode.E_CHAT_NOT_FOUND: 400,
    ApiErrorCode.E_AUTH_UNAVAILABLE: 503,
    ApiErrorCode.E_INTERNAL: 500,
    ApiErrorCode.E_STORAGE_ERROR: 500,
}


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
    """

    def __init__(self, code: ApiErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)


class NotFoundError(ApiError):
    """Resource not found error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ForbiddenError(ApiError):
    """Authorization failure error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)
