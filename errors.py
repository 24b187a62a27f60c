class FitnessError(ValueError):
    """Base error carrying a stable, machine readable code."""

    code = "ERROR"

    def __init__(self, code: str | None = None, message: str | None = None) -> None:
        if code is not None:
            self.code = code
        self.message = message or self.code
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.code


class InputError(FitnessError):
    code = "INVALID_INPUT"


class OutOfRangeError(FitnessError):
    code = "INDEX_OUT_OF_RANGE"


class ConflictError(FitnessError):
    code = "CONFLICT"


class AuthenticationError(FitnessError):
    code = "NOT_AUTHENTICATED"


class PermissionDeniedError(FitnessError):
    code = "FORBIDDEN"


class NotFoundError(FitnessError):
    code = "NOT_FOUND"


class ConnectionFailedError(FitnessError):
    code = "CONNECTION_FAILED"


CLIENT_EMAIL_EXISTS = "CLIENT_EMAIL_EXISTS"
CLIENT_PHONE_EXISTS = "CLIENT_PHONE_EXISTS"
USER_NOT_INVITED = "USER_NOT_INVITED"
INVALID_PASSWORD = "INVALID_PASSWORD"
NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
FORBIDDEN = "FORBIDDEN"
ROLE_SWITCH_DISABLED = "ROLE_SWITCH_DISABLED"
PLAN_NOT_FOUND = "PLAN_NOT_FOUND"
CLIENT_NOT_FOUND = "CLIENT_NOT_FOUND"
EXERCISE_NOT_FOUND = "EXERCISE_NOT_FOUND"
WORKOUT_NOT_FOUND = "WORKOUT_NOT_FOUND"
INVITATION_NOT_FOUND = "INVITATION_NOT_FOUND"
NO_DATES = "NO_DATES"
CONNECTION_FAILED = "CONNECTION_FAILED"
PASSWORD_CHANGE_REQUIRED = "PASSWORD_CHANGE_REQUIRED"

# HTTP status per error class, most specific first.
HTTP_STATUS: list[tuple[type[FitnessError], int]] = [
    (InputError, 400),
    (OutOfRangeError, 400),
    (AuthenticationError, 401),
    (PermissionDeniedError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (ConnectionFailedError, 503),
]

ERRORS_BY_STATUS: dict[int, type[FitnessError]] = {
    400: InputError,
    401: AuthenticationError,
    403: PermissionDeniedError,
    404: NotFoundError,
    409: ConflictError,
    503: ConnectionFailedError,
}


def http_status(error: FitnessError) -> int:
    for cls, status in HTTP_STATUS:
        if isinstance(error, cls):
            return status
    return 500
