from enum import Enum
from typing import Optional

from click import ClickException


class ErrorKind(str, Enum):
    TRANSPORT = "transport"
    AUTHORIZATION_GAP = "authorization_gap"
    DECODE = "decode"
    AMBIGUOUS = "ambiguous"
    NOT_FOUND = "not_found"
    INVALID_ARGUMENT = "invalid_argument"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


# Snowflake error code for "SQL access control error: Insufficient privileges"
ACCESS_CONTROL_ERR = "003001"


class SnowgrantError(Exception):
    kind = ErrorKind.UNKNOWN


class SnowflakeAPIError(SnowgrantError):
    """
    Raised for any non-2xx answer from the SQL or REST API, and for transport
    failures where no answer was received at all (status_code is None).
    """

    kind = ErrorKind.TRANSPORT

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        sf_message: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.sf_message = sf_message


class UnprocessableEntityError(SnowflakeAPIError):
    """
    HTTP 422. Snowflake answers this way when the caller cannot describe or
    show grants on an object (system roles, shared databases, missing privileges).
    """

    kind = ErrorKind.AUTHORIZATION_GAP

    @property
    def is_access_control_error(self) -> bool:
        return self.code == ACCESS_CONTROL_ERR


class PermissionDeniedError(SnowgrantError):
    kind = ErrorKind.AUTHORIZATION_GAP

    def __init__(self, message: str, cause: Optional[UnprocessableEntityError] = None):
        super().__init__(message)
        self.cause = cause


class DecodeError(SnowgrantError):
    kind = ErrorKind.DECODE


class AmbiguousLookupError(SnowgrantError):
    kind = ErrorKind.AMBIGUOUS


class NotFoundError(SnowgrantError):
    kind = ErrorKind.NOT_FOUND


class InvalidPageTokenError(SnowgrantError):
    kind = ErrorKind.INVALID_ARGUMENT


class InvalidCredentialError(SnowgrantError):
    kind = ErrorKind.INVALID_ARGUMENT


class InvalidArgumentError(SnowgrantError):
    kind = ErrorKind.INVALID_ARGUMENT


class OperationCancelledError(SnowgrantError):
    kind = ErrorKind.CANCELLED


class InvalidConnectionConfiguration(ClickException):
    def format_message(self):
        return f"Invalid connection configuration. {self.message}"


def is_unprocessable(err: BaseException) -> bool:
    return isinstance(err, UnprocessableEntityError)


def wrap_error(err: Exception, message: str) -> SnowgrantError:
    """
    Prefix an error with connector context while keeping its kind, so callers
    can still branch on `err.kind` after wrapping.
    """
    wrapped = SnowgrantError(f"snowflake-connector: {message}: {err}")
    wrapped.kind = getattr(err, "kind", ErrorKind.UNKNOWN)
    wrapped.__cause__ = err
    return wrapped
