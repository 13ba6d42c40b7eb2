"""
Service error taxonomy.

Every service failure carries an explicit ErrorKind; the HTTP layer maps the
kind to a status code by exact lookup.
"""
from enum import Enum


class ErrorKind(str, Enum):
    validation = "validation"
    not_found = "not_found"
    permission = "permission"
    conflict = "conflict"
    authentication = "authentication"
    internal = "internal"


class ServiceError(Exception):
    kind: ErrorKind = ErrorKind.internal

    def __init__(self, message: str, kind: ErrorKind = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class ValidationError(ServiceError):
    kind = ErrorKind.validation


class NotFoundError(ServiceError):
    kind = ErrorKind.not_found


class AccessDeniedError(ServiceError):
    kind = ErrorKind.permission


class ConflictError(ServiceError):
    kind = ErrorKind.conflict


class AuthenticationError(ServiceError):
    kind = ErrorKind.authentication


class InternalError(ServiceError):
    kind = ErrorKind.internal


STATUS_BY_KIND = {
    ErrorKind.validation: 400,
    ErrorKind.authentication: 401,
    ErrorKind.permission: 403,
    ErrorKind.not_found: 404,
    ErrorKind.conflict: 409,
    ErrorKind.internal: 500,
}
