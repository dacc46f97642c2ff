"""
core/errors.py -- The closed set of failure kinds every core operation reports.

Pattern: tagged error. One exception class, ServiceError, carries an ErrorKind
tag plus a caller-safe message. There is no subclass per HTTP
status: the core does not know about transport. api/main.py owns the single
kind -> status mapping (STATUS_BY_KIND) and the response envelope.

Messages are written for the caller. Anything that must not leak (which check
failed, the acting identity on a denial) goes to the audit log instead.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    validation = "validation"  # malformed or missing input
    authentication = "authentication"  # identity not established or no longer valid
    authorization = "authorization"  # identity established, insufficient role
    conflict = "conflict"  # uniqueness violation
    not_found = "not_found"  # referenced entity absent
    configuration = "configuration"  # missing secret/config -- fatal at startup
    internal = "internal"  # unexpected dependency failure


class ServiceError(Exception):
    """A failure signalled by the auth core.

    Attributes:
        kind:    ErrorKind tag. The boundary layer maps it to a status code.
        message: Caller-safe description.
        field:   Offending input field, when there is one (conflicts, validation).
    """

    def __init__(self, kind: ErrorKind, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.field = field

    def __repr__(self) -> str:
        return f"ServiceError(kind={self.kind.value!r}, message={self.message!r}, field={self.field!r})"


def validation_error(message: str, field: str | None = None) -> ServiceError:
    return ServiceError(ErrorKind.validation, message, field)


def authentication_error(message: str) -> ServiceError:
    return ServiceError(ErrorKind.authentication, message)


def authorization_error(message: str = "You don't have permission to perform this action") -> ServiceError:
    return ServiceError(ErrorKind.authorization, message)


def conflict_error(field: str) -> ServiceError:
    return ServiceError(ErrorKind.conflict, f"{field} already exists", field)


def not_found_error(message: str) -> ServiceError:
    return ServiceError(ErrorKind.not_found, message)


def configuration_error(message: str) -> ServiceError:
    return ServiceError(ErrorKind.configuration, message)


def internal_error(message: str = "An unexpected error occurred.") -> ServiceError:
    return ServiceError(ErrorKind.internal, message)
