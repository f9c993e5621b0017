"""Error taxonomy shared by the admissions services.

Every error carries a single human-readable message naming the offending
field or rule, so callers can surface it verbatim.
"""
from __future__ import annotations


class AdmissionsError(Exception):
    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def as_dict(self) -> dict:
        payload = {'detail': self.message}
        if self.field:
            payload['field'] = self.field
        return payload


class ValidationError(AdmissionsError, ValueError):
    """Input or precondition failure; recoverable by correcting the input."""


class DuplicateEmail(ValidationError):
    pass


class InvalidTransition(AdmissionsError):
    def __init__(self, current: str, requested: str, message: str | None = None) -> None:
        super().__init__(
            message or f'Cannot move application from {current} to {requested}',
            field='status',
        )
        self.current = current
        self.requested = requested


class TransitionNotPermitted(AdmissionsError, PermissionError):
    pass


class AllocationConflict(AdmissionsError):
    """Identifier already taken; retry with a fresh suggestion, never the same value."""


class DependencyFailure(AdmissionsError):
    def __init__(self, service: str, message: str) -> None:
        super().__init__(message, field=None)
        self.service = service


class ApplicationNotFound(AdmissionsError, LookupError):
    pass
