from __future__ import annotations

import logging

from admissions.config import settings
from admissions.core.contact import is_blank
from admissions.core.errors import InvalidTransition, TransitionNotPermitted, ValidationError
from admissions.models import AdmissionApplication, ApplicationStatus
from admissions.schemas import Actor
from admissions.services.application_store import ApplicationStore
from admissions.services.observability_counters import INVALID_TRANSITION, record_observability_event


logger = logging.getLogger(__name__)

S = ApplicationStatus

TERMINAL_STATUSES = frozenset({S.ENROLLED, S.REJECTED, S.WITHDRAWN})

# Enrollment is reachable from approved only through the enrollment commit,
# so it is deliberately absent here.
TRANSITIONS: dict[ApplicationStatus, frozenset[ApplicationStatus]] = {
    S.SUBMITTED: frozenset({S.UNDER_REVIEW, S.WITHDRAWN}),
    S.UNDER_REVIEW: frozenset({S.APPROVED, S.REJECTED, S.DOCUMENT_PENDING, S.WITHDRAWN}),
    S.DOCUMENT_PENDING: frozenset({S.WITHDRAWN}),
    S.APPROVED: frozenset({S.WITHDRAWN}),
    S.REJECTED: frozenset(),
    S.ENROLLED: frozenset(),
    S.WITHDRAWN: frozenset(),
}

REMARKS_REQUIRED = frozenset({(S.UNDER_REVIEW, S.REJECTED)})


def parse_status(value: ApplicationStatus | str) -> ApplicationStatus:
    try:
        return ApplicationStatus(value)
    except ValueError as exc:
        raise ValidationError(f'Unknown application status: {value}', field='status') from exc


def is_terminal(status: ApplicationStatus | str) -> bool:
    return parse_status(status) in TERMINAL_STATUSES


def allowed_transitions(status: ApplicationStatus | str) -> list[str]:
    return sorted(item.value for item in TRANSITIONS[parse_status(status)])


def is_staff(actor: Actor) -> bool:
    return str(actor.role or '').strip().lower() in {role.lower() for role in settings.staff_roles}


class ApplicationLifecycle:
    """Role-gated status transitions with an append-only history.

    Checks run in a fixed order and nothing is written until all pass:
    actor role, target reachability, remarks. The write itself is a
    compare-and-set on the status the check was made against, so a
    concurrent transition that got there first turns this one into an
    InvalidTransition instead of a lost update.
    """

    def __init__(self, store: ApplicationStore) -> None:
        self.store = store

    def transition(
        self,
        application_id: int,
        to_status: ApplicationStatus | str,
        *,
        actor: Actor,
        remarks: str = '',
    ) -> AdmissionApplication:
        if not is_staff(actor):
            raise TransitionNotPermitted(
                f'Role {actor.role or "anonymous"} may not change application status',
                field='role',
            )
        target = parse_status(to_status)
        row = self.store.get(application_id, institution_id=actor.institution_id)
        current = parse_status(row.status)

        if target not in TRANSITIONS[current]:
            record_observability_event(INVALID_TRANSITION)
            logger.warning(
                'application_transition_rejected',
                extra={'application_id': int(row.id), 'from_status': current.value, 'to_status': target.value},
            )
            raise InvalidTransition(current.value, target.value)
        if (current, target) in REMARKS_REQUIRED and is_blank(remarks):
            raise ValidationError('Remarks are required to reject an application', field='remarks')

        try:
            self.store.update_status(
                int(row.id),
                expected=current.value,
                status=target.value,
                remarks=remarks,
                actor_id=actor.user_id,
            )
        except InvalidTransition:
            record_observability_event(INVALID_TRANSITION)
            raise

        logger.info(
            'application_transition',
            extra={
                'application_id': int(row.id),
                'from_status': current.value,
                'to_status': target.value,
                'actor_id': actor.user_id,
            },
        )
        return self.store.get(int(row.id))
