"""Per-step and cross-field rules for an admission application draft.

The wizard has five steps: student, parent, address, previous school and
documents. Each rule yields a single actionable message; the first unmet
rule in step order is the one reported.

Step 2 encodes "there must always be a reachable, emailable guardian of
record": when both parents are marked deceased (not applicable) the
guardian must be fully filled in; when exactly one parent remains, that
parent's name and phone are required; and whoever is the primary contact
must have an email.
"""
from __future__ import annotations

from typing import Iterator

from admissions.core.contact import is_blank
from admissions.core.errors import ValidationError
from admissions.schemas import ApplicationDraft


FIRST_STEP = 1
LAST_STEP = 5

STEP_TITLES = {
    1: 'Student Info',
    2: 'Parent Info',
    3: 'Address',
    4: 'Previous School',
    5: 'Documents',
}


def _student_rules(draft: ApplicationDraft) -> Iterator[ValidationError]:
    student = draft.student_info
    if not draft.applying_for_class:
        yield ValidationError('Please select a class', field='applyingForClass')
    if is_blank(student.first_name):
        yield ValidationError('First name is required', field='studentInfo.firstName')
    if is_blank(student.last_name):
        yield ValidationError('Last name is required', field='studentInfo.lastName')
    if student.date_of_birth is None:
        yield ValidationError('Date of birth is required', field='studentInfo.dateOfBirth')
    if is_blank(student.gender):
        yield ValidationError('Gender is required', field='studentInfo.gender')


def _parent_rules(draft: ApplicationDraft) -> Iterator[ValidationError]:
    father = draft.father_info
    mother = draft.mother_info
    guardian = draft.guardian_info

    if father.is_deceased and mother.is_deceased:
        if is_blank(guardian.name):
            yield ValidationError('Guardian name is required', field='guardianInfo.name')
        if is_blank(guardian.relation):
            yield ValidationError('Guardian relation is required', field='guardianInfo.relation')
        if is_blank(guardian.phone):
            yield ValidationError('Guardian phone is required', field='guardianInfo.phone')
        if is_blank(guardian.email):
            yield ValidationError('Guardian email is required for parent account', field='guardianInfo.email')
    elif mother.is_deceased:
        if is_blank(father.name):
            yield ValidationError('Father name is required', field='fatherInfo.name')
        if is_blank(father.phone):
            yield ValidationError('Father phone is required', field='fatherInfo.phone')
    elif father.is_deceased:
        if is_blank(mother.name):
            yield ValidationError('Mother name is required', field='motherInfo.name')
        if is_blank(mother.phone):
            yield ValidationError('Mother phone is required', field='motherInfo.phone')

    yield from _primary_contact_rules(draft)


def _primary_contact_rules(draft: ApplicationDraft) -> Iterator[ValidationError]:
    contact = draft.primary_contact
    if contact == 'father':
        if draft.father_info.is_deceased:
            yield ValidationError(
                'Father is marked not applicable and cannot be the primary contact',
                field='primaryContact',
            )
        elif is_blank(draft.father_info.email):
            yield ValidationError('Father email is required (selected as primary contact)', field='fatherInfo.email')
    elif contact == 'mother':
        if draft.mother_info.is_deceased:
            yield ValidationError(
                'Mother is marked not applicable and cannot be the primary contact',
                field='primaryContact',
            )
        elif is_blank(draft.mother_info.email):
            yield ValidationError('Mother email is required (selected as primary contact)', field='motherInfo.email')
    elif is_blank(draft.guardian_info.email):
        yield ValidationError('Guardian email is required (selected as primary contact)', field='guardianInfo.email')


def _address_rules(draft: ApplicationDraft) -> Iterator[ValidationError]:
    if is_blank(draft.address.city):
        yield ValidationError('City is required', field='address.city')
    if is_blank(draft.address.state):
        yield ValidationError('State is required', field='address.state')


def _no_rules(draft: ApplicationDraft) -> Iterator[ValidationError]:
    return iter(())


_STEP_RULES = {
    1: _student_rules,
    2: _parent_rules,
    3: _address_rules,
    4: _no_rules,
    5: _no_rules,
}


def _check_step_number(step: int) -> int:
    if step not in _STEP_RULES:
        raise ValidationError(f'Unknown wizard step {step}', field='step')
    return step


def step_errors(step: int, draft: ApplicationDraft) -> list[ValidationError]:
    return list(_STEP_RULES[_check_step_number(step)](draft))


def validate_step(step: int, draft: ApplicationDraft) -> None:
    """Raise the first unmet rule for ``step``; return None when the step may be left."""
    first = next(_STEP_RULES[_check_step_number(step)](draft), None)
    if first is not None:
        raise first


def validate_draft(draft: ApplicationDraft) -> None:
    for step in range(FIRST_STEP, LAST_STEP + 1):
        validate_step(step, draft)


def collect_errors(draft: ApplicationDraft) -> list[ValidationError]:
    errors: list[ValidationError] = []
    for step in range(FIRST_STEP, LAST_STEP + 1):
        errors.extend(step_errors(step, draft))
    return errors


def first_invalid_step(draft: ApplicationDraft) -> int | None:
    for step in range(FIRST_STEP, LAST_STEP + 1):
        if step_errors(step, draft):
            return step
    return None


def resolve_primary_contact_email(draft: ApplicationDraft) -> str:
    """Parent-account email derived from the primary contact.

    Falls back father, mother, guardian when the father is the primary contact
    but left no email, the way enrollment prefills the parent email.
    """
    if draft.primary_contact == 'guardian':
        return draft.guardian_info.email.strip()
    if draft.primary_contact == 'mother':
        return draft.mother_info.email.strip()
    for email in (draft.father_info.email, draft.mother_info.email, draft.guardian_info.email):
        if not is_blank(email):
            return email.strip()
    return ''
