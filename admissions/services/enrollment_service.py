"""Turns an approved application into an enrolled student.

Identifier handling follows a suggested-not-reserved scheme. While the
operator fills in the enrollment screen, the admission number and roll
number shown are hints read from the allocator without consuming anything.
The request carries the hint the operator was shown. On commit, a value
that is blank or still equal to that hint is replaced by an atomic
allocation, even if another enrollment consumed the hint in the meantime;
any other value is an explicit operator override, accepted only if no
committed enrollment holds it yet. A request without a recorded hint is
compared against the allocator's current hint instead.
Abandoning the screen therefore consumes nothing, and a failed commit can
only leave gaps, never duplicates.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from sqlalchemy import String, cast, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from admissions.config import settings
from admissions.core.contact import is_email_shaped, normalize_email
from admissions.core.errors import (
    AdmissionsError,
    AllocationConflict,
    ApplicationNotFound,
    DependencyFailure,
    DuplicateEmail,
    TransitionNotPermitted,
    ValidationError,
)
from admissions.core.time_provider import TimeProvider, default_time_provider
from admissions.models import AdmissionApplication, ApplicationStatus, CounterKind, EnrollmentRecord, Role
from admissions.schemas import Actor, ApplicationDraft, EnrollmentRequest
from admissions.services.account_service import AccountService
from admissions.services.application_lifecycle import is_staff
from admissions.services.application_store import ApplicationStore, to_draft
from admissions.services.application_validator import resolve_primary_contact_email
from admissions.services.class_service import ClassService, SectionInfo
from admissions.services.identifier_service import CounterScope, IdentifierAllocator
from admissions.services.observability_counters import (
    ALLOCATION_CONFLICT,
    ENROLLMENT_FAILED,
    record_observability_event,
)


logger = logging.getLogger(__name__)


@dataclass
class EnrollmentResult:
    enrollment_id: int
    application_id: int
    admission_number: str
    roll_number: str
    class_id: int
    section_id: int
    admission_fee_amount: float
    admission_fee_paid: bool
    student_account_id: int
    parent_account_id: int

    def as_dict(self) -> dict:
        return asdict(self)


def default_student_email(draft: ApplicationDraft) -> str:
    return draft.student_info.email.strip()


def _parent_profile(draft: ApplicationDraft) -> dict:
    if draft.primary_contact == 'guardian':
        party = draft.guardian_info
        return {'first_name': party.name, 'phone': party.phone, 'relation': party.relation}
    party = draft.mother_info if draft.primary_contact == 'mother' else draft.father_info
    return {'first_name': party.name, 'phone': party.phone, 'relation': draft.primary_contact}


def _student_profile(draft: ApplicationDraft) -> dict:
    student = draft.student_info
    return {
        'first_name': student.first_name,
        'last_name': student.last_name,
        'date_of_birth': student.date_of_birth.isoformat() if student.date_of_birth else '',
        'gender': student.gender,
        'blood_group': student.blood_group,
        'category': student.category,
    }


def _conflict_field(exc: IntegrityError) -> str:
    message = str(getattr(exc, 'orig', exc) or '').lower()
    if 'admission_number' in message:
        return 'admissionNumber'
    if 'roll_number' in message:
        return 'rollNumber'
    if 'email' in message:
        return 'email'
    return ''


class EnrollmentOrchestrator:
    def __init__(
        self,
        db: Session,
        *,
        actor: Actor,
        store: ApplicationStore,
        allocator: IdentifierAllocator,
        accounts: AccountService,
        classes: ClassService,
        time_provider: TimeProvider = default_time_provider,
    ) -> None:
        self.db = db
        self.actor = actor
        self.store = store
        self.allocator = allocator
        self.accounts = accounts
        self.classes = classes
        self.time_provider = time_provider

    @property
    def institution_id(self) -> int:
        return int(self.actor.institution_id)

    def _load_approved(self, application_id: int) -> AdmissionApplication:
        row = self.store.get(application_id, institution_id=self.institution_id)
        if row.status != ApplicationStatus.APPROVED.value:
            raise ValidationError('Only approved applications can be enrolled', field='status')
        return row

    def sections_for(self, class_id: int) -> list[SectionInfo]:
        try:
            return self.classes.get_sections(class_id)
        except AdmissionsError:
            raise
        except Exception as exc:
            raise DependencyFailure('classes', 'Could not load sections for the class') from exc

    def suggest_admission_number(self) -> str:
        return self.allocator.peek(self.institution_id, CounterKind.ADMISSION_NUMBER)

    def suggest_roll_number(self, class_id: int, section_id: int) -> str:
        return self.allocator.peek(
            self.institution_id,
            CounterKind.ROLL_NUMBER,
            CounterScope(class_id=int(class_id), section_id=int(section_id)),
        )

    def start(self, application_id: int) -> EnrollmentSession:
        if not is_staff(self.actor):
            raise TransitionNotPermitted(f'Role {self.actor.role or "anonymous"} may not enroll students', field='role')
        row = self._load_approved(application_id)
        return EnrollmentSession(self, row)

    def _allocate(
        self,
        kind: CounterKind,
        requested: str,
        suggested: str = '',
        scope: CounterScope | None = None,
    ) -> str:
        clean = str(requested or '').strip()
        hint = str(suggested or '').strip()
        try:
            if clean and hint and clean != hint:
                return clean
            if clean and not hint and clean != self.allocator.peek(self.institution_id, kind, scope):
                return clean
            return self.allocator.next(self.institution_id, kind, scope)
        except AdmissionsError:
            raise
        except Exception as exc:
            raise DependencyFailure('identifiers', f'Could not allocate {kind.value}') from exc

    def _check_preconditions(
        self,
        row: AdmissionApplication,
        request: EnrollmentRequest,
        student_email: str,
        parent_email: str,
    ) -> SectionInfo:
        min_length = settings.min_password_length
        if not is_email_shaped(student_email):
            raise ValidationError('Please enter a valid student email', field='studentEmail')
        if not is_email_shaped(parent_email):
            raise ValidationError('Please enter a valid parent email', field='parentEmail')
        if student_email == parent_email:
            raise ValidationError('Student and parent emails must be different', field='parentEmail')
        if len(request.student_password or '') < min_length:
            raise ValidationError(
                f'Student password must be at least {min_length} characters',
                field='studentPassword',
            )
        if len(request.parent_password or '') < min_length:
            raise ValidationError(
                f'Parent password must be at least {min_length} characters',
                field='parentPassword',
            )
        if not request.section_id:
            raise ValidationError('Please select a section', field='sectionId')
        sections = {section.id: section for section in self.sections_for(row.applying_for_class_id)}
        section = sections.get(int(request.section_id))
        if section is None:
            raise ValidationError('Selected section does not belong to the class', field='sectionId')
        return section

    def commit(self, application_id: int, request: EnrollmentRequest) -> EnrollmentResult:
        """Enroll one approved application.

        Either everything is written (accounts, enrollment record, status
        ``enrolled`` with its history entry) or nothing is, and the
        application stays approved. Never retries on its own.
        """
        if not is_staff(self.actor):
            raise TransitionNotPermitted(f'Role {self.actor.role or "anonymous"} may not enroll students', field='role')
        row = self._load_approved(application_id)
        draft = to_draft(row)
        student_email = normalize_email(request.student_email or default_student_email(draft))
        parent_email = normalize_email(request.parent_email or resolve_primary_contact_email(draft))
        section = self._check_preconditions(row, request, student_email, parent_email)

        class_id = int(row.applying_for_class_id)
        application_pk = int(row.id)
        academic_year = row.academic_year
        scope = CounterScope(class_id=class_id, section_id=section.id)
        admission_number = self._allocate(
            CounterKind.ADMISSION_NUMBER,
            request.admission_number,
            request.suggested_admission_number,
        )
        roll_number = self._allocate(CounterKind.ROLL_NUMBER, request.roll_number, request.suggested_roll_number, scope)

        try:
            # The status compare-and-set is the first write so that two
            # enrollments of one application serialize on it.
            self.store.update_status(
                application_pk,
                expected=ApplicationStatus.APPROVED.value,
                status=ApplicationStatus.ENROLLED.value,
                remarks=request.remarks or f'Enrolled with admission number {admission_number}',
                actor_id=self.actor.user_id,
                commit=False,
            )
            student_account_id = self.accounts.create(
                email=student_email,
                password=request.student_password,
                role=Role.STUDENT.value,
                profile_fields=_student_profile(draft),
                institution_id=self.institution_id,
            )
            parent_account_id = self.accounts.create(
                email=parent_email,
                password=request.parent_password,
                role=Role.PARENT.value,
                profile_fields=_parent_profile(draft),
                institution_id=self.institution_id,
            )
            self.accounts.assign_student_profile(
                student_account_id,
                class_id=class_id,
                section_id=section.id,
                roll_number=roll_number,
                admission_number=admission_number,
            )
            record = EnrollmentRecord(
                institution_id=self.institution_id,
                application_id=application_pk,
                academic_year=academic_year,
                class_id=class_id,
                section_id=section.id,
                admission_number=admission_number,
                roll_number=roll_number,
                admission_fee_amount=float(request.admission_fee_amount or 0),
                admission_fee_paid=bool(request.admission_fee_paid),
                student_account_id=student_account_id,
                parent_account_id=parent_account_id,
                remarks=request.remarks or '',
                enrolled_by=self.actor.user_id,
                enrolled_at=self.time_provider.now().replace(tzinfo=None),
            )
            self.db.add(record)
            self.db.flush()
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            field = _conflict_field(exc)
            self._record_failure(application_pk, field or 'integrity')
            if field == 'email':
                raise DuplicateEmail('An account already exists for one of these emails', field='email') from exc
            if field:
                record_observability_event(ALLOCATION_CONFLICT)
                logger.warning(
                    'allocation_conflict',
                    extra={'application_id': application_pk, 'field': field},
                )
                raise AllocationConflict(
                    f'{"Admission" if field == "admissionNumber" else "Roll"} number is already taken, '
                    'request a fresh one and retry',
                    field=field,
                ) from exc
            raise DependencyFailure('enrollment', 'Failed to enroll student') from exc
        except AdmissionsError as exc:
            self.db.rollback()
            self._record_failure(application_pk, exc.field or type(exc).__name__)
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            self._record_failure(application_pk, 'database')
            raise DependencyFailure('enrollment', 'Failed to enroll student') from exc
        except Exception as exc:
            self.db.rollback()
            self._record_failure(application_pk, 'dependency')
            raise DependencyFailure('accounts', f'Failed to enroll student: {exc}') from exc

        result = EnrollmentResult(
            enrollment_id=int(record.id),
            application_id=application_pk,
            admission_number=admission_number,
            roll_number=roll_number,
            class_id=class_id,
            section_id=section.id,
            admission_fee_amount=float(request.admission_fee_amount or 0),
            admission_fee_paid=bool(request.admission_fee_paid),
            student_account_id=student_account_id,
            parent_account_id=parent_account_id,
        )
        logger.info(
            'enrollment_committed',
            extra={
                'application_id': application_pk,
                'admission_number': admission_number,
                'roll_number': roll_number,
                'section_id': section.id,
            },
        )
        return result

    def _record_failure(self, application_id: int, reason: str) -> None:
        record_observability_event(ENROLLMENT_FAILED)
        logger.warning('enrollment_failed', extra={'application_id': application_id, 'reason': reason})


class EnrollmentSession:
    """Operator-side state of one enrollment screen.

    Holds hints only. Changing the section always fetches a fresh roll
    number hint; earlier hints are never reused.
    """

    def __init__(self, orchestrator: EnrollmentOrchestrator, row: AdmissionApplication) -> None:
        self.orchestrator = orchestrator
        self.application_id = int(row.id)
        self.class_id = int(row.applying_for_class_id)
        draft = to_draft(row)
        self.request = EnrollmentRequest(
            student_email=default_student_email(draft),
            parent_email=resolve_primary_contact_email(draft),
        )
        self.sections = orchestrator.sections_for(self.class_id)
        self.refresh_admission_number()

    def _hint(self, fetch, label: str) -> str:
        try:
            return fetch()
        except (DependencyFailure, SQLAlchemyError):
            logger.warning('identifier_hint_unavailable', extra={'kind': label, 'application_id': self.application_id})
            return ''

    def refresh_admission_number(self) -> str:
        hint = self._hint(self.orchestrator.suggest_admission_number, 'admissionNumber')
        self.request.admission_number = hint
        self.request.suggested_admission_number = hint
        return hint

    def select_section(self, section_id: int) -> str:
        if int(section_id) not in {section.id for section in self.sections}:
            raise ValidationError('Selected section does not belong to the class', field='sectionId')
        self.request.section_id = int(section_id)
        self.request.roll_number = ''
        self.request.suggested_roll_number = ''
        hint = self._hint(
            lambda: self.orchestrator.suggest_roll_number(self.class_id, int(section_id)),
            'rollNumber',
        )
        self.request.roll_number = hint
        self.request.suggested_roll_number = hint
        return hint

    def set_identifiers(self, *, admission_number: str | None = None, roll_number: str | None = None) -> None:
        """Record operator edits; the shown hints stay as they were."""
        if admission_number is not None:
            self.request.admission_number = admission_number
        if roll_number is not None:
            self.request.roll_number = roll_number

    def set_credentials(
        self,
        *,
        student_email: str | None = None,
        student_password: str | None = None,
        parent_email: str | None = None,
        parent_password: str | None = None,
    ) -> None:
        if student_email is not None:
            self.request.student_email = student_email
        if student_password is not None:
            self.request.student_password = student_password
        if parent_email is not None:
            self.request.parent_email = parent_email
        if parent_password is not None:
            self.request.parent_password = parent_password

    def set_fee(self, amount: float, paid: bool) -> None:
        if float(amount) < 0:
            raise ValidationError('Admission fee cannot be negative', field='admissionFeeAmount')
        self.request.admission_fee_amount = float(amount)
        self.request.admission_fee_paid = bool(paid)

    def commit(self) -> EnrollmentResult:
        return self.orchestrator.commit(self.application_id, self.request)


def serialize_enrollment(record: EnrollmentRecord) -> dict:
    application = record.application
    student = (application.student_info or {}) if application else {}
    return {
        'id': int(record.id),
        'applicationId': int(record.application_id),
        'applicationNumber': application.application_number if application else '',
        'studentName': f"{student.get('first_name', '')} {student.get('last_name', '')}".strip(),
        'academicYear': record.academic_year,
        'classId': int(record.class_id),
        'sectionId': int(record.section_id),
        'admissionNumber': record.admission_number,
        'rollNumber': record.roll_number,
        'admissionFeeAmount': float(record.admission_fee_amount or 0),
        'admissionFeePaid': bool(record.admission_fee_paid),
        'studentAccountId': int(record.student_account_id),
        'parentAccountId': int(record.parent_account_id),
        'enrolledAt': record.enrolled_at.isoformat() if record.enrolled_at else None,
    }


def list_enrollments(
    db: Session,
    institution_id: int,
    *,
    class_id: int | None = None,
    academic_year: str | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[EnrollmentRecord], int]:
    query = (
        db.query(EnrollmentRecord)
        .join(AdmissionApplication, AdmissionApplication.id == EnrollmentRecord.application_id)
        .filter(EnrollmentRecord.institution_id == int(institution_id))
    )
    if class_id:
        query = query.filter(EnrollmentRecord.class_id == int(class_id))
    if academic_year:
        query = query.filter(EnrollmentRecord.academic_year == academic_year)
    term = str(search or '').strip().lower()
    if term:
        pattern = f'%{term}%'
        query = query.filter(
            or_(
                func.lower(EnrollmentRecord.admission_number).like(pattern),
                func.lower(AdmissionApplication.application_number).like(pattern),
                func.lower(cast(AdmissionApplication.student_info, String)).like(pattern),
            )
        )
    total = query.count()
    clean_limit = max(1, min(int(limit or 20), 100))
    clean_page = max(1, int(page or 1))
    rows = (
        query.order_by(EnrollmentRecord.enrolled_at.desc(), EnrollmentRecord.id.desc())
        .offset((clean_page - 1) * clean_limit)
        .limit(clean_limit)
        .all()
    )
    return rows, total


def get_enrollment(db: Session, enrollment_id: int, *, institution_id: int) -> EnrollmentRecord:
    row = db.get(EnrollmentRecord, int(enrollment_id))
    if row is None or int(row.institution_id) != int(institution_id):
        raise ApplicationNotFound('Enrollment not found', field='id')
    return row
