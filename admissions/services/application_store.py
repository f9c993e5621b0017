from __future__ import annotations

import logging

from sqlalchemy import String, cast, func, or_, update
from sqlalchemy.orm import Session

from admissions.core.errors import ApplicationNotFound, InvalidTransition, ValidationError
from admissions.core.time_provider import TimeProvider, current_academic_year, default_time_provider
from admissions.models import (
    AdmissionApplication,
    ApplicationStatus,
    ApplicationStatusHistory,
    CounterKind,
    SchoolClass,
)
from admissions.schemas import ApplicationDocument, ApplicationDraft
from admissions.services.identifier_service import IdentifierAllocator


logger = logging.getLogger(__name__)

EDITABLE_STATUSES = (
    ApplicationStatus.SUBMITTED.value,
    ApplicationStatus.UNDER_REVIEW.value,
    ApplicationStatus.DOCUMENT_PENDING.value,
)


def to_draft(row: AdmissionApplication) -> ApplicationDraft:
    return ApplicationDraft(
        applying_for_class=row.applying_for_class_id,
        academic_year=row.academic_year or '',
        student_info=row.student_info or {},
        father_info=row.father_info or {},
        mother_info=row.mother_info or {},
        guardian_info=row.guardian_info or {},
        primary_contact=row.primary_contact or 'father',
        address=row.address or {},
        previous_school=row.previous_school or {},
        documents=row.documents or [],
    )


def serialize_history(entry: ApplicationStatusHistory) -> dict:
    return {
        'status': entry.status,
        'changedAt': entry.changed_at.isoformat() if entry.changed_at else None,
        'changedBy': entry.changed_by,
        'remarks': entry.remarks or '',
    }


def serialize_application(row: AdmissionApplication, *, include_history: bool = True) -> dict:
    payload = to_draft(row).model_dump(mode='json', by_alias=True)
    payload.update(
        {
            'id': int(row.id),
            'applicationNumber': row.application_number,
            'institutionId': int(row.institution_id),
            'status': row.status,
            'reviewRemarks': row.review_remarks or '',
            'createdAt': row.created_at.isoformat() if row.created_at else None,
        }
    )
    if include_history:
        payload['statusHistory'] = [serialize_history(entry) for entry in row.status_history]
    return payload


def _draft_columns(draft: ApplicationDraft) -> dict:
    data = draft.model_dump(mode='json')
    return {
        'applying_for_class_id': draft.applying_for_class,
        'student_info': data['student_info'],
        'father_info': data['father_info'],
        'mother_info': data['mother_info'],
        'guardian_info': data['guardian_info'],
        'primary_contact': draft.primary_contact,
        'address': data['address'],
        'previous_school': data['previous_school'],
        'documents': data['documents'],
    }


class ApplicationStore:
    def submit(self, draft: ApplicationDraft, *, institution_id: int, actor_id: int | None = None):
        raise NotImplementedError

    def get(self, application_id: int, *, institution_id: int | None = None):
        raise NotImplementedError

    def update_draft(self, application_id: int, draft: ApplicationDraft, *, institution_id: int | None = None):
        raise NotImplementedError

    def update_status(
        self,
        application_id: int,
        *,
        expected: str,
        status: str,
        remarks: str = '',
        actor_id: int | None = None,
        commit: bool = True,
    ) -> None:
        raise NotImplementedError


class SqlApplicationStore(ApplicationStore):
    def __init__(
        self,
        db: Session,
        allocator: IdentifierAllocator,
        *,
        time_provider: TimeProvider = default_time_provider,
    ) -> None:
        self.db = db
        self.allocator = allocator
        self.time_provider = time_provider

    def _now(self):
        return self.time_provider.now().replace(tzinfo=None)

    def _check_class(self, class_id: int | None, institution_id: int) -> None:
        if not class_id:
            raise ValidationError('Please select a class', field='applyingForClass')
        school_class = self.db.get(SchoolClass, int(class_id))
        if school_class is None or int(school_class.institution_id) != int(institution_id):
            raise ValidationError('Selected class does not belong to this institution', field='applyingForClass')

    def submit(
        self,
        draft: ApplicationDraft,
        *,
        institution_id: int,
        actor_id: int | None = None,
    ) -> AdmissionApplication:
        self._check_class(draft.applying_for_class, institution_id)
        application_number = self.allocator.next(institution_id, CounterKind.APPLICATION_NUMBER)
        now = self._now()
        row = AdmissionApplication(
            institution_id=int(institution_id),
            application_number=application_number,
            academic_year=draft.academic_year.strip() or current_academic_year(self.time_provider),
            status=ApplicationStatus.SUBMITTED.value,
            submitted_by=actor_id,
            created_at=now,
            updated_at=now,
            **_draft_columns(draft),
        )
        self.db.add(row)
        self.db.flush()
        self.db.add(
            ApplicationStatusHistory(
                application_id=row.id,
                status=ApplicationStatus.SUBMITTED.value,
                changed_at=now,
                changed_by=actor_id,
                remarks='Application submitted',
            )
        )
        self.db.commit()
        self.db.refresh(row)
        logger.info(
            'application_submitted',
            extra={
                'application_id': int(row.id),
                'application_number': application_number,
                'institution_id': int(institution_id),
            },
        )
        return row

    def get(self, application_id: int, *, institution_id: int | None = None) -> AdmissionApplication:
        row = self.db.get(AdmissionApplication, int(application_id))
        if row is None or (institution_id is not None and int(row.institution_id) != int(institution_id)):
            raise ApplicationNotFound('Application not found', field='id')
        return row

    def get_by_number(self, institution_id: int, application_number: str) -> AdmissionApplication:
        row = (
            self.db.query(AdmissionApplication)
            .filter(
                AdmissionApplication.institution_id == int(institution_id),
                AdmissionApplication.application_number == str(application_number or '').strip(),
            )
            .first()
        )
        if row is None:
            raise ApplicationNotFound('Application not found', field='applicationNumber')
        return row

    def update_draft(
        self,
        application_id: int,
        draft: ApplicationDraft,
        *,
        institution_id: int | None = None,
    ) -> AdmissionApplication:
        row = self.get(application_id, institution_id=institution_id)
        if row.status not in EDITABLE_STATUSES:
            raise InvalidTransition(
                row.status,
                row.status,
                message=f'Application can no longer be edited once {row.status}',
            )
        self._check_class(draft.applying_for_class, int(row.institution_id))
        values = _draft_columns(draft)
        if draft.academic_year.strip():
            values['academic_year'] = draft.academic_year.strip()
        values['updated_at'] = self._now()
        # Guarded so a transition committed after the check above still wins.
        result = self.db.execute(
            update(AdmissionApplication)
            .where(
                AdmissionApplication.id == int(row.id),
                AdmissionApplication.status.in_(EDITABLE_STATUSES),
            )
            .values(**values)
        )
        if result.rowcount != 1:
            self.db.rollback()
            current = self.get(application_id, institution_id=institution_id)
            raise InvalidTransition(
                current.status,
                current.status,
                message=f'Application can no longer be edited once {current.status}',
            )
        self.db.commit()
        self.db.refresh(row)
        logger.info('application_updated', extra={'application_id': int(row.id)})
        return row

    def update_status(
        self,
        application_id: int,
        *,
        expected: str,
        status: str,
        remarks: str = '',
        actor_id: int | None = None,
        commit: bool = True,
    ) -> None:
        """Compare-and-set the status and append one history entry.

        Raises InvalidTransition when the row is no longer in ``expected``;
        nothing is written in that case.
        """
        now = self._now()
        values = {'status': status, 'updated_at': now}
        clean_remarks = str(remarks or '').strip()
        if clean_remarks:
            values['review_remarks'] = clean_remarks
        result = self.db.execute(
            update(AdmissionApplication)
            .where(
                AdmissionApplication.id == int(application_id),
                AdmissionApplication.status == expected,
            )
            .values(**values)
        )
        if result.rowcount != 1:
            self.db.rollback()
            current = self.db.get(AdmissionApplication, int(application_id))
            if current is None:
                raise ApplicationNotFound('Application not found', field='id')
            raise InvalidTransition(current.status, status)
        self.db.add(
            ApplicationStatusHistory(
                application_id=int(application_id),
                status=status,
                changed_at=now,
                changed_by=actor_id,
                remarks=clean_remarks,
            )
        )
        if commit:
            self.db.commit()
        else:
            self.db.flush()

    def list_applications(
        self,
        institution_id: int,
        *,
        status: str | None = None,
        class_id: int | None = None,
        academic_year: str | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[AdmissionApplication], int]:
        query = self.db.query(AdmissionApplication).filter(AdmissionApplication.institution_id == int(institution_id))
        if status and status != 'all':
            query = query.filter(AdmissionApplication.status == status)
        if class_id:
            query = query.filter(AdmissionApplication.applying_for_class_id == int(class_id))
        if academic_year and academic_year.strip():
            query = query.filter(AdmissionApplication.academic_year == academic_year.strip())
        term = str(search or '').strip().lower()
        if term:
            pattern = f'%{term}%'
            query = query.filter(
                or_(
                    func.lower(AdmissionApplication.application_number).like(pattern),
                    func.lower(cast(AdmissionApplication.student_info, String)).like(pattern),
                )
            )
        total = query.count()
        clean_limit = max(1, min(int(limit or 20), 100))
        clean_page = max(1, int(page or 1))
        rows = (
            query.order_by(AdmissionApplication.created_at.desc(), AdmissionApplication.id.desc())
            .offset((clean_page - 1) * clean_limit)
            .limit(clean_limit)
            .all()
        )
        return rows, total

    def status_counts(self, institution_id: int) -> dict:
        rows = (
            self.db.query(AdmissionApplication.status, func.count(AdmissionApplication.id))
            .filter(AdmissionApplication.institution_id == int(institution_id))
            .group_by(AdmissionApplication.status)
            .all()
        )
        by_status = {item.value: 0 for item in ApplicationStatus}
        for status, count in rows:
            by_status[status] = int(count)
        return {'total': sum(by_status.values()), 'byStatus': by_status}

    def attach_document(
        self,
        application_id: int,
        *,
        doc_type: str,
        url: str,
        institution_id: int | None = None,
    ) -> AdmissionApplication:
        row = self.get(application_id, institution_id=institution_id)
        if row.status not in EDITABLE_STATUSES:
            raise InvalidTransition(
                row.status,
                row.status,
                message=f'Documents cannot be attached once {row.status}',
            )
        document = ApplicationDocument(type=doc_type, url=url)
        row.documents = [*(row.documents or []), document.model_dump(mode='json')]
        row.updated_at = self._now()
        self.db.commit()
        self.db.refresh(row)
        return row

    def set_document_verified(
        self,
        application_id: int,
        index: int,
        verified: bool,
        *,
        institution_id: int | None = None,
    ) -> AdmissionApplication:
        row = self.get(application_id, institution_id=institution_id)
        documents = [dict(item) for item in (row.documents or [])]
        if index < 0 or index >= len(documents):
            raise ValidationError('Document not found', field='documents')
        documents[index]['verified'] = bool(verified)
        row.documents = documents
        row.updated_at = self._now()
        self.db.commit()
        self.db.refresh(row)
        return row
