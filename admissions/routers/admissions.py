from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from admissions.clients import HttpAccountService, HttpClassService, HttpIdentifierAllocator
from admissions.config import settings
from admissions.core.errors import (
    AdmissionsError,
    AllocationConflict,
    ApplicationNotFound,
    DependencyFailure,
    InvalidTransition,
    TransitionNotPermitted,
    ValidationError,
)
from admissions.db import SessionLocal, get_db
from admissions.route_logging import EndpointNameRoute
from admissions.schemas import (
    Actor,
    ApplicationDraft,
    DocumentAttachRequest,
    EnrollmentRequest,
    NextIdentifierResponse,
    StatusUpdateRequest,
)
from admissions.services.account_service import AccountService, SqlAccountService
from admissions.services.application_lifecycle import ApplicationLifecycle, allowed_transitions, is_staff
from admissions.services.application_store import SqlApplicationStore, serialize_application
from admissions.services.application_validator import validate_draft
from admissions.services.class_service import ClassService, SqlClassService
from admissions.services.enrollment_service import (
    EnrollmentOrchestrator,
    get_enrollment,
    list_enrollments,
    serialize_enrollment,
)
from admissions.services.identifier_service import (
    CounterScope,
    IdentifierAllocator,
    SqlIdentifierAllocator,
    parse_counter_kind,
)


router = APIRouter(prefix='/api/v1/admissions', tags=['Admissions'], route_class=EndpointNameRoute)
id_router = APIRouter(prefix='/api/v1/users/id-generator', tags=['Identifiers'], route_class=EndpointNameRoute)
logger = logging.getLogger(__name__)

_STATUS_CODES = (
    (ApplicationNotFound, 404),
    (TransitionNotPermitted, 403),
    (InvalidTransition, 409),
    (AllocationConflict, 409),
    (DependencyFailure, 502),
    (ValidationError, 422),
)


def _error_response(exc: AdmissionsError) -> JSONResponse:
    status_code = next((code for kind, code in _STATUS_CODES if isinstance(exc, kind)), 400)
    return JSONResponse(status_code=status_code, content=exc.as_dict())


def get_actor(
    x_institution_id: int = Header(...),
    x_actor_id: int | None = Header(default=None),
    x_actor_role: str = Header(default=''),
) -> Actor:
    return Actor(institution_id=x_institution_id, user_id=x_actor_id, role=x_actor_role.strip().lower())


def get_allocator() -> IdentifierAllocator:
    if settings.identifier_service_url.strip():
        return HttpIdentifierAllocator(settings.identifier_service_url, bearer_token=settings.service_bearer_token)
    return SqlIdentifierAllocator(SessionLocal)


def get_account_service(db: Session = Depends(get_db)) -> AccountService:
    if settings.account_service_url.strip():
        return HttpAccountService(settings.account_service_url, bearer_token=settings.service_bearer_token)
    return SqlAccountService(db)


def get_class_service(db: Session = Depends(get_db)) -> ClassService:
    if settings.class_service_url.strip():
        return HttpClassService(settings.class_service_url, bearer_token=settings.service_bearer_token)
    return SqlClassService(db)


def _require_staff(actor: Actor) -> None:
    if not is_staff(actor):
        raise TransitionNotPermitted('Staff access required', field='role')


@router.post('/apply', status_code=201)
def apply(
    payload: ApplicationDraft,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    allocator: IdentifierAllocator = Depends(get_allocator),
):
    store = SqlApplicationStore(db, allocator)
    try:
        validate_draft(payload)
        row = store.submit(payload, institution_id=actor.institution_id, actor_id=actor.user_id)
    except AdmissionsError as exc:
        return _error_response(exc)
    return serialize_application(row)


@router.get('/applications')
def list_applications_api(
    status: str | None = Query(default=None),
    class_id: int | None = Query(default=None, alias='classId'),
    academic_year: str | None = Query(default=None, alias='academicYear'),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    allocator: IdentifierAllocator = Depends(get_allocator),
):
    try:
        _require_staff(actor)
        rows, total = SqlApplicationStore(db, allocator).list_applications(
            actor.institution_id,
            status=status,
            class_id=class_id,
            academic_year=academic_year,
            search=search,
            page=page,
            limit=limit,
        )
    except AdmissionsError as exc:
        return _error_response(exc)
    return {
        'items': [serialize_application(row, include_history=False) for row in rows],
        'total': total,
        'page': page,
        'limit': limit,
    }


@router.get('/stats')
def application_stats(
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    allocator: IdentifierAllocator = Depends(get_allocator),
):
    try:
        _require_staff(actor)
        return SqlApplicationStore(db, allocator).status_counts(actor.institution_id)
    except AdmissionsError as exc:
        return _error_response(exc)


@router.get('/applications/{application_id}')
def get_application(
    application_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    allocator: IdentifierAllocator = Depends(get_allocator),
):
    try:
        _require_staff(actor)
        row = SqlApplicationStore(db, allocator).get(application_id, institution_id=actor.institution_id)
    except AdmissionsError as exc:
        return _error_response(exc)
    payload = serialize_application(row)
    payload['allowedTransitions'] = allowed_transitions(row.status)
    return payload


@router.put('/applications/{application_id}')
def update_application(
    application_id: int,
    payload: ApplicationDraft,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    allocator: IdentifierAllocator = Depends(get_allocator),
):
    try:
        _require_staff(actor)
        validate_draft(payload)
        row = SqlApplicationStore(db, allocator).update_draft(
            application_id,
            payload,
            institution_id=actor.institution_id,
        )
    except AdmissionsError as exc:
        return _error_response(exc)
    return serialize_application(row)


@router.put('/applications/{application_id}/status')
@router.patch('/applications/{application_id}/status')
def update_application_status(
    application_id: int,
    payload: StatusUpdateRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    allocator: IdentifierAllocator = Depends(get_allocator),
):
    lifecycle = ApplicationLifecycle(SqlApplicationStore(db, allocator))
    try:
        row = lifecycle.transition(application_id, payload.status, actor=actor, remarks=payload.remarks)
    except AdmissionsError as exc:
        return _error_response(exc)
    return serialize_application(row)


@router.post('/applications/{application_id}/documents', status_code=201)
def attach_document(
    application_id: int,
    payload: DocumentAttachRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    allocator: IdentifierAllocator = Depends(get_allocator),
):
    try:
        row = SqlApplicationStore(db, allocator).attach_document(
            application_id,
            doc_type=payload.type,
            url=payload.url,
            institution_id=actor.institution_id,
        )
    except AdmissionsError as exc:
        return _error_response(exc)
    return serialize_application(row, include_history=False)


@router.patch('/applications/{application_id}/documents/{index}')
def verify_document(
    application_id: int,
    index: int,
    verified: bool = Query(default=True),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    allocator: IdentifierAllocator = Depends(get_allocator),
):
    try:
        _require_staff(actor)
        row = SqlApplicationStore(db, allocator).set_document_verified(
            application_id,
            index,
            verified,
            institution_id=actor.institution_id,
        )
    except AdmissionsError as exc:
        return _error_response(exc)
    return serialize_application(row, include_history=False)


def _orchestrator(
    db: Session,
    actor: Actor,
    allocator: IdentifierAllocator,
    accounts: AccountService,
    classes: ClassService,
) -> EnrollmentOrchestrator:
    return EnrollmentOrchestrator(
        db,
        actor=actor,
        store=SqlApplicationStore(db, allocator),
        allocator=allocator,
        accounts=accounts,
        classes=classes,
    )


@router.get('/applications/{application_id}/enrollment')
def enrollment_defaults(
    application_id: int,
    section_id: int | None = Query(default=None, alias='sectionId'),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    allocator: IdentifierAllocator = Depends(get_allocator),
    accounts: AccountService = Depends(get_account_service),
    classes: ClassService = Depends(get_class_service),
):
    try:
        session = _orchestrator(db, actor, allocator, accounts, classes).start(application_id)
        if section_id:
            session.select_section(section_id)
    except AdmissionsError as exc:
        return _error_response(exc)
    return {
        'applicationId': session.application_id,
        'classId': session.class_id,
        'sections': [{'id': item.id, 'name': item.name, 'capacity': item.capacity} for item in session.sections],
        'sectionId': session.request.section_id,
        'studentEmail': session.request.student_email,
        'parentEmail': session.request.parent_email,
        'admissionNumber': session.request.admission_number,
        'rollNumber': session.request.roll_number,
        'suggestedAdmissionNumber': session.request.suggested_admission_number,
        'suggestedRollNumber': session.request.suggested_roll_number,
    }


@router.post('/applications/{application_id}/enroll', status_code=201)
def enroll_application(
    application_id: int,
    payload: EnrollmentRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    allocator: IdentifierAllocator = Depends(get_allocator),
    accounts: AccountService = Depends(get_account_service),
    classes: ClassService = Depends(get_class_service),
):
    try:
        result = _orchestrator(db, actor, allocator, accounts, classes).commit(application_id, payload)
        record = get_enrollment(db, result.enrollment_id, institution_id=actor.institution_id)
    except AdmissionsError as exc:
        return _error_response(exc)
    return serialize_enrollment(record)


@router.get('/enrollments')
def list_enrollments_api(
    class_id: int | None = Query(default=None, alias='classId'),
    academic_year: str | None = Query(default=None, alias='academicYear'),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    try:
        _require_staff(actor)
    except AdmissionsError as exc:
        return _error_response(exc)
    rows, total = list_enrollments(
        db,
        actor.institution_id,
        class_id=class_id,
        academic_year=academic_year,
        search=search,
        page=page,
        limit=limit,
    )
    return {'items': [serialize_enrollment(row) for row in rows], 'total': total, 'page': page, 'limit': limit}


@router.get('/enrollments/{enrollment_id}')
def get_enrollment_api(
    enrollment_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    try:
        _require_staff(actor)
        record = get_enrollment(db, enrollment_id, institution_id=actor.institution_id)
    except AdmissionsError as exc:
        return _error_response(exc)
    return serialize_enrollment(record)


def _identifier_args(
    id_type: str,
    class_id: int | None,
    section_id: int | None,
):
    kind = parse_counter_kind(id_type)
    scope = CounterScope(class_id=class_id, section_id=section_id) if class_id or section_id else None
    return kind, scope


def _target_institution(actor: Actor, institution_id: int | None) -> int:
    if institution_id and int(institution_id) != int(actor.institution_id) and actor.role != 'super_admin':
        raise TransitionNotPermitted('Cannot issue identifiers for another institution', field='institutionId')
    return int(institution_id or actor.institution_id)


@id_router.get('/next')
def peek_identifier(
    id_type: str = Query(alias='idType'),
    institution_id: int | None = Query(default=None, alias='institutionId'),
    class_id: int | None = Query(default=None, alias='classId'),
    section_id: int | None = Query(default=None, alias='sectionId'),
    actor: Actor = Depends(get_actor),
    allocator: IdentifierAllocator = Depends(get_allocator),
):
    try:
        _require_staff(actor)
        kind, scope = _identifier_args(id_type, class_id, section_id)
        target = _target_institution(actor, institution_id)
        identifier = allocator.peek(target, kind, scope)
    except AdmissionsError as exc:
        return _error_response(exc)
    data = NextIdentifierResponse(id=identifier, id_type=kind.value)
    return {'success': True, 'data': data.model_dump(by_alias=True)}


@id_router.post('/next')
def allocate_identifier(
    id_type: str = Query(alias='idType'),
    institution_id: int | None = Query(default=None, alias='institutionId'),
    class_id: int | None = Query(default=None, alias='classId'),
    section_id: int | None = Query(default=None, alias='sectionId'),
    actor: Actor = Depends(get_actor),
    allocator: IdentifierAllocator = Depends(get_allocator),
):
    try:
        _require_staff(actor)
        kind, scope = _identifier_args(id_type, class_id, section_id)
        target = _target_institution(actor, institution_id)
        identifier = allocator.next(target, kind, scope)
    except AdmissionsError as exc:
        return _error_response(exc)
    logger.info('identifier_issued', extra={'kind': kind.value, 'institution_id': target})
    return {'success': True, 'data': NextIdentifierResponse(id=identifier, id_type=kind.value).model_dump(by_alias=True)}
