"""Sequential, human-readable identifiers scoped per institution.

``next`` is an atomic increment-and-return executed in its own short
transaction, so two callers can never observe the same value even when they
race on one counter. ``peek`` is a non-consuming hint of what ``next`` would
most likely hand out; it is never a reservation.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from admissions.config import settings
from admissions.core.errors import ValidationError
from admissions.core.time_provider import TimeProvider, default_time_provider
from admissions.models import CounterKind, IdentifierCounter


logger = logging.getLogger(__name__)


_FORMAT_SETTINGS = {
    CounterKind.APPLICATION_NUMBER: 'application_number_format',
    CounterKind.ADMISSION_NUMBER: 'admission_number_format',
    CounterKind.ROLL_NUMBER: 'roll_number_format',
    CounterKind.TEACHER_EMPLOYEE_ID: 'teacher_employee_id_format',
    CounterKind.STAFF_EMPLOYEE_ID: 'staff_employee_id_format',
}


@dataclass(frozen=True)
class CounterScope:
    class_id: int
    section_id: int

    @property
    def key(self) -> str:
        return f'{int(self.class_id)}:{int(self.section_id)}'


def parse_counter_kind(kind: CounterKind | str) -> CounterKind:
    try:
        return CounterKind(kind)
    except ValueError as exc:
        raise ValidationError(f'Unknown identifier type: {kind}', field='idType') from exc


def scope_key_for(kind: CounterKind, scope: CounterScope | None) -> str:
    if kind == CounterKind.ROLL_NUMBER:
        if scope is None or not scope.class_id or not scope.section_id:
            raise ValidationError('Roll numbers need both a class and a section', field='sectionId')
        return scope.key
    return ''


def format_identifier(kind: CounterKind, seq: int, *, year: int) -> str:
    template = getattr(settings, _FORMAT_SETTINGS[kind])
    return template.format(seq=int(seq), year=int(year))


class IdentifierAllocator:
    def next(self, institution_id: int, kind: CounterKind | str, scope: CounterScope | None = None) -> str:
        raise NotImplementedError

    def peek(self, institution_id: int, kind: CounterKind | str, scope: CounterScope | None = None) -> str:
        raise NotImplementedError


class SqlIdentifierAllocator(IdentifierAllocator):
    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        time_provider: TimeProvider = default_time_provider,
    ) -> None:
        self._session_factory = session_factory
        self._time_provider = time_provider

    def next(self, institution_id: int, kind: CounterKind | str, scope: CounterScope | None = None) -> str:
        counter_kind = parse_counter_kind(kind)
        scope_key = scope_key_for(counter_kind, scope)
        db = self._session_factory()
        try:
            self._ensure_counter_row(db, int(institution_id), counter_kind, scope_key)
            db.execute(
                update(IdentifierCounter)
                .where(
                    IdentifierCounter.institution_id == int(institution_id),
                    IdentifierCounter.kind == counter_kind.value,
                    IdentifierCounter.scope_key == scope_key,
                )
                .values(
                    value=IdentifierCounter.value + 1,
                    updated_at=self._time_provider.now().replace(tzinfo=None),
                )
            )
            value = db.execute(
                select(IdentifierCounter.value).where(
                    IdentifierCounter.institution_id == int(institution_id),
                    IdentifierCounter.kind == counter_kind.value,
                    IdentifierCounter.scope_key == scope_key,
                )
            ).scalar_one()
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        identifier = format_identifier(counter_kind, value, year=self._time_provider.today().year)
        logger.info(
            'identifier_allocated',
            extra={
                'institution_id': int(institution_id),
                'kind': counter_kind.value,
                'scope_key': scope_key,
                'identifier': identifier,
            },
        )
        return identifier

    def peek(self, institution_id: int, kind: CounterKind | str, scope: CounterScope | None = None) -> str:
        counter_kind = parse_counter_kind(kind)
        scope_key = scope_key_for(counter_kind, scope)
        db = self._session_factory()
        try:
            current = db.execute(
                select(IdentifierCounter.value).where(
                    IdentifierCounter.institution_id == int(institution_id),
                    IdentifierCounter.kind == counter_kind.value,
                    IdentifierCounter.scope_key == scope_key,
                )
            ).scalar_one_or_none()
        finally:
            db.close()
        return format_identifier(counter_kind, int(current or 0) + 1, year=self._time_provider.today().year)

    def _ensure_counter_row(self, db: Session, institution_id: int, kind: CounterKind, scope_key: str) -> None:
        values = {'institution_id': institution_id, 'kind': kind.value, 'scope_key': scope_key, 'value': 0}
        dialect = db.get_bind().dialect.name
        if dialect in ('sqlite', 'postgresql'):
            if dialect == 'sqlite':
                from sqlalchemy.dialects.sqlite import insert
            else:
                from sqlalchemy.dialects.postgresql import insert
            db.execute(
                insert(IdentifierCounter)
                .values(**values)
                .on_conflict_do_nothing(index_elements=['institution_id', 'kind', 'scope_key'])
            )
            return

        exists = db.execute(
            select(IdentifierCounter.id).where(
                IdentifierCounter.institution_id == institution_id,
                IdentifierCounter.kind == kind.value,
                IdentifierCounter.scope_key == scope_key,
            )
        ).first()
        if exists:
            return
        try:
            db.add(IdentifierCounter(**values))
            db.commit()
        except IntegrityError:
            db.rollback()
