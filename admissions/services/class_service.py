from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from admissions.models import SchoolClass, Section


@dataclass(frozen=True)
class SectionInfo:
    id: int
    class_id: int
    name: str
    capacity: int = 0


class ClassService:
    def get_sections(self, class_id: int) -> list[SectionInfo]:
        raise NotImplementedError

    def get_class_name(self, class_id: int) -> str:
        raise NotImplementedError


class SqlClassService(ClassService):
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_sections(self, class_id: int) -> list[SectionInfo]:
        rows = (
            self.db.query(Section)
            .filter(Section.class_id == int(class_id))
            .order_by(Section.name.asc())
            .all()
        )
        return [
            SectionInfo(id=int(row.id), class_id=int(row.class_id), name=row.name, capacity=int(row.capacity or 0))
            for row in rows
        ]

    def get_class_name(self, class_id: int) -> str:
        row = self.db.get(SchoolClass, int(class_id))
        return row.name if row else ''
