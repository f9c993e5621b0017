from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from admissions.db import Base


class Role(str, Enum):
    SUPER_ADMIN = 'super_admin'
    ADMIN = 'admin'
    INSTITUTION_ADMIN = 'institution_admin'
    STAFF = 'staff'
    TEACHER = 'teacher'
    STUDENT = 'student'
    PARENT = 'parent'


class ApplicationStatus(str, Enum):
    SUBMITTED = 'submitted'
    UNDER_REVIEW = 'under_review'
    DOCUMENT_PENDING = 'document_pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    ENROLLED = 'enrolled'
    WITHDRAWN = 'withdrawn'


class PrimaryContact(str, Enum):
    FATHER = 'father'
    MOTHER = 'mother'
    GUARDIAN = 'guardian'


class CounterKind(str, Enum):
    APPLICATION_NUMBER = 'applicationNumber'
    ADMISSION_NUMBER = 'admissionNumber'
    ROLL_NUMBER = 'rollNumber'
    TEACHER_EMPLOYEE_ID = 'teacherEmployeeId'
    STAFF_EMPLOYEE_ID = 'staffEmployeeId'


class Institution(Base):
    __tablename__ = 'institutions'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(180))
    slug: Mapped[str] = mapped_column(String(120), unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class SchoolClass(Base):
    __tablename__ = 'school_classes'
    __table_args__ = (
        UniqueConstraint('institution_id', 'name', name='uq_school_classes_institution_name'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    institution_id: Mapped[int] = mapped_column(ForeignKey('institutions.id'), index=True)
    name: Mapped[str] = mapped_column(String(80))

    sections = relationship('Section', back_populates='school_class', order_by='Section.name')


class Section(Base):
    __tablename__ = 'sections'
    __table_args__ = (
        UniqueConstraint('class_id', 'name', name='uq_sections_class_name'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    class_id: Mapped[int] = mapped_column(ForeignKey('school_classes.id'), index=True)
    name: Mapped[str] = mapped_column(String(40))
    capacity: Mapped[int] = mapped_column(Integer, default=40)

    school_class = relationship('SchoolClass', back_populates='sections')


class IdentifierCounter(Base):
    __tablename__ = 'identifier_counters'
    __table_args__ = (
        UniqueConstraint('institution_id', 'kind', 'scope_key', name='uq_identifier_counters_scope'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    institution_id: Mapped[int] = mapped_column(Integer, index=True)
    kind: Mapped[str] = mapped_column(String(40), index=True)
    scope_key: Mapped[str] = mapped_column(String(80), default='')
    value: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class AdmissionApplication(Base):
    __tablename__ = 'admission_applications'
    __table_args__ = (
        UniqueConstraint('institution_id', 'application_number', name='uq_admission_applications_number'),
        Index('ix_admission_applications_institution_status', 'institution_id', 'status'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    institution_id: Mapped[int] = mapped_column(ForeignKey('institutions.id'), index=True)
    application_number: Mapped[str] = mapped_column(String(40), index=True)
    academic_year: Mapped[str] = mapped_column(String(20), default='')
    applying_for_class_id: Mapped[int] = mapped_column(ForeignKey('school_classes.id'), index=True)
    status: Mapped[str] = mapped_column(String(30), default=ApplicationStatus.SUBMITTED.value, index=True)
    review_remarks: Mapped[str] = mapped_column(Text, default='')
    primary_contact: Mapped[str] = mapped_column(String(20), default=PrimaryContact.FATHER.value)
    student_info: Mapped[dict] = mapped_column(JSON, default=dict)
    father_info: Mapped[dict] = mapped_column(JSON, default=dict)
    mother_info: Mapped[dict] = mapped_column(JSON, default=dict)
    guardian_info: Mapped[dict] = mapped_column(JSON, default=dict)
    address: Mapped[dict] = mapped_column(JSON, default=dict)
    previous_school: Mapped[dict] = mapped_column(JSON, default=dict)
    documents: Mapped[list] = mapped_column(JSON, default=list)
    submitted_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    status_history = relationship(
        'ApplicationStatusHistory',
        back_populates='application',
        order_by='ApplicationStatusHistory.id',
    )


class ApplicationStatusHistory(Base):
    __tablename__ = 'application_status_history'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    application_id: Mapped[int] = mapped_column(ForeignKey('admission_applications.id'), index=True)
    status: Mapped[str] = mapped_column(String(30))
    changed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    changed_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    remarks: Mapped[str] = mapped_column(Text, default='')

    application = relationship('AdmissionApplication', back_populates='status_history')


class UserAccount(Base):
    __tablename__ = 'user_accounts'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    institution_id: Mapped[int | None] = mapped_column(ForeignKey('institutions.id'), nullable=True, index=True)
    email: Mapped[str] = mapped_column(String(180), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(30), index=True)
    first_name: Mapped[str] = mapped_column(String(120), default='')
    last_name: Mapped[str] = mapped_column(String(120), default='')
    phone: Mapped[str] = mapped_column(String(20), default='')
    profile: Mapped[dict] = mapped_column(JSON, default=dict)
    class_id: Mapped[int | None] = mapped_column(ForeignKey('school_classes.id'), nullable=True)
    section_id: Mapped[int | None] = mapped_column(ForeignKey('sections.id'), nullable=True)
    roll_number: Mapped[str] = mapped_column(String(40), default='')
    admission_number: Mapped[str] = mapped_column(String(40), default='')
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class EnrollmentRecord(Base):
    __tablename__ = 'enrollment_records'
    __table_args__ = (
        UniqueConstraint('application_id', name='uq_enrollment_records_application'),
        UniqueConstraint('institution_id', 'admission_number', name='uq_enrollment_records_admission_number'),
        UniqueConstraint(
            'institution_id',
            'class_id',
            'section_id',
            'roll_number',
            name='uq_enrollment_records_roll_number',
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    institution_id: Mapped[int] = mapped_column(ForeignKey('institutions.id'), index=True)
    application_id: Mapped[int] = mapped_column(ForeignKey('admission_applications.id'), index=True)
    academic_year: Mapped[str] = mapped_column(String(20), default='')
    class_id: Mapped[int] = mapped_column(ForeignKey('school_classes.id'), index=True)
    # Section and account ids may come from the remote class and account services.
    section_id: Mapped[int] = mapped_column(Integer, index=True)
    admission_number: Mapped[str] = mapped_column(String(40))
    roll_number: Mapped[str] = mapped_column(String(40))
    admission_fee_amount: Mapped[float] = mapped_column(Float, default=0.0)
    admission_fee_paid: Mapped[bool] = mapped_column(Boolean, default=False)
    student_account_id: Mapped[int] = mapped_column(Integer, index=True)
    parent_account_id: Mapped[int] = mapped_column(Integer, index=True)
    remarks: Mapped[str] = mapped_column(Text, default='')
    enrolled_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    enrolled_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    application = relationship('AdmissionApplication')
