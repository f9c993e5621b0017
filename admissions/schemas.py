from datetime import date
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    # The admissions front end speaks camelCase; services use snake_case.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class StudentInfo(_WireModel):
    first_name: str = ''
    last_name: str = ''
    date_of_birth: date | None = None
    gender: str = ''
    blood_group: str = ''
    category: str = 'general'
    religion: str = ''
    nationality: str = 'Indian'
    mother_tongue: str = ''
    email: str = ''

    @field_validator('date_of_birth', mode='before')
    @classmethod
    def blank_date_of_birth(cls, value):
        return _blank_to_none(value)


class ParentInfo(_WireModel):
    name: str = ''
    email: str = ''
    phone: str = ''
    occupation: str = ''
    qualification: str = ''
    annual_income: str = ''
    is_deceased: bool = False


class GuardianInfo(_WireModel):
    name: str = ''
    relation: str = ''
    phone: str = ''
    email: str = ''


class Address(_WireModel):
    street: str = ''
    city: str = ''
    state: str = ''
    country: str = 'India'
    zip_code: str = ''


class PreviousSchool(_WireModel):
    name: str = ''
    board: str = ''
    class_name: str = Field(default='', alias='class')
    percentage: str = ''
    year_of_passing: str = ''
    reason_for_leaving: str = ''


class ApplicationDocument(_WireModel):
    type: str
    url: str
    verified: bool = False


class ApplicationDraft(_WireModel):
    applying_for_class: int | None = None
    academic_year: str = ''
    student_info: StudentInfo = Field(default_factory=StudentInfo)
    father_info: ParentInfo = Field(default_factory=ParentInfo)
    mother_info: ParentInfo = Field(default_factory=ParentInfo)
    guardian_info: GuardianInfo = Field(default_factory=GuardianInfo)
    primary_contact: Literal['father', 'mother', 'guardian'] = 'father'
    address: Address = Field(default_factory=Address)
    previous_school: PreviousSchool = Field(default_factory=PreviousSchool)
    documents: list[ApplicationDocument] = Field(default_factory=list)

    @field_validator('applying_for_class', mode='before')
    @classmethod
    def blank_class(cls, value):
        return _blank_to_none(value)


class StatusUpdateRequest(_WireModel):
    status: str
    remarks: str = ''


class DocumentAttachRequest(_WireModel):
    type: str
    url: str


class EnrollmentRequest(_WireModel):
    section_id: int | None = None
    roll_number: str = ''
    admission_number: str = ''
    # Hints the operator was shown; an unchanged value is allocated fresh.
    suggested_roll_number: str = ''
    suggested_admission_number: str = ''
    admission_fee_amount: float = Field(default=0.0, ge=0)
    admission_fee_paid: bool = False
    remarks: str = ''
    student_email: str = ''
    student_password: str = ''
    parent_email: str = ''
    parent_password: str = ''

    @field_validator('section_id', mode='before')
    @classmethod
    def blank_section(cls, value):
        return _blank_to_none(value)


class Actor(BaseModel):
    institution_id: int
    user_id: int | None = None
    role: str = ''


class NextIdentifierResponse(_WireModel):
    id: str
    id_type: Literal['applicationNumber', 'admissionNumber', 'rollNumber', 'teacherEmployeeId', 'staffEmployeeId']
