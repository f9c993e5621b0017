from __future__ import annotations

import logging

from pydantic import ValidationError as PydanticValidationError

from admissions.core.errors import ValidationError
from admissions.core.time_provider import TimeProvider, current_academic_year, default_time_provider
from admissions.schemas import ApplicationDraft, ApplicationDocument
from admissions.services.application_store import ApplicationStore, to_draft
from admissions.services.application_validator import FIRST_STEP, LAST_STEP, validate_draft, validate_step


logger = logging.getLogger(__name__)

_SECTIONS = (
    'student_info',
    'father_info',
    'mother_info',
    'guardian_info',
    'address',
    'previous_school',
)


class ApplicationWizard:
    """Drives one operator through the five-step application form.

    A wizard built with ``ApplicationWizard(store, institution_id=...)``
    creates a new application on submit; one built with
    ``ApplicationWizard.for_existing`` edits a persisted application that
    has not been approved yet.
    """

    def __init__(
        self,
        store: ApplicationStore,
        *,
        institution_id: int,
        actor_id: int | None = None,
        draft: ApplicationDraft | None = None,
        time_provider: TimeProvider = default_time_provider,
    ) -> None:
        self.store = store
        self.institution_id = int(institution_id)
        self.actor_id = actor_id
        self.draft = draft or ApplicationDraft()
        if not self.draft.academic_year.strip():
            self.draft.academic_year = current_academic_year(time_provider)
        self.current_step = FIRST_STEP
        self.application_id: int | None = None
        self.application_number: str | None = None

    @classmethod
    def for_existing(
        cls,
        store: ApplicationStore,
        application_id: int,
        *,
        institution_id: int,
        actor_id: int | None = None,
    ) -> ApplicationWizard:
        row = store.get(application_id, institution_id=institution_id)
        wizard = cls(store, institution_id=institution_id, actor_id=actor_id, draft=to_draft(row))
        wizard.application_id = int(row.id)
        wizard.application_number = row.application_number
        return wizard

    @property
    def is_edit_mode(self) -> bool:
        return self.application_id is not None

    def update(self, section: str | None, field: str, value) -> None:
        if section is None:
            if field not in ApplicationDraft.model_fields or field in _SECTIONS:
                raise ValidationError(f'Unknown application field: {field}', field=field)
            target = self.draft
        else:
            if section not in _SECTIONS:
                raise ValidationError(f'Unknown application section: {section}', field=section)
            target = getattr(self.draft, section)
            if field not in type(target).model_fields:
                raise ValidationError(f'Unknown field {section}.{field}', field=f'{section}.{field}')
        # Re-validate through the model so coercion (dates, blanks) matches the wire path.
        data = target.model_dump()
        data[field] = value
        try:
            updated = type(target).model_validate(data)
        except PydanticValidationError as exc:
            name = field if section is None else f'{section}.{field}'
            raise ValidationError(f'Invalid value for {name}', field=name) from exc
        if section is None:
            self.draft = updated
        else:
            setattr(self.draft, section, updated)

    def add_document(self, doc_type: str, url: str) -> None:
        self.draft.documents.append(ApplicationDocument(type=doc_type, url=url))

    def validate_current_step(self) -> None:
        validate_step(self.current_step, self.draft)

    def next_step(self) -> int:
        self.validate_current_step()
        self.current_step = min(self.current_step + 1, LAST_STEP)
        return self.current_step

    def prev_step(self) -> int:
        self.current_step = max(self.current_step - 1, FIRST_STEP)
        return self.current_step

    def submit(self) -> str:
        validate_draft(self.draft)
        edit_mode = self.is_edit_mode
        if edit_mode:
            self.store.update_draft(self.application_id, self.draft, institution_id=self.institution_id)
        else:
            row = self.store.submit(self.draft, institution_id=self.institution_id, actor_id=self.actor_id)
            self.application_id = int(row.id)
            self.application_number = row.application_number
        logger.info(
            'application_wizard_submitted',
            extra={'application_id': self.application_id, 'edit_mode': edit_mode},
        )
        return self.application_number
