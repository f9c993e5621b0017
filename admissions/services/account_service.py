from __future__ import annotations

import hashlib
import hmac
import logging
import secrets

from sqlalchemy.orm import Session

from admissions.config import settings
from admissions.core.contact import is_email_shaped, mask_email, normalize_email, normalize_phone
from admissions.core.errors import DuplicateEmail, ValidationError
from admissions.models import Role, UserAccount


logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    if len(password or '') < settings.min_password_length:
        raise ValidationError(
            f'Password must be at least {settings.min_password_length} characters',
            field='password',
        )
    salt = secrets.token_hex(16)
    iterations = 120000
    derived = hashlib.pbkdf2_hmac('sha256', password.encode('utf-8'), salt.encode('utf-8'), iterations)
    return f'pbkdf2_sha256${iterations}${salt}${derived.hex()}'


def verify_password(password: str, password_hash: str) -> bool:
    try:
        algo, iter_raw, salt, digest_hex = password_hash.split('$', 3)
        if algo != 'pbkdf2_sha256':
            return False
        iterations = int(iter_raw)
        derived = hashlib.pbkdf2_hmac('sha256', (password or '').encode('utf-8'), salt.encode('utf-8'), iterations).hex()
        return hmac.compare_digest(derived, digest_hex)
    except ValueError:
        return False


class AccountService:
    def create(
        self,
        *,
        email: str,
        password: str,
        role: str,
        profile_fields: dict | None = None,
        institution_id: int | None = None,
    ) -> int:
        raise NotImplementedError

    def assign_student_profile(
        self,
        account_id: int,
        *,
        class_id: int,
        section_id: int,
        roll_number: str,
        admission_number: str,
    ) -> None:
        raise NotImplementedError


class SqlAccountService(AccountService):
    """Accounts written through the caller's session; the caller owns the commit."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def create(
        self,
        *,
        email: str,
        password: str,
        role: str,
        profile_fields: dict | None = None,
        institution_id: int | None = None,
    ) -> int:
        clean_email = normalize_email(email)
        if not is_email_shaped(clean_email):
            raise ValidationError(f'Invalid email address: {email}', field='email')
        try:
            clean_role = Role(role).value
        except ValueError as exc:
            raise ValidationError(f'Unknown role: {role}', field='role') from exc
        if self.db.query(UserAccount.id).filter(UserAccount.email == clean_email).first():
            raise DuplicateEmail(f'An account already exists for {clean_email}', field='email')

        profile = dict(profile_fields or {})
        row = UserAccount(
            institution_id=institution_id,
            email=clean_email,
            password_hash=hash_password(password),
            role=clean_role,
            first_name=str(profile.pop('first_name', '') or ''),
            last_name=str(profile.pop('last_name', '') or ''),
            phone=normalize_phone(profile.pop('phone', '')),
            profile=profile,
        )
        self.db.add(row)
        self.db.flush()
        logger.info(
            'account_created',
            extra={'account_id': int(row.id), 'role': clean_role, 'email': mask_email(clean_email)},
        )
        return int(row.id)

    def assign_student_profile(
        self,
        account_id: int,
        *,
        class_id: int,
        section_id: int,
        roll_number: str,
        admission_number: str,
    ) -> None:
        row = self.db.get(UserAccount, int(account_id))
        if row is None or row.role != Role.STUDENT.value:
            raise ValidationError('Student account not found', field='studentAccountId')
        row.class_id = int(class_id)
        row.section_id = int(section_id)
        row.roll_number = str(roll_number)
        row.admission_number = str(admission_number)
        self.db.flush()
