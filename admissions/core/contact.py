from __future__ import annotations

import re


_EMAIL_SHAPE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')


def normalize_phone(phone: str) -> str:
    return ''.join(ch for ch in str(phone or '') if ch.isdigit())


def normalize_email(email: str | None) -> str:
    return str(email or '').strip().lower()


def is_email_shaped(email: str | None) -> bool:
    return bool(_EMAIL_SHAPE.match(str(email or '').strip()))


def is_blank(value) -> bool:
    return not str(value or '').strip()


def mask_email(email: str) -> str:
    clean = normalize_email(email)
    local, _, domain = clean.partition('@')
    if not domain:
        return '***'
    return f'{local[:2]}***@{domain}'
