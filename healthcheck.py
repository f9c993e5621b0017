import sys

from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import text

from admissions.config import settings
from admissions.db import SessionLocal, engine
from admissions.models import AdmissionApplication, CounterKind, Institution
from admissions.routers.admissions import get_allocator
from admissions.services.identifier_service import format_identifier


GREEN = '\033[32m'
RED = '\033[31m'
RESET = '\033[0m'


def run_check(name, fn):
    try:
        message = fn() or ''
        suffix = f' - {message}' if message else ''
        print(f'{GREEN}PASS{RESET} {name}{suffix}')
        return True
    except Exception as exc:
        print(f'{RED}FAIL{RESET} {name} - {exc}')
        return False


def check_db_connectivity():
    with engine.connect() as conn:
        conn.execute(text('SELECT 1'))
    return f'dialect={engine.dialect.name}'


def check_alembic_head():
    script = ScriptDirectory.from_config(Config('alembic.ini'))
    heads = set(script.get_heads())
    if not heads:
        raise RuntimeError('No alembic heads found in repository')
    with engine.connect() as conn:
        current = MigrationContext.configure(conn).get_current_revision()
    if current is None:
        raise RuntimeError('No migration version in DB (run alembic upgrade head)')
    if current not in heads:
        raise RuntimeError(f'DB revision {current} is not at head {sorted(heads)}')
    return f'current={current}'


def check_identifier_formats():
    samples = [format_identifier(kind, 1, year=2026) for kind in CounterKind]
    return ', '.join(samples)


def check_identifier_peek():
    db = SessionLocal()
    try:
        institution = db.query(Institution).order_by(Institution.id.asc()).first()
    finally:
        db.close()
    if institution is None:
        return 'no institution yet (run scripts/init_db.py)'
    hint = get_allocator().peek(institution.id, CounterKind.APPLICATION_NUMBER)
    return f'next application number hint={hint}'


def check_applications_readable():
    db = SessionLocal()
    try:
        count = db.query(AdmissionApplication.id).count()
        return f'applications={count}'
    finally:
        db.close()


def check_remote_services_configured():
    configured = {
        'IDENTIFIER_SERVICE_URL': settings.identifier_service_url,
        'ACCOUNT_SERVICE_URL': settings.account_service_url,
        'CLASS_SERVICE_URL': settings.class_service_url,
    }
    remote = [key for key, value in configured.items() if str(value).strip()]
    return f'remote={remote}' if remote else 'all collaborators local'


def main():
    checks = [
        ('Database connectivity', check_db_connectivity),
        ('Alembic migration status at head', check_alembic_head),
        ('Identifier formats render', check_identifier_formats),
        ('Identifier counters readable', check_identifier_peek),
        ('Applications table accessible', check_applications_readable),
        ('Collaborator services configured', check_remote_services_configured),
    ]

    all_ok = True
    for name, fn in checks:
        all_ok = run_check(name, fn) and all_ok

    sys.exit(0 if all_ok else 1)


if __name__ == '__main__':
    main()
