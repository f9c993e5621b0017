from pathlib import Path
import sys


# Ensure imports work when running this file directly: `python scripts/init_db.py`.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from admissions.db import Base, SessionLocal, engine
from admissions.models import Institution, SchoolClass, Section, UserAccount
from admissions.services.account_service import hash_password


Base.metadata.create_all(bind=engine)

db = SessionLocal()
try:
    if not db.query(Institution).first():
        institution = Institution(name='Demo Public School', slug='demo-public-school')
        db.add(institution)
        db.commit()
        db.refresh(institution)

        for class_name in ('Nursery', 'Class 1', 'Class 2', 'Class 3'):
            school_class = SchoolClass(institution_id=institution.id, name=class_name)
            db.add(school_class)
            db.flush()
            db.add_all(
                [
                    Section(class_id=school_class.id, name='A', capacity=40),
                    Section(class_id=school_class.id, name='B', capacity=40),
                ]
            )

        db.add(
            UserAccount(
                institution_id=institution.id,
                email='admin@demo-school.test',
                password_hash=hash_password('admin123'),
                role='institution_admin',
                first_name='Demo',
                last_name='Admin',
                profile={},
            )
        )
        db.commit()
finally:
    db.close()

print('DB initialized with a demo institution, classes and sections.')
