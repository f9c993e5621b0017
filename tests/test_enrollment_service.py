import tempfile
import threading
import unittest
from datetime import datetime
from pathlib import Path
from unittest import mock
from zoneinfo import ZoneInfo

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from admissions.core.errors import (
    AllocationConflict,
    DependencyFailure,
    DuplicateEmail,
    InvalidTransition,
    TransitionNotPermitted,
    ValidationError,
)
from admissions.core.time_provider import TimeProvider
from admissions.db import Base
from admissions.models import (
    AdmissionApplication,
    ApplicationStatusHistory,
    CounterKind,
    EnrollmentRecord,
    IdentifierCounter,
    Institution,
    SchoolClass,
    Section,
    UserAccount,
)
from admissions.schemas import Actor, ApplicationDraft, EnrollmentRequest
from admissions.services.account_service import SqlAccountService, verify_password
from admissions.services.application_lifecycle import ApplicationLifecycle
from admissions.services.application_store import SqlApplicationStore
from admissions.services.class_service import SqlClassService
from admissions.services.enrollment_service import (
    EnrollmentOrchestrator,
    get_enrollment,
    list_enrollments,
    serialize_enrollment,
)
from admissions.services.identifier_service import CounterScope, SqlIdentifierAllocator
from admissions.services.observability_counters import (
    ALLOCATION_CONFLICT,
    ENROLLMENT_FAILED,
    clear_observability_events,
    count_observability_events,
)


ADMIN = Actor(institution_id=1, user_id=5, role='admin')


class FixedTimeProvider(TimeProvider):
    def __init__(self, now_value: datetime):
        self._now = now_value

    def now(self) -> datetime:
        return self._now


def _draft(n: int, *, class_id: int = 11) -> ApplicationDraft:
    return ApplicationDraft.model_validate(
        {
            'applyingForClass': class_id,
            'studentInfo': {
                'firstName': f'Student{n}',
                'lastName': 'Rao',
                'dateOfBirth': '2018-04-10',
                'gender': 'male',
                'email': f'student{n}@example.com',
            },
            'fatherInfo': {'name': f'Father{n}', 'phone': '9000000100', 'email': f'father{n}@example.com'},
            'motherInfo': {'name': f'Mother{n}', 'email': f'mother{n}@example.com'},
            'address': {'city': 'Chennai', 'state': 'Tamil Nadu'},
        }
    )


def _request(n: int, section_id: int | None = 101, **overrides) -> EnrollmentRequest:
    data = {
        'section_id': section_id,
        'student_email': f'student{n}@example.com',
        'student_password': 'student-pass',
        'parent_email': f'father{n}@example.com',
        'parent_password': 'parent-pass',
        'admission_fee_amount': 5000,
        'admission_fee_paid': True,
    }
    data.update(overrides)
    return EnrollmentRequest(**data)


class EnrollmentServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_enrollment_service.db'
        cls._engine = create_engine(
            f"sqlite:///{db_path}",
            connect_args={'check_same_thread': False, 'timeout': 30},
        )
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)
        cls.time_provider = FixedTimeProvider(datetime(2026, 4, 15, 11, 0, tzinfo=ZoneInfo('Asia/Kolkata')))

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        clear_observability_events()
        db = self._session_factory()
        try:
            db.query(EnrollmentRecord).delete()
            db.query(UserAccount).delete()
            db.query(ApplicationStatusHistory).delete()
            db.query(AdmissionApplication).delete()
            db.query(IdentifierCounter).delete()
            db.query(Section).delete()
            db.query(SchoolClass).delete()
            db.query(Institution).delete()
            db.add(Institution(id=1, name='Lakeside School', slug='lakeside'))
            db.flush()
            db.add_all(
                [
                    SchoolClass(id=11, institution_id=1, name='Class 1'),
                    SchoolClass(id=12, institution_id=1, name='Class 2'),
                ]
            )
            db.flush()
            db.add_all(
                [
                    Section(id=101, class_id=11, name='A'),
                    Section(id=102, class_id=11, name='B'),
                    Section(id=201, class_id=12, name='A'),
                ]
            )
            db.commit()
        finally:
            db.close()
        self.allocator = SqlIdentifierAllocator(self._session_factory, time_provider=self.time_provider)
        self.db = self._session_factory()

    def tearDown(self):
        self.db.close()

    def _orchestrator(self, db, actor: Actor = ADMIN) -> EnrollmentOrchestrator:
        return EnrollmentOrchestrator(
            db,
            actor=actor,
            store=SqlApplicationStore(db, self.allocator, time_provider=self.time_provider),
            allocator=self.allocator,
            accounts=SqlAccountService(db),
            classes=SqlClassService(db),
            time_provider=self.time_provider,
        )

    def _approved_application(self, n: int, *, class_id: int = 11) -> int:
        db = self._session_factory()
        try:
            store = SqlApplicationStore(db, self.allocator, time_provider=self.time_provider)
            application_id = int(store.submit(_draft(n, class_id=class_id), institution_id=1, actor_id=5).id)
            lifecycle = ApplicationLifecycle(store)
            lifecycle.transition(application_id, 'under_review', actor=ADMIN)
            lifecycle.transition(application_id, 'approved', actor=ADMIN)
            return application_id
        finally:
            db.close()

    def _status(self, application_id: int) -> str:
        db = self._session_factory()
        try:
            return db.get(AdmissionApplication, application_id).status
        finally:
            db.close()

    def _count(self, model) -> int:
        db = self._session_factory()
        try:
            return db.query(model).count()
        finally:
            db.close()

    def test_session_prefills_contacts_and_hints(self):
        application_id = self._approved_application(1)
        session = self._orchestrator(self.db).start(application_id)

        self.assertEqual(session.request.student_email, 'student1@example.com')
        self.assertEqual(session.request.parent_email, 'father1@example.com')
        self.assertEqual(session.request.admission_number, 'ADM-2026-0001')
        self.assertEqual([section.name for section in session.sections], ['A', 'B'])
        self.assertEqual(session.select_section(101), '1')
        with self.assertRaises(ValidationError):
            session.select_section(201)

    def test_commit_creates_accounts_record_and_enrolls(self):
        application_id = self._approved_application(1)
        session = self._orchestrator(self.db).start(application_id)
        session.select_section(101)
        session.set_credentials(student_password='student-pass', parent_password='parent-pass')
        session.set_fee(3500, True)

        result = session.commit()

        self.assertEqual(result.admission_number, 'ADM-2026-0001')
        self.assertEqual(result.roll_number, '1')
        self.assertEqual(self._status(application_id), 'enrolled')
        db = self._session_factory()
        try:
            history = (
                db.query(ApplicationStatusHistory)
                .filter(ApplicationStatusHistory.application_id == application_id)
                .order_by(ApplicationStatusHistory.id.asc())
                .all()
            )
            self.assertEqual([entry.status for entry in history], ['submitted', 'under_review', 'approved', 'enrolled'])
            student = db.get(UserAccount, result.student_account_id)
            parent = db.get(UserAccount, result.parent_account_id)
            self.assertEqual(student.role, 'student')
            self.assertEqual((student.class_id, student.section_id, student.roll_number), (11, 101, '1'))
            self.assertEqual(student.admission_number, 'ADM-2026-0001')
            self.assertTrue(verify_password('student-pass', student.password_hash))
            self.assertEqual(parent.role, 'parent')
            self.assertEqual(parent.email, 'father1@example.com')
            self.assertEqual(parent.profile['relation'], 'father')
            record = get_enrollment(db, result.enrollment_id, institution_id=1)
            payload = serialize_enrollment(record)
            self.assertEqual(payload['admissionFeeAmount'], 3500.0)
            self.assertTrue(payload['admissionFeePaid'])
            self.assertEqual(payload['studentName'], 'Student1 Rao')
        finally:
            db.close()
        self.assertEqual(self.allocator.peek(1, CounterKind.ADMISSION_NUMBER), 'ADM-2026-0002')

    def test_operator_can_override_contact_emails(self):
        application_id = self._approved_application(1)
        result = self._orchestrator(self.db).commit(
            application_id,
            _request(1, parent_email='Mother1@Example.com'),
        )
        db = self._session_factory()
        try:
            self.assertEqual(db.get(UserAccount, result.parent_account_id).email, 'mother1@example.com')
        finally:
            db.close()

    def test_only_approved_applications_can_be_enrolled(self):
        db = self._session_factory()
        try:
            store = SqlApplicationStore(db, self.allocator)
            application_id = int(store.submit(_draft(1), institution_id=1).id)
        finally:
            db.close()

        with self.assertRaises(ValidationError) as ctx:
            self._orchestrator(self.db).commit(application_id, _request(1))
        self.assertEqual(ctx.exception.field, 'status')
        self.assertEqual(self.allocator.peek(1, CounterKind.ADMISSION_NUMBER), 'ADM-2026-0001')

    def test_preconditions_fail_before_any_identifier_is_consumed(self):
        application_id = self._approved_application(1)
        orchestrator = self._orchestrator(self.db)
        cases = [
            (_request(1, student_email='not-an-email'), 'studentEmail'),
            (_request(1, parent_email='parent@'), 'parentEmail'),
            (_request(1, parent_email='student1@example.com'), 'parentEmail'),
            (_request(1, student_password='123'), 'studentPassword'),
            (_request(1, parent_password=''), 'parentPassword'),
            (_request(1, section_id=None), 'sectionId'),
            (_request(1, section_id=201), 'sectionId'),
        ]
        for request, field in cases:
            with self.subTest(field=field):
                with self.assertRaises(ValidationError) as ctx:
                    orchestrator.commit(application_id, request)
                self.assertEqual(ctx.exception.field, field)

        self.assertEqual(self._status(application_id), 'approved')
        self.assertEqual(self.allocator.peek(1, CounterKind.ADMISSION_NUMBER), 'ADM-2026-0001')
        self.assertEqual(self.allocator.peek(1, CounterKind.ROLL_NUMBER, CounterScope(11, 101)), '1')

    def test_non_staff_cannot_enroll(self):
        application_id = self._approved_application(1)
        orchestrator = self._orchestrator(self.db, actor=Actor(institution_id=1, user_id=9, role='teacher'))
        with self.assertRaises(TransitionNotPermitted):
            orchestrator.commit(application_id, _request(1))
        with self.assertRaises(TransitionNotPermitted):
            orchestrator.start(application_id)

    def test_collaborator_failure_rolls_everything_back(self):
        application_id = self._approved_application(1)
        with mock.patch.object(
            SqlAccountService,
            'assign_student_profile',
            side_effect=RuntimeError('profile store unavailable'),
        ):
            with self.assertRaises(DependencyFailure):
                self._orchestrator(self.db).commit(application_id, _request(1))

        self.assertEqual(self._status(application_id), 'approved')
        self.assertEqual(self._count(UserAccount), 0)
        self.assertEqual(self._count(EnrollmentRecord), 0)
        self.assertEqual(count_observability_events(ENROLLMENT_FAILED), 1)
        # Consumed values are gaps, never reused.
        self.assertEqual(self.allocator.peek(1, CounterKind.ADMISSION_NUMBER), 'ADM-2026-0002')

        result = self._orchestrator(self.db).commit(application_id, _request(1))
        self.assertEqual(result.admission_number, 'ADM-2026-0002')
        self.assertEqual(result.roll_number, '2')

    def test_existing_account_email_rolls_back(self):
        application_id = self._approved_application(1)
        db = self._session_factory()
        try:
            SqlAccountService(db).create(email='father1@example.com', password='secret1', role='parent')
            db.commit()
        finally:
            db.close()

        with self.assertRaises(DuplicateEmail) as ctx:
            self._orchestrator(self.db).commit(application_id, _request(1))
        self.assertEqual(ctx.exception.field, 'email')
        self.assertEqual(self._status(application_id), 'approved')
        self.assertEqual(self._count(UserAccount), 1)

    def test_manual_admission_number_conflict_is_reported(self):
        first = self._approved_application(1)
        second = self._approved_application(2)
        self._orchestrator(self.db).commit(first, _request(1, admission_number='LEGACY-77'))

        with self.assertRaises(AllocationConflict) as ctx:
            self._orchestrator(self.db).commit(second, _request(2, admission_number='LEGACY-77'))
        self.assertEqual(ctx.exception.field, 'admissionNumber')
        self.assertEqual(self._status(second), 'approved')
        self.assertEqual(count_observability_events(ALLOCATION_CONFLICT), 1)

    def test_two_open_sessions_on_one_section_both_commit_unedited_hints(self):
        first = self._approved_application(1)
        second = self._approved_application(2)
        session_a = self._orchestrator(self.db).start(first)
        other_db = self._session_factory()
        try:
            session_b = self._orchestrator(other_db).start(second)
            self.assertEqual(session_a.select_section(101), '1')
            self.assertEqual(session_b.select_section(101), '1')
            self.assertEqual(session_a.request.admission_number, session_b.request.admission_number)
            for session in (session_a, session_b):
                session.set_credentials(student_password='student-pass', parent_password='parent-pass')

            result_a = session_a.commit()
            result_b = session_b.commit()
        finally:
            other_db.close()

        self.assertEqual((result_a.roll_number, result_b.roll_number), ('1', '2'))
        self.assertEqual((result_a.admission_number, result_b.admission_number), ('ADM-2026-0001', 'ADM-2026-0002'))
        self.assertEqual(count_observability_events(ALLOCATION_CONFLICT), 0)

    def test_edited_roll_number_already_taken_conflicts_instead_of_duplicating(self):
        first = self._approved_application(1)
        second = self._approved_application(2)
        self._orchestrator(self.db).commit(first, _request(1))

        session = self._orchestrator(self.db).start(second)
        self.assertEqual(session.select_section(101), '2')
        session.set_credentials(student_password='student-pass', parent_password='parent-pass')
        session.set_identifiers(roll_number='1')
        with self.assertRaises(AllocationConflict) as ctx:
            session.commit()
        self.assertEqual(ctx.exception.field, 'rollNumber')
        self.assertEqual(self._status(second), 'approved')

        session.set_identifiers(roll_number='2')
        self.assertEqual(session.commit().roll_number, '2')

    def test_section_change_never_reuses_consumed_suggestion(self):
        first = self._approved_application(1)
        second = self._approved_application(2)
        session = self._orchestrator(self.db).start(second)

        self.assertEqual(session.select_section(101), '1')
        self.assertEqual(session.select_section(102), '1')
        other_db = self._session_factory()
        try:
            self._orchestrator(other_db).commit(first, _request(1, section_id=101))
        finally:
            other_db.close()
        self.assertEqual(session.select_section(101), '2')

    def test_concurrent_commits_get_distinct_roll_numbers(self):
        count = 5
        application_ids = [self._approved_application(n) for n in range(1, count + 1)]
        barrier = threading.Barrier(count)
        results = []
        errors = []
        lock = threading.Lock()

        def worker(n: int, application_id: int):
            db = self._session_factory()
            try:
                barrier.wait(timeout=5)
                result = self._orchestrator(db).commit(application_id, _request(n))
                with lock:
                    results.append(result)
            except Exception as exc:  # pragma: no cover - test diagnostic path
                errors.append(exc)
            finally:
                db.close()

        threads = [
            threading.Thread(target=worker, args=(n, application_id))
            for n, application_id in enumerate(application_ids, start=1)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        self.assertEqual(errors, [])
        self.assertEqual(len(results), count)
        self.assertEqual(len({result.roll_number for result in results}), count)
        self.assertEqual(len({result.admission_number for result in results}), count)
        self.assertEqual(self._count(EnrollmentRecord), count)

    def test_concurrent_enrollment_of_same_application_has_one_winner(self):
        application_id = self._approved_application(1)
        barrier = threading.Barrier(2)
        outcomes = []
        lock = threading.Lock()

        def worker():
            db = self._session_factory()
            try:
                barrier.wait(timeout=5)
                try:
                    self._orchestrator(db).commit(application_id, _request(1))
                    outcome = 'ok'
                except (InvalidTransition, ValidationError):
                    outcome = 'lost'
                with lock:
                    outcomes.append(outcome)
            finally:
                db.close()

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        self.assertEqual(sorted(outcomes), ['lost', 'ok'])
        self.assertEqual(self._count(EnrollmentRecord), 1)
        self.assertEqual(self._count(UserAccount), 2)
        self.assertEqual(self._status(application_id), 'enrolled')

    def test_list_enrollments_filters_and_searches(self):
        first = self._approved_application(1)
        second = self._approved_application(2, class_id=12)
        self._orchestrator(self.db).commit(first, _request(1))
        self._orchestrator(self.db).commit(second, _request(2, section_id=201))

        rows, total = list_enrollments(self.db, 1)
        self.assertEqual(total, 2)
        rows, total = list_enrollments(self.db, 1, class_id=12)
        self.assertEqual([row.application_id for row in rows], [second])
        rows, total = list_enrollments(self.db, 1, search='student1')
        self.assertEqual(total, 1)
        self.assertEqual(rows[0].application_id, first)
        rows, total = list_enrollments(self.db, 2)
        self.assertEqual(total, 0)


if __name__ == '__main__':
    unittest.main()
