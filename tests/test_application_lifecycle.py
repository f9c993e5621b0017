import tempfile
import threading
import unittest
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from admissions.core.errors import InvalidTransition, TransitionNotPermitted, ValidationError
from admissions.db import Base
from admissions.models import (
    AdmissionApplication,
    ApplicationStatus,
    ApplicationStatusHistory,
    IdentifierCounter,
    Institution,
    SchoolClass,
)
from admissions.schemas import Actor, ApplicationDraft
from admissions.services.application_lifecycle import (
    ApplicationLifecycle,
    allowed_transitions,
    is_terminal,
)
from admissions.services.application_store import SqlApplicationStore
from admissions.services.identifier_service import SqlIdentifierAllocator
from admissions.services.observability_counters import (
    INVALID_TRANSITION,
    clear_observability_events,
    count_observability_events,
)


ADMIN = Actor(institution_id=1, user_id=5, role='institution_admin')


def _draft() -> ApplicationDraft:
    return ApplicationDraft.model_validate(
        {
            'applyingForClass': 11,
            'studentInfo': {'firstName': 'Ira', 'lastName': 'Menon', 'dateOfBirth': '2019-02-02', 'gender': 'female'},
            'fatherInfo': {'name': 'Vikram', 'email': 'vikram@example.com'},
            'address': {'city': 'Kochi', 'state': 'Kerala'},
        }
    )


class ApplicationLifecycleTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_application_lifecycle.db'
        cls._engine = create_engine(
            f"sqlite:///{db_path}",
            connect_args={'check_same_thread': False, 'timeout': 30},
        )
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        clear_observability_events()
        db = self._session_factory()
        try:
            db.query(ApplicationStatusHistory).delete()
            db.query(AdmissionApplication).delete()
            db.query(IdentifierCounter).delete()
            db.query(SchoolClass).delete()
            db.query(Institution).delete()
            db.add(Institution(id=1, name='Hill View', slug='hill-view'))
            db.flush()
            db.add(SchoolClass(id=11, institution_id=1, name='Class 2'))
            db.commit()
        finally:
            db.close()
        self.db = self._session_factory()
        self.allocator = SqlIdentifierAllocator(self._session_factory)
        self.store = SqlApplicationStore(self.db, self.allocator)
        self.lifecycle = ApplicationLifecycle(self.store)
        self.application_id = int(self.store.submit(_draft(), institution_id=1, actor_id=5).id)

    def tearDown(self):
        self.db.close()

    def _history_len(self, application_id: int) -> int:
        db = self._session_factory()
        try:
            return db.query(ApplicationStatusHistory).filter(ApplicationStatusHistory.application_id == application_id).count()
        finally:
            db.close()

    def test_review_then_approve_appends_history(self):
        self.lifecycle.transition(self.application_id, 'under_review', actor=ADMIN)
        row = self.lifecycle.transition(self.application_id, 'approved', actor=ADMIN, remarks='All documents verified')

        self.assertEqual(row.status, ApplicationStatus.APPROVED.value)
        self.assertEqual(row.review_remarks, 'All documents verified')
        self.assertEqual([entry.status for entry in row.status_history], ['submitted', 'under_review', 'approved'])
        self.assertEqual(row.status_history[-1].changed_by, 5)

    def test_reject_requires_remarks_and_appends_exactly_one_entry(self):
        self.lifecycle.transition(self.application_id, 'under_review', actor=ADMIN)
        before = self._history_len(self.application_id)

        with self.assertRaises(ValidationError) as ctx:
            self.lifecycle.transition(self.application_id, 'rejected', actor=ADMIN, remarks='   ')
        self.assertEqual(ctx.exception.field, 'remarks')
        self.assertEqual(self._history_len(self.application_id), before)

        row = self.lifecycle.transition(self.application_id, 'rejected', actor=ADMIN, remarks='Age criteria not met')
        self.assertEqual(row.status, 'rejected')
        self.assertEqual(self._history_len(self.application_id), before + 1)
        self.assertEqual(row.status_history[-1].remarks, 'Age criteria not met')

    def test_unreachable_transition_leaves_history_unchanged(self):
        before = self._history_len(self.application_id)
        with self.assertRaises(InvalidTransition) as ctx:
            self.lifecycle.transition(self.application_id, 'approved', actor=ADMIN)
        self.assertEqual(ctx.exception.current, 'submitted')
        self.assertEqual(ctx.exception.requested, 'approved')
        self.assertEqual(self._history_len(self.application_id), before)
        self.assertEqual(count_observability_events(INVALID_TRANSITION), 1)

    def test_enrolled_is_not_reachable_through_lifecycle(self):
        self.lifecycle.transition(self.application_id, 'under_review', actor=ADMIN)
        self.lifecycle.transition(self.application_id, 'approved', actor=ADMIN)
        with self.assertRaises(InvalidTransition):
            self.lifecycle.transition(self.application_id, 'enrolled', actor=ADMIN)

    def test_document_pending_can_only_be_withdrawn(self):
        self.lifecycle.transition(self.application_id, 'under_review', actor=ADMIN)
        self.lifecycle.transition(self.application_id, 'document_pending', actor=ADMIN, remarks='TC missing')
        self.assertEqual(allowed_transitions('document_pending'), ['withdrawn'])
        with self.assertRaises(InvalidTransition):
            self.lifecycle.transition(self.application_id, 'under_review', actor=ADMIN)
        row = self.lifecycle.transition(self.application_id, 'withdrawn', actor=ADMIN)
        self.assertEqual(row.status, 'withdrawn')

    def test_submitted_application_can_be_withdrawn(self):
        row = self.lifecycle.transition(self.application_id, 'withdrawn', actor=ADMIN, remarks='Family relocated')
        self.assertEqual(row.status, 'withdrawn')
        self.assertEqual([entry.status for entry in row.status_history], ['submitted', 'withdrawn'])

    def test_approved_application_can_be_withdrawn(self):
        self.lifecycle.transition(self.application_id, 'under_review', actor=ADMIN)
        self.lifecycle.transition(self.application_id, 'approved', actor=ADMIN)
        row = self.lifecycle.transition(self.application_id, 'withdrawn', actor=ADMIN)
        self.assertEqual(row.status, 'withdrawn')
        self.assertEqual(row.status_history[-1].status, 'withdrawn')
        with self.assertRaises(InvalidTransition):
            self.lifecycle.transition(self.application_id, 'approved', actor=ADMIN)

    def test_every_non_terminal_status_allows_withdrawal(self):
        for status in ('submitted', 'under_review', 'document_pending', 'approved'):
            with self.subTest(status=status):
                self.assertIn('withdrawn', allowed_transitions(status))
                self.assertFalse(is_terminal(status))

    def test_terminal_states_have_no_exits(self):
        self.lifecycle.transition(self.application_id, 'withdrawn', actor=ADMIN)
        self.assertTrue(is_terminal('withdrawn'))
        self.assertEqual(allowed_transitions('rejected'), [])
        with self.assertRaises(InvalidTransition):
            self.lifecycle.transition(self.application_id, 'under_review', actor=ADMIN)

    def test_non_staff_roles_are_refused_before_anything_else(self):
        before = self._history_len(self.application_id)
        for role in ('teacher', 'parent', 'student', ''):
            with self.assertRaises(TransitionNotPermitted):
                self.lifecycle.transition(
                    self.application_id,
                    'under_review',
                    actor=Actor(institution_id=1, user_id=9, role=role),
                )
        self.assertEqual(self._history_len(self.application_id), before)

    def test_unknown_status_is_a_validation_error(self):
        with self.assertRaises(ValidationError):
            self.lifecycle.transition(self.application_id, 'archived', actor=ADMIN)

    def test_concurrent_transitions_only_one_wins(self):
        self.lifecycle.transition(self.application_id, 'under_review', actor=ADMIN)
        before = self._history_len(self.application_id)
        targets = ['approved', 'document_pending', 'rejected', 'approved']
        barrier = threading.Barrier(len(targets))
        outcomes = []
        lock = threading.Lock()

        def worker(target: str):
            db = self._session_factory()
            try:
                lifecycle = ApplicationLifecycle(SqlApplicationStore(db, self.allocator))
                barrier.wait(timeout=5)
                try:
                    lifecycle.transition(self.application_id, target, actor=ADMIN, remarks='race')
                    result = ('ok', target)
                except InvalidTransition:
                    result = ('conflict', target)
                with lock:
                    outcomes.append(result)
            finally:
                db.close()

        threads = [threading.Thread(target=worker, args=(target,)) for target in targets]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=20)

        winners = [target for kind, target in outcomes if kind == 'ok']
        self.assertEqual(len(outcomes), len(targets))
        self.assertEqual(len(winners), 1)
        self.assertEqual(self._history_len(self.application_id), before + 1)

        db = self._session_factory()
        try:
            row = db.get(AdmissionApplication, self.application_id)
            self.assertEqual(row.status, winners[0])
        finally:
            db.close()


if __name__ == '__main__':
    unittest.main()
