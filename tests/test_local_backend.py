import unittest
from datetime import date, timedelta
from unittest import mock

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ruralink.backends.base import SIGNED_IN, SIGNED_OUT
from ruralink.backends.local import LocalBackend, classify_identifier
from ruralink.config import Settings
from ruralink.core.errors import ConflictError, CredentialError, NotFoundError, TransientError
from ruralink.core.types import ApplicationStatus, JobStatus, Role
from ruralink.db.models import Base, OtpChallenge
from ruralink.realtime import ALL_TABLES, ChangeFeed


def make_backend(**kwargs):
    engine = create_engine(
        "sqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    settings = kwargs.pop("settings", None) or Settings(jwt_secret="test-secret")
    return LocalBackend(factory, settings=settings, **kwargs), factory


JOB = {
    "title": "House Painting Job",
    "category": "Painter",
    "description": "2BHK interior walls",
    "location": "Banjara Hills",
    "lat": 17.4126,
    "lng": 78.4482,
    "date": date(2025, 10, 20),
    "time": "09:00 - 17:00",
    "pay": "₹800/day",
    "urgent": True,
}


class ClassifyIdentifierTests(unittest.TestCase):
    def test_kinds(self):
        self.assertEqual(classify_identifier("9876543210"), ("phone", "9876543210"))
        self.assertEqual(classify_identifier("+919876543210"), ("phone", "+919876543210"))
        self.assertEqual(classify_identifier("Ravi@Example.com"), ("email", "ravi@example.com"))
        self.assertEqual(classify_identifier("ravi_k"), ("username", "ravi_k"))


class IdentityTests(unittest.TestCase):
    def setUp(self):
        self.sent = {}
        self.backend, self.factory = make_backend(code_sender=self.sent.__setitem__)
        self.events = []
        self.backend.on_session_change(lambda event, issued: self.events.append((event, issued)))

    def test_otp_first_verification_creates_account(self):
        self.backend.send_challenge("9876543210")
        code = self.sent["9876543210"]
        self.assertRegex(code, r"^\d{6}$")

        issued = self.backend.verify_challenge("9876543210", code)
        self.assertTrue(issued.is_new)
        self.assertEqual(issued.contact, "9876543210")
        self.assertEqual(self.events, [(SIGNED_IN, issued)])

        self.backend.send_challenge("9876543210")
        again = self.backend.verify_challenge("9876543210", self.sent["9876543210"])
        self.assertFalse(again.is_new)
        self.assertEqual(again.account_id, issued.account_id)

    def test_wrong_code_is_rejected(self):
        self.backend.send_challenge("9876543210")
        wrong = "000000" if self.sent["9876543210"] != "000000" else "111111"
        with self.assertRaises(CredentialError) as ctx:
            self.backend.verify_challenge("9876543210", wrong)
        self.assertEqual(ctx.exception.message, "Token has expired or is invalid")
        self.assertEqual(self.events, [])

    def test_code_is_burned_after_too_many_wrong_guesses(self):
        self.backend.send_challenge("9876543210")
        code = self.sent["9876543210"]
        wrong = "000000" if code != "000000" else "111111"
        for _ in range(self.backend.settings.otp_max_attempts):
            with self.assertRaises(CredentialError):
                self.backend.verify_challenge("9876543210", wrong)

        with self.assertRaises(CredentialError):
            self.backend.verify_challenge("9876543210", code)
        self.assertEqual(self.events, [])
        with self.factory() as session:
            challenge = session.query(OtpChallenge).one()
            self.assertTrue(challenge.consumed)
            self.assertEqual(challenge.attempts, self.backend.settings.otp_max_attempts)

    def test_wrong_guesses_below_limit_keep_code_valid(self):
        self.backend.send_challenge("9876543210")
        code = self.sent["9876543210"]
        wrong = "000000" if code != "000000" else "111111"
        for _ in range(self.backend.settings.otp_max_attempts - 1):
            with self.assertRaises(CredentialError):
                self.backend.verify_challenge("9876543210", wrong)
        issued = self.backend.verify_challenge("9876543210", code)
        self.assertEqual(issued.contact, "9876543210")

    def test_code_cannot_be_reused(self):
        self.backend.send_challenge("9876543210")
        code = self.sent["9876543210"]
        self.backend.verify_challenge("9876543210", code)
        with self.assertRaises(CredentialError):
            self.backend.verify_challenge("9876543210", code)

    def test_expired_code_is_rejected(self):
        self.backend.send_challenge("9876543210")
        with self.factory() as session:
            challenge = session.query(OtpChallenge).one()
            challenge.expires_at = challenge.expires_at - timedelta(hours=1)
            session.commit()
        with self.assertRaises(CredentialError):
            self.backend.verify_challenge("9876543210", self.sent["9876543210"])

    def test_username_cannot_receive_codes(self):
        with self.assertRaises(CredentialError):
            self.backend.send_challenge("ravi_k")

    def test_password_register_then_login(self):
        created = self.backend.password_register("ravi_k", "secret1", {"role": "worker"})
        self.assertTrue(created.is_new)

        issued = self.backend.password_login("ravi_k", "secret1")
        self.assertEqual(issued.account_id, created.account_id)
        self.assertFalse(issued.is_new)

        with self.assertRaises(CredentialError) as ctx:
            self.backend.password_login("ravi_k", "wrong-password")
        self.assertEqual(ctx.exception.message, "Invalid login credentials")

    def test_register_twice_conflicts(self):
        self.backend.password_register("ravi@example.com", "secret1", {})
        with self.assertRaises(ConflictError):
            self.backend.password_register("RAVI@example.com", "secret1", {})

    def test_resume_and_sign_out(self):
        created = self.backend.password_register("ravi_k", "secret1", {})
        resumed = self.backend.resume(created.token)
        self.assertEqual(resumed.account_id, created.account_id)
        self.assertIsNone(self.backend.resume("not-a-jwt"))

        self.backend.sign_out(created.token)
        self.assertEqual(self.events[-1], (SIGNED_OUT, None))

    def test_token_signed_with_other_secret_is_rejected(self):
        other, _ = make_backend(settings=Settings(jwt_secret="other-secret"))
        created = other.password_register("ravi_k", "secret1", {})
        self.assertIsNone(self.backend.resume(created.token))


class MarketplaceDataTests(unittest.TestCase):
    def setUp(self):
        self.feed = ChangeFeed()
        self.changes = []
        self.feed.subscribe(ALL_TABLES, self.changes.append)
        self.backend, _ = make_backend(feed=self.feed)
        self.employer = self.backend.password_register("employer1", "secret1", {}).account_id
        self.worker = self.backend.password_register("worker1", "secret1", {}).account_id

    def test_profile_create_and_fetch(self):
        self.assertIsNone(self.backend.fetch_profile(self.worker))
        profile = self.backend.create_profile(
            self.worker, {"full_name": "Ravi", "role": Role.WORKER, "location": "Hyderabad", "bogus": 1}
        )
        self.assertIs(profile.role, Role.WORKER)
        self.assertEqual(self.backend.fetch_profile(self.worker).full_name, "Ravi")
        with self.assertRaises(ConflictError):
            self.backend.create_profile(self.worker, {"full_name": "Ravi", "role": "worker"})

    def test_jobs_lifecycle(self):
        job = self.backend.create_job(self.employer, JOB)
        self.assertEqual(job.status, JobStatus.OPEN)
        self.assertEqual(job.date, date(2025, 10, 20))
        self.assertEqual([j.id for j in self.backend.list_open_jobs()], [job.id])

        with self.assertRaises(NotFoundError):
            self.backend.close_job(job.id, self.worker)
        closed = self.backend.close_job(job.id, self.employer)
        self.assertEqual(closed.status, JobStatus.CLOSED)
        self.assertEqual(self.backend.list_open_jobs(), [])
        self.assertEqual(len(self.backend.list_employer_jobs(self.employer)), 1)

        counts = self.backend.counts_by_type()
        self.assertEqual((counts.jobs, counts.closed_jobs), (1, 1))

        with self.assertRaises(NotFoundError):
            self.backend.delete_job(job.id, self.worker)
        self.backend.delete_job(job.id, self.employer)
        self.assertEqual(self.backend.list_employer_jobs(self.employer), [])

        self.assertEqual(
            [(c.table, c.action) for c in self.changes],
            [("jobs", "insert"), ("jobs", "update"), ("jobs", "delete")],
        )

    def test_newest_jobs_first(self):
        first = self.backend.create_job(self.employer, JOB)
        second = self.backend.create_job(self.employer, {**JOB, "title": "Office Cleaning", "category": "Cleaner"})
        self.assertEqual([j.id for j in self.backend.list_open_jobs()], [second.id, first.id])

    def test_duplicate_application_conflicts(self):
        job = self.backend.create_job(self.employer, JOB)
        application = self.backend.apply_to_job(job.id, self.worker, "Available tomorrow")
        self.assertEqual(application.status, ApplicationStatus.PENDING)

        with self.assertRaises(ConflictError) as ctx:
            self.backend.apply_to_job(job.id, self.worker)
        self.assertEqual(ctx.exception.title, "Already Applied")

    def test_apply_to_missing_job(self):
        with self.assertRaises(NotFoundError):
            self.backend.apply_to_job("missing", self.worker)

    def test_employer_reviews_applications(self):
        job = self.backend.create_job(self.employer, JOB)
        application = self.backend.apply_to_job(job.id, self.worker)

        for_employer = self.backend.list_applications(employer_id=self.employer)
        self.assertEqual([a.id for a in for_employer], [application.id])
        self.assertEqual(self.backend.list_applications(employer_id=self.worker), [])

        with self.assertRaises(NotFoundError):
            self.backend.set_application_status(application.id, self.worker, ApplicationStatus.ACCEPTED)
        updated = self.backend.set_application_status(application.id, self.employer, ApplicationStatus.ACCEPTED)
        self.assertEqual(updated.status, ApplicationStatus.ACCEPTED)

        accepted = self.backend.list_applications(worker_id=self.worker, status=ApplicationStatus.ACCEPTED)
        self.assertEqual(len(accepted), 1)
        self.assertEqual(self.backend.list_applications(worker_id=self.worker, status=ApplicationStatus.REJECTED), [])

    def test_database_failure_is_transient(self):
        from sqlalchemy.exc import OperationalError

        with mock.patch("ruralink.db.crud.list_jobs", side_effect=OperationalError("SELECT", {}, Exception("down"))):
            with self.assertRaises(TransientError):
                self.backend.list_open_jobs()


if __name__ == "__main__":
    unittest.main()
