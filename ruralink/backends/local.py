"""Self-hosted stand-in for the backend-as-a-service, built on SQLAlchemy.

Accounts, one-time codes, profiles, jobs and applications live in one SQL
database (see :mod:`ruralink.db.session`). Passwords and codes are stored as
bcrypt hashes; sessions are HS256 JWTs.
"""
from __future__ import annotations

import logging
import secrets
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator, Optional, Sequence

import bcrypt
from jose import JWTError, jwt
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ruralink.backends.base import SIGNED_IN, SIGNED_OUT, SessionListener, SessionListeners, Unsubscribe
from ruralink.config import SETTINGS, Settings
from ruralink.core.errors import ConflictError, CredentialError, NotFoundError, TransientError
from ruralink.core.types import (
    Application,
    ApplicationStatus,
    Counts,
    IssuedSession,
    JobPosting,
    Profile,
    Role,
)
from ruralink.db import crud
from ruralink.db.models import Account, utcnow
from ruralink.realtime import APPLICATIONS, JOBS, PROFILES, ChangeEvent, ChangeFeed

LOGGER = logging.getLogger(__name__)

CodeSender = Callable[[str, str], None]

OTP_LENGTH = 6


def _log_code(identifier: str, code: str) -> None:
    # Development delivery channel; a real deployment plugs in an SMS/email sender
    LOGGER.info("one-time code for %s: %s", identifier, code)


def classify_identifier(identifier: str) -> tuple[str, str]:
    """Return (column, value) for a phone number, email address or username."""
    value = identifier.strip()
    if "@" in value:
        return "email", value.lower()
    digits = value[1:] if value.startswith("+") else value
    if digits.isdigit():
        return "phone", value
    return "username", value


def _hash(secret: str) -> str:
    return bcrypt.hashpw(secret.encode(), bcrypt.gensalt()).decode()


def _check(secret: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(secret.encode(), hashed.encode())
    except ValueError:
        return False


class LocalBackend:
    name = "local"

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        *,
        settings: Optional[Settings] = None,
        feed: Optional[ChangeFeed] = None,
        code_sender: Optional[CodeSender] = None,
    ):
        if session_factory is None:
            from ruralink.db.session import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory
        self.settings = settings or SETTINGS
        self.feed = feed or ChangeFeed()
        self.code_sender = code_sender or _log_code
        self._listeners = SessionListeners()

    # -- plumbing -------------------------------------------------------------

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        except IntegrityError as e:
            session.rollback()
            raise ConflictError(str(getattr(e, "orig", e))) from e
        except SQLAlchemyError as e:
            session.rollback()
            LOGGER.warning("database error: %s", e)
            raise TransientError("Service temporarily unavailable") from e
        finally:
            session.close()

    def _publish(self, table: str, action: str, record_id: Optional[str]) -> None:
        self.feed.publish(ChangeEvent(table=table, action=action, record_id=record_id))

    def _issue(self, account: Account, *, is_new: bool = False) -> IssuedSession:
        now = datetime.now(timezone.utc)
        claims = {
            "sub": account.id,
            "iat": now,
            "exp": now + timedelta(minutes=self.settings.jwt_expire_minutes),
            "type": "access",
        }
        token = jwt.encode(claims, self.settings.jwt_secret, algorithm=self.settings.jwt_algorithm)
        contact = account.phone or account.email or account.username or ""
        return IssuedSession(account_id=account.id, token=token, contact=contact, is_new=is_new)

    # -- identity -------------------------------------------------------------

    def on_session_change(self, listener: SessionListener) -> Unsubscribe:
        return self._listeners.add(listener)

    def send_challenge(self, identifier: str) -> None:
        kind, value = classify_identifier(identifier)
        if kind == "username":
            raise CredentialError("One-time codes need a phone number or email address")
        code = f"{secrets.randbelow(10 ** OTP_LENGTH):0{OTP_LENGTH}d}"
        expires_at = utcnow() + timedelta(seconds=self.settings.otp_ttl_seconds)
        with self._session() as session:
            crud.create_challenge(session, value, _hash(code), expires_at)
        self.code_sender(value, code)

    def verify_challenge(self, identifier: str, code: str) -> IssuedSession:
        kind, value = classify_identifier(identifier)
        with self._session() as session:
            challenge = crud.latest_challenge(session, value)
            if challenge is None or challenge.expires_at < utcnow():
                raise CredentialError("Token has expired or is invalid")
            if not _check(code, challenge.code_hash):
                attempts = crud.record_failed_attempt(session, challenge, self.settings.otp_max_attempts)
                LOGGER.info("wrong code for %s (attempt %d/%d)", value, attempts, self.settings.otp_max_attempts)
                raise CredentialError("Token has expired or is invalid")
            crud.consume_challenge(session, challenge)

            account = crud.find_account(session, kind=kind, value=value)
            is_new = account is None
            if account is None:
                # first successful verification creates the account
                account = crud.create_account(session, kind=kind, value=value)
            crud.touch_sign_in(session, account)
            issued = self._issue(account, is_new=is_new)

        LOGGER.info("challenge verified account=%s new=%s", issued.account_id, is_new)
        self._listeners.emit(SIGNED_IN, issued)
        return issued

    def password_login(self, identifier: str, password: str) -> IssuedSession:
        kind, value = classify_identifier(identifier)
        with self._session() as session:
            account = crud.find_account(session, kind=kind, value=value)
            if account is None or not _check(password, account.password_hash):
                raise CredentialError("Invalid login credentials")
            crud.touch_sign_in(session, account)
            issued = self._issue(account)

        self._listeners.emit(SIGNED_IN, issued)
        return issued

    def password_register(self, identifier: str, password: str, metadata: dict[str, Any]) -> IssuedSession:
        kind, value = classify_identifier(identifier)
        with self._session() as session:
            if crud.find_account(session, kind=kind, value=value) is not None:
                raise ConflictError("User already registered")
            try:
                account = crud.create_account(
                    session, kind=kind, value=value, password_hash=_hash(password), metadata=metadata
                )
            except IntegrityError as e:
                session.rollback()
                raise ConflictError("User already registered") from e
            crud.touch_sign_in(session, account)
            issued = self._issue(account, is_new=True)

        LOGGER.info("account registered account=%s kind=%s", issued.account_id, kind)
        self._listeners.emit(SIGNED_IN, issued)
        return issued

    def resume(self, token: str) -> Optional[IssuedSession]:
        try:
            claims = jwt.decode(token, self.settings.jwt_secret, algorithms=[self.settings.jwt_algorithm])
        except JWTError:
            LOGGER.info("stored session token rejected")
            return None
        with self._session() as session:
            account = crud.get_account(session, claims.get("sub", ""))
            if account is None:
                return None
            contact = account.phone or account.email or account.username or ""
            return IssuedSession(account_id=account.id, token=token, contact=contact)

    def sign_out(self, token: Optional[str]) -> None:
        # Tokens are stateless; signing out only notifies listeners
        self._listeners.emit(SIGNED_OUT, None)

    # -- profiles -------------------------------------------------------------

    def fetch_profile(self, account_id: str) -> Optional[Profile]:
        with self._session() as session:
            row = crud.get_profile(session, account_id)
            return Profile.model_validate(row) if row is not None else None

    def create_profile(self, account_id: str, fields: dict[str, Any]) -> Profile:
        data = dict(fields)
        if isinstance(data.get("role"), Role):
            data["role"] = data["role"].value
        with self._session() as session:
            if crud.get_profile(session, account_id) is not None:
                raise ConflictError("Profile already exists")
            row = crud.create_profile(session, account_id, data)
            profile = Profile.model_validate(row)
        self._publish(PROFILES, "insert", account_id)
        return profile

    # -- jobs -----------------------------------------------------------------

    def list_open_jobs(self) -> list[JobPosting]:
        with self._session() as session:
            return [JobPosting.model_validate(j) for j in crud.list_jobs(session, status="open")]

    def list_employer_jobs(self, employer_id: str) -> list[JobPosting]:
        with self._session() as session:
            rows = crud.list_jobs(session, status=None, employer_id=employer_id)
            return [JobPosting.model_validate(j) for j in rows]

    def create_job(self, employer_id: str, fields: dict[str, Any]) -> JobPosting:
        with self._session() as session:
            job = JobPosting.model_validate(crud.create_job(session, employer_id, dict(fields)))
        self._publish(JOBS, "insert", job.id)
        return job

    def delete_job(self, job_id: str, employer_id: str) -> None:
        with self._session() as session:
            if not crud.delete_job(session, job_id, employer_id):
                raise NotFoundError("Job not found")
        self._publish(JOBS, "delete", job_id)

    def close_job(self, job_id: str, employer_id: str) -> JobPosting:
        with self._session() as session:
            row = crud.get_job_by_id(session, job_id)
            if row is None or row.employer_id != employer_id:
                raise NotFoundError("Job not found")
            job = JobPosting.model_validate(crud.set_job_status(session, row, "closed"))
        self._publish(JOBS, "update", job_id)
        return job

    def counts_by_type(self) -> Counts:
        with self._session() as session:
            return Counts(
                workers=crud.count_profiles(session, role="worker"),
                jobs=crud.count_jobs(session),
                closed_jobs=crud.count_jobs(session, status="closed"),
            )

    # -- applications ---------------------------------------------------------

    def apply_to_job(self, job_id: str, worker_id: str, message: Optional[str] = None) -> Application:
        with self._session() as session:
            job = crud.get_job_by_id(session, job_id)
            if job is None:
                raise NotFoundError("Job not found")
            try:
                row = crud.create_application(session, job_id, worker_id, message)
            except IntegrityError as e:
                session.rollback()
                raise ConflictError("You have already applied to this job.", title="Already Applied") from e
            application = Application.model_validate(row)
        self._publish(APPLICATIONS, "insert", application.id)
        return application

    def set_application_status(
        self, application_id: str, employer_id: str, status: ApplicationStatus
    ) -> Application:
        with self._session() as session:
            row = crud.get_application(session, application_id)
            if row is None or row.job is None or row.job.employer_id != employer_id:
                raise NotFoundError("Application not found")
            updated = crud.set_application_status(session, row, ApplicationStatus(status).value)
            application = Application.model_validate(updated)
        self._publish(APPLICATIONS, "update", application_id)
        return application

    def list_applications(
        self,
        *,
        worker_id: Optional[str] = None,
        employer_id: Optional[str] = None,
        status: Optional[ApplicationStatus] = None,
    ) -> Sequence[Application]:
        with self._session() as session:
            rows = crud.query_applications(
                session,
                worker_id=worker_id,
                employer_id=employer_id,
                status=ApplicationStatus(status).value if status else None,
            )
            return [Application.model_validate(r) for r in rows]
