"""Adapter for the hosted Supabase project the web app talks to.

Table layout matches the hosted schema: ``profiles`` keyed by ``user_id`` with
a ``user_type`` column, ``jobs`` and ``job_applications``.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Sequence

import httpx
from postgrest.exceptions import APIError
from supabase import AuthError, Client, create_client

from ruralink.backends.base import SIGNED_IN, SIGNED_OUT, SessionListener, SessionListeners, Unsubscribe
from ruralink.config import SETTINGS, Settings
from ruralink.core.errors import (
    ConflictError,
    CredentialError,
    NotFoundError,
    RuralinkError,
    TransientError,
)
from ruralink.core.types import (
    Application,
    ApplicationStatus,
    Counts,
    IssuedSession,
    JobPosting,
    Profile,
    Role,
)
from ruralink.realtime import APPLICATIONS, JOBS, PROFILES, ChangeEvent, ChangeFeed

LOGGER = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"
JOBS_TABLE = "jobs"
APPLICATIONS_TABLE = "job_applications"

COUNTRY_CODE = "+91"
UNIQUE_VIOLATION = "23505"
NO_ROWS = "PGRST116"


def _profile_from_row(row: dict[str, Any]) -> Profile:
    return Profile(
        account_id=row["user_id"],
        full_name=row.get("full_name"),
        role=Role(row.get("user_type") or Role.WORKER.value),
        phone=row.get("phone"),
        email=row.get("email"),
        location=row.get("location"),
        avatar_url=row.get("avatar_url"),
        age=row.get("age"),
        skills=row.get("skills"),
        experience=row.get("experience"),
        business_name=row.get("business_name"),
        business_type=row.get("business_type"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _first(response: Any) -> Optional[dict[str, Any]]:
    data = getattr(response, "data", None) or []
    if isinstance(data, dict):
        return data
    return data[0] if data else None


class SupabaseBackend:
    name = "supabase"

    def __init__(
        self,
        client: Optional[Client] = None,
        *,
        settings: Optional[Settings] = None,
        feed: Optional[ChangeFeed] = None,
    ):
        self.settings = settings or SETTINGS
        if client is None:
            if not self.settings.supabase_url or not self.settings.supabase_key:
                raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set for the supabase backend")
            client = create_client(self.settings.supabase_url, self.settings.supabase_key)
        self.client = client
        self.feed = feed or ChangeFeed()
        self._listeners = SessionListeners()

    # -- plumbing -------------------------------------------------------------

    @contextmanager
    def _translate(self, fallback: str) -> Iterator[None]:
        """Map vendor exceptions onto the error taxonomy."""
        try:
            yield
        except RuralinkError:
            raise
        except APIError as e:
            code = getattr(e, "code", None)
            message = getattr(e, "message", None) or fallback
            if code == UNIQUE_VIOLATION:
                raise ConflictError(message, code=code) from e
            if code == NO_ROWS:
                raise NotFoundError(message, code=code) from e
            raise TransientError(message, code=code) from e
        except AuthError as e:
            raise CredentialError(getattr(e, "message", None) or str(e) or fallback) from e
        except httpx.HTTPError as e:
            LOGGER.warning("supabase request failed: %s", e)
            raise TransientError(fallback) from e

    def _publish(self, table: str, action: str, record_id: Optional[str]) -> None:
        self.feed.publish(ChangeEvent(table=table, action=action, record_id=record_id))

    def _credentials(self, identifier: str) -> dict[str, str]:
        value = identifier.strip()
        if "@" in value:
            return {"email": value.lower()}
        if value.isdigit() and len(value) == 10:
            return {"phone": f"{COUNTRY_CODE}{value}"}
        if value.startswith("+"):
            return {"phone": value}
        # usernames ride on synthetic email addresses
        return {"email": f"{value.lower()}@{self.settings.username_domain}"}

    def _issued(self, response: Any, *, is_new: bool = False) -> IssuedSession:
        user = getattr(response, "user", None)
        session = getattr(response, "session", None)
        if user is None:
            raise CredentialError("No user returned by the identity service")
        token = getattr(session, "access_token", "") if session is not None else ""
        contact = getattr(user, "phone", None) or getattr(user, "email", None) or ""
        return IssuedSession(account_id=str(user.id), token=token or "", contact=contact, is_new=is_new)

    # -- identity -------------------------------------------------------------

    def on_session_change(self, listener: SessionListener) -> Unsubscribe:
        return self._listeners.add(listener)

    def send_challenge(self, identifier: str) -> None:
        creds = self._credentials(identifier)
        payload: dict[str, Any] = dict(creds)
        if "phone" in creds:
            payload["options"] = {"channel": "sms"}
        with self._translate("Failed to send OTP"):
            self.client.auth.sign_in_with_otp(payload)

    def verify_challenge(self, identifier: str, code: str) -> IssuedSession:
        creds = self._credentials(identifier)
        otp_type = "sms" if "phone" in creds else "email"
        with self._translate("Please check the verification code"):
            response = self.client.auth.verify_otp({**creds, "token": code, "type": otp_type})
            issued = self._issued(response)
        self._listeners.emit(SIGNED_IN, issued)
        return issued

    def password_login(self, identifier: str, password: str) -> IssuedSession:
        with self._translate("Invalid login credentials"):
            response = self.client.auth.sign_in_with_password({**self._credentials(identifier), "password": password})
            issued = self._issued(response)
        self._listeners.emit(SIGNED_IN, issued)
        return issued

    def password_register(self, identifier: str, password: str, metadata: dict[str, Any]) -> IssuedSession:
        payload = {**self._credentials(identifier), "password": password, "options": {"data": metadata}}
        with self._translate("Failed to create account"):
            response = self.client.auth.sign_up(payload)
            issued = self._issued(response, is_new=True)
        self._listeners.emit(SIGNED_IN, issued)
        return issued

    def resume(self, token: str) -> Optional[IssuedSession]:
        try:
            with self._translate("Session expired"):
                response = self.client.auth.get_user(token)
        except RuralinkError as e:
            LOGGER.info("stored session token rejected: %s", e)
            return None
        user = getattr(response, "user", None)
        if user is None:
            return None
        contact = getattr(user, "phone", None) or getattr(user, "email", None) or ""
        return IssuedSession(account_id=str(user.id), token=token, contact=contact)

    def sign_out(self, token: Optional[str]) -> None:
        try:
            with self._translate("Failed to sign out"):
                self.client.auth.sign_out()
        finally:
            self._listeners.emit(SIGNED_OUT, None)

    # -- profiles -------------------------------------------------------------

    def fetch_profile(self, account_id: str) -> Optional[Profile]:
        with self._translate("Failed to load profile"):
            response = (
                self.client.table(PROFILES_TABLE).select("*").eq("user_id", account_id).limit(1).execute()
            )
        row = _first(response)
        return _profile_from_row(row) if row else None

    def create_profile(self, account_id: str, fields: dict[str, Any]) -> Profile:
        role = fields.get("role", Role.WORKER)
        row = {
            "user_id": account_id,
            "full_name": fields.get("full_name"),
            "phone": fields.get("phone"),
            "user_type": Role(role).value,
            "location": fields.get("location"),
            "age": fields.get("age"),
            "skills": fields.get("skills"),
            "experience": fields.get("experience"),
            "business_name": fields.get("business_name"),
            "business_type": fields.get("business_type"),
        }
        with self._translate("Failed to create profile"):
            response = self.client.table(PROFILES_TABLE).insert(row).execute()
        created = _first(response)
        if created is None:
            raise TransientError("Failed to create profile")
        self._publish(PROFILES, "insert", account_id)
        return _profile_from_row(created)

    # -- jobs -----------------------------------------------------------------

    def list_open_jobs(self) -> list[JobPosting]:
        with self._translate("Failed to load jobs"):
            response = (
                self.client.table(JOBS_TABLE)
                .select("*")
                .eq("status", "open")
                .order("created_at", desc=True)
                .execute()
            )
        return [JobPosting.model_validate(row) for row in (response.data or [])]

    def list_employer_jobs(self, employer_id: str) -> list[JobPosting]:
        with self._translate("Failed to load jobs"):
            response = (
                self.client.table(JOBS_TABLE)
                .select("*")
                .eq("employer_id", employer_id)
                .order("created_at", desc=True)
                .execute()
            )
        return [JobPosting.model_validate(row) for row in (response.data or [])]

    def create_job(self, employer_id: str, fields: dict[str, Any]) -> JobPosting:
        row = dict(fields)
        if row.get("date") is not None:
            row["date"] = row["date"].isoformat()
        row.update({"employer_id": employer_id, "status": "open"})
        with self._translate("Failed to create job"):
            response = self.client.table(JOBS_TABLE).insert(row).execute()
        created = _first(response)
        if created is None:
            raise TransientError("Failed to create job")
        job = JobPosting.model_validate(created)
        self._publish(JOBS, "insert", job.id)
        return job

    def delete_job(self, job_id: str, employer_id: str) -> None:
        with self._translate("Failed to delete job"):
            response = (
                self.client.table(JOBS_TABLE).delete().eq("id", job_id).eq("employer_id", employer_id).execute()
            )
        if not response.data:
            raise NotFoundError("Job not found")
        self._publish(JOBS, "delete", job_id)

    def close_job(self, job_id: str, employer_id: str) -> JobPosting:
        with self._translate("Failed to update job"):
            response = (
                self.client.table(JOBS_TABLE)
                .update({"status": "closed"})
                .eq("id", job_id)
                .eq("employer_id", employer_id)
                .execute()
            )
        row = _first(response)
        if row is None:
            raise NotFoundError("Job not found")
        self._publish(JOBS, "update", job_id)
        return JobPosting.model_validate(row)

    def counts_by_type(self) -> Counts:
        with self._translate("Failed to load stats"):
            workers = (
                self.client.table(PROFILES_TABLE).select("id", count="exact").eq("user_type", "worker").execute()
            )
            jobs = self.client.table(JOBS_TABLE).select("id", count="exact").execute()
            closed = self.client.table(JOBS_TABLE).select("id", count="exact").eq("status", "closed").execute()
        return Counts(workers=workers.count or 0, jobs=jobs.count or 0, closed_jobs=closed.count or 0)

    # -- applications ---------------------------------------------------------

    def apply_to_job(self, job_id: str, worker_id: str, message: Optional[str] = None) -> Application:
        row: dict[str, Any] = {"job_id": job_id, "worker_id": worker_id, "status": "pending"}
        if message:
            row["message"] = message
        try:
            with self._translate("Failed to apply to job"):
                response = self.client.table(APPLICATIONS_TABLE).insert(row).execute()
        except ConflictError as e:
            raise ConflictError("You have already applied to this job.", title="Already Applied", code=e.code) from e
        created = _first(response)
        if created is None:
            raise TransientError("Failed to apply to job")
        application = Application.model_validate(created)
        self._publish(APPLICATIONS, "insert", application.id)
        return application

    def set_application_status(
        self, application_id: str, employer_id: str, status: ApplicationStatus
    ) -> Application:
        with self._translate("Failed to update application"):
            existing = (
                self.client.table(APPLICATIONS_TABLE)
                .select("*, jobs(employer_id)")
                .eq("id", application_id)
                .limit(1)
                .execute()
            )
            row = _first(existing)
            if row is None or (row.get("jobs") or {}).get("employer_id") != employer_id:
                raise NotFoundError("Application not found")
            response = (
                self.client.table(APPLICATIONS_TABLE)
                .update({"status": ApplicationStatus(status).value})
                .eq("id", application_id)
                .execute()
            )
        updated = _first(response)
        if updated is None:
            raise NotFoundError("Application not found")
        self._publish(APPLICATIONS, "update", application_id)
        return Application.model_validate(updated)

    def list_applications(
        self,
        *,
        worker_id: Optional[str] = None,
        employer_id: Optional[str] = None,
        status: Optional[ApplicationStatus] = None,
    ) -> Sequence[Application]:
        with self._translate("Failed to load applications"):
            if employer_id:
                query = self.client.table(APPLICATIONS_TABLE).select("*, jobs!inner(employer_id)").eq(
                    "jobs.employer_id", employer_id
                )
            else:
                query = self.client.table(APPLICATIONS_TABLE).select("*")
            if worker_id:
                query = query.eq("worker_id", worker_id)
            if status:
                query = query.eq("status", ApplicationStatus(status).value)
            response = query.order("applied_at", desc=True).execute()
        return [Application.model_validate(row) for row in (response.data or [])]
