"""Contracts for the hosted collaborators.

Every method may raise one of the :mod:`ruralink.core.errors` classes; adapters
never leak vendor exceptions.
"""
from __future__ import annotations

from typing import Any, Callable, Optional, Protocol, Sequence

from ruralink.core.types import (
    Application,
    ApplicationStatus,
    Counts,
    IssuedSession,
    JobPosting,
    Profile,
)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"

SessionListener = Callable[[str, Optional[IssuedSession]], None]
Unsubscribe = Callable[[], None]


class IdentityService(Protocol):
    def send_challenge(self, identifier: str) -> None: ...
    def verify_challenge(self, identifier: str, code: str) -> IssuedSession: ...
    def password_login(self, identifier: str, password: str) -> IssuedSession: ...
    def password_register(self, identifier: str, password: str, metadata: dict[str, Any]) -> IssuedSession: ...
    def sign_out(self, token: Optional[str]) -> None: ...
    def resume(self, token: str) -> Optional[IssuedSession]: ...
    def on_session_change(self, listener: SessionListener) -> Unsubscribe: ...


class ProfileStore(Protocol):
    def fetch_profile(self, account_id: str) -> Optional[Profile]: ...
    def create_profile(self, account_id: str, fields: dict[str, Any]) -> Profile: ...


class JobStore(Protocol):
    def list_open_jobs(self) -> list[JobPosting]: ...
    def list_employer_jobs(self, employer_id: str) -> list[JobPosting]: ...
    def create_job(self, employer_id: str, fields: dict[str, Any]) -> JobPosting: ...
    def delete_job(self, job_id: str, employer_id: str) -> None: ...
    def close_job(self, job_id: str, employer_id: str) -> JobPosting: ...
    def counts_by_type(self) -> Counts: ...


class ApplicationStore(Protocol):
    def apply_to_job(self, job_id: str, worker_id: str, message: Optional[str] = None) -> Application: ...
    def set_application_status(
        self, application_id: str, employer_id: str, status: ApplicationStatus
    ) -> Application: ...
    def list_applications(
        self,
        *,
        worker_id: Optional[str] = None,
        employer_id: Optional[str] = None,
        status: Optional[ApplicationStatus] = None,
    ) -> Sequence[Application]: ...


class Backend(IdentityService, ProfileStore, JobStore, ApplicationStore, Protocol):
    name: str


class SessionListeners:
    """Fan-out helper shared by the adapters for session change events."""

    def __init__(self) -> None:
        self._listeners: list[SessionListener] = []

    def add(self, listener: SessionListener) -> Unsubscribe:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: str, session: Optional[IssuedSession]) -> None:
        for listener in list(self._listeners):
            listener(event, session)

    def __len__(self) -> int:
        return len(self._listeners)
