"""Login/registration state machine.

One flow object drives one credential dialog. It is parameterised by
:class:`AuthMode` (phone + OTP, username + password, email + password) and by
the intent (login or register).

After the identity service accepts a login, the flow races a profile fetch
against ``profile_timeout``. Whichever finishes first decides the outcome: a
profile means success with the stored role, the deadline means the user is
asked to pick a role. The loser is ignored, and so is anything that resolves
after :meth:`AuthFlow.close`.

Remote calls run in worker threads (``asyncio.to_thread``) so the event loop
is never blocked by a synchronous adapter.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Union

from ruralink.backends.base import IdentityService, ProfileStore
from ruralink.config import SETTINGS
from ruralink.core.errors import (
    CredentialError,
    Notice,
    Notifier,
    RuralinkError,
    ValidationError,
    log_notice,
    notice_for,
)
from ruralink.core.types import IssuedSession, Profile, Role
from ruralink.core.validation import (
    ProfileFields,
    require_credentials,
    validate_email,
    validate_otp,
    validate_phone,
    validate_profile_fields,
    validate_registration,
)

LOGGER = logging.getLogger(__name__)


class AuthMode(str, Enum):
    PHONE_OTP = "phone_otp"
    USERNAME_PASSWORD = "username_password"
    EMAIL_PASSWORD = "email_password"

    @property
    def uses_challenge(self) -> bool:
        return self is AuthMode.PHONE_OTP


class Intent(str, Enum):
    LOGIN = "login"
    REGISTER = "register"


class AuthState(str, Enum):
    IDLE = "idle"
    AWAITING_CHALLENGE = "awaiting_challenge"
    VERIFYING_CHALLENGE = "verifying_challenge"
    AWAITING_PROFILE_COMPLETION = "awaiting_profile_completion"
    RESOLVING_PROFILE = "resolving_profile"
    ROLE_SELECTION_FALLBACK = "role_selection_fallback"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


@dataclass(frozen=True)
class LoginSucceeded:
    role: Role
    display_name: str
    contact: str
    account_id: str


class InvalidTransition(RuntimeError):
    """An operation was called in a state that does not accept it."""


SuccessListener = Callable[[LoginSucceeded], None]
StateListener = Callable[[AuthState], None]

_LABELS = {
    AuthMode.PHONE_OTP: "phone number",
    AuthMode.USERNAME_PASSWORD: "username and password",
    AuthMode.EMAIL_PASSWORD: "email and password",
}


class AuthFlow:
    def __init__(
        self,
        identity: IdentityService,
        profiles: ProfileStore,
        mode: AuthMode = AuthMode.PHONE_OTP,
        *,
        profile_timeout: Optional[float] = None,
        notify: Notifier = log_notice,
    ):
        self.identity = identity
        self.profiles = profiles
        self.mode = AuthMode(mode)
        self.profile_timeout = SETTINGS.profile_timeout if profile_timeout is None else profile_timeout
        self.notify = notify

        self._success_listeners: list[SuccessListener] = []
        self._state_listeners: list[StateListener] = []
        # bumped on every reset; async continuations compare against it
        self._attempt = 0
        self._timer: Optional[asyncio.TimerHandle] = None
        self._fetch_task: Optional[asyncio.Task] = None
        self._clear()

    # -- observation ----------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def identifier(self) -> Optional[str]:
        return self._identifier

    @property
    def result(self) -> Optional[LoginSucceeded]:
        return self._result

    @property
    def issued(self) -> Optional[IssuedSession]:
        return self._issued

    def on_success(self, listener: SuccessListener) -> Callable[[], None]:
        self._success_listeners.append(listener)
        return lambda: self._success_listeners.remove(listener) if listener in self._success_listeners else None

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)
        return lambda: self._state_listeners.remove(listener) if listener in self._state_listeners else None

    # -- internals ------------------------------------------------------------

    def _clear(self) -> None:
        self._state = AuthState.IDLE
        self._intent = Intent.LOGIN
        self._role = Role.WORKER
        self._identifier: Optional[str] = None
        self._full_name: Optional[str] = None
        self._issued: Optional[IssuedSession] = None
        self._result: Optional[LoginSucceeded] = None
        # attempt whose code is being sent; the state stays IDLE/FAILED meanwhile
        self._sending: Optional[int] = None

    def _set_state(self, state: AuthState) -> None:
        if state is self._state:
            return
        LOGGER.debug("auth %s: %s -> %s", self.mode.value, self._state.value, state.value)
        self._state = state
        for listener in list(self._state_listeners):
            listener(state)

    def _live(self, attempt: int, *states: AuthState) -> bool:
        if attempt != self._attempt:
            return False
        return not states or self._state in states

    def _expect(self, operation: str, *states: AuthState) -> None:
        if self._state not in states:
            raise InvalidTransition(f"{operation} is not allowed in state {self._state.value}")

    def _reject(self, exc: ValidationError) -> None:
        self.notify(notice_for(exc))
        raise exc

    def _cancel_pending(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._fetch_task is not None and not self._fetch_task.done():
            self._fetch_task.cancel()
        self._fetch_task = None

    def _fail(self, attempt: int, exc: Exception, *, title: Optional[str] = None) -> AuthState:
        if not self._live(attempt):
            return self._state
        LOGGER.info("auth %s attempt failed: %s", self.mode.value, exc)
        notice = notice_for(exc)
        if title:
            notice = Notice(title, notice.description, notice.severity)
        self._issued = None
        self._set_state(AuthState.FAILED)
        self.notify(notice)
        return self._state

    def _succeed(self, role: Role, display_name: str, contact: str) -> None:
        if self._state is AuthState.AUTHENTICATED or self._issued is None:
            return
        self._cancel_pending()
        self._result = LoginSucceeded(
            role=Role(role),
            display_name=display_name,
            contact=contact,
            account_id=self._issued.account_id,
        )
        self._set_state(AuthState.AUTHENTICATED)
        LOGGER.info("login succeeded account=%s role=%s", self._result.account_id, self._result.role.value)
        for listener in list(self._success_listeners):
            listener(self._result)

    # -- transitions ----------------------------------------------------------

    def _normalize_identifier(self, identifier: Optional[str], credential: Optional[str]) -> str:
        if self.mode is AuthMode.PHONE_OTP:
            return validate_phone(identifier)
        require_credentials(identifier, credential, label=_LABELS[self.mode])
        if self.mode is AuthMode.EMAIL_PASSWORD:
            return validate_email(identifier)
        return (identifier or "").strip()

    async def submit(
        self,
        identifier: Optional[str],
        credential: Optional[str] = None,
        *,
        intent: Intent = Intent.LOGIN,
        confirm: Optional[str] = None,
        role: Role = Role.WORKER,
        full_name: Optional[str] = None,
    ) -> AuthState:
        """First step: send an OTP, or check a password pair."""
        self._expect("submit", AuthState.IDLE, AuthState.FAILED)
        if self._sending == self._attempt:
            raise InvalidTransition("submit is not allowed while a code is being sent")
        try:
            value = self._normalize_identifier(identifier, credential)
            if intent is Intent.REGISTER and not self.mode.uses_challenge:
                validate_registration(credential or "", confirm)
        except ValidationError as exc:
            self._reject(exc)

        self._identifier = value
        self._intent = Intent(intent)
        self._role = Role(role)
        self._full_name = (full_name or "").strip() or None
        attempt = self._attempt

        if self.mode.uses_challenge:
            self._sending = attempt
            try:
                await asyncio.to_thread(self.identity.send_challenge, value)
            except RuralinkError as exc:
                return self._fail(attempt, exc)
            finally:
                if self._sending == attempt:
                    self._sending = None
            if not self._live(attempt):
                return self._state
            self._set_state(AuthState.AWAITING_CHALLENGE)
            self.notify(Notice("OTP Sent!", f"Verification code sent to +91 {value}"))
            return self._state

        self._set_state(AuthState.VERIFYING_CHALLENGE)
        try:
            if self._intent is Intent.REGISTER:
                metadata = {"role": self._role.value, "full_name": self._full_name or value}
                issued = await asyncio.to_thread(self.identity.password_register, value, credential, metadata)
            else:
                issued = await asyncio.to_thread(self.identity.password_login, value, credential)
        except RuralinkError as exc:
            return self._fail(attempt, exc)
        return self._accepted(attempt, issued)

    async def submit_code(self, code: Optional[str]) -> AuthState:
        """Second step of the OTP flow."""
        self._expect("submit_code", AuthState.AWAITING_CHALLENGE)
        try:
            code = validate_otp(code)
        except ValidationError as exc:
            self._reject(exc)

        attempt = self._attempt
        self._set_state(AuthState.VERIFYING_CHALLENGE)
        try:
            issued = await asyncio.to_thread(self.identity.verify_challenge, self._identifier, code)
        except CredentialError as exc:
            return self._fail(attempt, exc, title="Invalid OTP")
        except RuralinkError as exc:
            return self._fail(attempt, exc)
        return self._accepted(attempt, issued)

    def _accepted(self, attempt: int, issued: IssuedSession) -> AuthState:
        if not self._live(attempt, AuthState.VERIFYING_CHALLENGE):
            return self._state
        self._issued = issued
        if self._intent is Intent.REGISTER or issued.is_new:
            self._set_state(AuthState.AWAITING_PROFILE_COMPLETION)
            return self._state

        self._set_state(AuthState.RESOLVING_PROFILE)
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.profile_timeout, self._on_deadline, attempt)
        # runs on a later loop turn, outside the continuation that delivered the session
        self._fetch_task = loop.create_task(self._resolve_profile(attempt, issued.account_id))
        return self._state

    async def _resolve_profile(self, attempt: int, account_id: str) -> None:
        try:
            profile = await asyncio.to_thread(self.profiles.fetch_profile, account_id)
        except RuralinkError as exc:
            LOGGER.warning("profile fetch failed account=%s: %s", account_id, exc)
            return
        except Exception:
            # adapter bug; the deadline still decides the outcome
            LOGGER.exception("profile fetch crashed account=%s", account_id)
            return

        if not self._live(attempt, AuthState.RESOLVING_PROFILE):
            LOGGER.debug("late profile for account=%s ignored", account_id)
            return
        self._fetch_task = None
        if profile is None:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._set_state(AuthState.AWAITING_PROFILE_COMPLETION)
            return
        self._profile_arrived(profile)

    def _profile_arrived(self, profile: Profile) -> None:
        display_name = profile.full_name or self._identifier or ""
        contact = profile.contact or (self._issued.contact if self._issued else "")
        self._succeed(profile.role, display_name, contact)
        self.notify(Notice("Welcome back!", "You have been logged in successfully"))

    def _on_deadline(self, attempt: int) -> None:
        self._timer = None
        if not self._live(attempt, AuthState.RESOLVING_PROFILE):
            return
        LOGGER.info("profile not resolved within %.1fs; asking for a role", self.profile_timeout)
        if self._fetch_task is not None and not self._fetch_task.done():
            self._fetch_task.cancel()
        self._fetch_task = None
        self._set_state(AuthState.ROLE_SELECTION_FALLBACK)

    def pick_role(self, role: Role) -> LoginSucceeded:
        """Answer the fallback question when the profile did not arrive in time."""
        self._expect("pick_role", AuthState.ROLE_SELECTION_FALLBACK)
        identifier = self._identifier or ""
        contact = self._issued.contact if self._issued and self._issued.contact else identifier
        self._succeed(Role(role), identifier, contact)
        return self._result

    async def complete_profile(self, fields: Union[ProfileFields, Mapping[str, Any]]) -> AuthState:
        """Create the profile for a fresh account; the role chosen up front is kept."""
        self._expect("complete_profile", AuthState.AWAITING_PROFILE_COMPLETION)
        data = fields.model_dump() if isinstance(fields, ProfileFields) else dict(fields)
        data["role"] = self._role
        if not data.get("full_name"):
            data["full_name"] = self._full_name
        contact_field = {AuthMode.PHONE_OTP: "phone", AuthMode.EMAIL_PASSWORD: "email"}.get(self.mode)
        if contact_field and not data.get(contact_field):
            data[contact_field] = self._identifier
        try:
            parsed = validate_profile_fields(data)
        except ValidationError as exc:
            self._reject(exc)

        attempt = self._attempt
        account_id = self._issued.account_id
        try:
            profile = await asyncio.to_thread(self.profiles.create_profile, account_id, parsed.model_dump())
        except RuralinkError as exc:
            if self._live(attempt):
                # stays on the form; the user resubmits
                self.notify(notice_for(exc, "Failed to create profile"))
            return self._state

        if not self._live(attempt, AuthState.AWAITING_PROFILE_COMPLETION):
            return self._state
        contact = profile.contact or (self._issued.contact if self._issued else "") or ""
        self._succeed(profile.role, profile.full_name or self._identifier or "", contact)
        self.notify(Notice("Profile Created!", "Welcome to KaaryaSetu. Start exploring opportunities!"))
        return self._state

    def close(self) -> None:
        """Dismiss the dialog: cancel pending work and forget every input."""
        self._cancel_pending()
        self._attempt += 1
        previous = self._state
        self._clear()
        if previous is not AuthState.IDLE:
            for listener in list(self._state_listeners):
                listener(AuthState.IDLE)
