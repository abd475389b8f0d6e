"""Process-wide session state.

The manager restores a persisted session on open, mirrors the identity
service's SIGNED_IN/SIGNED_OUT events and keeps the current profile in the
local store so the CLI can answer ``whoami`` without a round trip.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ruralink.backends.base import SIGNED_IN, SIGNED_OUT, IdentityService, ProfileStore
from ruralink.core.errors import RuralinkError
from ruralink.core.types import IssuedSession, Profile
from ruralink.storage import LocalStore

LOGGER = logging.getLogger(__name__)

AUTH_PREFIX = "auth."
TOKEN_KEY = "auth.token"
PROFILE_KEY = "auth.profile"


class SessionManager:
    def __init__(self, identity: IdentityService, profiles: ProfileStore, store: LocalStore):
        self.identity = identity
        self.profiles = profiles
        self.store = store
        self.session: Optional[IssuedSession] = None
        self.profile: Optional[Profile] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._unsubscribe = None
        self._tasks: set[asyncio.Task] = set()

    async def __aenter__(self) -> "SessionManager":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None

    async def open(self) -> Optional[IssuedSession]:
        """Subscribe to session changes, then restore any persisted session."""
        self._loop = asyncio.get_running_loop()
        if self._unsubscribe is None:
            self._unsubscribe = self.identity.on_session_change(self._on_change)
        return await self.restore()

    async def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self._loop = None

    async def restore(self) -> Optional[IssuedSession]:
        token = self.store.get(TOKEN_KEY)
        if not token:
            return None
        try:
            issued = await asyncio.to_thread(self.identity.resume, token)
        except RuralinkError as e:
            # keep the stored session; the service may just be unreachable
            LOGGER.warning("could not resume session: %s", e)
            cached = self.store.get(PROFILE_KEY)
            self.profile = Profile.model_validate(cached) if cached else None
            return None
        if issued is None:
            LOGGER.info("stored session expired; clearing it")
            self.store.purge_prefix(AUTH_PREFIX)
            self.session = None
            self.profile = None
            return None
        self._set_session(issued)
        await self.refresh_profile()
        return issued

    async def refresh_profile(self) -> Optional[Profile]:
        if self.session is None:
            return None
        account_id = self.session.account_id
        try:
            profile = await asyncio.to_thread(self.profiles.fetch_profile, account_id)
        except RuralinkError as e:
            LOGGER.warning("profile refresh failed account=%s: %s", account_id, e)
            return self.profile
        if self.session is None or self.session.account_id != account_id:
            return self.profile
        self.profile = profile
        if profile is not None:
            self.store.set(PROFILE_KEY, profile.model_dump(mode="json"))
        else:
            self.store.remove(PROFILE_KEY)
        return profile

    async def sign_out(self) -> None:
        token = self.session.token if self.session else self.store.get(TOKEN_KEY)
        try:
            await asyncio.to_thread(self.identity.sign_out, token)
        except RuralinkError as e:
            LOGGER.warning("remote sign-out failed: %s", e)
        finally:
            self._clear()

    def adopt(self, issued: IssuedSession) -> None:
        """Take over a session obtained outside the event subscription."""
        self._set_session(issued)

    # -- identity events ------------------------------------------------------

    def _set_session(self, issued: IssuedSession) -> None:
        self.session = issued
        self.store.set(TOKEN_KEY, issued.token)

    def _clear(self) -> None:
        removed = self.store.purge_prefix(AUTH_PREFIX)
        LOGGER.debug("signed out; removed %d stored keys", removed)
        self.session = None
        self.profile = None

    def _on_change(self, event: str, issued: Optional[IssuedSession]) -> None:
        # adapters may call back from a worker thread
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._apply_change, event, issued)

    def _apply_change(self, event: str, issued: Optional[IssuedSession]) -> None:
        if event == SIGNED_IN and issued is not None:
            self._set_session(issued)
            task = asyncio.get_running_loop().create_task(self.refresh_profile())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        elif event == SIGNED_OUT:
            self._clear()
