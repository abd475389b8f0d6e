from __future__ import annotations

from typing import Optional

from ruralink.backends.base import (
    SIGNED_IN,
    SIGNED_OUT,
    ApplicationStore,
    Backend,
    IdentityService,
    JobStore,
    ProfileStore,
)
from ruralink.config import SETTINGS, Settings
from ruralink.realtime import ChangeFeed

BACKENDS = ("local", "supabase")


def get_backend(settings: Optional[Settings] = None, feed: Optional[ChangeFeed] = None) -> Backend:
    """Build the adapter named by ``settings.backend``."""
    settings = settings or SETTINGS
    if settings.backend == "supabase":
        # supabase-py is only imported when selected
        from ruralink.backends.supabase import SupabaseBackend

        return SupabaseBackend(settings=settings, feed=feed)
    if settings.backend == "local":
        from ruralink.backends.local import LocalBackend

        return LocalBackend(settings=settings, feed=feed)
    raise ValueError(f"Unknown backend {settings.backend!r}; expected one of {', '.join(BACKENDS)}")


__all__ = [
    "SIGNED_IN",
    "SIGNED_OUT",
    "ApplicationStore",
    "Backend",
    "IdentityService",
    "JobStore",
    "ProfileStore",
    "BACKENDS",
    "get_backend",
]
