"""Error taxonomy and the user-facing notices derived from it.

Adapters translate vendor failures into these classes; the marketplace and
the auth flow catch them at the call site and turn them into a single
:class:`Notice`. Only :class:`ValidationError` is raised before any remote
call is made.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Literal, Optional

LOGGER = logging.getLogger(__name__)

Severity = Literal["info", "destructive"]


class RuralinkError(Exception):
    title = "Error"

    def __init__(self, message: str = "", *, title: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        if title:
            self.title = title


class ValidationError(RuralinkError):
    """Local, pre-submission failure tied to one form field."""

    title = "Missing Information"

    def __init__(self, field: str, message: str, *, title: Optional[str] = None):
        super().__init__(message, title=title)
        self.field = field


class CredentialError(RuralinkError):
    """The identity service rejected an identifier, password or code."""


class ConflictError(RuralinkError):
    """Uniqueness violation: duplicate application, taken identifier."""


class NotFoundError(RuralinkError):
    pass


class TransientError(RuralinkError):
    """Network or service unavailable."""


@dataclass(frozen=True)
class Notice:
    title: str
    description: str
    severity: Severity = "info"

    @property
    def destructive(self) -> bool:
        return self.severity == "destructive"


Notifier = Callable[[Notice], None]


def log_notice(notice: Notice) -> None:
    """Default notifier: route notices to the log."""
    level = logging.WARNING if notice.destructive else logging.INFO
    LOGGER.log(level, "notice title=%r description=%r", notice.title, notice.description)


def notice_for(exc: Exception, fallback: str = "Something went wrong") -> Notice:
    """Build the destructive notice shown for a caught failure.

    The service's own message is carried verbatim when there is one.
    """
    if isinstance(exc, RuralinkError):
        return Notice(exc.title, exc.message or fallback, "destructive")
    return Notice("Error", str(exc) or fallback, "destructive")


__all__ = [
    "RuralinkError",
    "ValidationError",
    "CredentialError",
    "ConflictError",
    "NotFoundError",
    "TransientError",
    "Notice",
    "Notifier",
    "log_notice",
    "notice_for",
]
