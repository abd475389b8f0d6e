from ruralink.auth.flow import (
    AuthFlow,
    AuthMode,
    AuthState,
    Intent,
    InvalidTransition,
    LoginSucceeded,
)
from ruralink.auth.session import SessionManager

__all__ = [
    "AuthFlow",
    "AuthMode",
    "AuthState",
    "Intent",
    "InvalidTransition",
    "LoginSucceeded",
    "SessionManager",
]
