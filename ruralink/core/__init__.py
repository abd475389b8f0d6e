from .errors import (
    ConflictError,
    CredentialError,
    Notice,
    NotFoundError,
    RuralinkError,
    TransientError,
    ValidationError,
)
from .types import (
    Application,
    ApplicationStatus,
    Counts,
    GeoPoint,
    IssuedSession,
    JobPosting,
    JobStatus,
    Profile,
    RankedJob,
    Role,
)

__all__ = [
    "ConflictError",
    "CredentialError",
    "Notice",
    "NotFoundError",
    "RuralinkError",
    "TransientError",
    "ValidationError",
    "Application",
    "ApplicationStatus",
    "Counts",
    "GeoPoint",
    "IssuedSession",
    "JobPosting",
    "JobStatus",
    "Profile",
    "RankedJob",
    "Role",
]
