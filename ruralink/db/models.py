from __future__ import annotations

import uuid
import datetime as dt
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# --- SQLAlchemy base ---------------------------------------------------------

class Base(DeclarativeBase):
    """Declarative base for all models."""
    pass


# --- Enums -------------------------------------------------------------------

ROLES = ("worker", "employer")
JOB_STATUSES = ("open", "closed")
APPLICATION_STATUSES = ("pending", "accepted", "rejected")


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    # stored as naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


# --- Models ------------------------------------------------------------------

class Account(Base):
    """Identity record owned by the local identity service."""

    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    phone: Mapped[Optional[str]] = mapped_column(String(20), unique=True, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(320), unique=True, index=True)
    username: Mapped[Optional[str]] = mapped_column(String(120), unique=True, index=True)
    password_hash: Mapped[Optional[str]] = mapped_column(String(200))
    user_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    last_sign_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    profile: Mapped[Optional["UserProfile"]] = relationship(back_populates="account", uselist=False)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Account id={self.id} phone={self.phone!r} email={self.email!r} username={self.username!r}>"


class OtpChallenge(Base):
    """One-time code sent to a phone number or email address."""

    __tablename__ = "otp_challenges"

    id: Mapped[int] = mapped_column(primary_key=True)
    identifier: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    code_hash: Mapped[str] = mapped_column(String(200), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    consumed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class UserProfile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    account_id: Mapped[str] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), unique=True, index=True, nullable=False
    )
    account: Mapped["Account"] = relationship(back_populates="profile")

    full_name: Mapped[Optional[str]] = mapped_column(String(200))
    role: Mapped[str] = mapped_column(
        Enum(*ROLES, name="role_enum", native_enum=False), nullable=False, index=True
    )
    phone: Mapped[Optional[str]] = mapped_column(String(20))
    email: Mapped[Optional[str]] = mapped_column(String(320))
    location: Mapped[Optional[str]] = mapped_column(String(300))
    avatar_url: Mapped[Optional[str]] = mapped_column(String(600))

    # worker details
    age: Mapped[Optional[int]] = mapped_column(Integer)
    skills: Mapped[Optional[str]] = mapped_column(Text)
    experience: Mapped[Optional[int]] = mapped_column(Integer)
    # employer details
    business_name: Mapped[Optional[str]] = mapped_column(String(200))
    business_type: Mapped[Optional[str]] = mapped_column(String(120))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<UserProfile account_id={self.account_id} role={self.role} name={self.full_name!r}>"


class Job(Base):
    __tablename__ = "jobs"
    __table_args__ = (
        Index("ix_jobs_status_created_at", "status", "created_at"),
        Index("ix_jobs_employer_created_at", "employer_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    employer_id: Mapped[str] = mapped_column(ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)

    title: Mapped[str] = mapped_column(String(300), nullable=False)
    category: Mapped[str] = mapped_column(String(80), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    location: Mapped[str] = mapped_column(String(300), default="", nullable=False)

    # Optional geocoordinate; absent means "unranked", never "excluded"
    lat: Mapped[Optional[float]] = mapped_column(Float)
    lng: Mapped[Optional[float]] = mapped_column(Float)

    date: Mapped[Optional[dt.date]] = mapped_column(Date)
    time: Mapped[str] = mapped_column(String(80), default="", nullable=False)
    pay: Mapped[str] = mapped_column(String(80), default="", nullable=False)
    urgent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[str] = mapped_column(
        Enum(*JOB_STATUSES, name="job_status_enum", native_enum=False), default="open", nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    applications: Mapped[list["JobApplication"]] = relationship(
        back_populates="job", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Job id={self.id} status={self.status} title={self.title!r}>"


class JobApplication(Base):
    __tablename__ = "job_applications"
    __table_args__ = (
        # At most one application per worker per job
        UniqueConstraint("job_id", "worker_id", name="uq_application_job_worker"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    job_id: Mapped[str] = mapped_column(ForeignKey("jobs.id", ondelete="CASCADE"), index=True, nullable=False)
    job: Mapped["Job"] = relationship(back_populates="applications")
    worker_id: Mapped[str] = mapped_column(ForeignKey("accounts.id", ondelete="CASCADE"), index=True, nullable=False)

    status: Mapped[str] = mapped_column(
        Enum(*APPLICATION_STATUSES, name="application_status_enum", native_enum=False),
        default="pending",
        nullable=False,
    )
    message: Mapped[Optional[str]] = mapped_column(Text)
    applied_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<JobApplication job_id={self.job_id} worker_id={self.worker_id} status={self.status}>"


__all__ = [
    "Base",
    "Account",
    "OtpChallenge",
    "UserProfile",
    "Job",
    "JobApplication",
    "ROLES",
    "JOB_STATUSES",
    "APPLICATION_STATUSES",
    "utcnow",
]
