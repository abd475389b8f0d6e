from __future__ import annotations

from dataclasses import dataclass
import datetime as dt
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class Role(str, Enum):
    WORKER = "worker"
    EMPLOYER = "employer"


class JobStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float
    address: Optional[str] = None

    def coordinates_label(self) -> str:
        return f"{self.lat:.4f}, {self.lng:.4f}"


class Profile(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    account_id: str
    full_name: Optional[str] = None
    role: Role
    phone: Optional[str] = None
    email: Optional[str] = None
    location: Optional[str] = None
    avatar_url: Optional[str] = None
    age: Optional[int] = None
    skills: Optional[str] = None
    experience: Optional[int] = None
    business_name: Optional[str] = None
    business_type: Optional[str] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    @property
    def contact(self) -> str:
        return self.phone or self.email or ""

    @property
    def is_complete(self) -> bool:
        return bool(self.full_name and self.location)


class JobPosting(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    employer_id: str
    title: str
    category: str
    description: str = ""
    location: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None
    date: Optional[dt.date] = None
    time: str = ""
    pay: str = ""
    urgent: bool = False
    status: JobStatus = JobStatus.OPEN
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    @property
    def has_coordinate(self) -> bool:
        # (0, 0) is a real coordinate; only a missing value means "unlocated"
        return self.lat is not None and self.lng is not None


class Application(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    job_id: str
    worker_id: str
    status: ApplicationStatus = ApplicationStatus.PENDING
    message: Optional[str] = None
    applied_at: Optional[dt.datetime] = None


@dataclass(frozen=True)
class RankedJob:
    job: JobPosting
    distance: Optional[float]


@dataclass(frozen=True)
class IssuedSession:
    """What the identity service hands back after a successful credential check."""

    account_id: str
    token: str
    contact: str = ""
    is_new: bool = False


@dataclass(frozen=True)
class Counts:
    workers: int
    jobs: int
    closed_jobs: int
