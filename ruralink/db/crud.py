from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ruralink.db.models import Account, Job, JobApplication, OtpChallenge, UserProfile, utcnow


# Columns a caller may set when creating rows; anything else is dropped
PROFILE_FIELDS = (
    "full_name", "role", "phone", "email", "location", "avatar_url",
    "age", "skills", "experience", "business_name", "business_type",
)
JOB_FIELDS = ("title", "category", "description", "location", "lat", "lng", "date", "time", "pay", "urgent")


def _pick(data: dict, allowed: Sequence[str]) -> dict:
    return {k: v for k, v in data.items() if k in allowed}


# --- Accounts ----------------------------------------------------------------

def get_account(session: Session, account_id: str) -> Optional[Account]:
    return session.get(Account, account_id)


def find_account(session: Session, *, kind: str, value: str) -> Optional[Account]:
    """Look an account up by ``phone``, ``email`` or ``username``."""
    column = getattr(Account, kind)
    return session.execute(select(Account).where(column == value)).scalar_one_or_none()


def create_account(
    session: Session,
    *,
    kind: str,
    value: str,
    password_hash: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> Account:
    """Insert an account. Raises IntegrityError when the identifier is taken."""
    account = Account(password_hash=password_hash, user_metadata=metadata or {})
    setattr(account, kind, value)
    session.add(account)
    session.commit()
    session.refresh(account)
    return account


def touch_sign_in(session: Session, account: Account) -> None:
    account.last_sign_in_at = utcnow()
    session.commit()


# --- One-time codes ----------------------------------------------------------

def create_challenge(session: Session, identifier: str, code_hash: str, expires_at: datetime) -> OtpChallenge:
    # A new code supersedes every earlier unconsumed one for the identifier
    session.query(OtpChallenge).filter(
        OtpChallenge.identifier == identifier, OtpChallenge.consumed.is_(False)
    ).update({OtpChallenge.consumed: True}, synchronize_session=False)
    challenge = OtpChallenge(identifier=identifier, code_hash=code_hash, expires_at=expires_at)
    session.add(challenge)
    session.commit()
    session.refresh(challenge)
    return challenge


def latest_challenge(session: Session, identifier: str) -> Optional[OtpChallenge]:
    return (
        session.query(OtpChallenge)
        .filter(OtpChallenge.identifier == identifier, OtpChallenge.consumed.is_(False))
        .order_by(OtpChallenge.id.desc())
        .first()
    )


def consume_challenge(session: Session, challenge: OtpChallenge) -> None:
    challenge.consumed = True
    session.commit()


def record_failed_attempt(session: Session, challenge: OtpChallenge, max_attempts: int) -> int:
    """Count a wrong guess; the challenge is consumed once ``max_attempts`` is reached."""
    challenge.attempts = (challenge.attempts or 0) + 1
    if challenge.attempts >= max_attempts:
        challenge.consumed = True
    session.commit()
    return challenge.attempts


# --- Profiles ----------------------------------------------------------------

def get_profile(session: Session, account_id: str) -> Optional[UserProfile]:
    return session.query(UserProfile).filter(UserProfile.account_id == account_id).one_or_none()


def create_profile(session: Session, account_id: str, data: dict) -> UserProfile:
    """Create the single profile for an account. Raises IntegrityError on a second call."""
    profile = UserProfile(account_id=account_id, **_pick(data, PROFILE_FIELDS))
    session.add(profile)
    session.commit()
    session.refresh(profile)
    return profile


def count_profiles(session: Session, role: Optional[str] = None) -> int:
    q = session.query(func.count(UserProfile.id))
    if role:
        q = q.filter(UserProfile.role == role)
    return q.scalar() or 0


# --- Jobs --------------------------------------------------------------------

def create_job(session: Session, employer_id: str, job_data: dict) -> Job:
    job = Job(employer_id=employer_id, status="open", **_pick(job_data, JOB_FIELDS))
    session.add(job)
    session.commit()
    session.refresh(job)
    return job


def get_job_by_id(session: Session, job_id: str) -> Optional[Job]:
    return session.get(Job, job_id)


def list_jobs(
    session: Session,
    *,
    status: Optional[str] = "open",
    employer_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> Sequence[Job]:
    """Jobs newest first, optionally narrowed by status and owner."""
    q = session.query(Job)
    if status:
        q = q.filter(Job.status == status)
    if employer_id:
        q = q.filter(Job.employer_id == employer_id)
    q = q.order_by(Job.created_at.desc())
    if limit:
        q = q.limit(limit)
    return q.all()


def set_job_status(session: Session, job: Job, status: str) -> Job:
    job.status = status
    session.commit()
    session.refresh(job)
    return job


def delete_job(session: Session, job_id: str, employer_id: Optional[str] = None) -> bool:
    q = session.query(Job).filter(Job.id == job_id)
    if employer_id:
        q = q.filter(Job.employer_id == employer_id)
    job = q.first()
    if job is None:
        return False
    # Remove applications first to avoid orphans if FK doesn't cascade
    session.query(JobApplication).filter(JobApplication.job_id == job_id).delete(synchronize_session=False)
    session.delete(job)
    session.commit()
    return True


def count_jobs(session: Session, status: Optional[str] = None) -> int:
    q = session.query(func.count(Job.id))
    if status:
        q = q.filter(Job.status == status)
    return q.scalar() or 0


# --- Applications ------------------------------------------------------------

def create_application(
    session: Session,
    job_id: str,
    worker_id: str,
    message: Optional[str] = None,
) -> JobApplication:
    """Insert a pending application. Raises IntegrityError for a duplicate (job, worker)."""
    application = JobApplication(job_id=job_id, worker_id=worker_id, message=message, status="pending")
    session.add(application)
    session.commit()
    session.refresh(application)
    return application


def get_application(session: Session, application_id: str) -> Optional[JobApplication]:
    return session.get(JobApplication, application_id)


def set_application_status(session: Session, application: JobApplication, status: str) -> JobApplication:
    application.status = status
    session.commit()
    session.refresh(application)
    return application


def query_applications(
    session: Session,
    *,
    worker_id: Optional[str] = None,
    employer_id: Optional[str] = None,
    status: Optional[str] = None,
) -> Sequence[JobApplication]:
    q = session.query(JobApplication)
    if employer_id:
        q = q.join(Job, JobApplication.job_id == Job.id).filter(Job.employer_id == employer_id)
    if worker_id:
        q = q.filter(JobApplication.worker_id == worker_id)
    if status:
        q = q.filter(JobApplication.status == status)
    return q.order_by(JobApplication.applied_at.desc()).all()
