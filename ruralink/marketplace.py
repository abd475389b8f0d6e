"""Job and application operations as seen from the dashboards.

Every call into the backend is wrapped here: failures are classified by the
adapter, logged, and reported once through ``notify``. Methods return
``None``, ``False`` or an empty list when the backend call fails; only
:class:`~ruralink.core.errors.ValidationError` propagates, after its notice.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from ruralink.backends.base import Backend
from ruralink.config import SETTINGS, Settings
from ruralink.core.errors import Notice, Notifier, RuralinkError, ValidationError, log_notice, notice_for
from ruralink.core.types import Application, ApplicationStatus, GeoPoint, JobPosting, JobStatus, RankedJob
from ruralink.core.validation import JobFields, validate_job_fields
from ruralink.filters import filter_and_rank, search_jobs

LOGGER = logging.getLogger(__name__)

RECENT_LIMIT = 5


@dataclass
class EmployerSummary:
    jobs: list[JobPosting] = field(default_factory=list)
    open_count: int = 0
    closed_count: int = 0
    applications_count: int = 0

    @property
    def recent(self) -> list[JobPosting]:
        return self.jobs[:RECENT_LIMIT]


class Marketplace:
    def __init__(
        self,
        backend: Backend,
        *,
        notify: Notifier = log_notice,
        settings: Optional[Settings] = None,
    ):
        self.backend = backend
        self.notify = notify
        self.settings = settings or SETTINGS
        self.jobs: list[JobPosting] = []

    def _report(self, exc: RuralinkError, fallback: str, action: str) -> None:
        LOGGER.warning("%s failed: %s", action, exc)
        self.notify(notice_for(exc, fallback))

    # -- job feed -------------------------------------------------------------

    def fetch_jobs(self) -> list[JobPosting]:
        """Reload the open-job list (newest first) into the cache."""
        try:
            jobs = self.backend.list_open_jobs()
        except RuralinkError as e:
            self._report(e, "Failed to load jobs", "fetch_jobs")
            return self.jobs
        self.jobs = list(jobs)
        LOGGER.debug("loaded %d open jobs", len(self.jobs))
        return self.jobs

    def jobs_near(self, origin: GeoPoint, radius_km: Optional[float] = None) -> list[RankedJob]:
        radius = self.settings.search_radius_km if radius_km is None else radius_km
        return filter_and_rank(self.jobs, origin, radius)

    def search(self, query: Optional[str]) -> list[JobPosting]:
        return search_jobs(self.jobs, query)

    # -- employer side --------------------------------------------------------

    def create_job(
        self,
        employer_id: str,
        fields: Union[JobFields, Mapping[str, Any]],
        origin: Optional[GeoPoint] = None,
    ) -> Optional[JobPosting]:
        """Post a job at the poster's current location (if known)."""
        try:
            parsed = validate_job_fields(fields, self.settings.categories)
        except ValidationError as e:
            self.notify(notice_for(e))
            raise

        lat, lng = parsed.lat, parsed.lng
        if origin is not None:
            lat, lng = origin.lat, origin.lng
        payload = {
            "title": parsed.title,
            "category": parsed.category,
            "description": parsed.description,
            "location": parsed.location,
            "lat": lat,
            "lng": lng,
            "date": parsed.date,
            "time": parsed.time,
            "pay": parsed.pay,
            "urgent": parsed.urgent,
            "status": JobStatus.OPEN.value,
        }
        try:
            job = self.backend.create_job(employer_id, payload)
        except RuralinkError as e:
            self._report(e, "Failed to post job", "create_job")
            return None

        self.jobs.insert(0, job)
        LOGGER.info("job posted id=%s employer=%s", job.id, employer_id)
        self.notify(
            Notice(
                "Job Posted Successfully!",
                "Your job posting is now live and workers in your area will be notified.",
            )
        )
        return job

    def delete_job(self, job_id: str, employer_id: str) -> bool:
        try:
            self.backend.delete_job(job_id, employer_id)
        except RuralinkError as e:
            self._report(e, "Failed to delete job", "delete_job")
            return False
        self.jobs = [j for j in self.jobs if j.id != job_id]
        self.notify(Notice("Job Deleted", "The job posting has been removed."))
        return True

    def close_job(self, job_id: str, employer_id: str) -> Optional[JobPosting]:
        try:
            job = self.backend.close_job(job_id, employer_id)
        except RuralinkError as e:
            self._report(e, "Failed to close job", "close_job")
            return None
        # closed jobs leave the open feed
        self.jobs = [j for j in self.jobs if j.id != job_id]
        self.notify(Notice("Job Closed", f"{job.title} is no longer accepting applications."))
        return job

    def employer_summary(self, employer_id: str) -> EmployerSummary:
        try:
            jobs = self.backend.list_employer_jobs(employer_id)
            applications = self.backend.list_applications(employer_id=employer_id)
        except RuralinkError as e:
            self._report(e, "Failed to load your jobs", "employer_summary")
            return EmployerSummary()
        by_status = Counter(j.status for j in jobs)
        return EmployerSummary(
            jobs=list(jobs),
            open_count=by_status[JobStatus.OPEN],
            closed_count=by_status[JobStatus.CLOSED],
            applications_count=len(applications),
        )

    # -- applications ---------------------------------------------------------

    def apply_to_job(self, job_id: str, worker_id: str, message: Optional[str] = None) -> Optional[Application]:
        try:
            application = self.backend.apply_to_job(job_id, worker_id, message)
        except RuralinkError as e:
            self._report(e, "Failed to submit application", "apply_to_job")
            return None
        self.notify(Notice("Application Sent!", "The employer will contact you if you're selected."))
        return application

    def applications_for(
        self,
        *,
        worker_id: Optional[str] = None,
        employer_id: Optional[str] = None,
        status: Optional[ApplicationStatus] = None,
    ) -> list[Application]:
        try:
            rows = self.backend.list_applications(worker_id=worker_id, employer_id=employer_id, status=status)
        except RuralinkError as e:
            self._report(e, "Failed to load applications", "applications_for")
            return []
        return list(rows)

    @staticmethod
    def status_counts(applications: list[Application]) -> dict[ApplicationStatus, int]:
        counts = Counter(a.status for a in applications)
        return {status: counts.get(status, 0) for status in ApplicationStatus}

    def set_application_status(
        self, application_id: str, employer_id: str, status: ApplicationStatus
    ) -> Optional[Application]:
        status = ApplicationStatus(status)
        try:
            application = self.backend.set_application_status(application_id, employer_id, status)
        except RuralinkError as e:
            self._report(e, "Failed to update application", "set_application_status")
            return None
        self.notify(Notice("Application Updated", f"Application marked as {status.value}."))
        return application
