from __future__ import annotations

from typing import Iterable, Optional

from ruralink.core.types import JobPosting


def matches_query(job: JobPosting, query: str) -> bool:
    q = query.lower()
    return q in (job.title or "").lower() or q in (job.category or "").lower() or q in (job.location or "").lower()


def search_jobs(jobs: Iterable[JobPosting], query: Optional[str]) -> list[JobPosting]:
    """Case-insensitive substring search over title, category and location."""
    q = (query or "").strip()
    if not q:
        return list(jobs)
    return [job for job in jobs if matches_query(job, q)]
