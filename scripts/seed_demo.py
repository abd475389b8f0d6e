"""Seed the local database with a demo employer and a few open jobs.

The jobs sit around Hyderabad so `ruralink jobs --near --lat 17.385 --lng 78.4867`
has something to rank. One job is left without coordinates on purpose.
"""

from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta

from ruralink.db import crud
from ruralink.db.models import Base
from ruralink.db.session import ENGINE, get_session

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEMO_PHONE = "9000000001"

DEMO_JOBS = [
    {
        "title": "House Painting Job",
        "category": "Painter",
        "description": "Need experienced painter for 2BHK apartment. Interior walls only.",
        "location": "Banjara Hills, Hyderabad",
        "lat": 17.4126,
        "lng": 78.4482,
        "time": "09:00 - 17:00",
        "pay": "₹800/day",
        "urgent": True,
    },
    {
        "title": "Office Cleaning",
        "category": "Cleaner",
        "description": "Daily office cleaning for a small IT company. Morning shift.",
        "location": "HITEC City, Hyderabad",
        "lat": 17.4435,
        "lng": 78.3772,
        "time": "07:00 - 10:00",
        "pay": "₹500/day",
        "urgent": False,
    },
    {
        "title": "Moving Helper Needed",
        "category": "Helper",
        "description": "Help with loading and unloading furniture for a house shift.",
        "location": "Secunderabad",
        "lat": None,
        "lng": None,
        "time": "10:00 - 14:00",
        "pay": "₹600",
        "urgent": False,
    },
]


@dataclass
class SeedSummary:
    employer_id: str
    created: int
    job_ids: list[str] = field(default_factory=list)


def seed(*, days_ahead: int = 1) -> SeedSummary:
    Base.metadata.create_all(bind=ENGINE)
    with get_session() as session:
        account = crud.find_account(session, kind="phone", value=DEMO_PHONE)
        if account is None:
            account = crud.create_account(session, kind="phone", value=DEMO_PHONE)
        if crud.get_profile(session, account.id) is None:
            crud.create_profile(
                session,
                account.id,
                {
                    "full_name": "Demo Employer",
                    "role": "employer",
                    "phone": DEMO_PHONE,
                    "location": "Hyderabad",
                    "business_name": "KaaryaSetu Demo Works",
                    "business_type": "Construction",
                },
            )

        summary = SeedSummary(employer_id=account.id, created=0)
        when = date.today() + timedelta(days=days_ahead)
        for payload in DEMO_JOBS:
            job = crud.create_job(session, account.id, {**payload, "date": when})
            summary.job_ids.append(job.id)
            summary.created += 1
            logger.info("seeded job %s (%s)", job.id, job.title)
    return summary


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed demo jobs into the local Ruralink database")
    parser.add_argument("--days-ahead", type=int, default=1, help="Schedule the jobs this many days from today")
    args = parser.parse_args()
    summary = seed(days_ahead=args.days_ahead)
    print(json.dumps(asdict(summary), indent=2))


if __name__ == "__main__":
    main()
