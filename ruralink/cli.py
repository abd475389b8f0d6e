"""Command-line shell for Ruralink.

    ruralink login --mode phone 9876543210
    ruralink jobs --near --radius 10
    ruralink post-job --title "House Painting Job" --category Painter ...

Notices are printed to stdout; ``-v`` turns on debug logging.
"""
from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys
from dataclasses import dataclass
from typing import Optional

from ruralink.auth import AuthFlow, AuthMode, AuthState, Intent, SessionManager
from ruralink.backends import Backend, get_backend
from ruralink.config import SETTINGS, Settings
from ruralink.core.errors import Notice, ValidationError
from ruralink.core.types import ApplicationStatus, GeoPoint, RankedJob, Role
from ruralink.filters import filter_and_rank
from ruralink.location import LocationCache, reverse_geocode
from ruralink.marketplace import Marketplace
from ruralink.realtime import ChangeFeed
from ruralink.stats import fetch_stats
from ruralink.storage import LocalStore

LOGGER = logging.getLogger(__name__)

LOGIN_KEY = "auth.login"

MODES = {
    "phone": AuthMode.PHONE_OTP,
    "username": AuthMode.USERNAME_PASSWORD,
    "email": AuthMode.EMAIL_PASSWORD,
}

IDENTIFIER_LABELS = {
    AuthMode.PHONE_OTP: "Phone number",
    AuthMode.USERNAME_PASSWORD: "Username",
    AuthMode.EMAIL_PASSWORD: "Email",
}


def print_notice(notice: Notice) -> None:
    prefix = "⚠️ " if notice.destructive else ""
    print(f"{prefix}{notice.title} {notice.description}".rstrip())


@dataclass
class App:
    settings: Settings
    store: LocalStore
    backend: Backend
    session: SessionManager
    market: Marketplace
    locations: LocationCache


def build_app(settings: Optional[Settings] = None, backend: Optional[Backend] = None) -> App:
    settings = settings or SETTINGS
    store = LocalStore(settings.state_path)
    feed = ChangeFeed()
    backend = backend or get_backend(settings, feed)
    return App(
        settings=settings,
        store=store,
        backend=backend,
        session=SessionManager(backend, backend, store),
        market=Marketplace(backend, notify=print_notice, settings=settings),
        locations=LocationCache(store),
    )


def _prompt(label: str, value: Optional[str] = None, *, secret: bool = False) -> str:
    if value is not None:
        return value
    return getpass.getpass(f"{label}: ") if secret else input(f"{label}: ")


def _current_role(app: App) -> Optional[Role]:
    if app.session.profile is not None:
        return app.session.profile.role
    login = app.store.get(LOGIN_KEY) or {}
    return Role(login["role"]) if login.get("role") else None


def _require_login(app: App, role: Optional[Role] = None) -> Optional[str]:
    if app.session.session is None:
        print("Not logged in. Run `ruralink login` first.")
        return None
    if role is not None and _current_role(app) is not role:
        print(f"This command is only available to {role.value}s.")
        return None
    return app.session.session.account_id


def _format_ranked(ranked: RankedJob) -> str:
    job = ranked.job
    distance = f"{ranked.distance:.1f} km" if ranked.distance is not None else "distance unknown"
    urgent = " [URGENT]" if job.urgent else ""
    return f"{job.id}  {job.title}{urgent} · {job.category} · {job.location} · {job.pay} · {distance}"


# -- auth ---------------------------------------------------------------------


async def _settled(flow: AuthFlow) -> AuthState:
    """Wait until the profile race has been decided."""
    if flow.state is not AuthState.RESOLVING_PROFILE:
        return flow.state
    done = asyncio.Event()
    unsubscribe = flow.on_state_change(lambda s: done.set() if s is not AuthState.RESOLVING_PROFILE else None)
    try:
        await done.wait()
    finally:
        unsubscribe()
    return flow.state


PROFILE_PROMPTS = {
    Role.WORKER: (("age", "Age"), ("skills", "Skills")),
    Role.EMPLOYER: (("business_name", "Business/organization name"),),
}
PROFILE_OPTIONAL = {
    Role.WORKER: ("experience",),
    Role.EMPLOYER: ("business_type",),
}


def _profile_answers(args: argparse.Namespace, role: Role) -> dict:
    fields = {
        "full_name": _prompt("Full name", getattr(args, "name", None)),
        "location": _prompt("Location", getattr(args, "location", None)),
    }
    for key, label in PROFILE_PROMPTS[role]:
        fields[key] = _prompt(label, getattr(args, key, None))
    for key in PROFILE_OPTIONAL[role]:
        fields[key] = getattr(args, key, None)
    return fields


async def _authenticate(app: App, args: argparse.Namespace, intent: Intent) -> int:
    mode = MODES[args.mode]
    flow = AuthFlow(app.backend, app.backend, mode, profile_timeout=app.settings.profile_timeout, notify=print_notice)
    role = Role(args.role) if getattr(args, "role", None) else Role.WORKER
    try:
        identifier = _prompt(IDENTIFIER_LABELS[mode], args.identifier)
        credential = None
        confirm = None
        if not mode.uses_challenge:
            credential = _prompt("Password", args.password, secret=True)
            if intent is Intent.REGISTER:
                confirm = _prompt("Confirm password", args.confirm, secret=True)
        state = await flow.submit(
            identifier,
            credential,
            intent=intent,
            confirm=confirm,
            role=role,
            full_name=getattr(args, "name", None),
        )
        if state is AuthState.AWAITING_CHALLENGE:
            state = await flow.submit_code(_prompt("Enter the 6-digit code", args.code))
        state = await _settled(flow)

        if state is AuthState.ROLE_SELECTION_FALLBACK:
            picked = args.role or _prompt("Continue as (worker/employer)").strip().lower()
            flow.pick_role(Role(picked))
        elif state is AuthState.AWAITING_PROFILE_COMPLETION:
            await flow.complete_profile(_profile_answers(args, role))
    except ValidationError:
        flow.close()
        return 2
    except ValueError as e:
        print(f"⚠️ {e}")
        flow.close()
        return 2

    result, issued = flow.result, flow.issued
    flow.close()
    if result is None or issued is None:
        return 1
    app.session.adopt(issued)
    app.store.set(
        LOGIN_KEY,
        {"role": result.role.value, "display_name": result.display_name, "contact": result.contact},
    )
    await app.session.refresh_profile()
    print(f"Logged in as {result.display_name} ({result.role.value})")
    return 0


async def cmd_login(app: App, args: argparse.Namespace) -> int:
    return await _authenticate(app, args, Intent.LOGIN)


async def cmd_register(app: App, args: argparse.Namespace) -> int:
    return await _authenticate(app, args, Intent.REGISTER)


async def cmd_whoami(app: App, args: argparse.Namespace) -> int:
    if app.session.session is None:
        print("Not logged in.")
        return 1
    profile = app.session.profile
    login = app.store.get(LOGIN_KEY) or {}
    name = profile.full_name if profile and profile.full_name else login.get("display_name", "")
    role = _current_role(app)
    print(f"{name} ({role.value if role else 'unknown role'})")
    print(f"account: {app.session.session.account_id}")
    if profile and profile.location:
        print(f"location: {profile.location}")
    if profile and profile.business_name:
        print(f"business: {profile.business_name}")
    if profile and profile.skills:
        print(f"skills: {profile.skills}")
    return 0


async def cmd_logout(app: App, args: argparse.Namespace) -> int:
    await app.session.sign_out()
    print("Logged out.")
    return 0


# -- jobs ---------------------------------------------------------------------


def _origin(app: App, args: argparse.Namespace) -> Optional[GeoPoint]:
    if args.lat is not None and args.lng is not None:
        return GeoPoint(lat=args.lat, lng=args.lng)
    return app.locations.load()


async def cmd_jobs(app: App, args: argparse.Namespace) -> int:
    app.market.fetch_jobs()
    jobs = app.market.search(args.search) if args.search else list(app.market.jobs)
    if args.near or args.lat is not None:
        origin = _origin(app, args)
        if origin is None:
            print("No location known. Run `ruralink locate LAT LNG` or pass --lat/--lng.")
            return 1
        radius = args.radius if args.radius is not None else app.settings.search_radius_km
        ranked = filter_and_rank(jobs, origin, radius)
    else:
        ranked = [RankedJob(job=j, distance=None) for j in jobs]

    if not ranked:
        print("No jobs found.")
        return 0
    for r in ranked:
        print(_format_ranked(r))
    print(f"{len(ranked)} job(s)")
    return 0


async def cmd_post_job(app: App, args: argparse.Namespace) -> int:
    employer_id = _require_login(app, Role.EMPLOYER)
    if employer_id is None:
        return 1
    fields = {
        "title": args.title,
        "category": args.category,
        "description": args.description,
        "location": args.location,
        "date": args.date,
        "start_time": args.start,
        "end_time": args.end,
        "pay": args.pay,
        "urgent": args.urgent,
    }
    try:
        job = app.market.create_job(employer_id, fields, app.locations.load())
    except ValidationError:
        return 2
    if job is None:
        return 1
    print(f"job id: {job.id}")
    return 0


async def cmd_close_job(app: App, args: argparse.Namespace) -> int:
    employer_id = _require_login(app, Role.EMPLOYER)
    if employer_id is None:
        return 1
    return 0 if app.market.close_job(args.job_id, employer_id) else 1


async def cmd_delete_job(app: App, args: argparse.Namespace) -> int:
    employer_id = _require_login(app, Role.EMPLOYER)
    if employer_id is None:
        return 1
    return 0 if app.market.delete_job(args.job_id, employer_id) else 1


async def cmd_my_jobs(app: App, args: argparse.Namespace) -> int:
    employer_id = _require_login(app, Role.EMPLOYER)
    if employer_id is None:
        return 1
    summary = app.market.employer_summary(employer_id)
    print(f"open={summary.open_count} closed={summary.closed_count} applications={summary.applications_count}")
    for job in summary.recent:
        print(f"{job.id}  {job.title} · {job.status.value}")
    return 0


# -- applications -------------------------------------------------------------


async def cmd_apply(app: App, args: argparse.Namespace) -> int:
    worker_id = _require_login(app, Role.WORKER)
    if worker_id is None:
        return 1
    return 0 if app.market.apply_to_job(args.job_id, worker_id, args.message) else 1


async def cmd_applications(app: App, args: argparse.Namespace) -> int:
    account_id = _require_login(app)
    if account_id is None:
        return 1
    status = ApplicationStatus(args.status) if args.status else None
    if _current_role(app) is Role.EMPLOYER:
        rows = app.market.applications_for(employer_id=account_id, status=status)
    else:
        rows = app.market.applications_for(worker_id=account_id, status=status)
    counts = Marketplace.status_counts(rows)
    print(" ".join(f"{s.value}={n}" for s, n in counts.items()))
    for a in rows:
        print(f"{a.id}  job={a.job_id} worker={a.worker_id} · {a.status.value}")
    return 0


async def cmd_review(app: App, args: argparse.Namespace) -> int:
    employer_id = _require_login(app, Role.EMPLOYER)
    if employer_id is None:
        return 1
    status = ApplicationStatus.ACCEPTED if args.decision == "accept" else ApplicationStatus.REJECTED
    return 0 if app.market.set_application_status(args.application_id, employer_id, status) else 1


# -- misc ---------------------------------------------------------------------


async def cmd_stats(app: App, args: argparse.Namespace) -> int:
    stats = fetch_stats(app.backend)
    print(f"Active workers: {stats.active_workers}")
    print(f"Jobs posted: {stats.jobs_posted}")
    print(f"Success rate: {stats.success_rate}%")
    return 0


async def cmd_locate(app: App, args: argparse.Namespace) -> int:
    if args.clear:
        app.locations.clear()
        print("Cached location cleared.")
        return 0
    if args.lat is None or args.lng is None:
        cached = app.locations.load()
        if cached is None:
            print("No cached location.")
            return 1
        print(f"{cached.address or cached.coordinates_label()} ({cached.coordinates_label()})")
        return 0
    point = await asyncio.to_thread(reverse_geocode, args.lat, args.lng, timeout=app.settings.geocode_timeout)
    app.locations.save(point)
    app.locations.mark_prompt_shown()
    print(f"Location set: {point.address}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ruralink", description="Ruralink: local daily-wage job marketplace")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    for name, func, help_text in (
        ("login", cmd_login, "Log in with phone OTP, username or email"),
        ("register", cmd_register, "Create an account and profile"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("identifier", nargs="?", default=None, help="Phone number, username or email")
        p.add_argument("--mode", choices=sorted(MODES), default="phone")
        p.add_argument("--password", default=None, help="Prompted when omitted")
        p.add_argument("--code", default=None, help="One-time code (prompted when omitted)")
        p.add_argument("--role", choices=[r.value for r in Role], default=None)
        p.add_argument("--name", default=None, help="Full name for a new profile")
        p.add_argument("--location", default=None, help="Location for a new profile")
        p.add_argument("--age", default=None, help="Worker profile: age")
        p.add_argument("--skills", default=None, help="Worker profile: skills, e.g. 'Painting, Plastering'")
        p.add_argument("--experience", default=None, help="Worker profile: years of experience (optional)")
        p.add_argument("--business-name", dest="business_name", default=None, help="Employer profile: business name")
        p.add_argument("--business-type", dest="business_type", default=None, help="Employer profile (optional)")
        if name == "register":
            p.add_argument("--confirm", default=None, help="Password confirmation")
        else:
            p.set_defaults(confirm=None)
        p.set_defaults(func=func)

    sub.add_parser("whoami", help="Show the logged-in profile").set_defaults(func=cmd_whoami)
    sub.add_parser("logout", help="Sign out and forget the stored session").set_defaults(func=cmd_logout)

    p = sub.add_parser("jobs", help="List open jobs")
    p.add_argument("--near", action="store_true", help="Only jobs within the search radius, nearest first")
    p.add_argument("--lat", type=float, default=None)
    p.add_argument("--lng", type=float, default=None)
    p.add_argument("--radius", type=float, default=None, help="Radius in km (default from RURALINK_SEARCH_RADIUS_KM)")
    p.add_argument("--search", default=None, help="Match title, category or location")
    p.set_defaults(func=cmd_jobs)

    p = sub.add_parser("post-job", help="Post a job (employers)")
    p.add_argument("--title", required=True)
    p.add_argument("--category", required=True, help=", ".join(SETTINGS.categories))
    p.add_argument("--description", default="")
    p.add_argument("--location", default="")
    p.add_argument("--date", default=None, help="YYYY-MM-DD")
    p.add_argument("--start", default="", help="Start time, e.g. 09:00")
    p.add_argument("--end", default="", help="End time, e.g. 17:00")
    p.add_argument("--pay", default="")
    p.add_argument("--urgent", action="store_true")
    p.set_defaults(func=cmd_post_job)

    p = sub.add_parser("my-jobs", help="Summary of your postings (employers)")
    p.set_defaults(func=cmd_my_jobs)

    for name, func, help_text in (
        ("close-job", cmd_close_job, "Stop accepting applications for a job"),
        ("delete-job", cmd_delete_job, "Delete one of your jobs"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("job_id")
        p.set_defaults(func=func)

    p = sub.add_parser("apply", help="Apply to a job (workers)")
    p.add_argument("job_id")
    p.add_argument("--message", default=None)
    p.set_defaults(func=cmd_apply)

    p = sub.add_parser("applications", help="List your applications, or applications to your jobs")
    p.add_argument("--status", choices=[s.value for s in ApplicationStatus], default=None)
    p.set_defaults(func=cmd_applications)

    p = sub.add_parser("review", help="Accept or reject an application (employers)")
    p.add_argument("application_id")
    p.add_argument("decision", choices=["accept", "reject"])
    p.set_defaults(func=cmd_review)

    sub.add_parser("stats", help="Platform counters").set_defaults(func=cmd_stats)

    p = sub.add_parser("locate", help="Set, show or clear the cached location")
    p.add_argument("lat", type=float, nargs="?", default=None)
    p.add_argument("lng", type=float, nargs="?", default=None)
    p.add_argument("--clear", action="store_true")
    p.set_defaults(func=cmd_locate)
    return parser


async def run(args: argparse.Namespace, app: App) -> int:
    if args.func in (cmd_login, cmd_register):
        # the flow owns the session until it succeeds
        return await args.func(app, args)
    async with app.session:
        return await args.func(app, args)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    app = build_app()
    try:
        return asyncio.run(run(args, app))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
