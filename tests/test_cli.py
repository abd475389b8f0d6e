import asyncio
import io
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest import mock

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ruralink import cli
from ruralink.backends.local import LocalBackend
from ruralink.config import Settings
from ruralink.core.types import GeoPoint, JobPosting
from ruralink.db.models import Base


def make_backend(settings):
    engine = create_engine(
        "sqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return LocalBackend(sessionmaker(bind=engine, expire_on_commit=False), settings=settings)


class ParserTests(unittest.TestCase):
    def test_jobs_arguments(self):
        args = cli.build_parser().parse_args(["jobs", "--near", "--lat", "17.4", "--lng", "78.5", "--radius", "5"])
        self.assertTrue(args.near)
        self.assertEqual((args.lat, args.lng, args.radius), (17.4, 78.5, 5.0))
        self.assertIs(args.func, cli.cmd_jobs)

    def test_login_defaults_to_phone(self):
        args = cli.build_parser().parse_args(["login", "9876543210"])
        self.assertEqual(args.mode, "phone")
        self.assertIsNone(args.confirm)

    def test_command_is_required(self):
        with redirect_stdout(io.StringIO()), mock.patch("sys.stderr", io.StringIO()):
            with self.assertRaises(SystemExit):
                cli.build_parser().parse_args([])


class CommandTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.settings = Settings(
            jwt_secret="t",
            state_path=Path(self.tmp.name) / "state.json",
            profile_timeout=0.05,
        )
        self.backend = make_backend(self.settings)

    def invoke(self, *argv):
        args = cli.build_parser().parse_args(list(argv))
        app = cli.build_app(self.settings, self.backend)
        out = io.StringIO()
        with redirect_stdout(out):
            code = asyncio.run(cli.run(args, app))
        return code, out.getvalue()

    def register_employer(self):
        return self.invoke(
            "register", "lakshmi", "--mode", "username", "--password", "secret1", "--confirm", "secret1",
            "--role", "employer", "--name", "Lakshmi", "--location", "Hyderabad",
            "--business-name", "LK Builders",
        )

    def test_register_then_whoami_then_logout(self):
        code, out = self.register_employer()
        self.assertEqual(code, 0, out)
        self.assertIn("Profile Created!", out)
        self.assertIn("Logged in as Lakshmi (employer)", out)

        code, out = self.invoke("whoami")
        self.assertEqual(code, 0)
        self.assertIn("Lakshmi (employer)", out)
        self.assertIn("location: Hyderabad", out)
        self.assertIn("business: LK Builders", out)

        self.assertEqual(self.invoke("logout")[0], 0)
        code, out = self.invoke("whoami")
        self.assertEqual(code, 1)
        self.assertIn("Not logged in", out)

    def test_mismatched_confirmation_exits_with_validation_code(self):
        code, out = self.invoke(
            "register", "ravi", "--mode", "username", "--password", "secret1", "--confirm", "secret2",
        )
        self.assertEqual(code, 2)
        self.assertIn("Password Mismatch", out)

    def test_worker_register_without_skills_keeps_profile_form(self):
        code, out = self.invoke(
            "register", "ravi", "--mode", "username", "--password", "secret1", "--confirm", "secret1",
            "--role", "worker", "--name", "Ravi", "--location", "Warangal", "--age", "28", "--skills", " ",
        )
        self.assertEqual(code, 2)
        self.assertIn("Incomplete Profile", out)
        self.assertEqual(self.invoke("whoami")[0], 1)

    def test_worker_register_with_details(self):
        code, out = self.invoke(
            "register", "ravi", "--mode", "username", "--password", "secret1", "--confirm", "secret1",
            "--role", "worker", "--name", "Ravi", "--location", "Warangal", "--age", "28",
            "--skills", "Painting", "--experience", "4",
        )
        self.assertEqual(code, 0, out)
        code, out = self.invoke("whoami")
        self.assertIn("skills: Painting", out)

    def test_post_job_requires_login(self):
        code, out = self.invoke("post-job", "--title", "Office Cleaning", "--category", "Cleaner")
        self.assertEqual(code, 1)
        self.assertIn("Not logged in", out)

    def test_employer_posts_and_worker_sees_job_nearby(self):
        self.register_employer()
        with mock.patch.object(cli, "reverse_geocode", return_value=GeoPoint(17.4126, 78.4482, "Banjara Hills")):
            self.assertEqual(self.invoke("locate", "17.4126", "78.4482")[0], 0)

        code, out = self.invoke(
            "post-job", "--title", "House Painting Job", "--category", "Painter", "--description", "2BHK",
            "--location", "Banjara Hills", "--date", "2025-10-20", "--start", "09:00", "--end", "17:00",
            "--pay", "800/day", "--urgent",
        )
        self.assertEqual(code, 0, out)
        self.assertIn("Job Posted Successfully!", out)

        code, out = self.invoke("jobs", "--near", "--lat", "17.385", "--lng", "78.4867")
        self.assertEqual(code, 0)
        self.assertIn("House Painting Job [URGENT]", out)
        self.assertIn("₹800/day", out)
        self.assertIn(" km", out)

        code, out = self.invoke("jobs", "--near", "--lat", "28.61", "--lng", "77.21")
        self.assertIn("No jobs found.", out)

    def test_jobs_near_without_location(self):
        code, out = self.invoke("jobs", "--near")
        self.assertEqual(code, 1)
        self.assertIn("No location known", out)

    def test_stats(self):
        code, out = self.invoke("stats")
        self.assertEqual(code, 0)
        self.assertIn("Success rate: 0%", out)


class FormatTests(unittest.TestCase):
    def test_unlocated_job_line(self):
        job = JobPosting(id="j1", employer_id="e", title="Moving Helper Needed", category="Helper", pay="₹600")
        line = cli._format_ranked(cli.RankedJob(job=job, distance=None))
        self.assertIn("distance unknown", line)


if __name__ == "__main__":
    unittest.main()
