import unittest

from ruralink.core.types import JobPosting
from ruralink.filters import search_jobs


def _job(job_id, title, category, location):
    return JobPosting(id=job_id, employer_id="emp", title=title, category=category, location=location)


class SearchJobsTests(unittest.TestCase):
    def setUp(self):
        self.jobs = [
            _job("1", "House Painting Job", "Painter", "Banjara Hills, Hyderabad"),
            _job("2", "Office Cleaning", "Cleaner", "HITEC City, Hyderabad"),
            _job("3", "Moving Helper Needed", "Helper", "Secunderabad"),
        ]

    def test_matches_title_case_insensitively(self):
        self.assertEqual([j.id for j in search_jobs(self.jobs, "painting")], ["1"])

    def test_matches_category(self):
        self.assertEqual([j.id for j in search_jobs(self.jobs, "CLEANER")], ["2"])

    def test_matches_location(self):
        self.assertEqual([j.id for j in search_jobs(self.jobs, "hyderabad")], ["1", "2"])

    def test_blank_query_returns_everything(self):
        self.assertEqual(len(search_jobs(self.jobs, "   ")), 3)
        self.assertEqual(len(search_jobs(self.jobs, None)), 3)

    def test_no_match(self):
        self.assertEqual(search_jobs(self.jobs, "plumber"), [])


if __name__ == "__main__":
    unittest.main()
