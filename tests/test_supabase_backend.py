import unittest
from types import SimpleNamespace
from unittest import mock

import httpx
from postgrest.exceptions import APIError
from supabase import AuthError

from ruralink.backends.base import SIGNED_IN, SIGNED_OUT
from ruralink.backends.supabase import SupabaseBackend
from ruralink.config import Settings
from ruralink.core.errors import ConflictError, CredentialError, NotFoundError, TransientError
from ruralink.core.types import ApplicationStatus, Role
from ruralink.realtime import ChangeFeed


class FakeAuthError(AuthError):
    def __init__(self, message):
        Exception.__init__(self, message)
        self.message = message


def _auth_response(user_id="user-1", phone="+919876543210", token="jwt-token"):
    return SimpleNamespace(
        user=SimpleNamespace(id=user_id, phone=phone, email=None),
        session=SimpleNamespace(access_token=token),
    )


def _result(data=None, count=None):
    return SimpleNamespace(data=data, count=count)


class SupabaseBackendTests(unittest.TestCase):
    def setUp(self):
        self.client = mock.MagicMock()
        self.feed = ChangeFeed()
        self.backend = SupabaseBackend(
            self.client, settings=Settings(username_domain="kaaryasetu.app"), feed=self.feed
        )
        self.events = []
        self.backend.on_session_change(lambda event, issued: self.events.append(event))
        self.table = self.client.table.return_value

    def test_send_challenge_prefixes_country_code(self):
        self.backend.send_challenge("9876543210")
        self.client.auth.sign_in_with_otp.assert_called_once_with(
            {"phone": "+919876543210", "options": {"channel": "sms"}}
        )

    def test_verify_challenge_issues_session(self):
        self.client.auth.verify_otp.return_value = _auth_response()
        issued = self.backend.verify_challenge("9876543210", "123456")
        self.assertEqual((issued.account_id, issued.token), ("user-1", "jwt-token"))
        self.client.auth.verify_otp.assert_called_once_with(
            {"phone": "+919876543210", "token": "123456", "type": "sms"}
        )
        self.assertEqual(self.events, [SIGNED_IN])

    def test_auth_error_message_is_carried_verbatim(self):
        self.client.auth.verify_otp.side_effect = FakeAuthError("Token has expired or is invalid")
        with self.assertRaises(CredentialError) as ctx:
            self.backend.verify_challenge("9876543210", "000000")
        self.assertEqual(ctx.exception.message, "Token has expired or is invalid")
        self.assertEqual(self.events, [])

    def test_username_login_uses_synthetic_email(self):
        self.client.auth.sign_in_with_password.return_value = _auth_response()
        self.backend.password_login("Ravi_K", "secret1")
        self.client.auth.sign_in_with_password.assert_called_once_with(
            {"email": "ravi_k@kaaryasetu.app", "password": "secret1"}
        )

    def test_register_passes_metadata(self):
        self.client.auth.sign_up.return_value = _auth_response()
        issued = self.backend.password_register("ravi@example.com", "secret1", {"role": "employer"})
        self.assertTrue(issued.is_new)
        payload = self.client.auth.sign_up.call_args[0][0]
        self.assertEqual(payload["options"], {"data": {"role": "employer"}})

    def test_network_failure_is_transient(self):
        self.client.auth.sign_in_with_password.side_effect = httpx.ConnectError("offline")
        with self.assertRaises(TransientError):
            self.backend.password_login("ravi@example.com", "secret1")

    def test_sign_out_notifies_even_on_failure(self):
        self.client.auth.sign_out.side_effect = httpx.ConnectError("offline")
        with self.assertRaises(TransientError):
            self.backend.sign_out("jwt-token")
        self.assertEqual(self.events, [SIGNED_OUT])

    def test_fetch_profile_maps_hosted_columns(self):
        self.table.select.return_value.eq.return_value.limit.return_value.execute.return_value = _result(
            [{"user_id": "user-1", "full_name": "Ravi", "user_type": "employer", "location": "Hyderabad",
              "business_name": "RK Interiors"}]
        )
        profile = self.backend.fetch_profile("user-1")
        self.assertEqual(profile.account_id, "user-1")
        self.assertEqual(profile.business_name, "RK Interiors")
        self.assertIs(profile.role, Role.EMPLOYER)
        self.client.table.assert_called_with("profiles")

    def test_fetch_profile_missing(self):
        self.table.select.return_value.eq.return_value.limit.return_value.execute.return_value = _result([])
        self.assertIsNone(self.backend.fetch_profile("user-1"))

    def test_duplicate_application_is_already_applied(self):
        self.table.insert.return_value.execute.side_effect = APIError(
            {"message": "duplicate key value violates unique constraint", "code": "23505"}
        )
        with self.assertRaises(ConflictError) as ctx:
            self.backend.apply_to_job("job-1", "user-1")
        self.assertEqual(ctx.exception.title, "Already Applied")
        self.assertEqual(ctx.exception.message, "You have already applied to this job.")

    def test_other_api_errors_are_transient(self):
        self.table.select.return_value.eq.return_value.order.return_value.execute.side_effect = APIError(
            {"message": "upstream timeout", "code": "57014"}
        )
        with self.assertRaises(TransientError) as ctx:
            self.backend.list_open_jobs()
        self.assertEqual(ctx.exception.message, "upstream timeout")

    def test_create_job_publishes_insert(self):
        changes = []
        self.feed.subscribe("jobs", changes.append)
        self.table.insert.return_value.execute.return_value = _result(
            [{"id": "job-1", "employer_id": "user-1", "title": "Office Cleaning", "category": "Cleaner"}]
        )
        job = self.backend.create_job("user-1", {"title": "Office Cleaning", "category": "Cleaner", "date": None})
        self.assertEqual(job.id, "job-1")
        self.assertEqual([(c.table, c.action) for c in changes], [("jobs", "insert")])
        row = self.table.insert.call_args[0][0]
        self.assertEqual((row["employer_id"], row["status"]), ("user-1", "open"))

    def test_delete_job_not_owned(self):
        self.table.delete.return_value.eq.return_value.eq.return_value.execute.return_value = _result([])
        with self.assertRaises(NotFoundError):
            self.backend.delete_job("job-1", "someone-else")

    def test_counts_by_type(self):
        select = self.table.select.return_value
        select.eq.return_value.execute.side_effect = [_result(count=12), _result(count=3)]
        select.execute.return_value = _result(count=10)
        counts = self.backend.counts_by_type()
        self.assertEqual((counts.workers, counts.jobs, counts.closed_jobs), (12, 10, 3))

    def test_set_application_status_checks_owner(self):
        self.table.select.return_value.eq.return_value.limit.return_value.execute.return_value = _result(
            [{"id": "app-1", "job_id": "job-1", "worker_id": "w", "jobs": {"employer_id": "owner"}}]
        )
        with self.assertRaises(NotFoundError):
            self.backend.set_application_status("app-1", "intruder", ApplicationStatus.ACCEPTED)
        self.table.update.assert_not_called()


if __name__ == "__main__":
    unittest.main()
