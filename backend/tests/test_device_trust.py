"""
Device-trust gate tests.

Verifies:
- First login always requires an OTP, even without a device cookie
- Pending sessions reach only the OTP endpoints
- Expired, consumed and wrong codes fail
- A verified code trusts the browser; the next login skips the OTP
- E-mail dispatch failures surface as 502
"""

from datetime import timedelta

import pytest
import requests

from pharmapos.extensions import db
from pharmapos.models import OtpCode, TrustedDevice
from pharmapos.services import device_trust_service
from pharmapos.services.device_trust_service import (
    MAX_OTP_ATTEMPTS,
    OtpError,
    OtpMismatchError,
    device_cookie_name,
    issue_otp,
    requires_otp,
    sign_device_token,
    verify_otp,
)
from pharmapos.time_utils import utcnow

from conftest import TEST_PASSWORD, auth_headers


FIXED_CODE = "246810"


@pytest.fixture
def fixed_code(monkeypatch):
    monkeypatch.setattr(device_trust_service, "_generate_code", lambda: FIXED_CODE)
    return FIXED_CODE


def login(client, username):
    resp = client.post("/api/auth/login", json={"username": username, "password": TEST_PASSWORD})
    assert resp.status_code == 200, resp.json
    return resp.json


class TestOtpService:

    def test_first_login_requires_otp(self, app, new_user):
        assert requires_otp(new_user, None) is True

    def test_completed_user_without_cookie_requires_otp(self, app, clerk_user):
        assert requires_otp(clerk_user, None) is True

    def test_forged_cookie_is_ignored(self, app, clerk_user):
        assert requires_otp(clerk_user, "not-a-signed-value") is True
        # Valid signature, but no TrustedDevice row
        assert requires_otp(clerk_user, sign_device_token(clerk_user.id, "made-up")) is True

    def test_cookie_for_other_user_is_ignored(self, app, clerk_user, pharmacist_user, fixed_code):
        issue_otp(pharmacist_user)
        _, cookie = verify_otp(pharmacist_user, fixed_code)

        assert requires_otp(pharmacist_user, cookie) is False
        assert requires_otp(clerk_user, cookie) is True

    def test_successful_verification_trusts_device(self, app, new_user, fixed_code):
        issued = issue_otp(new_user)
        assert issued.code == fixed_code
        assert issued.email_sent is False

        device, cookie = verify_otp(new_user, fixed_code, device_info="pytest-browser")

        assert new_user.has_completed_first_login is True
        assert device.is_trusted is True
        assert device.device_info == "pytest-browser"
        assert requires_otp(new_user, cookie) is False

    def test_expired_code_fails(self, app, new_user, fixed_code):
        issue_otp(new_user)
        otp = db.session.query(OtpCode).filter_by(user_id=new_user.id).one()
        otp.expires_at = utcnow() - timedelta(seconds=1)
        db.session.commit()

        with pytest.raises(OtpError, match="expired"):
            verify_otp(new_user, fixed_code)
        assert new_user.has_completed_first_login is False

    def test_consumed_code_fails(self, app, new_user, fixed_code):
        issue_otp(new_user)
        verify_otp(new_user, fixed_code)

        with pytest.raises(OtpError, match="No OTP found"):
            verify_otp(new_user, fixed_code)

    def test_new_code_replaces_outstanding_one(self, app, new_user, monkeypatch):
        monkeypatch.setattr(device_trust_service, "_generate_code", lambda: "111111")
        issue_otp(new_user)
        monkeypatch.setattr(device_trust_service, "_generate_code", lambda: "222222")
        issue_otp(new_user)

        with pytest.raises(OtpMismatchError):
            verify_otp(new_user, "111111")
        verify_otp(new_user, "222222")

    def test_wrong_code_then_right_code(self, app, new_user, fixed_code):
        issue_otp(new_user)

        with pytest.raises(OtpMismatchError):
            verify_otp(new_user, "000000")
        verify_otp(new_user, fixed_code)
        assert new_user.has_completed_first_login is True

    def test_too_many_wrong_codes_consume_the_code(self, app, new_user, fixed_code):
        issue_otp(new_user)
        for _ in range(MAX_OTP_ATTEMPTS):
            with pytest.raises(OtpMismatchError):
                verify_otp(new_user, "000000")

        with pytest.raises(OtpError, match="No OTP found"):
            verify_otp(new_user, fixed_code)

    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef", None])
    def test_malformed_code(self, app, new_user, code):
        with pytest.raises(OtpError, match="format"):
            verify_otp(new_user, code)

    def test_codes_are_stored_hashed(self, app, new_user, fixed_code):
        issue_otp(new_user)
        otp = db.session.query(OtpCode).filter_by(user_id=new_user.id).one()
        assert fixed_code not in otp.code_hash

    def test_revoked_devices_need_otp_again(self, app, clerk_user, fixed_code):
        issue_otp(clerk_user)
        _, cookie = verify_otp(clerk_user, fixed_code)

        assert device_trust_service.revoke_trusted_devices(clerk_user.id) == 1
        assert requires_otp(clerk_user, cookie) is True


class TestOtpFlow:

    def test_pending_session_is_gated(self, client, new_user):
        body = login(client, "newbie")

        assert body["requires_otp"] is True
        headers = auth_headers(body["token"])

        resp = client.get("/api/products", headers=headers)
        assert resp.status_code == 403
        assert resp.json["requires_otp"] is True

        resp = client.get("/api/auth/check-first-login", headers=headers)
        assert resp.status_code == 200
        assert resp.json == {
            "has_completed_first_login": False,
            "device_trusted": False,
            "requires_otp": True,
        }

    def test_full_first_login_flow(self, client, new_user, fixed_code):
        body = login(client, "newbie")
        headers = auth_headers(body["token"])

        resp = client.post("/api/auth/send-otp", headers=headers)
        assert resp.status_code == 200
        assert resp.json["success"] is True
        assert "debug_code" not in resp.json

        resp = client.post("/api/auth/verify-otp", json={"code": fixed_code}, headers=headers)
        assert resp.status_code == 200
        assert resp.json["user"]["has_completed_first_login"] is True

        set_cookie = " ".join(resp.headers.getlist("Set-Cookie"))
        assert device_cookie_name(new_user.id) in set_cookie
        assert "HttpOnly" in set_cookie
        assert "SameSite=Strict" in set_cookie
        assert "Path=/api/auth" in set_cookie
        assert "Max-Age" not in set_cookie

        # Same token now passes the gate
        assert client.get("/api/products", headers=headers).status_code == 200

        # Next login from this browser skips the challenge
        again = login(client, "newbie")
        assert again["requires_otp"] is False
        assert client.get("/api/products", headers=auth_headers(again["token"])).status_code == 200

    def test_other_browser_still_needs_otp(self, app, client, new_user, fixed_code):
        headers = auth_headers(login(client, "newbie")["token"])
        client.post("/api/auth/send-otp", headers=headers)
        client.post("/api/auth/verify-otp", json={"code": fixed_code}, headers=headers)

        other_browser = app.test_client()
        body = login(other_browser, "newbie")
        assert body["requires_otp"] is True

    def test_wrong_code_is_401(self, client, new_user, fixed_code):
        headers = auth_headers(login(client, "newbie")["token"])
        client.post("/api/auth/send-otp", headers=headers)

        resp = client.post("/api/auth/verify-otp", json={"code": "999999"}, headers=headers)
        assert resp.status_code == 401
        assert db.session.query(TrustedDevice).count() == 0

    def test_verify_without_code_sent_is_400(self, client, new_user):
        headers = auth_headers(login(client, "newbie")["token"])
        resp = client.post("/api/auth/verify-otp", json={"code": "123456"}, headers=headers)
        assert resp.status_code == 400

    def test_debug_mode_returns_code_when_email_unconfigured(self, app, client, new_user, fixed_code):
        headers = auth_headers(login(client, "newbie")["token"])
        app.debug = True
        try:
            resp = client.post("/api/auth/send-otp", headers=headers)
        finally:
            app.debug = False
        assert resp.json["debug_code"] == fixed_code

    def test_email_failure_is_502(self, app, client, new_user, monkeypatch):
        headers = auth_headers(login(client, "newbie")["token"])

        def boom(*args, **kwargs):
            raise requests.ConnectionError("provider down")

        monkeypatch.setattr(requests, "post", boom)
        monkeypatch.setitem(app.config, "SENDGRID_API_KEY", "SG.test")
        monkeypatch.setitem(app.config, "SENDGRID_FROM_EMAIL", "noreply@pharmapos.test")

        resp = client.post("/api/auth/send-otp", headers=headers)
        assert resp.status_code == 502
        # The undelivered code can never be used
        assert db.session.query(OtpCode).filter(OtpCode.consumed_at.is_(None)).count() == 0

    def test_email_sent_through_provider(self, app, client, new_user, fixed_code, monkeypatch):
        headers = auth_headers(login(client, "newbie")["token"])
        sent = {}

        class FakeResponse:
            def raise_for_status(self):
                return None

        def fake_post(url, headers=None, json=None, timeout=None):
            sent.update(url=url, payload=json, timeout=timeout)
            return FakeResponse()

        monkeypatch.setattr(requests, "post", fake_post)
        monkeypatch.setitem(app.config, "SENDGRID_API_KEY", "SG.test")
        monkeypatch.setitem(app.config, "SENDGRID_FROM_EMAIL", "noreply@pharmapos.test")

        resp = client.post("/api/auth/send-otp", headers=headers)

        assert resp.status_code == 200
        assert resp.json["email_sent"] is True
        assert sent["payload"]["personalizations"][0]["to"][0]["email"] == new_user.email
        assert fixed_code in sent["payload"]["content"][0]["value"]
