from datetime import datetime, timedelta, timezone

import pytest
import requests

from persfin.email_otp import EmailOtpService, generate_code
from persfin.errors import DeliveryError
from persfin.mailer import LogMailer, ResendMailer

from conftest import last_code


class Clock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


class FailingMailer:
    def send(self, **kwargs):
        raise DeliveryError()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def otp(svc, clock):
    return EmailOtpService(svc.db, LogMailer(), clock=clock)


def test_generated_codes_are_six_digits():
    for _ in range(500):
        code = generate_code()
        assert len(code) == 6 and code.isdigit() and 100000 <= int(code) <= 999999


def test_issue_persists_code_with_ten_minute_expiry(otp, svc, clock):
    otp.issue("A@Example.com", "signup")
    row = svc.db.query_one("SELECT * FROM email_otp WHERE email=?", ("a@example.com",))
    assert row["type"] == "signup" and row["verified"] == 0
    assert len(row["otp_code"]) == 6 and row["otp_code"].isdigit()
    expires = datetime.strptime(row["expires_at"], "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)
    assert expires == clock.now + timedelta(minutes=10)

    msg = otp.mailer.outbox[-1]
    assert msg.to == "a@example.com"
    assert msg.subject == "Verify Your Email - PERSFIN"
    assert row["otp_code"] in msg.html and row["otp_code"] in msg.text


def test_code_is_single_use(otp):
    otp.issue("a@example.com", "login")
    code = last_code(otp.mailer)
    assert otp.verify("a@example.com", code, "login") is True
    assert otp.verify("a@example.com", code, "login") is False


def test_new_code_supersedes_old(otp, svc):
    otp.issue("a@example.com", "login")
    first = last_code(otp.mailer)
    otp.issue("a@example.com", "login")
    second = last_code(otp.mailer)
    rows = svc.db.query_all("SELECT id FROM email_otp WHERE email=? AND type='login'", ("a@example.com",))
    assert len(rows) == 1
    if first != second:
        assert otp.verify("a@example.com", first, "login") is False
    assert otp.verify("a@example.com", second, "login") is True


def test_expired_code_fails(otp, clock):
    otp.issue("a@example.com", "login")
    code = last_code(otp.mailer)
    clock.now += timedelta(minutes=10, seconds=1)
    assert otp.verify("a@example.com", code, "login") is False


def test_code_still_valid_just_before_expiry(otp, clock):
    otp.issue("a@example.com", "login")
    code = last_code(otp.mailer)
    clock.now += timedelta(minutes=9, seconds=59)
    assert otp.verify("a@example.com", code, "login") is True


def test_purposes_are_independent(otp):
    otp.issue("a@example.com", "login")
    login_code = last_code(otp.mailer)
    otp.issue("a@example.com", "signup")
    signup_code = last_code(otp.mailer)
    assert otp.verify("a@example.com", login_code, "signup") is (login_code == signup_code)
    assert otp.verify("A@EXAMPLE.COM", login_code, "login") is True


@pytest.mark.parametrize("email, code, purpose", [
    ("nobody@example.com", "123456", "login"),
    ("a@example.com", "12345", "login"),
    ("a@example.com", None, "login"),
    ("a@example.com", "123456", "reset"),
])
def test_failures_look_the_same(otp, email, code, purpose):
    otp.issue("a@example.com", "login")
    assert otp.verify(email, code, purpose) is False


def test_delivery_failure_leaves_a_replaceable_row(svc, clock):
    failing = EmailOtpService(svc.db, FailingMailer(), clock=clock)
    with pytest.raises(DeliveryError):
        failing.issue("a@example.com", "login")
    assert len(svc.db.query_all("SELECT id FROM email_otp")) == 1

    retry = EmailOtpService(svc.db, LogMailer(), clock=clock)
    retry.issue("a@example.com", "login")
    assert len(svc.db.query_all("SELECT id FROM email_otp")) == 1
    assert retry.verify("a@example.com", last_code(retry.mailer), "login") is True


def test_purge_removes_expired_and_used(otp, svc, clock):
    otp.issue("used@example.com", "login")
    otp.verify("used@example.com", last_code(otp.mailer), "login")
    otp.issue("old@example.com", "login")
    clock.now += timedelta(minutes=5)
    otp.issue("live@example.com", "login")
    clock.now += timedelta(minutes=6)
    assert otp.purge() == 2
    remaining = [r["email"] for r in svc.db.query_all("SELECT email FROM email_otp")]
    assert remaining == ["live@example.com"]


# HTTP endpoint
def test_send_and_verify_endpoints(client, mailer):
    resp = client.post("/otp/send", json={"email": "a@example.com", "type": "signup"})
    assert resp.status_code == 200
    assert resp.get_json()["success"] is True

    code = last_code(mailer)
    wrong = "100000" if code != "100000" else "100001"
    bad = client.post("/otp/verify", json={"email": "a@example.com", "otp": wrong, "type": "signup"})
    assert bad.status_code == 400 and "error" in bad.get_json()

    ok = client.post("/otp/verify", json={"email": "a@example.com", "otp": code, "type": "signup"})
    assert ok.status_code == 200 and ok.get_json() == {}


def test_send_rejects_bad_input(client):
    resp = client.post("/otp/send", json={"type": "login"})
    assert resp.status_code == 400
    assert resp.get_json()["details"][0]["field"] == "email"
    assert client.post("/otp/send", json={"email": "a@example.com", "type": "reset"}).status_code == 400


def test_send_reports_delivery_failure(app, client, monkeypatch):
    monkeypatch.setattr(app.extensions["persfin"].otp, "mailer", FailingMailer())
    resp = client.post("/otp/send", json={"email": "a@example.com", "type": "login"})
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "Failed to send verification code. Please try again."}


# Resend transport
class FakeResponse:
    def __init__(self, status):
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code}")


class FakeSession:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def test_resend_mailer_posts_with_timeout():
    session = FakeSession(FakeResponse(200))
    ResendMailer("key", "PERSFIN <x@example.com>", session=session).send("a@example.com", "Hi", "<p>Hi</p>")
    url, kwargs = session.calls[0]
    assert url == "https://api.resend.com/emails"
    assert kwargs["timeout"] == 10
    assert kwargs["json"]["to"] == ["a@example.com"]
    assert kwargs["headers"]["Authorization"] == "Bearer key"


@pytest.mark.parametrize("result", [FakeResponse(500), requests.ConnectionError("down"), requests.Timeout()])
def test_resend_mailer_failures(result):
    with pytest.raises(DeliveryError):
        ResendMailer("key", "x@example.com", session=FakeSession(result)).send("a@example.com", "Hi", "<p/>")


@pytest.mark.parametrize("pad", [" {} ", "{}\n", "\t{}"])
def test_padded_code_is_rejected(otp, pad):
    otp.issue("a@example.com", "login")
    code = last_code(otp.mailer)
    assert otp.verify("a@example.com", pad.format(code), "login") is False
    assert otp.verify("a@example.com", code, "login") is True
