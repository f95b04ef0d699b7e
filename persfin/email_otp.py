import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone

from flask import Blueprint, jsonify, request

from .db import ts
from .errors import InvalidCode
from .extensions import services
from .schemas import OtpSendRequest, OtpVerifyRequest, parse

logger = logging.getLogger(__name__)

otp_bp = Blueprint("otp", __name__, url_prefix="/otp")

PURPOSES = ("login", "signup")
DEFAULT_TTL = timedelta(minutes=10)

SUBJECTS = {
    "login": "Your PERSFIN Login Verification Code",
    "signup": "Verify Your Email - PERSFIN",
}
MESSAGES = {
    "login": "Your login verification code is: {code}. This code will expire in {minutes} minutes.",
    "signup": "Your email verification code is: {code}. Enter this code to complete your "
              "registration. This code will expire in {minutes} minutes.",
}

HTML = """<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; background-color: #f4f4f4; padding: 20px;">
  <div style="max-width: 500px; margin: 0 auto; background: white; padding: 30px; border-radius: 10px;">
    <h1 style="color: #7c3aed; text-align: center;">PERSFIN</h1>
    <p style="color: #666;">{message}</p>
    <div style="font-size: 32px; letter-spacing: 8px; text-align: center; padding: 20px;">{code}</div>
    <p style="color: #666;">If you didn't request this code, please ignore this email.</p>
    <p style="text-align: center; color: #999; font-size: 12px;">&copy; {year} PERSFIN. All rights reserved.</p>
  </div>
</body>
</html>"""


def generate_code() -> str:
    """Uniform over 100000..999999, so always six digits with no leading zero."""
    return str(100000 + secrets.randbelow(900000))


def _utcnow():
    return datetime.now(timezone.utc)


class EmailOtpService:
    """Issues and checks single-use emailed codes, one live code per (email, purpose)."""

    def __init__(self, db, mailer, ttl=DEFAULT_TTL, clock=_utcnow):
        self.db = db
        self.mailer = mailer
        self.ttl = ttl
        self.clock = clock

    def issue(self, email, purpose):
        if purpose not in PURPOSES:
            raise ValueError(f"unknown OTP purpose {purpose!r}")
        email = email.strip().lower()
        code = generate_code()
        now = self.clock()
        # replaces any earlier challenge for the pair, so a retry supersedes a stale row
        self.db.replace_email_otp(email, purpose, code, ts(now + self.ttl))
        minutes = int(self.ttl.total_seconds() // 60)
        message = MESSAGES[purpose].format(code=code, minutes=minutes)
        self.mailer.send(
            to=email,
            subject=SUBJECTS[purpose],
            html=HTML.format(message=message, code=code, year=now.year),
            text=message,
        )
        logger.info("issued %s OTP", purpose)

    def verify(self, email, code, purpose):
        """True once for the current unexpired code; every other case is False."""
        if purpose not in PURPOSES or not isinstance(code, str):
            return False
        email = email.strip().lower()
        row = self.db.active_email_otp(email, purpose, ts(self.clock()))
        if not row or not hmac.compare_digest(row["otp_code"].encode(), code.encode()):
            return False
        # a concurrent second submit loses here and sees False
        return self.db.consume_email_otp(row["id"])

    def purge(self):
        return self.db.purge_email_otps(ts(self.clock()))


@otp_bp.post("/send")
def send_otp():
    body = parse(OtpSendRequest, request.get_json(silent=True))
    services().otp.issue(body.email, body.type)              # DeliveryError -> 500 via error handler
    return jsonify(success=True, message="OTP sent successfully")


@otp_bp.post("/verify")
def verify_otp():
    body = parse(OtpVerifyRequest, request.get_json(silent=True))
    if not services().otp.verify(body.email, body.otp, body.type):
        raise InvalidCode()
    return jsonify({})
