# References:
# - PyOTP docs: https://pyauth.github.io/pyotp/        (TOTP usage)
# - RFC 6238 (TOTP): https://datatracker.ietf.org/doc/html/rfc6238
# - Flask Blueprints: https://flask.palletsprojects.com/en/stable/blueprints/

import logging

from flask import Blueprint, g, jsonify, request

from . import totp                                           # TOTP engine (pyotp)
from .errors import AlreadyEnabled, DecryptionError, NotConfigured
from .extensions import services
from .identity import require_user
from .schemas import CheckRequest, SetupRequest, ValidateRequest, VerifyRequest, mfa_request, parse

logger = logging.getLogger(__name__)

mfa_bp = Blueprint("mfa", __name__)


class MfaEnrollment:
    """Per-user TOTP enrollment: absent -> pending (setup) -> active (verify).

    Every method acts on the caller's own record only; the caller identity is
    resolved before we get here.
    """

    def __init__(self, db, cipher, issuer="FinanceTutor", window=totp.DEFAULT_WINDOW):
        self.db = db
        self.cipher = cipher
        self.issuer = issuer
        self.window = window

    def setup(self, user_id, account_label):
        secret = totp.generate_secret()                      # plaintext base32, returned once
        blob = self.cipher.encrypt_text(secret)              # only the ciphertext is stored
        if not self.db.upsert_pending_secret(user_id, blob):
            self.db.mfa_log(user_id, "totp", False, "setup-while-enabled")
            raise AlreadyEnabled()
        self.db.mfa_log(user_id, "totp", True, "setup")
        uri = totp.provisioning_uri(secret, account_label, self.issuer)
        return {"secret": secret, "qrCodeUrl": uri}

    def _matches(self, user_id, record, token, for_time):
        try:
            secret = self.cipher.decrypt_text(record["secret"])
        except DecryptionError as e:
            # corrupted row or rotated key: fail closed
            logger.error("MFA secret for user %s cannot be decrypted: %s", user_id, e)
            self.db.mfa_log(user_id, "totp", False, "decrypt-failed")
            return False
        return totp.validate(secret, token, for_time=for_time, window=self.window)

    def verify(self, user_id, token, for_time=None):
        """Enrollment step: a matching code activates the pending secret."""
        record = self.db.get_mfa_secret(user_id)
        if not record:
            self.db.mfa_log(user_id, "totp", False, "not-enrolled")
            raise NotConfigured()
        ok = self._matches(user_id, record, token, for_time)
        if ok and not record["enabled"]:
            # compare-and-set: a concurrent setup that replaced the secret wins
            ok = self.db.enable_mfa(user_id, record["secret"])
        self.db.mfa_log(user_id, "totp", ok, "verify")
        return ok

    def check(self, user_id):
        record = self.db.get_mfa_secret(user_id)
        return bool(record and record["enabled"])

    def validate(self, user_id, token, for_time=None):
        """Read-only gate: valid when MFA is off, otherwise the code must match."""
        record = self.db.get_mfa_secret(user_id)
        if not record or not record["enabled"]:
            return True
        ok = self._matches(user_id, record, token, for_time)
        self.db.mfa_log(user_id, "totp", ok, "validate")
        return ok


@mfa_bp.post("/mfa")
@require_user
def mfa_action():
    body = parse(mfa_request, request.get_json(silent=True))  # tagged union on `action`
    mfa = services().mfa
    user = g.user

    if isinstance(body, SetupRequest):
        result = mfa.setup(user["id"], user["email"])
        result["qrImage"] = totp.qr_data_url(result["qrCodeUrl"])
        return jsonify(result)
    if isinstance(body, VerifyRequest):
        return jsonify(valid=mfa.verify(user["id"], body.token))
    if isinstance(body, CheckRequest):
        return jsonify(enabled=mfa.check(user["id"]))
    if isinstance(body, ValidateRequest):
        return jsonify(valid=mfa.validate(user["id"], body.token))
