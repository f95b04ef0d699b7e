# References:
# - PyOTP docs: https://pyauth.github.io/pyotp/        (TOTP usage)
# - RFC 6238 (TOTP): https://datatracker.ietf.org/doc/html/rfc6238
# - Key URI format: https://github.com/google/google-authenticator/wiki/Key-Uri-Format
# - qrcode (Python): https://pypi.org/project/qrcode/

import base64
import binascii
import hashlib
import io
import re
import time
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

import pyotp
from pyotp.utils import strings_equal
import qrcode

# Period and digit count are shared between generation and validation.
# Changing either invalidates every secret already issued.
DIGITS = 6
PERIOD = 30
ALGORITHM = "SHA1"
DEFAULT_WINDOW = 1                                           # ±1 step (30s) of clock skew
SECRET_BYTES = 20                                            # 160-bit seed

_CODE_RE = re.compile(r"[0-9]{6}")


def generate_secret() -> str:
    """Return a fresh random seed, base32 encoded (20 bytes -> 32 chars)."""
    return pyotp.random_base32(length=SECRET_BYTES * 8 // 5)


def _totp(secret: str) -> pyotp.TOTP:
    return pyotp.TOTP(secret, digits=DIGITS, interval=PERIOD, digest=hashlib.sha1)


def provisioning_uri(secret: str, account_label: str, issuer_name: str) -> str:
    """Build the otpauth://totp/ URI an authenticator app scans.

    pyotp leaves out parameters that equal the defaults, so algorithm, digits
    and period are added explicitly.
    """
    uri = _totp(secret).provisioning_uri(name=account_label, issuer_name=issuer_name)
    parts = urlsplit(uri)
    query = dict(parse_qsl(parts.query))
    query.setdefault("algorithm", ALGORITHM)
    query.setdefault("digits", str(DIGITS))
    query.setdefault("period", str(PERIOD))
    return urlunsplit(parts._replace(query=urlencode(query, quote_via=quote)))


def _counter(for_time) -> int:
    # pyotp.TOTP.at() goes through local time for bare numbers, which is off by
    # an hour across a DST fall-back. The counter is computed from UTC epoch.
    if for_time is None:
        for_time = time.time()
    return int(for_time) // PERIOD


def current_code(secret: str, for_time=None) -> str:
    """6-digit code for the time step containing `for_time` (epoch seconds)."""
    return _totp(secret).generate_otp(_counter(for_time))


def validate(secret: str, code, for_time=None, window: int = DEFAULT_WINDOW) -> bool:
    """True if `code` matches any step in [-window, +window] around `for_time`.

    Anything that is not exactly six ASCII digits, or a seed that is not valid
    base32, is a non-match rather than an error.
    """
    if not isinstance(code, str) or not _CODE_RE.fullmatch(code):
        return False
    counter = _counter(for_time)
    try:
        totp = _totp(secret)
        for step in range(max(counter - window, 0), counter + window + 1):
            if strings_equal(code, totp.generate_otp(step)):
                return True
    except (binascii.Error, ValueError, TypeError):
        return False
    return False


def qr_data_url(text: str) -> str:
    img = qrcode.make(text)                                  # QR image for the provisioning URI
    buf = io.BytesIO()                                       # in-memory, nothing written to disk
    img.save(buf, format="PNG")
    b64 = base64.b64encode(buf.getvalue()).decode()
    return f"data:image/png;base64,{b64}"                    # usable directly as <img src=...>
