"""Identity-provider collaborator.

The core only needs the small surface in :class:`IdentityProvider`.
:class:`LocalIdentityProvider` implements it on top of our own SQLite
database so the service runs without a hosted provider.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Optional, Protocol

from flask import g, request

from .crypto_utils import hash_password, new_token, verify_password
from .db import Database, ts
from .errors import IdentityError, Unauthenticated
from .extensions import services

logger = logging.getLogger(__name__)

RESET_TTL = timedelta(hours=1)

# Checked when the address is unknown so both failures cost one argon2 verify.
_DUMMY_HASH = hash_password(new_token())


@dataclass(frozen=True)
class Session:
    access_token: str
    user: dict


class IdentityProvider(Protocol):
    def sign_in_with_password(self, email: str, password: str) -> Optional[Session]: ...

    def sign_out(self, access_token: str) -> None: ...

    def sign_up(self, email: str, password: str, metadata: dict) -> dict: ...

    def get_user(self, access_token: str) -> Optional[dict]: ...

    def reset_password_for_email(self, email: str) -> None: ...

    def update_password(self, reset_token: str, new_password: str) -> bool: ...


class LocalIdentityProvider:
    def __init__(self, db: Database, mailer, session_ttl: timedelta = timedelta(hours=24)):
        self.db = db
        self.mailer = mailer
        self.session_ttl = session_ttl

    def sign_in_with_password(self, email, password):
        user = self.db.get_user_by_email(email.lower())
        if not user:
            verify_password(_DUMMY_HASH, password)
            return None
        if not verify_password(user["password_hash"], password):
            return None
        token = new_token()
        self.db.create_session(token, user["id"], ts(datetime.now(timezone.utc) + self.session_ttl))
        return Session(access_token=token, user=_public(user))

    def sign_out(self, access_token):
        self.db.delete_session(access_token)

    def sign_up(self, email, password, metadata):
        email = email.lower()
        if self.db.get_user_by_email(email):
            raise IdentityError()
        user_id = str(uuid.uuid4())
        try:
            self.db.create_user(user_id, email, hash_password(password), metadata)
        except Exception as e:
            logger.error("sign-up for %s failed: %r", user_id, e)
            raise IdentityError() from e
        return _public(self.db.get_user(user_id))

    def get_user(self, access_token):
        if not access_token:
            return None
        user = self.db.get_session_user(access_token, ts())
        return _public(user) if user else None

    def reset_password_for_email(self, email):
        # Callers answer identically whether or not the account exists.
        user = self.db.get_user_by_email(email.lower())
        if not user:
            logger.info("password reset requested for unknown address")
            return
        token = new_token()
        self.db.create_password_reset(token, user["id"], ts(datetime.now(timezone.utc) + RESET_TTL))
        self.mailer.send(
            to=user["email"],
            subject="Reset your PERSFIN password",
            html=f"<p>Use this code to reset your password: <strong>{token}</strong></p>"
                 "<p>It expires in 1 hour. If you didn't request it, ignore this email.</p>",
            text=f"Your password reset code: {token} (expires in 1 hour)",
        )

    def update_password(self, reset_token, new_password):
        user_id = self.db.consume_password_reset(reset_token, ts())
        if not user_id:
            return False
        self.db.update_password_hash(user_id, hash_password(new_password))
        return True


def _public(user: dict) -> dict:
    return {"id": user["id"], "email": user["email"], "metadata": user.get("metadata", {})}


def bearer_token() -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.split(" ", 1)[1].strip() or None


def require_user(f):
    """Resolve the bearer credential to a caller identity and stash it in g.user."""

    @wraps(f)
    def wrapped(*args, **kwargs):
        user = services().identity.get_user(bearer_token())
        if not user:
            raise Unauthenticated()
        g.user = user
        g.access_token = bearer_token()
        return f(*args, **kwargs)

    return wrapped
