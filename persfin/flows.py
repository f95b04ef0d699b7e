"""Login and signup sequencing.

Both flows put the emailed code between the password check and a usable
session. The identity provider used here hands out a session as soon as the
password matches, so the login pre-check signs straight back out and the
real session is only acquired after the code is accepted.

Flow state is just ``(step, email)``. Passwords and profile fields are passed
in again on the call that needs them and are never kept by the flow, so a
flow can be rebuilt from :meth:`state` between HTTP requests.
"""
from __future__ import annotations

import logging
from typing import Optional

from .errors import IdentityError, InvalidCode
from .identity import IdentityProvider, Session
from .schemas import SignupProfile, parse

logger = logging.getLogger(__name__)


class FlowError(IdentityError):
    """Action not allowed in the flow's current step."""

    status = 409
    message = "Please start again"


class InvalidCredentials(IdentityError):
    status = 401
    message = "Invalid email or password. Please try again."


class LoginFlow:
    CREDENTIALS = "credentials"
    OTP_SENT = "otp-sent"
    DONE = "done"

    def __init__(self, identity: IdentityProvider, otp, step: str = CREDENTIALS,
                 email: Optional[str] = None):
        self.identity = identity
        self.otp = otp
        self.step = step
        self.email = email

    def state(self) -> dict:
        return {"step": self.step, "email": self.email}

    def _require(self, step):
        if self.step != step:
            raise FlowError()

    def submit_credentials(self, email: str, password: str) -> None:
        """Check the password, drop the provider session, send the login code."""
        email = email.strip().lower()
        session = self.identity.sign_in_with_password(email, password)
        if session is None:
            raise InvalidCredentials()
        self.identity.sign_out(session.access_token)        # no usable session before the second factor
        self.otp.issue(email, "login")
        self.step, self.email = self.OTP_SENT, email

    def resend(self) -> None:
        self._require(self.OTP_SENT)
        self.otp.issue(self.email, "login")

    def submit_code(self, code: str, password: str) -> Session:
        """Verify the code, then re-authenticate for the real session.

        A wrong code leaves the flow in ``otp-sent`` so the user can retry or
        ask for a new code.
        """
        self._require(self.OTP_SENT)
        if not self.otp.verify(self.email, code, "login"):
            raise InvalidCode()
        session = self.identity.sign_in_with_password(self.email, password)
        if session is None:
            # password changed between the two steps
            self.step, self.email = self.CREDENTIALS, None
            raise InvalidCredentials()
        self.step = self.DONE
        return session


class SignupFlow:
    EMAIL_VERIFY = "email-verify"
    DETAILS = "details"
    COMPLETE = "complete"
    DONE = "done"

    def __init__(self, identity: IdentityProvider, otp, step: str = EMAIL_VERIFY,
                 email: Optional[str] = None):
        self.identity = identity
        self.otp = otp
        self.step = step
        self.email = email

    def state(self) -> dict:
        return {"step": self.step, "email": self.email}

    def start(self, email: str) -> None:
        email = email.strip().lower()
        self.otp.issue(email, "signup")
        self.step, self.email = self.DETAILS, email

    def resend(self) -> None:
        if self.step not in (self.DETAILS, self.COMPLETE):
            raise FlowError()
        self.otp.issue(self.email, "signup")

    def _profile(self, data: dict) -> SignupProfile:
        return parse(SignupProfile, {**data, "email": self.email})

    def submit_details(self, data: dict) -> SignupProfile:
        if self.step not in (self.DETAILS, self.COMPLETE):
            raise FlowError()
        profile = self._profile(data)
        self.step = self.COMPLETE
        return profile

    def submit_code(self, code: str, data: dict) -> dict:
        """Verify the signup code and create the account with the full profile."""
        if self.step != self.COMPLETE:
            raise FlowError()
        profile = self._profile(data)
        if not self.otp.verify(self.email, code, "signup"):
            raise InvalidCode()
        user = self.identity.sign_up(profile.email, profile.password, profile.metadata())
        self.step = self.DONE
        logger.info("account created for user %s", user["id"])
        return user
