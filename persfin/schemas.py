from __future__ import annotations

import re
from datetime import date
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, EmailStr, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

Purpose = Literal["login", "signup"]


# MFA endpoint: one body shape per action
class SetupRequest(BaseModel):
    action: Literal["setup"]


class VerifyRequest(BaseModel):
    action: Literal["verify"]
    token: str


class CheckRequest(BaseModel):
    action: Literal["check"]


class ValidateRequest(BaseModel):
    action: Literal["validate"]
    token: str = ""


MfaRequest = Annotated[
    Union[SetupRequest, VerifyRequest, CheckRequest, ValidateRequest],
    Field(discriminator="action"),
]
mfa_request = TypeAdapter(MfaRequest)


# Email OTP endpoint
class OtpSendRequest(BaseModel):
    email: EmailStr
    type: Purpose = "login"


class OtpVerifyRequest(BaseModel):
    email: EmailStr
    otp: str
    type: Purpose = "login"


# Auth flows
class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class LoginVerifyRequest(LoginRequest):
    otp: str


class EmailRequest(BaseModel):
    email: EmailStr


PASSWORD_RULES = [
    (re.compile(r"[A-Z]"), "Password must contain an uppercase letter"),
    (re.compile(r"[a-z]"), "Password must contain a lowercase letter"),
    (re.compile(r"[0-9]"), "Password must contain a number"),
    (re.compile(r"[^A-Za-z0-9]"), "Password must contain a special character"),
]


def check_password_strength(value: str) -> str:
    if len(value) < 12:
        raise ValueError("Password must be at least 12 characters")
    for pattern, msg in PASSWORD_RULES:
        if not pattern.search(value):
            raise ValueError(msg)
    return value


class SignupProfile(BaseModel):
    """Client-side convenience check; the identity provider has the final say."""

    email: EmailStr
    password: str
    full_name: str = Field(min_length=1, max_length=100, pattern=r"^[a-zA-Z\s\-']+$")
    display_name: str = Field(min_length=1, max_length=50)
    mobile_number: str = Field(pattern=r"^\+[1-9]\d{1,14}$")
    profession: str = Field(min_length=1, max_length=100)
    city: str = Field(min_length=1, max_length=100)
    country: str = Field(min_length=1, max_length=100)
    date_of_birth: date
    bio: Optional[str] = Field(default=None, max_length=500)

    @field_validator("full_name", "display_name", "mobile_number", "profession",
                     "city", "country", "bio", mode="before")
    @classmethod
    def _trim(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("password")
    @classmethod
    def _strong_password(cls, v: str) -> str:
        return check_password_strength(v)

    @field_validator("date_of_birth")
    @classmethod
    def _plausible_birth_date(cls, v: date) -> date:
        today = date.today()
        if v > today:
            raise ValueError("Date of birth cannot be in the future")
        if today.year - v.year > 120:
            raise ValueError("Invalid date")
        return v

    def metadata(self) -> dict:
        return {
            "full_name": self.full_name,
            "display_name": self.display_name,
            "mobile_number": self.mobile_number,
            "profession": self.profession,
            "city": self.city,
            "country": self.country,
            "date_of_birth": self.date_of_birth.isoformat(),
            "bio": self.bio,
        }


class SignupCompleteRequest(BaseModel):
    otp: str
    profile: dict


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetComplete(BaseModel):
    token: str = Field(min_length=1)
    password: str

    @field_validator("password")
    @classmethod
    def _strong_password(cls, v: str) -> str:
        return check_password_strength(v)


# Privileged actions
class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(max_length=5000)


class TutorRequest(BaseModel):
    messages: List[ChatMessage] = Field(min_length=1, max_length=50)
    type: Literal["chat", "quiz"] = "chat"


class RecommendationRequest(BaseModel):
    riskProfile: Literal["conservative", "moderate", "aggressive"] = "moderate"
    investmentAmount: float = Field(default=10000, ge=1, le=1_000_000_000)


def parse(model, data):
    """Validate `data` against a model or TypeAdapter, raising our ValidationError."""
    try:
        if isinstance(model, TypeAdapter):
            return model.validate_python(data)
        return model.model_validate(data)
    except PydanticValidationError as e:
        details = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError(details) from None
