from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from flask import current_app


@dataclass(frozen=True)
class Services:
    """Collaborators built once per process by create_app and read-only after."""

    db: Any
    cipher: Any
    mailer: Any
    identity: Any
    mfa: Any
    otp: Any
    completion: Any


def services() -> Services:
    return current_app.extensions["persfin"]
