import re

import pytest

from persfin.api import create_app

PASSWORD = "Str0ng!Passw0rd"


class FakeCompletion:
    def __init__(self):
        self.calls = []
        self.reply = "Diversify and keep an emergency fund."
        self.error = None

    def complete(self, system, messages):
        if self.error:
            raise self.error
        self.calls.append((system, messages))
        return self.reply


def last_code(mailer, to=None):
    """Pull the 6-digit code out of the most recent mail (to `to`, if given)."""
    msgs = [m for m in mailer.outbox if to is None or m.to == to]
    assert msgs, "no mail was sent"
    return re.search(r"\b(\d{6})\b", msgs[-1].text).group(1)


@pytest.fixture
def completion():
    return FakeCompletion()


@pytest.fixture
def app(tmp_path, completion):
    app = create_app({"DATABASE_PATH": str(tmp_path / "persfin.db")}, env="testing",
                     completion=completion)
    app.testing = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def svc(app):
    return app.extensions["persfin"]


@pytest.fixture
def mailer(svc):
    return svc.mailer


@pytest.fixture
def make_user(svc):
    def _make(email="alice@example.com", password=PASSWORD):
        user = svc.identity.sign_up(email, password, {"full_name": "Alice Example"})
        session = svc.identity.sign_in_with_password(email, password)
        return {
            "id": user["id"],
            "email": email,
            "token": session.access_token,
            "headers": {"Authorization": f"Bearer {session.access_token}"},
        }

    return _make


@pytest.fixture
def user(make_user):
    return make_user()
