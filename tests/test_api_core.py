import pytest
from flask.cli import ScriptInfo

from persfin.api import create_app
from persfin.config import DEV_ENCRYPTION_KEY, check_config, load_config
from persfin.errors import ConfigError


def test_health(client):
    assert client.get("/health").get_json() == {"status": "ok"}


def test_unknown_route_is_json(client):
    resp = client.get("/nope")
    assert resp.status_code == 404
    assert "error" in resp.get_json()


def test_unexpected_errors_stay_generic(app, client, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("sqlite exploded at /var/secret/path")

    monkeypatch.setattr(app.extensions["persfin"].otp, "issue", boom)
    resp = client.post("/otp/send", json={"email": "a@example.com", "type": "login"})
    assert resp.status_code == 500
    assert "sqlite" not in resp.get_data(as_text=True)


def test_production_requires_keys():
    cfg = load_config("production")
    cfg.update(SECRET_KEY=None, MFA_ENCRYPTION_KEY=None)
    with pytest.raises(ConfigError):
        check_config(cfg)


def test_development_falls_back_to_defaults():
    cfg = load_config("development")
    cfg.update(MFA_ENCRYPTION_KEY=None, MAIL_BACKEND="resend", RESEND_API_KEY=None)
    cfg = check_config(cfg)
    assert cfg["MFA_ENCRYPTION_KEY"] == DEV_ENCRYPTION_KEY
    assert cfg["MAIL_BACKEND"] == "log"


def test_purge_command(tmp_path):
    app = create_app({"DATABASE_PATH": str(tmp_path / "p.db")}, env="testing")
    result = app.test_cli_runner().invoke(args=["purge-otps"])
    assert "removed 0 OTP rows" in result.output


def test_flask_cli_loads_the_factory(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("APP_ENV", "testing")
    app = ScriptInfo(app_import_path="persfin.api:create_app").load_app()
    assert "purge-otps" in app.cli.commands
    result = app.test_cli_runner().invoke(args=["purge-otps"])
    assert result.exit_code == 0
    assert "removed 0 OTP rows" in result.output
