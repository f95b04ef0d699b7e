import logging
from datetime import timedelta

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from .auth import auth_bp
from .completion import CompletionClient
from .config import check_config, load_config
from .crypto_utils import SecretCipher
from .db import Database
from .email_otp import EmailOtpService, otp_bp
from .errors import AuthError
from .extensions import Services
from .identity import LocalIdentityProvider
from .mailer import build_mailer
from .mfa import MfaEnrollment, mfa_bp
from .tutor import tutor_bp


def build_services(cfg, mailer=None, identity=None, completion=None) -> Services:
    """Wire collaborators from config; tests pass fakes for the outbound ones."""
    db = Database(cfg["DATABASE_PATH"])
    db.init_db()                                             # tables are created once at startup
    cipher = SecretCipher(cfg["MFA_ENCRYPTION_KEY"])
    mailer = mailer or build_mailer(cfg)
    identity = identity or LocalIdentityProvider(
        db, mailer, session_ttl=timedelta(hours=cfg["SESSION_TTL_HOURS"])
    )
    completion = completion or CompletionClient(
        cfg["COMPLETION_URL"], cfg.get("COMPLETION_API_KEY"), cfg["COMPLETION_MODEL"],
        timeout=cfg["HTTP_TIMEOUT"],
    )
    return Services(
        db=db,
        cipher=cipher,
        mailer=mailer,
        identity=identity,
        mfa=MfaEnrollment(db, cipher, issuer=cfg["MFA_ISSUER"]),
        otp=EmailOtpService(db, mailer, ttl=timedelta(minutes=cfg["OTP_TTL_MINUTES"])),
        completion=completion,
    )


def create_app(config=None, env=None, **overrides) -> Flask:
    cfg = load_config(env)
    cfg.update(config or {})
    cfg = check_config(cfg)

    app = Flask(__name__)
    app.config.update(cfg)
    app.secret_key = cfg["SECRET_KEY"]
    logging.basicConfig(level=cfg.get("LOG_LEVEL", "INFO"))

    app.extensions["persfin"] = build_services(cfg, **overrides)

    app.register_blueprint(mfa_bp)
    app.register_blueprint(otp_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(tutor_bp)

    @app.errorhandler(AuthError)
    def handle_auth_error(e):
        return jsonify(e.to_dict()), e.status

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        if isinstance(e, HTTPException):
            return jsonify(error=e.description), e.code
        app.logger.exception("unhandled error")              # detail stays server-side
        return jsonify(error="An error occurred. Please try again."), 500

    @app.get("/health")
    def health():
        return jsonify(status="ok")

    @app.cli.command("purge-otps")
    def purge_otps():
        """Delete expired or already used email OTP challenges."""
        removed = app.extensions["persfin"].otp.purge()
        click.echo(f"removed {removed} OTP rows")

    return app
