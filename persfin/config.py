import logging
import os

from dotenv import load_dotenv

load_dotenv()                                                # load .env into os.environ

from .errors import ConfigError                              # noqa: E402

logger = logging.getLogger(__name__)

DEV_SECRET_KEY = "dev-secret-key-change-me"
DEV_ENCRYPTION_KEY = "default-encryption-key-change-in-production"


def _to_bool(val, default=False):
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _to_int(val, default):
    try:
        return int(val) if val is not None else default
    except ValueError:
        return default


class Config:
    # Core
    ENV = os.environ.get("APP_ENV", "development")
    DEBUG = _to_bool(os.environ.get("DEBUG"), False)
    TESTING = False
    SECRET_KEY = os.environ.get("SECRET_KEY")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    DATABASE_PATH = os.environ.get("DATABASE_PATH", "persfin.db")
    HTTP_TIMEOUT = _to_int(os.environ.get("HTTP_TIMEOUT"), 10)

    # MFA / OTP
    MFA_ENCRYPTION_KEY = os.environ.get("MFA_ENCRYPTION_KEY")
    MFA_ISSUER = os.environ.get("MFA_ISSUER", "FinanceTutor")
    OTP_TTL_MINUTES = _to_int(os.environ.get("OTP_TTL_MINUTES"), 10)
    SESSION_TTL_HOURS = _to_int(os.environ.get("SESSION_TTL_HOURS"), 24)

    # Mail
    MAIL_BACKEND = os.environ.get("MAIL_BACKEND", "resend")  # 'resend' | 'log'
    RESEND_API_KEY = os.environ.get("RESEND_API_KEY")
    RESEND_URL = os.environ.get("RESEND_URL", "https://api.resend.com/emails")
    MAIL_FROM = os.environ.get("MAIL_FROM", "PERSFIN <onboarding@resend.dev>")

    # Text completion backend for the tutor
    COMPLETION_URL = os.environ.get("COMPLETION_URL", "https://ai.gateway.lovable.dev/v1/chat/completions")
    COMPLETION_API_KEY = os.environ.get("COMPLETION_API_KEY")
    COMPLETION_MODEL = os.environ.get("COMPLETION_MODEL", "google/gemini-2.5-flash")


class ProductionConfig(Config):
    ENV = "production"
    DEBUG = False


class DevelopmentConfig(Config):
    ENV = "development"
    DEBUG = True
    MAIL_BACKEND = os.environ.get("MAIL_BACKEND", "log")


class TestingConfig(Config):
    ENV = "testing"
    TESTING = True
    MAIL_BACKEND = "log"
    DATABASE_PATH = os.environ.get("TEST_DATABASE_PATH", "persfin-test.db")
    SECRET_KEY = "testing-secret-key"
    MFA_ENCRYPTION_KEY = "testing-encryption-key"


CONFIGS = {
    "production": ProductionConfig,
    "development": DevelopmentConfig,
    "testing": TestingConfig,
}


def load_config(env=None) -> dict:
    """Return the config for `env` (or APP_ENV) as a plain dict."""
    cls = CONFIGS.get(env or os.environ.get("APP_ENV", "development"), DevelopmentConfig)
    return {k: getattr(cls, k) for k in dir(cls) if k.isupper()}


def check_config(cfg: dict) -> dict:
    """Validate startup configuration.

    Production refuses to start without real key material; every other
    environment falls back to the insecure development defaults and says so.
    """
    for key, fallback in (("SECRET_KEY", DEV_SECRET_KEY), ("MFA_ENCRYPTION_KEY", DEV_ENCRYPTION_KEY)):
        if cfg.get(key):
            continue
        if cfg.get("ENV") == "production":
            raise ConfigError(f"{key} must be set in production")
        logger.warning("%s not set; using the insecure development default", key)
        cfg[key] = fallback

    if cfg.get("MAIL_BACKEND") == "resend" and not cfg.get("RESEND_API_KEY"):
        if cfg.get("ENV") == "production":
            raise ConfigError("RESEND_API_KEY must be set when MAIL_BACKEND=resend")
        logger.warning("RESEND_API_KEY not set; falling back to the log mail backend")
        cfg["MAIL_BACKEND"] = "log"
    return cfg
