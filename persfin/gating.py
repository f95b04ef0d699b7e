from functools import wraps

from flask import current_app, g, request

from .errors import MfaRequired
from .extensions import services

MFA_HEADER = "X-MFA-Token"


def require_mfa(f):
    """Gate a privileged action behind the caller's TOTP when MFA is enabled.

    Must sit below ``require_user``. The wrapped view only runs after the
    token validated, so none of its side effects happen on failure.
    """

    @wraps(f)
    def wrapped(*args, **kwargs):
        mfa = services().mfa
        user_id = g.user["id"]
        if mfa.check(user_id):
            token = request.headers.get(MFA_HEADER)
            if not token:
                raise MfaRequired()
            if not mfa.validate(user_id, token):
                current_app.logger.info("[mfa-gate] %s rejected for uid=%s", request.path, user_id)
                raise MfaRequired("Invalid MFA token")
        return f(*args, **kwargs)

    return wrapped
