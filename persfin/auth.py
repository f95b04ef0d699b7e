"""HTTP surface for the login / signup flows.

Only the flow step and e-mail are kept in the signed session cookie
(``session["login"]`` / ``session["signup"]``); the client sends the password
or profile again on the request that needs it.

POST /auth/login                  -> {step}            password pre-check, sends login code
POST /auth/login/resend           -> {step}
POST /auth/login/verify           -> {access_token}    code + password
POST /auth/signup/start           -> {step}            sends signup code
POST /auth/signup/resend          -> {step}
POST /auth/signup/details         -> {step}            profile validation only
POST /auth/signup/complete        -> {user}            code + full profile
POST /auth/logout
POST /auth/password-reset         -> same answer for every address
POST /auth/password-reset/complete
"""
from flask import Blueprint, current_app, g, jsonify, request, session

from .errors import DeliveryError, IdentityError
from .extensions import services
from .flows import LoginFlow, SignupFlow
from .identity import require_user
from .schemas import (
    EmailRequest,
    LoginRequest,
    LoginVerifyRequest,
    PasswordResetComplete,
    PasswordResetRequest,
    SignupCompleteRequest,
    parse,
)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

RESET_MESSAGE = "If an account exists with this email, you will receive a password reset link."


def _body():
    return request.get_json(silent=True) or {}


def _login_flow() -> LoginFlow:
    svc = services()
    return LoginFlow(svc.identity, svc.otp, **session.get("login", {}))


def _signup_flow() -> SignupFlow:
    svc = services()
    return SignupFlow(svc.identity, svc.otp, **session.get("signup", {}))


@auth_bp.post("/login")
def login():
    body = parse(LoginRequest, _body())
    flow = LoginFlow(services().identity, services().otp)
    flow.submit_credentials(body.email, body.password)
    session["login"] = flow.state()
    return jsonify(step=flow.step)


@auth_bp.post("/login/resend")
def login_resend():
    flow = _login_flow()
    flow.resend()
    return jsonify(step=flow.step)


@auth_bp.post("/login/verify")
def login_verify():
    body = parse(LoginVerifyRequest, _body())
    flow = _login_flow()
    if flow.email and flow.email != body.email.lower():
        raise IdentityError()
    try:
        sess = flow.submit_code(body.otp, body.password)
    finally:
        session["login"] = flow.state()
    session.pop("login", None)
    return jsonify(access_token=sess.access_token, user=sess.user)


@auth_bp.post("/signup/start")
def signup_start():
    body = parse(EmailRequest, _body())
    flow = SignupFlow(services().identity, services().otp)
    flow.start(body.email)
    session["signup"] = flow.state()
    return jsonify(step=flow.step)


@auth_bp.post("/signup/resend")
def signup_resend():
    flow = _signup_flow()
    flow.resend()
    return jsonify(step=flow.step)


@auth_bp.post("/signup/details")
def signup_details():
    flow = _signup_flow()
    flow.submit_details(_body())
    session["signup"] = flow.state()
    return jsonify(step=flow.step)


@auth_bp.post("/signup/complete")
def signup_complete():
    body = parse(SignupCompleteRequest, _body())
    flow = _signup_flow()
    user = flow.submit_code(body.otp, body.profile)
    session.pop("signup", None)
    return jsonify(user=user), 201


@auth_bp.post("/logout")
@require_user
def logout():
    services().identity.sign_out(g.access_token)
    return jsonify(status="signed-out")


@auth_bp.post("/password-reset")
def password_reset():
    body = parse(PasswordResetRequest, _body())
    try:
        services().identity.reset_password_for_email(body.email)
    except DeliveryError:
        current_app.logger.error("password reset mail could not be sent")
    return jsonify(message=RESET_MESSAGE)


@auth_bp.post("/password-reset/complete")
def password_reset_complete():
    body = parse(PasswordResetComplete, _body())
    if not services().identity.update_password(body.token, body.password):
        raise IdentityError("Invalid or expired reset code")
    return jsonify(status="password-updated")
