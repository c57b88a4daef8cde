from flask import Blueprint
from flask_login import login_required

from ..auth import acting_user, require_roles
from ..errors import ok
from ..extensions import limiter, services
from ..serializers import public_user
from ..services.accounts import RESET_MESSAGE
from ..validators import (
    ForgotPasswordRequest,
    LoginRequest,
    RefreshRequest,
    RegistrationRequest,
    ResetPasswordRequest,
    parse_body,
)

bp = Blueprint("auth", __name__, url_prefix="/api")


@bp.get("/health")
def health():
    return ok({"status": "up"})


@bp.post("/auth/register")
@limiter.limit("5 per 15 minutes")
def register():
    req = parse_body(RegistrationRequest)
    svc = services()
    user = svc.accounts.register(req)
    return ok({"user": public_user(user), **svc.tokens.issue(user)}, 201)


@bp.post("/auth/login")
@limiter.limit("10 per minute")
def login():
    req = parse_body(LoginRequest)
    svc = services()
    user = svc.accounts.authenticate(req.email, req.password)
    return ok({"user": public_user(user), **svc.tokens.issue(user)})


@bp.post("/auth/refresh")
def refresh():
    req = parse_body(RefreshRequest)
    svc = services()
    user = svc.accounts.refresh(req.refresh_token)
    return ok({"user": public_user(user), **svc.tokens.issue(user)})


@bp.get("/auth/me")
@login_required
def me():
    return ok({"user": public_user(acting_user().doc)})


@bp.post("/auth/forgot-password")
@limiter.limit("3 per hour")
def forgot_password():
    req = parse_body(ForgotPasswordRequest)
    services().accounts.forgot_password(req.email)
    # same answer either way so accounts can't be enumerated
    return ok({"message": RESET_MESSAGE})


@bp.post("/auth/reset-password")
def reset_password():
    req = parse_body(ResetPasswordRequest)
    services().accounts.reset_password(req.token, req.new_password)
    return ok({"message": "Password reset successfully."})


@bp.post("/users/<user_id>/deactivate")
@require_roles("admin")
def deactivate_user(user_id: str):
    user = services().accounts.deactivate(user_id)
    return ok({"user": public_user(user)})
