"""Bearer-token auth gate on top of Flask-Login.

There are no cookie sessions: every request carries ``Authorization: Bearer
<token>`` and ``request_loader`` resolves it to a ``User`` for that request
only.
"""
import logging
from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from flask import jsonify
from flask_login import UserMixin, current_user

from .db import get_db
from .errors import Forbidden
from .extensions import login_manager, services
from .security import TokenError

logger = logging.getLogger(__name__)


class User(UserMixin):
    def __init__(self, doc: Dict[str, Any]):
        self.doc = doc
        self.id = str(doc["_id"])
        self.oid = doc["_id"]
        self.email = doc.get("email", "")
        self.name = doc.get("name", "")
        self.role = doc.get("role", "student")

    @property
    def is_active(self) -> bool:
        return bool(self.doc.get("is_active", True))

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def bearer_token(header: str) -> Optional[str]:
    scheme, _, token = (header or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


@login_manager.request_loader
def load_user_from_request(req) -> Optional[User]:
    token = bearer_token(req.headers.get("Authorization", ""))
    if not token:
        return None
    try:
        payload = services().tokens.verify_access(token)
    except TokenError as e:
        logger.debug("Rejected bearer token: %s", e)
        return None

    try:
        doc = get_db().users.find_one({"_id": ObjectId(payload["userId"])})
    except InvalidId:
        return None
    if not doc or not doc.get("is_active", True):
        return None
    return User(doc)


@login_manager.unauthorized_handler
def unauthorized():
    # JSON only
    return jsonify({"ok": False, "error": "Authentication required.", "code": "unauthorized"}), 401


def require_roles(*roles: str):
    def decorator(fn):
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                return unauthorized()
            if current_user.role not in roles:
                return jsonify({"ok": False, "error": "Insufficient permissions.", "code": "forbidden"}), 403
            return fn(*args, **kwargs)

        # keep function identity (Flask uses __name__)
        wrapped.__name__ = fn.__name__
        wrapped.__doc__ = fn.__doc__
        return wrapped

    return decorator


def ensure_owner_or_admin(actor: User, owner_id: Any) -> None:
    if actor.is_admin:
        return
    if owner_id is not None and str(owner_id) == actor.id:
        return
    raise Forbidden("Access denied.")


def acting_user() -> User:
    return current_user._get_current_object()


def optional_user() -> Optional[User]:
    user = current_user._get_current_object()
    return user if user.is_authenticated else None
