import logging
from datetime import timedelta
from typing import Any, Dict

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from ..db import Database
from ..errors import Conflict, InvalidArgument, NotFound, Unauthenticated
from ..security import TokenError, TokenSigner, hash_password, new_reset_token, verify_password
from ..utils import now_utc, to_oid
from ..validators import RegistrationRequest

logger = logging.getLogger(__name__)

RESET_MESSAGE = "If an account with that email exists, a password reset link has been sent."


class AccountService:
    def __init__(self, db: Database, tokens: TokenSigner, reset_ttl: timedelta, app_url: str):
        self.db = db
        self.tokens = tokens
        self.reset_ttl = reset_ttl
        self.app_url = app_url.rstrip("/")

    def register(self, req: RegistrationRequest) -> Dict[str, Any]:
        if self.db.users.find_one({"email": req.email}, {"_id": 1}):
            raise Conflict("Email already registered.", {"field": "email"})
        if req.university_id and self.db.users.find_one({"university_id": req.university_id}, {"_id": 1}):
            raise Conflict("University ID already registered.", {"field": "universityId"})

        doc = {
            "name": req.name,
            "email": req.email,
            "password_hash": hash_password(req.password),
            "role": req.role,
            "phone": req.phone,
            "department": req.department,
            "profile_pic": None,
            "is_active": True,
            "last_login": None,
            "created_at": now_utc(),
            "updated_at": now_utc(),
        }
        if req.university_id:
            doc["university_id"] = req.university_id

        try:
            res = self.db.users.insert_one(doc)
        except DuplicateKeyError:
            raise Conflict("Email already registered.", {"field": "email"})

        user = self.db.users.find_one({"_id": res.inserted_id})
        logger.info("Registered user %s (%s)", user["email"], user["role"])
        return user

    def authenticate(self, email: str, password: str) -> Dict[str, Any]:
        user = self.db.users.find_one({"email": email})
        if not user:
            raise Unauthenticated("Invalid email or password.")
        if not user.get("is_active", True):
            raise Unauthenticated("Account is deactivated.")
        if not verify_password(user.get("password_hash", ""), password):
            raise Unauthenticated("Invalid email or password.")

        return self.db.users.find_one_and_update(
            {"_id": user["_id"]},
            {"$set": {"last_login": now_utc()}},
            return_document=ReturnDocument.AFTER,
        )

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        try:
            payload = self.tokens.verify_refresh(refresh_token)
        except TokenError:
            raise Unauthenticated("Invalid refresh token.")
        user = self.db.users.find_one({"_id": to_oid(payload["userId"], "userId")})
        if not user or not user.get("is_active", True):
            raise Unauthenticated("Invalid or inactive user.")
        return user

    def forgot_password(self, email: str) -> None:
        user = self.db.users.find_one({"email": email})
        if not user:
            return

        token = new_reset_token()
        self.db.users.update_one(
            {"_id": user["_id"]},
            {"$set": {"reset_token": token, "reset_token_expiry": now_utc() + self.reset_ttl}},
        )
        logger.info("Password reset link for %s: %s/reset-password?token=%s", email, self.app_url, token)

    def reset_password(self, token: str, new_password: str) -> None:
        res = self.db.users.update_one(
            {"reset_token": token, "reset_token_expiry": {"$gt": now_utc()}},
            {
                "$set": {"password_hash": hash_password(new_password), "updated_at": now_utc()},
                "$unset": {"reset_token": "", "reset_token_expiry": ""},
            },
        )
        if res.matched_count == 0:
            raise InvalidArgument("Invalid or expired reset token.", {"field": "token"})

    def deactivate(self, user_id: str) -> Dict[str, Any]:
        user = self.db.users.find_one_and_update(
            {"_id": to_oid(user_id, "userId")},
            {"$set": {"is_active": False, "updated_at": now_utc()}},
            return_document=ReturnDocument.AFTER,
        )
        if not user:
            raise NotFound("User not found.")
        logger.info("Deactivated user %s", user["email"])
        return user

    def ensure_default_admin(self, email: str, password: str) -> None:
        try:
            if self.db.users.find_one({"email": email}):
                return
            self.db.users.insert_one(
                {
                    "name": "Administrator",
                    "email": email,
                    "password_hash": hash_password(password),
                    "role": "admin",
                    "is_active": True,
                    "created_at": now_utc(),
                    "updated_at": now_utc(),
                }
            )
            logger.info("Default admin created: %s", email)
        except Exception:
            logger.exception("Failed to ensure default admin user")
