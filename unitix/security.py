import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError
from werkzeug.security import check_password_hash, generate_password_hash

ALGORITHM = "HS256"


class TokenError(ValueError):
    pass


class TokenSigner:
    """Issues and verifies the bearer tokens handed out at login."""

    def __init__(self, secret: str, refresh_secret: str, access_ttl: timedelta, refresh_ttl: timedelta):
        self.secret = secret
        self.refresh_secret = refresh_secret
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    def _encode(self, user: Dict[str, Any], secret: str, ttl: timedelta, kind: str) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "userId": str(user["_id"]),
            "email": user.get("email", ""),
            "role": user.get("role", "student"),
            "typ": kind,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
        }
        return jwt.encode(claims, secret, algorithm=ALGORITHM)

    def issue(self, user: Dict[str, Any]) -> Dict[str, str]:
        return {
            "token": self._encode(user, self.secret, self.access_ttl, "access"),
            "refreshToken": self._encode(user, self.refresh_secret, self.refresh_ttl, "refresh"),
        }

    def _decode(self, token: str, secret: str, kind: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise TokenError("EXPIRED")
        except JWTError:
            raise TokenError("INVALID_TOKEN")

        if payload.get("typ") != kind or "userId" not in payload:
            raise TokenError("INVALID_TOKEN")
        return payload

    def verify_access(self, token: str) -> Dict[str, Any]:
        return self._decode(token, self.secret, "access")

    def verify_refresh(self, token: str) -> Dict[str, Any]:
        return self._decode(token, self.refresh_secret, "refresh")


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    if not password_hash:
        return False
    return check_password_hash(password_hash, password)


def new_reset_token() -> str:
    return secrets.token_hex(32)


def new_qr_token() -> str:
    return str(uuid.uuid4())
