import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from flask import Flask, Response, jsonify, request
from pymongo.errors import PyMongoError
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


@dataclass
class ApiError(Exception):
    message: str
    status: int = 400
    code: str = "bad_request"
    details: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class Unauthenticated(ApiError):
    def __init__(self, message: str = "Authentication required.", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 401, "unauthorized", details)


class Forbidden(ApiError):
    def __init__(self, message: str = "Forbidden.", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 403, "forbidden", details)


class NotFound(ApiError):
    def __init__(self, message: str = "Not found.", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 404, "not_found", details)


class InvalidArgument(ApiError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 400, "validation_error", details)


class Conflict(ApiError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 409, "conflict", details)


class InvalidState(ApiError):
    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: str = "invalid_state",
        status: int = 409,
    ):
        super().__init__(message, status, code, details)


class AlreadyUsed(InvalidState):
    def __init__(self, message: str = "Ticket already used.", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="already_used", status=400)


class EventExpired(ApiError):
    def __init__(self, message: str = "Event has passed.", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 400, "event_expired", details)


class Internal(ApiError):
    def __init__(self, message: str = "Internal server error.", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 500, "internal_error", details)


def ok(payload: Optional[Dict[str, Any]] = None, status: int = 200) -> Tuple[Response, int]:
    data = {"ok": True}
    if payload:
        data.update(payload)
    return jsonify(data), status


def fail(err: ApiError) -> Tuple[Response, int]:
    data = {"ok": False, "error": err.message, "code": err.code}
    if err.details:
        data["details"] = err.details
    return jsonify(data), err.status


def require_json() -> Dict[str, Any]:
    if not request.is_json:
        raise ApiError("Request must be JSON.", 415, "unsupported_media_type")
    data = request.get_json(silent=True)
    if data is None:
        raise ApiError("Invalid JSON payload.", 400, "invalid_json")
    if not isinstance(data, dict):
        raise ApiError("JSON body must be an object.", 400, "invalid_json")
    return data


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def handle_api_error(err: ApiError):
        return fail(err)

    @app.errorhandler(404)
    def handle_404(_):
        return jsonify({"ok": False, "error": "Not found.", "code": "not_found"}), 404

    @app.errorhandler(405)
    def handle_405(_):
        return jsonify({"ok": False, "error": "Method not allowed.", "code": "method_not_allowed"}), 405

    @app.errorhandler(429)
    def handle_429(_):
        return jsonify({"ok": False, "error": "Too many requests, please try again later.", "code": "rate_limited"}), 429

    @app.errorhandler(HTTPException)
    def handle_http_exception(e: HTTPException):
        return jsonify({"ok": False, "error": e.description or e.name, "code": "http_error"}), e.code or 500

    @app.errorhandler(PyMongoError)
    def handle_db_error(e: PyMongoError):
        logger.exception("Database error (request_id=%s)", request.environ.get("request_id", ""))
        return fail(Internal("Database error. Please try again."))

    @app.errorhandler(Exception)
    def handle_exception(e: Exception):
        rid = request.environ.get("request_id", "")
        logger.exception("Unhandled error (request_id=%s): %s", rid, e)
        return (
            jsonify(
                {
                    "ok": False,
                    "error": "Internal server error.",
                    "code": "internal_error",
                    "request_id": rid,
                }
            ),
            500,
        )
