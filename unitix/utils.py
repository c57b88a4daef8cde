import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId

from .errors import InvalidArgument


def now_utc() -> datetime:
    """Naive UTC timestamp, matching what PyMongo hands back from BSON dates."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def to_oid(value: Any, field: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise InvalidArgument(f"Invalid {field}.", {"field": field})


def oid_str(value: Any) -> Optional[str]:
    return str(value) if value else None


def safe_int(value: Any, field: str, min_value: Optional[int] = None, max_value: Optional[int] = None) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise InvalidArgument(f"{field} must be an integer.", {"field": field})
    if min_value is not None and n < min_value:
        raise InvalidArgument(f"{field} must be >= {min_value}.", {"field": field})
    if max_value is not None and n > max_value:
        raise InvalidArgument(f"{field} must be <= {max_value}.", {"field": field})
    return n


def page_args(args, default_limit: int = 10) -> Tuple[int, int]:
    page = safe_int(args.get("page", 1), "page", min_value=1)
    limit = safe_int(args.get("limit", default_limit), "limit", min_value=1, max_value=100)
    return page, limit


def pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
    }
