"""Request body schemas.

Each inbound JSON body is parsed into one of these models before any flow
touches the database. The first failing field is reported back.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import InvalidArgument, require_json
from .utils import now_utc, to_naive_utc

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")
PHONE_RE = re.compile(r"^\+?[\d\s\-()]+$")
MOBILE_MONEY_PHONE_RE = re.compile(r"^\+?254[17]\d{8}$")
OBJECT_ID_PATTERN = r"^[0-9a-fA-F]{24}$"

TicketTypeName = Literal["free", "vip", "general", "student"]
Category = Literal["academic", "sports", "cultural", "social", "conference"]

M = TypeVar("M", bound=BaseModel)


def _email(value: str) -> str:
    value = (value or "").strip().lower()
    if not EMAIL_RE.match(value):
        raise ValueError("Please enter a valid email")
    return value


def _strong_password(value: str) -> str:
    if len(value) < 8:
        raise ValueError("Password must be at least 8 characters")
    if not PASSWORD_RE.match(value):
        raise ValueError("Password must contain at least one uppercase letter, one lowercase letter, and one number")
    return value


class Schema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="ignore")


class RegistrationRequest(Schema):
    name: str = Field(min_length=2, max_length=100)
    email: str
    password: str
    role: Literal["student", "staff"] = "student"
    university_id: Optional[str] = Field(default=None, alias="universityId", min_length=1)
    phone: Optional[str] = None
    department: Optional[str] = Field(default=None, max_length=100)

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return _email(v)

    @field_validator("password")
    @classmethod
    def check_password(cls, v: str) -> str:
        return _strong_password(v)

    @field_validator("phone")
    @classmethod
    def check_phone(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not PHONE_RE.match(v):
            raise ValueError("Please enter a valid phone number")
        return v


class LoginRequest(Schema):
    email: str
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return _email(v)


class RefreshRequest(Schema):
    refresh_token: str = Field(alias="refreshToken", min_length=1)


class ForgotPasswordRequest(Schema):
    email: str

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return _email(v)


class ResetPasswordRequest(Schema):
    token: str = Field(min_length=1)
    new_password: str = Field(alias="newPassword")

    @field_validator("new_password")
    @classmethod
    def check_password(cls, v: str) -> str:
        return _strong_password(v)


class TicketTypeInput(Schema):
    type: TicketTypeName
    price: float = Field(ge=0)
    quantity: int = Field(ge=1)


def _unique_types(items: Optional[List[TicketTypeInput]]) -> Optional[List[TicketTypeInput]]:
    if items is None:
        return items
    seen = set()
    for item in items:
        if item.type in seen:
            raise ValueError(f"Duplicate ticket type: {item.type}")
        seen.add(item.type)
    return items


def _future(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return value
    value = to_naive_utc(value)
    if value <= now_utc():
        raise ValueError("Event date must be in the future")
    return value


class EventUpdateRequest(Schema):
    title: Optional[str] = Field(default=None, min_length=5, max_length=200)
    description: Optional[str] = Field(default=None, min_length=10, max_length=5000)
    category: Optional[Category] = None
    date: Optional[datetime] = None
    end_date: Optional[datetime] = Field(default=None, alias="endDate")
    venue: Optional[str] = Field(default=None, min_length=2, max_length=200)
    capacity: Optional[int] = Field(default=None, ge=1)
    ticket_types: Optional[List[TicketTypeInput]] = Field(default=None, alias="ticketTypes", min_length=1)
    tags: Optional[List[str]] = None
    requires_approval: Optional[bool] = Field(default=None, alias="requiresApproval")
    is_featured: Optional[bool] = Field(default=None, alias="isFeatured")
    images: Optional[List[str]] = None
    videos: Optional[List[str]] = None

    @field_validator("ticket_types")
    @classmethod
    def check_ticket_types(cls, v):
        return _unique_types(v)

    @field_validator("date")
    @classmethod
    def check_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _future(v)

    @field_validator("end_date")
    @classmethod
    def normalize_end_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v) if v is not None else v

    @field_validator("tags")
    @classmethod
    def check_tags(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is not None:
            v = [t.strip() for t in v]
            if any(len(t) > 50 for t in v):
                raise ValueError("Tag cannot exceed 50 characters")
        return v

    @field_validator("images", "videos")
    @classmethod
    def check_urls(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is not None:
            for url in v:
                if not (url.startswith(("http://", "https://", "/uploads/"))):
                    raise ValueError("Must be a valid URL")
        return v

    @model_validator(mode="after")
    def check_window(self):
        if self.date and self.end_date and self.end_date <= self.date:
            raise ValueError("End date must be after start date")
        return self


class EventCreateRequest(EventUpdateRequest):
    title: str = Field(min_length=5, max_length=200)
    description: str = Field(min_length=10, max_length=5000)
    category: Category
    date: datetime
    venue: str = Field(min_length=2, max_length=200)
    capacity: int = Field(ge=1)
    ticket_types: List[TicketTypeInput] = Field(alias="ticketTypes", min_length=1)


class TicketPurchaseRequest(Schema):
    event_id: str = Field(alias="eventId", pattern=OBJECT_ID_PATTERN)
    ticket_type: TicketTypeName = Field(alias="ticketType")
    quantity: int = Field(ge=1, le=10)


class PaymentRequest(Schema):
    ticket_ids: List[str] = Field(alias="ticketIds", min_length=1)
    payment_method: Literal["mobile-money", "card", "cash"] = Field(alias="paymentMethod")
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")

    @field_validator("payment_method", mode="before")
    @classmethod
    def alias_mpesa(cls, v):
        if isinstance(v, str) and v.strip().lower() == "mpesa":
            return "mobile-money"
        return v

    @field_validator("ticket_ids")
    @classmethod
    def check_ids(cls, v: List[str]) -> List[str]:
        for ticket_id in v:
            if not re.match(OBJECT_ID_PATTERN, ticket_id):
                raise ValueError("Invalid ticket id")
        # preserve order, drop repeats
        return list(dict.fromkeys(v))

    @model_validator(mode="after")
    def check_phone(self):
        if self.payment_method == "mobile-money":
            if not self.phone_number:
                raise ValueError("Phone number is required for mobile money payments")
            if not MOBILE_MONEY_PHONE_RE.match(self.phone_number):
                raise ValueError("Please enter a valid mobile money phone number (e.g., +254712345678)")
        return self


class CheckInRequest(Schema):
    qr_code: str = Field(alias="qrCode", min_length=1)


def _first_error(exc: ValidationError) -> InvalidArgument:
    err = exc.errors()[0]
    loc = [str(p) for p in err.get("loc", ()) if not isinstance(p, int)]
    msg = err.get("msg", "Invalid value")
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    details = {"field": loc[0]} if loc else None
    return InvalidArgument(msg, details)


def parse(model: Type[M], data: dict) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise _first_error(e)


def parse_body(model: Type[M]) -> M:
    return parse(model, require_json())
