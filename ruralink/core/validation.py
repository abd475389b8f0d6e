"""Synchronous form checks. Nothing in here talks to a remote service."""
from __future__ import annotations

import datetime as dt
import re
from typing import Any, Iterable, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator, model_validator

from .errors import ValidationError
from .types import Role

PHONE_PATTERN = re.compile(r"^\d{10}$")
OTP_PATTERN = re.compile(r"^\d{6}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6
CURRENCY_PREFIX = "₹"

ModelT = TypeVar("ModelT", bound=BaseModel)


def require_credentials(identifier: Optional[str], credential: Optional[str], *, label: str = "username and password") -> None:
    if not (identifier or "").strip():
        raise ValidationError("identifier", f"Please enter {label}")
    if not credential:
        raise ValidationError("credential", f"Please enter {label}")


def validate_phone(phone: Optional[str]) -> str:
    value = (phone or "").strip()
    if not PHONE_PATTERN.match(value):
        raise ValidationError(
            "phone",
            "Please enter a valid 10-digit phone number",
            title="Invalid Phone Number",
        )
    return value


def validate_otp(code: Optional[str]) -> str:
    value = (code or "").strip()
    if not OTP_PATTERN.match(value):
        raise ValidationError("code", "Please enter the 6-digit verification code", title="Invalid OTP")
    return value


def validate_email(email: Optional[str]) -> str:
    value = (email or "").strip()
    if not EMAIL_PATTERN.match(value):
        raise ValidationError("email", "Please enter a valid email address", title="Invalid Email")
    return value.lower()


def validate_registration(password: str, confirm: Optional[str]) -> None:
    if password != (confirm or ""):
        raise ValidationError("confirm_password", "Passwords do not match", title="Password Mismatch")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            "password",
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            title="Weak Password",
        )


def normalize_pay(pay: str) -> str:
    pay = (pay or "").strip()
    if not pay or pay.startswith(CURRENCY_PREFIX):
        return pay
    return f"{CURRENCY_PREFIX}{pay}"


def _not_blank(value: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError("must not be blank")
    return value


class MissingField(ValueError):
    def __init__(self, field: str):
        super().__init__(f"{field} is required")
        self.field = field


# fields the profile form requires on top of name and location
ROLE_REQUIRED_FIELDS = {
    Role.WORKER: ("age", "skills"),
    Role.EMPLOYER: ("business_name",),
}


class ProfileFields(BaseModel):
    full_name: str
    role: Role
    location: str
    phone: Optional[str] = None
    email: Optional[str] = None
    # worker
    age: Optional[int] = Field(default=None, ge=14, le=100)
    skills: Optional[str] = None
    experience: Optional[int] = Field(default=None, ge=0, le=80)
    # employer
    business_name: Optional[str] = None
    business_type: Optional[str] = None

    @field_validator("full_name", "location")
    @classmethod
    def _required(cls, value: str) -> str:
        return _not_blank(value)

    @field_validator("age", "experience", "skills", "business_name", "business_type", mode="before")
    @classmethod
    def _blank_is_missing(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @model_validator(mode="after")
    def _role_fields(self) -> "ProfileFields":
        for name in ROLE_REQUIRED_FIELDS[self.role]:
            if getattr(self, name) is None:
                raise MissingField(name)
        return self


class JobFields(BaseModel):
    title: str
    category: str
    description: str
    location: str
    date: dt.date
    start_time: str
    end_time: str
    pay: str
    urgent: bool = False
    lat: Optional[float] = None
    lng: Optional[float] = None

    @field_validator("title", "category", "description", "location", "start_time", "end_time")
    @classmethod
    def _required(cls, value: str) -> str:
        return _not_blank(value)

    @field_validator("pay")
    @classmethod
    def _currency(cls, value: str) -> str:
        return normalize_pay(_not_blank(value))

    @property
    def time(self) -> str:
        return f"{self.start_time} - {self.end_time}"


def parse_fields(
    model: Type[ModelT],
    data: Union[ModelT, Mapping[str, Any]],
    *,
    title: str = "Missing Information",
    message: str = "Please fill in all required fields",
) -> ModelT:
    """Validate ``data`` into ``model``; the first failing field is reported."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        errors = exc.errors()
        first = errors[0] if errors else {}
        loc = first.get("loc")
        cause = (first.get("ctx") or {}).get("error")
        if loc:
            field = str(loc[0])
        elif isinstance(cause, MissingField):
            field = cause.field
        else:
            field = "form"
        raise ValidationError(field, message, title=title) from exc


def validate_profile_fields(data: Union[ProfileFields, Mapping[str, Any]]) -> ProfileFields:
    return parse_fields(ProfileFields, data, title="Incomplete Profile")


def validate_job_fields(data: Union[JobFields, Mapping[str, Any]], categories: Iterable[str]) -> JobFields:
    fields = parse_fields(JobFields, data)
    if fields.category not in tuple(categories):
        raise ValidationError("category", f"Unknown job category: {fields.category}", title="Invalid Category")
    return fields
