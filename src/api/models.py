"""
API request and response models.

Pydantic models for FastAPI endpoint validation and OpenAPI schema generation.
Every response uses the envelope ``{"success", "message", "data"}``; errors
use ``{"success": false, "message", "code", "details"}``.
"""

import re
import unicodedata
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

MOBILE_PATTERN = r"^(\+91[\-\s]?|91[\-\s]?|0)?[6-9]\d{9}$"
_PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&]).+$")


def _name_char(ch: str) -> bool:
    # Letters and combining marks from any script, plus separators
    return ch in " .'-" or unicodedata.category(ch)[0] in ("L", "M")


class RegisterRequest(BaseModel):
    """Request model for starting a staged registration."""

    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    mobile_no: str = Field(..., pattern=MOBILE_PATTERN, description="Mobile number")
    password: str = Field(
        ..., min_length=8, max_length=128, description="User password (8-128 characters)"
    )

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not all(_name_char(ch) for ch in value):
            raise ValueError("Name contains invalid characters")
        return value

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        if not _PASSWORD_RE.match(value):
            raise ValueError(
                "Password must contain uppercase, lowercase, number, and special character"
            )
        return value


class VerifyRequest(BaseModel):
    """Request model for verifying one channel."""

    email: EmailStr
    mobile_no: str = Field(..., pattern=MOBILE_PATTERN)
    type: Literal["email", "mobile"]
    otp: str = Field(
        ..., pattern=r"^\d+$", max_length=12, description="Numeric verification code"
    )


class ResendRequest(BaseModel):
    """Request model for re-issuing codes."""

    email: EmailStr
    mobile_no: str = Field(..., pattern=MOBILE_PATTERN)


class MachineIdData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    machine_id: str = Field(..., alias="machineId")


class RegisterData(BaseModel):
    email: str
    mobile_no: str
    verification_required: list[str]
    otp_expires_in_seconds: int


class UserData(BaseModel):
    id: str
    name: str
    email: str
    mobile_no: str
    role: str
    created_at: datetime


class VerifyData(BaseModel):
    is_complete: bool
    verified_channel: str
    email_verified: bool
    mobile_verified: bool
    user: UserData | None = None


class DeliveryData(BaseModel):
    channel: str
    success: bool
    message_id: str | None = None
    error: str | None = None


class ResendData(BaseModel):
    channels: list[str]
    deliveries: list[DeliveryData]
    otp_expires_in_seconds: int
    cooldown_seconds: int


class SuccessResponse(BaseModel):
    success: bool = True
    message: str
    data: Any = None


class MachineIdResponse(SuccessResponse):
    data: MachineIdData


class RegisterResponse(SuccessResponse):
    data: RegisterData


class VerifyResponse(SuccessResponse):
    data: VerifyData


class ResendResponse(SuccessResponse):
    data: ResendData


class ErrorResponse(BaseModel):
    """Standard error response model."""

    success: bool = False
    message: str
    code: str
    details: dict[str, Any] = Field(default_factory=dict)
