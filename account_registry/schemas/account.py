"""Account Schemas — Pydantic models with field-level validation for API boundaries.

Invariants:
    - Verification codes are exactly 6 digits
    - Passwords are 8-128 chars; names stripped and non-empty
    - Account ids leave the API as decimal strings (u64 exceeds JSON-safe integers)

Design Decisions:
    - Email syntax and domain are checked by core (Account.register), not here:
      one source of truth for what a registrable address is
"""

from pydantic import BaseModel, Field, field_validator

from account_registry.core.account import UserMetadata
from account_registry.core.domain_types import CODE_MAX, CODE_MIN, Permission


class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)


class RegisterResponse(BaseModel):
    id: str


class ActivateRequest(BaseModel):
    """Completes a registration: the mailed code plus the user's attributes."""
    code: int = Field(ge=CODE_MIN, le=CODE_MAX)
    name: str = Field(min_length=1, max_length=100)
    school_id: int = Field(ge=0)
    phone: int = Field(ge=0)
    password: str = Field(min_length=8, max_length=128)
    house: str | None = Field(None, max_length=100)
    organization: str | None = Field(None, max_length=200)
    token_expiration_days: int | None = Field(None, ge=0, le=3650)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name cannot be empty or whitespace")
        return v


class LoginRequest(BaseModel):
    password: str = Field(min_length=1, max_length=128)


class TokenResponse(BaseModel):
    token: str


class TokenRequest(BaseModel):
    token: str = Field(min_length=1, max_length=256)


class TokenCheckResponse(BaseModel):
    valid: bool


class ResetPasswordRequest(BaseModel):
    code: int = Field(ge=CODE_MIN, le=CODE_MAX)
    new_password: str = Field(min_length=8, max_length=128)


class MetadataResponse(BaseModel):
    id: str
    email: str
    name: str
    school_id: int
    phone: int
    house: str | None = None
    organization: str | None = None

    @classmethod
    def from_metadata(cls, account_id: int, metadata: UserMetadata) -> "MetadataResponse":
        return cls(
            id=str(account_id),
            email=metadata.email,
            name=metadata.name,
            school_id=metadata.school_id,
            phone=metadata.phone,
            house=metadata.house,
            organization=metadata.organization,
        )


class PermissionsResponse(BaseModel):
    id: str
    permissions: list[Permission]
