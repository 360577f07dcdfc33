"""
Credential Records — Non-secret metadata stored alongside each ciphertext.

``encrypted_key`` holds the packed ciphertext framing and is excluded from
every public projection. Plaintext values and passphrases never appear on
these models.
"""
import uuid
from enum import Enum
from typing import Any, Optional
from datetime import datetime, timedelta, timezone

import orjson
from pydantic import BaseModel, Field, field_validator, model_validator

from .crypto import KeyDerivationMode

PUBLIC_EXCLUDE = frozenset({"encrypted_key"})

_CREDENTIAL_ENVIRONMENTS = ("development", "staging", "production")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Read a naive datetime as UTC; aware values pass through."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CredentialStatus(str, Enum):
    """Lifecycle status of a stored credential.

    EXPIRED is set only by the expiry policy engine.
    """

    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"


class CredentialRecord(BaseModel):
    """One third-party API key at rest."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    owner_id: str
    name: str = Field(min_length=1, max_length=100)
    service: str = Field(min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)
    environment: str = Field(default="development")
    tags: list[str] = Field(default_factory=list)
    encrypted_key: str = Field(repr=False)
    key_derivation_mode: KeyDerivationMode
    rotation_interval_days: int = Field(default=90, ge=1, le=365)
    status: CredentialStatus = CredentialStatus.ACTIVE
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_rotated_at: datetime = Field(default_factory=utcnow)

    @field_validator("service")
    @classmethod
    def normalize_service(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is one of the supported names."""
        if v not in _CREDENTIAL_ENVIRONMENTS:
            raise ValueError(f"Unsupported environment: {v}")
        return v

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str]) -> list[str]:
        tags = [t.strip() for t in v if t and t.strip()]
        if any(len(t) > 30 for t in tags):
            raise ValueError("Tag cannot exceed 30 characters")
        return tags

    @field_validator("created_at", "updated_at", "last_rotated_at")
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        """Treat naive timestamps from the store as UTC."""
        return ensure_utc(v)

    @model_validator(mode="after")
    def sync_active_flag(self) -> "CredentialRecord":
        """Keep the is_active convenience flag in line with status."""
        self.is_active = self.status is CredentialStatus.ACTIVE
        return self

    @property
    def rotation_due_at(self) -> datetime:
        return self.last_rotated_at + timedelta(days=self.rotation_interval_days)

    def with_status(
        self, status: CredentialStatus, now: Optional[datetime] = None,
    ) -> "CredentialRecord":
        """Return a copy in the given status with is_active kept in sync."""
        return self.model_copy(update={
            "status": status,
            "is_active": status is CredentialStatus.ACTIVE,
            "updated_at": now or utcnow(),
        })

    def to_public(self) -> dict[str, Any]:
        """Metadata-only projection, safe for list and read responses."""
        data = self.model_dump(mode="json", exclude=set(PUBLIC_EXCLUDE))
        data["rotation_due_at"] = self.rotation_due_at.isoformat()
        return data

    def to_json(self) -> bytes:
        """orjson-encoded public projection."""
        return orjson.dumps(self.to_public())
