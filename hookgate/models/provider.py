"""
Provider - one third-party webhook source (Stripe, Square, ...).
Holds the routing token, signing secret and per-provider intake limits.
"""
import os
import re
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, Boolean, Text, DateTime
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, validates
from hookgate.database import Base

NAME_PATTERN = re.compile(r"^[a-z0-9_]+$")
ENV_SECRET_PATTERN = re.compile(r"^ENV\[(\w+)\]$")

DEFAULT_TIMESTAMP_TOLERANCE_SECONDS = 300
DEFAULT_MAX_PAYLOAD_SIZE_BYTES = 1_048_576  # 1 MiB
DEFAULT_RATE_LIMIT_REQUESTS = 100
DEFAULT_RATE_LIMIT_PERIOD = 60


class Provider(Base):
    __tablename__ = "providers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    signing_secret: Mapped[Optional[str]] = mapped_column(Text)
    verifier: Mapped[str] = mapped_column(String(50), nullable=False, default="default")

    # None disables the corresponding check
    timestamp_tolerance_seconds: Mapped[Optional[int]] = mapped_column(
        Integer, default=DEFAULT_TIMESTAMP_TOLERANCE_SECONDS
    )
    max_payload_size_bytes: Mapped[Optional[int]] = mapped_column(
        Integer, default=DEFAULT_MAX_PAYLOAD_SIZE_BYTES
    )
    rate_limit_requests: Mapped[Optional[int]] = mapped_column(
        Integer, default=DEFAULT_RATE_LIMIT_REQUESTS
    )
    rate_limit_period: Mapped[Optional[int]] = mapped_column(
        Integer, default=DEFAULT_RATE_LIMIT_PERIOD
    )

    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @validates("name")
    def _normalize_name(self, key, value: str) -> str:
        value = (value or "").strip().lower()
        if not NAME_PATTERN.match(value):
            raise ValueError(
                f"Invalid provider name {value!r}: only lowercase letters, numbers, and underscores"
            )
        return value

    @property
    def rate_limiting_enabled(self) -> bool:
        return bool(self.rate_limit_requests) and bool(self.rate_limit_period)

    @property
    def timestamp_validation_enabled(self) -> bool:
        return bool(self.timestamp_tolerance_seconds) and self.timestamp_tolerance_seconds > 0

    @property
    def payload_size_limit_enabled(self) -> bool:
        return bool(self.max_payload_size_bytes) and self.max_payload_size_bytes > 0

    def resolve_signing_secret(self) -> Optional[str]:
        """
        Return the effective signing secret.
        A secret written as ENV[NAME] is read from the environment; an unset
        variable resolves to None, which verifiers treat as "skip".
        """
        if not self.signing_secret:
            return None
        match = ENV_SECRET_PATTERN.match(self.signing_secret)
        if match:
            return os.environ.get(match.group(1)) or None
        return self.signing_secret

    def __repr__(self) -> str:
        return f"<Provider {self.name} ({'active' if self.active else 'inactive'})>"
