"""Persisted exclusion entries."""

import enum
from datetime import UTC, datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class ExclusionKind(enum.StrEnum):
    bssid = "bssid"
    ssid = "ssid"


class ExclusionContext(enum.StrEnum):
    """Where an exclusion query comes from.

    Transient (per-session) exclusions only apply to the live scan.
    """

    live = "live"
    view = "view"


class ExcludedAccessPoint(SQLModel, table=True):
    """A permanently excluded AP key, by BSSID or by network name."""

    __table_args__ = (UniqueConstraint("kind", "value"),)

    id: int | None = Field(default=None, primary_key=True)
    kind: ExclusionKind
    value: str = Field(index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
