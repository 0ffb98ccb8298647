"""
whatsched · Central data models.

Pydantic models shared between the scheduler, the contact store and the
HTTP layer.

Design principles:
  - Immutable (frozen) for snapshots handed to callers (JobSummary, DeliveryFailure)
  - JSON-serializable (for logging and the REST API)
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, computed_field

# ============================================================================
# Hilfsfunktionen
# ============================================================================


def _utc_now() -> datetime:
    """Aktuelle Zeit in UTC. Einheitlich im gesamten System."""
    return datetime.now(UTC)


_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str) -> str:
    """Reduziert eine Telefonnummer auf Ziffern ("+49 157-1234" → "491571234")."""
    return _NON_DIGITS.sub("", phone)


def format_phone_display(phone: str) -> str:
    """Anzeigeformat: ``+CC NNNN REST`` (z.B. "+49 1575 8278556")."""
    if len(phone) <= 6:
        return f"+{phone}"
    return f"+{phone[:2]} {phone[2:6]} {phone[6:]}"


# ============================================================================
# Enums
# ============================================================================


class JobKind(StrEnum):
    """Art eines geplanten Jobs.

    ONCE:      Feuert genau einmal zu einem absoluten Zeitpunkt.
    RECURRING: Feuert nach CRON-Ausdruck, bis er abgebrochen wird.
    """

    ONCE = "once"
    RECURRING = "recurring"


# ============================================================================
# Scheduler-Snapshots
# ============================================================================


class JobSummary(BaseModel, frozen=True):
    """Öffentliche Sicht auf einen lebenden Job (ohne Trigger-Handle).

    Genau eines von ``fires_at`` / ``pattern`` ist gesetzt, passend zu ``kind``.
    """

    id: str
    recipient: str
    body: str
    kind: JobKind
    fires_at: str | None = None  # ISO-8601, nur bei ONCE
    pattern: str | None = None  # CRON, nur bei RECURRING


class DeliveryFailure(BaseModel, frozen=True):
    """Ein fehlgeschlagener Zustellversuch eines gefeuerten Jobs."""

    job_id: str
    recipient: str
    kind: JobKind
    error: str
    failed_at: datetime = Field(default_factory=_utc_now)


class StatusReport(BaseModel):
    """Verbindungsstatus des Channels plus alle lebenden Jobs."""

    status: str
    me: dict[str, Any] | None = None
    scheduled: list[JobSummary] = Field(default_factory=list)
    recent_failures: list[DeliveryFailure] = Field(default_factory=list)


# ============================================================================
# Kontakte
# ============================================================================


class Contact(BaseModel):
    """Ein Eintrag im Adressbuch (Empfänger-Auswahl)."""

    id: int
    name: str
    phone: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def phone_display(self) -> str:
        return format_phone_display(self.phone)


class ContactCreate(BaseModel):
    """Neuer Kontakt."""

    name: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., min_length=3, max_length=50)


class ContactUpdate(BaseModel):
    """Teil-Update eines Kontakts. Nicht gesetzte Felder bleiben unverändert."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    phone: str | None = Field(default=None, min_length=3, max_length=50)
