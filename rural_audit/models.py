"""
Pydantic models for the audit tree — strict typing at every boundary.

In memory the tree is nested (an AuditState owns Properties and Parties,
each owning its ChecklistItems). The remote store keeps it flat; the
mapping between the two shapes lives in records.py.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field

from .identity import EntityId


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ─── Enumerations ───────────────────────────────────────────────────


class Status(str, Enum):
    """Verification status of a single checklist item."""

    PENDING = "pending"
    WAITING = "waiting"  # Requested, awaiting a registry / agency response
    OK = "ok"
    ISSUE = "issue"  # Irregularity found
    EXPIRED = "expired"  # Certificate past its validity
    WAIVED = "waived"


class PartyType(str, Enum):
    PF = "PF"  # Pessoa física (natural person)
    PJ = "PJ"  # Pessoa jurídica (legal person)


class PartyRole(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"


class ParentType(str, Enum):
    """Discriminator for the owner of an item in the flat store."""

    PROPERTY = "property"
    PARTY = "party"


class NotificationKind(str, Enum):
    ALERT = "alert"
    WARNING = "warning"
    INFO = "info"


class RiskLevel(str, Enum):
    BAIXO = "Baixo"
    MEDIO = "Médio"
    ALTO = "Alto"


# ─── Audit Tree ─────────────────────────────────────────────────────


class ChecklistItem(BaseModel):
    """A single verifiable fact or document."""

    id: EntityId = Field(frozen=True)
    category: str
    name: str
    description: Optional[str] = None
    status: Status = Status.PENDING
    notes: str = ""
    updated_at: datetime = Field(default_factory=utc_now)


class Property(BaseModel):
    """A land registry entry (matrícula) under audit."""

    id: EntityId = Field(frozen=True)
    name: str
    matricula: str = ""
    cartorio: str = ""
    area: str = ""  # Hectares, kept as typed by the operator
    municipio: str = ""
    items: list[ChecklistItem] = Field(default_factory=list)


class Party(BaseModel):
    """A buyer or seller in the transaction."""

    id: EntityId = Field(frozen=True)
    type: PartyType
    name: str
    doc: str = ""  # CPF or CNPJ
    role: PartyRole
    items: list[ChecklistItem] = Field(default_factory=list)


class AuditState(BaseModel):
    """Root aggregate — exactly one per session."""

    properties: list[Property] = Field(default_factory=list)
    parties: list[Party] = Field(default_factory=list)
    general_notes: str = ""

    def is_empty(self) -> bool:
        return not self.properties and not self.parties


# ─── Partial Updates ────────────────────────────────────────────────
# Only the fields explicitly sent are merged (model_dump(exclude_unset=True)).
# Ids and owned item lists are not updatable through these models.


class _PartialUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # Fields that may be cleared with an explicit null
    nullable: ClassVar[frozenset[str]] = frozenset()

    def changes(self) -> dict:
        return {
            key: value
            for key, value in self.model_dump(exclude_unset=True).items()
            if value is not None or key in self.nullable
        }


class ItemUpdate(_PartialUpdate):
    nullable: ClassVar[frozenset[str]] = frozenset({"description"})

    category: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[Status] = None
    notes: Optional[str] = None
    updated_at: Optional[datetime] = None


class PropertyUpdate(_PartialUpdate):
    name: Optional[str] = None
    matricula: Optional[str] = None
    cartorio: Optional[str] = None
    area: Optional[str] = None
    municipio: Optional[str] = None


class PartyUpdate(_PartialUpdate):
    type: Optional[PartyType] = None
    name: Optional[str] = None
    doc: Optional[str] = None
    role: Optional[PartyRole] = None


# ─── Notifications & Analysis ───────────────────────────────────────


class Notification(BaseModel):
    id: str
    message: str
    kind: NotificationKind
    timestamp: datetime = Field(default_factory=utc_now)
    read: bool = False


class AnalysisResult(BaseModel):
    """Structured verdict returned by the risk analysis adapter."""

    risk_level: RiskLevel
    summary: str
    recommendations: list[str] = Field(default_factory=list)
    # True when the AI service was unavailable and this is the canned verdict
    degraded: bool = Field(default=False, exclude=True)
