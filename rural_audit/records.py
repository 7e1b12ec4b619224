"""
Flat-record ⇄ nested-tree mapping.

The remote store keeps four collections:
  - properties     one row per Property (no items)
  - parties        one row per Party (no items)
  - audit_items    every ChecklistItem, tagged with parent_id / parent_type
  - audit_settings a singleton row (id=1) holding general_notes

These functions are pure: no network, no logging. The gateway uses them on
every call and the round-trip tests use them to prove that flattening and
re-joining a tree reproduces it exactly.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable

from .identity import DurableId, LocalId
from .models import AuditState, ChecklistItem, ParentType, Party, Property

SETTINGS_ROW_ID = 1

_PROPERTY_FIELDS = ("id", "name", "matricula", "cartorio", "area", "municipio")
_PARTY_FIELDS = ("id", "type", "name", "doc", "role")
_ITEM_FIELDS = ("id", "category", "name", "description", "status", "notes", "updated_at")


@dataclass
class FlatRecords:
    """The remote store's view of one audit."""

    properties: list[dict[str, Any]] = field(default_factory=list)
    parties: list[dict[str, Any]] = field(default_factory=list)
    items: list[dict[str, Any]] = field(default_factory=list)
    settings: dict[str, Any] | None = None


# ─── Tree → Records ─────────────────────────────────────────────────


def property_record(prop: Property, *, with_id: bool = True) -> dict[str, Any]:
    record = prop.model_dump(mode="json", include=set(_PROPERTY_FIELDS))
    if not with_id:
        record.pop("id")
    return record


def party_record(party: Party, *, with_id: bool = True) -> dict[str, Any]:
    record = party.model_dump(mode="json", include=set(_PARTY_FIELDS))
    if not with_id:
        record.pop("id")
    return record


def item_record(
    item: ChecklistItem,
    parent_id: DurableId | LocalId,
    parent_type: ParentType,
    *,
    with_id: bool = True,
) -> dict[str, Any]:
    record = item.model_dump(mode="json", include=set(_ITEM_FIELDS))
    if not with_id:
        record.pop("id")
    record["parent_id"] = str(parent_id)
    record["parent_type"] = parent_type.value
    return record


def changes_record(changes: dict[str, Any]) -> dict[str, Any]:
    """JSON-encode a partial update (enums → values, datetimes → ISO)."""
    encoded: dict[str, Any] = {}
    for key, value in changes.items():
        if isinstance(value, datetime):
            encoded[key] = value.isoformat()
        elif isinstance(value, Enum):
            encoded[key] = value.value
        else:
            encoded[key] = value
    return encoded


def to_records(state: AuditState) -> FlatRecords:
    """Flatten an AuditState into the remote store's shape."""
    flat = FlatRecords(settings={"id": SETTINGS_ROW_ID, "general_notes": state.general_notes})
    for prop in state.properties:
        flat.properties.append(property_record(prop))
        flat.items.extend(item_record(i, prop.id, ParentType.PROPERTY) for i in prop.items)
    for party in state.parties:
        flat.parties.append(party_record(party))
        flat.items.extend(item_record(i, party.id, ParentType.PARTY) for i in party.items)
    return flat


# ─── Records → Tree ─────────────────────────────────────────────────


def _pick(record: dict[str, Any], fields: Iterable[str]) -> dict[str, Any]:
    # Columns the store leaves NULL fall back to model defaults
    return {k: record[k] for k in fields if record.get(k) is not None}


def item_from_record(record: dict[str, Any]) -> ChecklistItem:
    return ChecklistItem.model_validate(_pick(record, _ITEM_FIELDS))


def property_from_record(
    record: dict[str, Any], items: list[ChecklistItem] | None = None
) -> Property:
    return Property.model_validate({**_pick(record, _PROPERTY_FIELDS), "items": items or []})


def party_from_record(
    record: dict[str, Any], items: list[ChecklistItem] | None = None
) -> Party:
    return Party.model_validate({**_pick(record, _PARTY_FIELDS), "items": items or []})


def from_records(flat: FlatRecords) -> AuditState:
    """Join flat item rows back onto their parents by (parent_id, parent_type).

    Item order within a parent follows row order, so insertion order is kept.
    Rows whose parent is missing (orphans from a half-finished cascade) are
    dropped here and left in the store.
    """
    owned: dict[tuple[str, str], list[ChecklistItem]] = defaultdict(list)
    for row in flat.items:
        owned[(str(row.get("parent_type")), str(row.get("parent_id")))].append(
            item_from_record(row)
        )

    properties = [
        property_from_record(row, owned.get((ParentType.PROPERTY.value, str(row["id"]))))
        for row in flat.properties
    ]
    parties = [
        party_from_record(row, owned.get((ParentType.PARTY.value, str(row["id"]))))
        for row in flat.parties
    ]
    notes = (flat.settings or {}).get("general_notes") or ""
    return AuditState(properties=properties, parties=parties, general_notes=notes)
