"""
Checklist seed templates.

Every new property or party starts from a fresh copy of a template loaded
from data/checklists.json. Templates carry no ids; ids are assigned by the
caller (durable by the remote store, or local by the fallback layer).
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable

from .identity import DurableId, LocalId
from .models import ChecklistItem, PartyType, Status

PROPERTY_TEMPLATE = "property"

_DEFAULT_PATH = Path(__file__).parent / "data" / "checklists.json"


@lru_cache(maxsize=None)
def _load(path: str) -> dict[str, list[dict[str, Any]]]:
    with Path(path).open(encoding="utf-8") as f:
        result: dict[str, list[dict[str, Any]]] = json.load(f)
        return result


def load_template(name: str, path: str | Path | None = None) -> list[dict[str, Any]]:
    """Return a deep copy of the named template (`property`, `PF` or `PJ`)."""
    templates = _load(str(path or _DEFAULT_PATH))
    if name not in templates:
        raise KeyError(f"Unknown checklist template: {name!r}")
    return [dict(entry) for entry in templates[name]]


def party_template_name(party_type: PartyType) -> str:
    return party_type.value


def seed_items(
    template: list[dict[str, Any]],
    new_id: Callable[[], DurableId | LocalId],
) -> list[ChecklistItem]:
    """Instantiate template entries as pending checklist items."""
    return [
        ChecklistItem(
            id=new_id(),
            category=entry["category"],
            name=entry["name"],
            description=entry.get("description"),
            status=Status(entry.get("status", Status.PENDING.value)),
        )
        for entry in template
    ]
