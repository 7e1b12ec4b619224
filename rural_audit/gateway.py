"""
Persistence Gateway — the remote tabular store behind the audit tree.

Speaks the PostgREST dialect (`/rest/v1/<table>`, `?col=eq.value` filters,
`Prefer: return=representation` on inserts) over httpx.

Error policy:
  - fetch_all()      all-or-nothing: any failed collection or malformed row → empty AuditState
  - create_*()       raise GatewayError; the caller owns the local fallback
  - update_*/delete_*  fire-and-forget: failures are logged and reported as
                     False, never raised
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from .config import Settings
from .exceptions import GatewayError
from .identity import DurableId
from .models import AuditState, ChecklistItem, ParentType, Party, Property
from .records import (
    SETTINGS_ROW_ID,
    FlatRecords,
    changes_record,
    from_records,
    item_from_record,
    item_record,
    party_from_record,
    party_record,
    property_from_record,
    property_record,
)

logger = logging.getLogger(__name__)

PROPERTIES = "properties"
PARTIES = "parties"
ITEMS = "audit_items"
SETTINGS = "audit_settings"

_RETURN_ROWS = {"Prefer": "return=representation"}


class PersistenceGateway:
    """Async CRUD over the remote store for properties, parties and items."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._client = client or httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/rest/v1",
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> PersistenceGateway | None:
        """Build a gateway, or None when store credentials are missing."""
        if not settings.supabase_url or not settings.supabase_key:
            return None
        return cls(settings.supabase_url, settings.supabase_key, timeout=settings.timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    # ─── Transport ──────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(
                method, f"/{table}", params=params, json=json, headers=headers
            )
        except httpx.HTTPError as exc:
            raise GatewayError(
                f"{method} {table} failed: {type(exc).__name__}",
                details={"table": table, "error": str(exc)},
            ) from exc

        if response.is_error:
            raise GatewayError(
                f"{method} {table} returned HTTP {response.status_code}",
                status_code=response.status_code,
                details={"table": table, "body": response.text[:500]},
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise GatewayError(
                f"{method} {table} returned a non-JSON body",
                status_code=response.status_code,
                details={"table": table},
            ) from exc

    async def _insert(self, table: str, payload: Any) -> list[dict[str, Any]]:
        rows = await self._request("POST", table, json=payload, headers=_RETURN_ROWS)
        if not isinstance(rows, list):
            raise GatewayError(f"Insert into {table} returned no rows", details={"table": table})
        return rows

    async def _best_effort(self, action: str, method: str, table: str, **kwargs: Any) -> bool:
        try:
            await self._request(method, table, **kwargs)
        except GatewayError as exc:
            logger.error("%s failed: %s", action, exc)
            return False
        return True

    # ─── Load ───────────────────────────────────────────────────────

    async def fetch_all(self) -> AuditState:
        """Load the whole audit, joining item rows onto their parents."""
        try:
            properties = await self._request(
                "GET", PROPERTIES, params={"select": "*", "order": "created_at"}
            )
            parties = await self._request(
                "GET", PARTIES, params={"select": "*", "order": "created_at"}
            )
            items = await self._request("GET", ITEMS, params={"select": "*"})
        except GatewayError as exc:
            logger.warning("Remote load failed, starting from an empty audit: %s", exc)
            return AuditState()

        settings: dict[str, Any] | None = None
        try:
            rows = await self._request(
                "GET", SETTINGS, params={"select": "*", "id": f"eq.{SETTINGS_ROW_ID}"}
            )
            settings = rows[0] if rows else None
        except GatewayError as exc:
            logger.warning("Could not load audit settings: %s", exc)

        try:
            state = from_records(
                FlatRecords(
                    properties=properties or [],
                    parties=parties or [],
                    items=items or [],
                    settings=settings,
                )
            )
        except (KeyError, ValidationError) as exc:
            logger.warning("Remote store returned malformed rows, starting from an empty audit: %s", exc)
            return AuditState()
        logger.info(
            "Loaded %d properties and %d parties from the remote store",
            len(state.properties),
            len(state.parties),
        )
        return state

    # ─── Create (two-phase: parent row, then its seed items) ────────

    async def _insert_items(
        self,
        items: list[ChecklistItem],
        parent_id: DurableId,
        parent_type: ParentType,
    ) -> list[ChecklistItem]:
        if not items:
            return []
        payload = [item_record(i, parent_id, parent_type, with_id=False) for i in items]
        rows = await self._insert(ITEMS, payload)
        return [item_from_record(row) for row in rows]

    async def create_property(self, prop: Property) -> Property:
        rows = await self._insert(PROPERTIES, property_record(prop, with_id=False))
        created = property_from_record(rows[0])
        items = await self._insert_items(prop.items, DurableId(str(created.id)), ParentType.PROPERTY)
        logger.info("Created property %s with %d items", created.id, len(items))
        return created.model_copy(update={"items": items})

    async def create_party(self, party: Party) -> Party:
        rows = await self._insert(PARTIES, party_record(party, with_id=False))
        created = party_from_record(rows[0])
        items = await self._insert_items(party.items, DurableId(str(created.id)), ParentType.PARTY)
        logger.info("Created party %s with %d items", created.id, len(items))
        return created.model_copy(update={"items": items})

    async def create_item(
        self,
        item: ChecklistItem,
        parent_id: DurableId,
        parent_type: ParentType,
    ) -> ChecklistItem:
        rows = await self._insert(ITEMS, item_record(item, parent_id, parent_type, with_id=False))
        return item_from_record(rows[0])

    # ─── Update (fire-and-forget) ───────────────────────────────────

    async def update_property(self, entity_id: DurableId, changes: dict[str, Any]) -> bool:
        return await self._best_effort(
            f"Update of property {entity_id}", "PATCH", PROPERTIES,
            params={"id": f"eq.{entity_id}"}, json=changes_record(changes),
        )

    async def update_party(self, entity_id: DurableId, changes: dict[str, Any]) -> bool:
        return await self._best_effort(
            f"Update of party {entity_id}", "PATCH", PARTIES,
            params={"id": f"eq.{entity_id}"}, json=changes_record(changes),
        )

    async def update_item(self, entity_id: DurableId, changes: dict[str, Any]) -> bool:
        return await self._best_effort(
            f"Update of item {entity_id}", "PATCH", ITEMS,
            params={"id": f"eq.{entity_id}"}, json=changes_record(changes),
        )

    async def update_general_notes(self, notes: str) -> bool:
        return await self._best_effort(
            "Update of general notes", "PATCH", SETTINGS,
            params={"id": f"eq.{SETTINGS_ROW_ID}"}, json={"general_notes": notes},
        )

    # ─── Delete ─────────────────────────────────────────────────────
    # Items first, then the parent. Not transactional: a failure between
    # the two calls leaves the parent (and possibly some items) behind.

    async def _delete_parent(self, table: str, entity_id: DurableId, parent_type: ParentType) -> bool:
        items_gone = await self._best_effort(
            f"Delete of items owned by {parent_type.value} {entity_id}", "DELETE", ITEMS,
            params={"parent_id": f"eq.{entity_id}", "parent_type": f"eq.{parent_type.value}"},
        )
        if not items_gone:
            return False
        return await self._best_effort(
            f"Delete of {parent_type.value} {entity_id}", "DELETE", table,
            params={"id": f"eq.{entity_id}"},
        )

    async def delete_property(self, entity_id: DurableId) -> bool:
        return await self._delete_parent(PROPERTIES, entity_id, ParentType.PROPERTY)

    async def delete_party(self, entity_id: DurableId) -> bool:
        return await self._delete_parent(PARTIES, entity_id, ParentType.PARTY)

    async def delete_item(self, entity_id: DurableId) -> bool:
        return await self._best_effort(
            f"Delete of item {entity_id}", "DELETE", ITEMS, params={"id": f"eq.{entity_id}"},
        )
