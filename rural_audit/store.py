"""
Audit State Store — the session's canonical audit tree.

Flow for every intent:
  1. Mutate the in-memory tree (optimistic, never rolled back)
  2. Ask the gateway to persist
       - creates are awaited (the durable id is needed); failures fall
         back to the local draft through LocalFallback
       - updates/deletes are fire-and-forget tasks; a failure only adds a
         warning notification
  3. Record a derived notification

Entities with a LocalId never reach the remote store. The store is a plain
object, one per session; nothing here is module-global.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable

from .config import Settings
from .exceptions import EntityNotFoundError, LastPropertyError
from .fallback import CreateOutcome, LocalFallback, LocalOnly
from .gateway import PersistenceGateway
from .identity import DurableId, LocalId, parse_id
from .models import (
    AnalysisResult,
    AuditState,
    ChecklistItem,
    ItemUpdate,
    NotificationKind,
    ParentType,
    Party,
    PartyRole,
    PartyType,
    PartyUpdate,
    Property,
    PropertyUpdate,
    Status,
)
from .notifications import NotificationLog
from .risk_analysis import analyze_audit_risks, fallback_verdict
from .templates import PROPERTY_TEMPLATE, load_template, party_template_name, seed_items

logger = logging.getLogger(__name__)

IdLike = DurableId | LocalId | str
Analyzer = Callable[[AuditState], AnalysisResult]

DEFAULT_PROPERTY = PropertyUpdate(
    name="Fazenda Santa Maria",
    matricula="14.230",
    cartorio="RGI de Correntina/BA",
    area="1.250",
    municipio="Correntina - BA",
)

_PARENT_LABELS = {ParentType.PROPERTY: "Imóvel", ParentType.PARTY: "Parte"}
_DEFAULT_PARTY_NAMES = {PartyType.PF: "Nome da Pessoa", PartyType.PJ: "Razão Social"}


class AuditStore:
    """Owns one AuditState and every operation that changes it.

    Usage:
        store = AuditStore.from_settings(load_settings())
        await store.load()
        await store.update_item(item_id, {"status": "issue"})
        await store.flush()   # wait for background persistence
    """

    def __init__(
        self,
        gateway: PersistenceGateway | None = None,
        *,
        analyzer: Analyzer | None = None,
        fallback: LocalFallback | None = None,
        notifications: NotificationLog | None = None,
    ):
        self.state = AuditState()
        self.active_property_id: DurableId | LocalId | None = None
        self.notifications = notifications or NotificationLog()
        self.last_analysis: AnalysisResult | None = None
        self._gateway = gateway
        self._fallback = fallback or LocalFallback()
        self._analyzer: Analyzer = analyzer or analyze_audit_risks
        self._pending: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> AuditStore:
        return cls(
            PersistenceGateway.from_settings(settings),
            analyzer=functools.partial(
                analyze_audit_risks,
                api_key=settings.openai_api_key,
                model=settings.openai_model,
            ),
        )

    @property
    def remote_enabled(self) -> bool:
        return self._gateway is not None

    @property
    def active_property(self) -> Property | None:
        if self.active_property_id is None:
            return None
        return self._find_property(self.active_property_id)

    # ─── Lookups ────────────────────────────────────────────────────

    def _find_property(self, entity_id: IdLike) -> Property | None:
        wanted = parse_id(entity_id)
        return next((p for p in self.state.properties if p.id == wanted), None)

    def _find_party(self, entity_id: IdLike) -> Party | None:
        wanted = parse_id(entity_id)
        return next((p for p in self.state.parties if p.id == wanted), None)

    def _find_parent(self, parent_id: IdLike, parent_type: ParentType) -> Property | Party | None:
        if parent_type == ParentType.PROPERTY:
            return self._find_property(parent_id)
        return self._find_party(parent_id)

    def _owners(self) -> list[tuple[Property | Party, ParentType]]:
        return [(p, ParentType.PROPERTY) for p in self.state.properties] + [
            (p, ParentType.PARTY) for p in self.state.parties
        ]

    def _locate_item(self, item_id: IdLike) -> tuple[Property | Party, ParentType, int] | None:
        wanted = parse_id(item_id)
        for owner, parent_type in self._owners():
            for index, item in enumerate(owner.items):
                if item.id == wanted:
                    return owner, parent_type, index
        return None

    # ─── Background persistence ─────────────────────────────────────

    def _dispatch(self, description: str, call: Awaitable[bool]) -> None:
        task = asyncio.create_task(self._persist(description, call))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(self, description: str, call: Awaitable[bool]) -> None:
        if not await call:
            self.notifications.append(
                f"Falha ao sincronizar {description}. Alteração mantida apenas localmente.",
                NotificationKind.WARNING,
            )

    async def flush(self) -> None:
        """Wait until every in-flight update/delete has resolved."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def aclose(self) -> None:
        """Flush pending writes and release the gateway connection."""
        await self.flush()
        if self._gateway is not None:
            await self._gateway.aclose()

    # ─── Load ───────────────────────────────────────────────────────

    async def load(self) -> AuditState:
        """Replace the tree with the remote store's; seed a property on first run."""
        try:
            self.state = await self._gateway.fetch_all() if self._gateway else AuditState()
        except Exception as e:
            logger.error("Audit load failed: %s", e)
            self.notifications.append("Erro crítico ao carregar dados.", NotificationKind.ALERT)
            self.state = AuditState()
        self.active_property_id = None

        if self.state.is_empty():
            outcome = await self._create_property(DEFAULT_PROPERTY.changes(), None)
            self.state.properties.append(outcome.entity)
            if isinstance(outcome, LocalOnly):
                self.notifications.append(
                    "Modo Offline: Dados salvos apenas localmente.", NotificationKind.WARNING
                )

        if self.state.properties:
            self.active_property_id = self.state.properties[0].id
        return self.state

    # ─── Properties ─────────────────────────────────────────────────

    async def _create_property(
        self, details: dict[str, Any], seed_template: list[dict[str, Any]] | None
    ) -> CreateOutcome[Property]:
        template = load_template(PROPERTY_TEMPLATE) if seed_template is None else [
            dict(entry) for entry in seed_template
        ]
        draft = Property(
            id=self._fallback.mint(),
            items=seed_items(template, lambda: self._fallback.mint("item")),
            **{"name": "Novo Imóvel", **details},
        )
        remote = self._gateway.create_property if self._gateway else None
        return await self._fallback.create(draft, remote)

    async def create_property(
        self,
        details: PropertyUpdate | dict[str, Any] | None = None,
        seed_template: list[dict[str, Any]] | None = None,
    ) -> CreateOutcome[Property]:
        """Add a property seeded with a fresh checklist; it becomes the selection."""
        fields = PropertyUpdate.model_validate(details or {}).changes()
        outcome = await self._create_property(fields, seed_template)
        self.state.properties.append(outcome.entity)
        self.active_property_id = outcome.entity.id

        if isinstance(outcome, LocalOnly):
            self.notifications.append("Novo imóvel adicionado (Localmente).", NotificationKind.WARNING)
        else:
            self.notifications.append("Novo imóvel adicionado à auditoria.", NotificationKind.INFO)
        return outcome

    async def update_property(
        self, property_id: IdLike, changes: PropertyUpdate | dict[str, Any]
    ) -> Property | None:
        fields = PropertyUpdate.model_validate(changes).changes()
        prop = self._find_property(property_id)
        if prop is None or not fields:
            return prop

        index = self.state.properties.index(prop)
        updated = prop.model_copy(update=fields)
        self.state.properties[index] = updated

        if self._gateway is not None and isinstance(updated.id, DurableId):
            self._dispatch("o imóvel", self._gateway.update_property(updated.id, fields))
        return updated

    async def delete_property(self, property_id: IdLike) -> bool:
        """Remove a property and its items. The last property cannot be removed.

        Raises:
            LastPropertyError: only one property remains; nothing changes.
        """
        if len(self.state.properties) <= 1:
            raise LastPropertyError(
                "Você não pode excluir o único imóvel da auditoria.",
                details={"property_id": str(property_id)},
            )
        prop = self._find_property(property_id)
        if prop is None:
            return False

        self.state.properties.remove(prop)
        if self.active_property_id == prop.id:
            self.active_property_id = self.state.properties[0].id
        self.notifications.append("Imóvel removido da auditoria.", NotificationKind.INFO)

        if self._gateway is not None and isinstance(prop.id, DurableId):
            self._dispatch("a exclusão do imóvel", self._gateway.delete_property(prop.id))
        return True

    def select_property(self, property_id: IdLike) -> Property:
        prop = self._find_property(property_id)
        if prop is None:
            raise EntityNotFoundError(
                f"Property {property_id} is not part of this audit",
                details={"property_id": str(property_id)},
            )
        self.active_property_id = prop.id
        return prop

    # ─── Parties ────────────────────────────────────────────────────

    async def create_party(
        self,
        party_type: PartyType | str,
        role: PartyRole | str,
        details: PartyUpdate | dict[str, Any] | None = None,
        seed_template: list[dict[str, Any]] | None = None,
    ) -> CreateOutcome[Party]:
        """Add a buyer or seller seeded with the PF or PJ checklist."""
        party_type = PartyType(party_type)
        fields = PartyUpdate.model_validate(details or {}).changes()
        fields.pop("type", None)
        template = load_template(party_template_name(party_type)) if seed_template is None else [
            dict(entry) for entry in seed_template
        ]
        draft = Party(
            id=self._fallback.mint("party"),
            items=seed_items(template, lambda: self._fallback.mint("item")),
            **{"name": _DEFAULT_PARTY_NAMES[party_type], "role": PartyRole(role), **fields},
            type=party_type,
        )
        remote = self._gateway.create_party if self._gateway else None
        outcome = await self._fallback.create(draft, remote)
        self.state.parties.append(outcome.entity)

        if isinstance(outcome, LocalOnly):
            self.notifications.append("Nova parte adicionada (Localmente).", NotificationKind.WARNING)
        else:
            self.notifications.append(
                f"Nova parte adicionada: {outcome.entity.name}.", NotificationKind.INFO
            )
        return outcome

    async def update_party(
        self, party_id: IdLike, changes: PartyUpdate | dict[str, Any]
    ) -> Party | None:
        fields = PartyUpdate.model_validate(changes).changes()
        party = self._find_party(party_id)
        if party is None or not fields:
            return party

        index = self.state.parties.index(party)
        updated = party.model_copy(update=fields)
        self.state.parties[index] = updated

        if self._gateway is not None and isinstance(updated.id, DurableId):
            self._dispatch("a parte", self._gateway.update_party(updated.id, fields))
        return updated

    async def delete_party(self, party_id: IdLike) -> bool:
        party = self._find_party(party_id)
        if party is None:
            return False

        self.state.parties.remove(party)
        self.notifications.append("Parte removida da auditoria.", NotificationKind.INFO)

        if self._gateway is not None and isinstance(party.id, DurableId):
            self._dispatch("a exclusão da parte", self._gateway.delete_party(party.id))
        return True

    # ─── Items ──────────────────────────────────────────────────────

    async def create_item(
        self,
        parent_id: IdLike,
        parent_type: ParentType | str,
        category: str,
        name: str,
        description: str | None = None,
    ) -> CreateOutcome[ChecklistItem]:
        """Append a pending item to a property's or party's checklist."""
        parent_type = ParentType(parent_type)
        if not name.strip():
            raise ValueError("Item name must not be blank")
        owner = self._find_parent(parent_id, parent_type)
        if owner is None:
            raise EntityNotFoundError(
                f"No {parent_type.value} with id {parent_id}",
                details={"parent_id": str(parent_id), "parent_type": parent_type.value},
            )

        draft = ChecklistItem(
            id=self._fallback.mint("item"),
            category=category.strip() or "Outros",
            name=name.strip(),
            description=description,
            status=Status.PENDING,
        )
        gateway = self._gateway
        remote_parent = owner.id
        if gateway is not None and isinstance(remote_parent, DurableId):
            outcome = await self._fallback.create(
                draft, lambda item: gateway.create_item(item, remote_parent, parent_type)
            )
        else:
            reason = "parent not persisted" if self._gateway else "local-only mode"
            outcome = await self._fallback.create(draft, None, skipped_reason=reason)

        # The parent may have been deleted while the insert was in flight
        owner = self._find_parent(owner.id, parent_type)
        if owner is None:
            logger.warning("Parent %s vanished before item %s was attached", parent_id, draft.name)
            return outcome
        owner.items.append(outcome.entity)

        if isinstance(outcome, LocalOnly):
            self.notifications.append("Item adicionado (Localmente).", NotificationKind.WARNING)
        else:
            self.notifications.append(
                f'Novo item "{outcome.entity.name}" adicionado.', NotificationKind.INFO
            )
        return outcome

    async def update_item(
        self, item_id: IdLike, changes: ItemUpdate | dict[str, Any]
    ) -> ChecklistItem | None:
        """Shallow-merge fields into an item. Unknown ids are a no-op."""
        fields = ItemUpdate.model_validate(changes).changes()
        located = self._locate_item(item_id)
        if located is None:
            return None

        owner, parent_type, index = located
        item = owner.items[index]
        if not fields:
            return item
        updated = item.model_copy(update=fields)
        owner.items[index] = updated

        new_status = fields.get("status")
        if new_status is not None and new_status != item.status:
            self._notify_status_change(owner, parent_type, updated)

        if self._gateway is not None and isinstance(updated.id, DurableId):
            self._dispatch(f'o item "{updated.name}"', self._gateway.update_item(updated.id, fields))
        return updated

    def _notify_status_change(
        self, owner: Property | Party, parent_type: ParentType, item: ChecklistItem
    ) -> None:
        label = f"{_PARENT_LABELS[parent_type]} ({owner.name})"
        if item.status == Status.ISSUE:
            self.notifications.append(
                f'{label}: O item "{item.name}" foi marcado como IRREGULARIDADE.',
                NotificationKind.ALERT,
            )
        elif item.status == Status.PENDING:
            self.notifications.append(
                f'{label}: O item "{item.name}" voltou para PENDENTE.',
                NotificationKind.WARNING,
            )

    async def delete_item(
        self,
        item_id: IdLike,
        parent_id: IdLike | None = None,
        parent_type: ParentType | str | None = None,
    ) -> bool:
        """Remove an item from its parent (scans every parent when none is given)."""
        wanted = parse_id(item_id)
        if parent_id is not None and parent_type is not None:
            owner = self._find_parent(parent_id, ParentType(parent_type))
            index = next(
                (i for i, item in enumerate(owner.items) if item.id == wanted), None
            ) if owner else None
        else:
            located = self._locate_item(wanted)
            owner, index = (located[0], located[2]) if located else (None, None)
        if owner is None or index is None:
            return False

        owner.items.pop(index)
        self.notifications.append("Item removido.", NotificationKind.INFO)

        if self._gateway is not None and isinstance(wanted, DurableId):
            self._dispatch("a exclusão do item", self._gateway.delete_item(wanted))
        return True

    # ─── General notes ──────────────────────────────────────────────

    async def set_general_notes(self, text: str) -> None:
        self.state.general_notes = text
        if self._gateway is not None:
            self._dispatch("as observações gerais", self._gateway.update_general_notes(text))

    # ─── Risk analysis ──────────────────────────────────────────────

    async def run_analysis(self) -> AnalysisResult:
        """Analyse a snapshot of the audit off the event loop. Never raises."""
        snapshot = self.state.model_copy(deep=True)
        try:
            result = await asyncio.to_thread(self._analyzer, snapshot)
        except Exception as e:
            logger.error("Risk analyzer crashed: %s", e)
            result = None

        if result is None or result.degraded:
            self.notifications.append("Erro ao realizar análise de risco.", NotificationKind.ALERT)
        else:
            self.notifications.append(
                "Análise de Risco com IA concluída com sucesso.", NotificationKind.INFO
            )
        if result is None:
            result = fallback_verdict()
        self.last_analysis = result
        return result
