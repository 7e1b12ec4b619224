"""
Rural Audit — FastAPI Server
============================

HTTP surface over the Audit State Store. Every endpoint is one UI intent;
persistence failures never surface as errors (they become notifications).

Endpoints:
    GET    /health                      Health check / mode (remote|local)
    GET    /audit                       Full audit tree + active property
    GET    /dashboard                   Aggregate counters
    PUT    /audit/notes                 Replace general notes
    POST   /properties                  Add a property (seeded checklist)
    PATCH  /properties/{id}             Partial update
    DELETE /properties/{id}             Remove (409 for the last one)
    POST   /properties/{id}/select      Change the active property
    GET    /parties?search=             List / search parties
    POST   /parties                     Add a buyer or seller
    PATCH  /parties/{id}                Partial update
    DELETE /parties/{id}                Remove with its items
    POST   /items                       Add an item to a property or party
    PATCH  /items/{id}                  Partial update (status, notes, ...)
    DELETE /items/{id}                  Remove an item
    GET    /notifications               Most-recent-first log
    POST   /notifications/read          Mark all as read
    DELETE /notifications               Clear the log
    POST   /analysis                    AI risk analysis (one at a time)

Run:
    uvicorn api:app --reload              # Dev (http://localhost:8000)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from rural_audit import __version__
from rural_audit.config import load_settings
from rural_audit.exceptions import EntityNotFoundError, LastPropertyError
from rural_audit.models import (
    AnalysisResult,
    AuditState,
    ChecklistItem,
    ItemUpdate,
    Notification,
    ParentType,
    Party,
    PartyRole,
    PartyType,
    PartyUpdate,
    Property,
    PropertyUpdate,
)
from rural_audit.store import AuditStore
from rural_audit.summary import dashboard, search_parties

load_dotenv()

logger = logging.getLogger(__name__)


# ─── Application Lifespan (build + load the store) ──────────────────

_store: AuditStore | None = None
_analysis_running = False


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load the audit on startup; flush pending writes on shutdown."""
    global _store  # noqa: PLW0603
    settings = load_settings()
    store = AuditStore.from_settings(settings)
    await store.load()
    _store = store
    yield
    await store.aclose()
    _store = None


# ─── FastAPI App ─────────────────────────────────────────────────────

app = FastAPI(
    title="Rural Audit API",
    description=(
        "Due-diligence checklist tracker for rural real-estate transactions. "
        "Optimistic in-memory state, best-effort remote persistence with local "
        "fallback, and an AI-generated risk summary."
    ),
    version=__version__,
    lifespan=lifespan,
)


# ─── Request / Response Schemas ─────────────────────────────────────


class AuditOut(BaseModel):
    active_property_id: Optional[str] = None
    state: AuditState


class NotesRequest(BaseModel):
    general_notes: str


class PartyCreateRequest(BaseModel):
    type: PartyType
    role: PartyRole
    name: Optional[str] = None
    doc: Optional[str] = None


class ItemCreateRequest(BaseModel):
    parent_id: str
    parent_type: ParentType
    category: str = "Outros"
    name: str = Field(..., min_length=1)
    description: Optional[str] = None


class CreatedResponse(BaseModel):
    """Result of a create: `durable` is false when only a local copy exists."""

    durable: bool
    reason: Optional[str] = None


class PropertyCreated(CreatedResponse):
    property: Property


class PartyCreated(CreatedResponse):
    party: Party


class ItemCreated(CreatedResponse):
    item: ChecklistItem


class DashboardOut(BaseModel):
    total_items: int
    issues: int
    pending: int
    property_issues: int
    party_issues: int
    progress: int
    unread_notifications: int


class NotificationsOut(BaseModel):
    unread: int
    notifications: list[Notification]


class AnalysisOut(BaseModel):
    degraded: bool
    result: AnalysisResult


class HealthResponse(BaseModel):
    status: str
    version: str
    mode: str


# ─── Helpers ─────────────────────────────────────────────────────────


def _get_store() -> AuditStore:
    if _store is None:
        raise HTTPException(status_code=503, detail="Audit store not initialised")
    return _store


def _not_found(kind: str, entity_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"{kind} {entity_id} not found")


# ─── Endpoints: Audit ────────────────────────────────────────────────


@app.get("/health", summary="Health check", tags=["System"])
def health_check() -> HealthResponse:
    store = _get_store()
    return HealthResponse(
        status="healthy",
        version=__version__,
        mode="remote" if store.remote_enabled else "local",
    )


@app.get("/audit", summary="Full audit tree", tags=["Audit"])
def get_audit() -> AuditOut:
    store = _get_store()
    active = store.active_property_id
    return AuditOut(active_property_id=str(active) if active else None, state=store.state)


@app.get("/dashboard", summary="Aggregate counters", tags=["Audit"])
def get_dashboard() -> DashboardOut:
    store = _get_store()
    summary = dashboard(store.state)
    return DashboardOut(
        total_items=summary.total_items,
        issues=summary.issues,
        pending=summary.pending,
        property_issues=summary.property_issues,
        party_issues=summary.party_issues,
        progress=summary.progress,
        unread_notifications=store.notifications.unread_count,
    )


@app.put("/audit/notes", summary="Replace general notes", tags=["Audit"])
async def put_notes(request: NotesRequest) -> AuditOut:
    store = _get_store()
    await store.set_general_notes(request.general_notes)
    return get_audit()


# ─── Endpoints: Properties ───────────────────────────────────────────


@app.post("/properties", status_code=201, summary="Add a property", tags=["Properties"])
async def create_property(request: Optional[PropertyUpdate] = None) -> PropertyCreated:
    store = _get_store()
    outcome = await store.create_property(request)
    return PropertyCreated(
        durable=outcome.durable,
        reason=getattr(outcome, "reason", None),
        property=outcome.entity,
    )


@app.patch("/properties/{property_id}", summary="Update a property", tags=["Properties"])
async def patch_property(property_id: str, request: PropertyUpdate) -> Property:
    store = _get_store()
    updated = await store.update_property(property_id, request)
    if updated is None:
        raise _not_found("Property", property_id)
    return updated


@app.delete(
    "/properties/{property_id}",
    status_code=204,
    summary="Remove a property",
    tags=["Properties"],
    responses={409: {"description": "The last property cannot be removed"}},
)
async def remove_property(property_id: str) -> None:
    store = _get_store()
    try:
        removed = await store.delete_property(property_id)
    except LastPropertyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not removed:
        raise _not_found("Property", property_id)


@app.post("/properties/{property_id}/select", summary="Select a property", tags=["Properties"])
def select_property(property_id: str) -> AuditOut:
    store = _get_store()
    try:
        store.select_property(property_id)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return get_audit()


# ─── Endpoints: Parties ──────────────────────────────────────────────


@app.get("/parties", summary="List or search parties", tags=["Parties"])
def list_parties(search: str = "") -> list[Party]:
    return search_parties(_get_store().state, search)


@app.post("/parties", status_code=201, summary="Add a party", tags=["Parties"])
async def create_party(request: PartyCreateRequest) -> PartyCreated:
    store = _get_store()
    details = request.model_dump(include={"name", "doc"}, exclude_none=True)
    outcome = await store.create_party(request.type, request.role, details)
    return PartyCreated(
        durable=outcome.durable,
        reason=getattr(outcome, "reason", None),
        party=outcome.entity,
    )


@app.patch("/parties/{party_id}", summary="Update a party", tags=["Parties"])
async def patch_party(party_id: str, request: PartyUpdate) -> Party:
    updated = await _get_store().update_party(party_id, request)
    if updated is None:
        raise _not_found("Party", party_id)
    return updated


@app.delete("/parties/{party_id}", status_code=204, summary="Remove a party", tags=["Parties"])
async def remove_party(party_id: str) -> None:
    if not await _get_store().delete_party(party_id):
        raise _not_found("Party", party_id)


# ─── Endpoints: Items ────────────────────────────────────────────────


@app.post("/items", status_code=201, summary="Add a checklist item", tags=["Items"])
async def create_item(request: ItemCreateRequest) -> ItemCreated:
    store = _get_store()
    try:
        outcome = await store.create_item(
            request.parent_id,
            request.parent_type,
            request.category,
            request.name,
            request.description,
        )
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return ItemCreated(
        durable=outcome.durable,
        reason=getattr(outcome, "reason", None),
        item=outcome.entity,
    )


@app.patch("/items/{item_id}", summary="Update a checklist item", tags=["Items"])
async def patch_item(item_id: str, request: ItemUpdate) -> ChecklistItem:
    updated = await _get_store().update_item(item_id, request)
    if updated is None:
        raise _not_found("Item", item_id)
    return updated


@app.delete("/items/{item_id}", status_code=204, summary="Remove a checklist item", tags=["Items"])
async def remove_item(
    item_id: str,
    parent_id: Optional[str] = None,
    parent_type: Optional[ParentType] = None,
) -> None:
    if not await _get_store().delete_item(item_id, parent_id, parent_type):
        raise _not_found("Item", item_id)


# ─── Endpoints: Notifications ────────────────────────────────────────


@app.get("/notifications", summary="Notification log", tags=["Notifications"])
def list_notifications() -> NotificationsOut:
    log = _get_store().notifications
    return NotificationsOut(unread=log.unread_count, notifications=log.entries)


@app.post("/notifications/read", summary="Mark all as read", tags=["Notifications"])
def read_notifications() -> NotificationsOut:
    _get_store().notifications.mark_all_read()
    return list_notifications()


@app.delete("/notifications", status_code=204, summary="Clear the log", tags=["Notifications"])
def clear_notifications() -> None:
    _get_store().notifications.clear()


# ─── Endpoints: Analysis ─────────────────────────────────────────────


@app.post(
    "/analysis",
    summary="Run the AI risk analysis",
    tags=["Analysis"],
    responses={409: {"description": "An analysis is already running"}},
)
async def run_analysis() -> AnalysisOut:
    """Only one analysis may be in flight; a second request is refused."""
    global _analysis_running  # noqa: PLW0603
    store = _get_store()
    if _analysis_running:
        raise HTTPException(status_code=409, detail="Analysis already in progress")
    _analysis_running = True
    try:
        result = await store.run_analysis()
    finally:
        _analysis_running = False
    return AnalysisOut(degraded=result.degraded, result=result)
