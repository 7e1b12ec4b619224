"""
Unit tests for the small pieces: ids, templates, local fallback, settings,
the notification log and the derived dashboard views.
"""

from __future__ import annotations

import pytest

from rural_audit.config import DEFAULT_TIMEOUT, load_settings
from rural_audit.exceptions import GatewayError
from rural_audit.fallback import LocalFallback, LocalOnly, Persisted
from rural_audit.gateway import PersistenceGateway
from rural_audit.identity import DurableId, LocalId, parse_id
from rural_audit.models import (
    AuditState,
    ChecklistItem,
    ItemUpdate,
    NotificationKind,
    Party,
    PropertyUpdate,
    Property,
    Status,
)
from rural_audit.notifications import NotificationLog
from rural_audit.summary import dashboard, group_by_category, search_parties
from rural_audit.templates import load_template, seed_items


def _items(*statuses: str, category: str = "Registro") -> list[ChecklistItem]:
    return [
        ChecklistItem(id=LocalId(f"loc-item-{n}"), category=category, name=f"Item {n}",
                      status=Status(s))
        for n, s in enumerate(statuses)
    ]


# ═══════════════════════════════════════════════════════════════════════
# IDENTITY
# ═══════════════════════════════════════════════════════════════════════


class TestIdentity:
    def test_parse_local(self):
        assert parse_id("loc-abc") == LocalId("loc-abc")
        assert parse_id("loc-abc").is_local

    def test_parse_durable(self):
        parsed = parse_id("8f14e45f-ceea-4e7a-9f3b-1a2b3c4d5e6f")
        assert isinstance(parsed, DurableId)
        assert not parsed.is_local

    def test_local_requires_prefix(self):
        with pytest.raises(ValueError):
            LocalId("abc")

    def test_same_text_different_origin_differs(self):
        assert DurableId("loc-x") != LocalId("loc-x")

    def test_model_field_dumps_as_string(self):
        prop = Property(id="loc-1", name="X")
        assert isinstance(prop.id, LocalId)
        assert prop.model_dump()["id"] == "loc-1"


# ═══════════════════════════════════════════════════════════════════════
# PARTIAL UPDATES & TEMPLATES
# ═══════════════════════════════════════════════════════════════════════


class TestPartialUpdates:
    def test_only_sent_fields(self):
        assert ItemUpdate(status="ok").changes() == {"status": Status.OK}

    def test_null_ignored_except_nullable(self):
        assert PropertyUpdate(name=None).changes() == {}
        assert ItemUpdate(description=None).changes() == {"description": None}

    def test_items_not_updatable(self):
        with pytest.raises(ValueError):
            PropertyUpdate.model_validate({"items": []})


class TestTemplates:
    @pytest.mark.parametrize("name", ["property", "PF", "PJ"])
    def test_templates_load(self, name):
        template = load_template(name)
        assert template
        assert all({"category", "name"} <= entry.keys() for entry in template)

    def test_copies_are_independent(self):
        first = load_template("property")
        first[0]["name"] = "changed"
        assert load_template("property")[0]["name"] != "changed"

    def test_unknown_template(self):
        with pytest.raises(KeyError):
            load_template("XX")

    def test_seed_items_are_pending_with_fresh_ids(self):
        fallback = LocalFallback()
        items = seed_items(load_template("PF"), lambda: fallback.mint("item"))
        assert {i.status for i in items} == {Status.PENDING}
        assert len({i.id for i in items}) == len(items)


# ═══════════════════════════════════════════════════════════════════════
# LOCAL FALLBACK
# ═══════════════════════════════════════════════════════════════════════


class TestLocalFallback:
    def test_minted_ids_are_unique_and_marked(self):
        fallback = LocalFallback()
        ids = [fallback.mint("party") for _ in range(500)]
        assert len(set(ids)) == 500
        assert all(str(i).startswith("loc-party-") for i in ids)

    @pytest.mark.asyncio
    async def test_no_remote_keeps_draft(self):
        draft = Property(id="loc-1", name="X")
        outcome = await LocalFallback().create(draft, None)
        assert isinstance(outcome, LocalOnly)
        assert outcome.entity is draft
        assert outcome.durable is False

    @pytest.mark.asyncio
    async def test_remote_failure_keeps_draft(self):
        async def failing(entity):
            raise GatewayError("down", status_code=503)

        draft = Property(id="loc-1", name="X")
        outcome = await LocalFallback().create(draft, failing)
        assert isinstance(outcome, LocalOnly)
        assert "down" in outcome.reason

    @pytest.mark.asyncio
    async def test_remote_success(self):
        async def persisted(entity):
            return entity.model_copy(update={"name": "Y"})

        outcome = await LocalFallback().create(Property(id="loc-1", name="X"), persisted)
        assert isinstance(outcome, Persisted)
        assert outcome.entity.name == "Y"


# ═══════════════════════════════════════════════════════════════════════
# NOTIFICATION LOG
# ═══════════════════════════════════════════════════════════════════════


class TestNotificationLog:
    def test_most_recent_first(self):
        log = NotificationLog()
        log.append("first", "info")
        log.append("second", NotificationKind.ALERT)
        assert [n.message for n in log.entries] == ["second", "first"]
        assert log.entries[0].kind == NotificationKind.ALERT

    def test_mark_all_read_and_clear(self):
        log = NotificationLog()
        log.append("a", "info")
        log.append("b", "warning")
        assert log.unread_count == 2
        log.mark_all_read()
        assert log.unread_count == 0
        log.clear()
        assert len(log) == 0

    def test_rejects_unknown_kind(self):
        with pytest.raises(ValueError):
            NotificationLog().append("x", "debug")


# ═══════════════════════════════════════════════════════════════════════
# DERIVED VIEWS
# ═══════════════════════════════════════════════════════════════════════


class TestDashboard:
    def test_empty_audit(self):
        summary = dashboard(AuditState())
        assert summary.total_items == 0
        assert summary.progress == 0

    def test_counts_across_entities(self):
        state = AuditState(
            properties=[Property(id="loc-p", name="P", items=_items("pending", "issue", "ok"))],
            parties=[Party(id="loc-q", type="PF", name="Q", role="buyer",
                           items=_items("expired", "waived"))],
        )
        summary = dashboard(state)
        assert summary.total_items == 5
        assert summary.pending == 1
        assert (summary.property_issues, summary.party_issues, summary.issues) == (1, 1, 2)
        assert summary.progress == 80


class TestGrouping:
    def test_insertion_order_is_kept(self):
        items = [
            *_items("ok", category="B"),
            ChecklistItem(id="loc-item-x", category="A", name="Item x"),
            ChecklistItem(id="loc-item-y", category="B", name="Item y"),
        ]
        groups = group_by_category(items)
        assert [g.category for g in groups] == ["B", "A"]
        assert [i.name for i in groups[0].items] == ["Item 0", "Item y"]

    def test_group_progress(self):
        group = group_by_category(_items("ok", "waived", "issue", "pending"))[0]
        assert (group.completed, group.attention, group.progress) == (2, 1, 50)


class TestPartySearch:
    def test_blank_query_returns_everyone(self):
        state = AuditState(parties=[Party(id="loc-a", type="PF", name="Ana", role="buyer")])
        assert search_parties(state, "  ") == state.parties

    def test_matches_name_or_doc(self):
        state = AuditState(parties=[
            Party(id="loc-a", type="PF", name="Ana Souza", doc="111", role="buyer"),
            Party(id="loc-b", type="PJ", name="Agro SA", doc="22.333", role="seller"),
        ])
        assert [p.name for p in search_parties(state, "SOUZA")] == ["Ana Souza"]
        assert [p.name for p in search_parties(state, "333")] == ["Agro SA"]


# ═══════════════════════════════════════════════════════════════════════
# SETTINGS
# ═══════════════════════════════════════════════════════════════════════


class TestSettings:
    def test_missing_credentials_mean_local_only(self, monkeypatch):
        monkeypatch.delenv("SUPABASE_URL", raising=False)
        monkeypatch.delenv("SUPABASE_KEY", raising=False)
        settings = load_settings()
        assert settings.has_persistence is False
        assert PersistenceGateway.from_settings(settings) is None

    def test_timeout_from_environment(self, monkeypatch):
        monkeypatch.setenv("RURAL_AUDIT_TIMEOUT", "2.5")
        assert load_settings().timeout == 2.5

    def test_malformed_timeout_falls_back_to_default(self, monkeypatch):
        monkeypatch.setenv("RURAL_AUDIT_TIMEOUT", "ten")
        assert load_settings().timeout == DEFAULT_TIMEOUT
