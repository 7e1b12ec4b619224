"""Read-only views derived from the audit tree (dashboard, grouping, search)."""

from __future__ import annotations

from dataclasses import dataclass

from .models import AuditState, ChecklistItem, Party, Status

ATTENTION_STATUSES = frozenset({Status.ISSUE, Status.EXPIRED})
RESOLVED_STATUSES = frozenset({Status.OK, Status.WAIVED})


@dataclass
class DashboardSummary:
    total_items: int
    issues: int  # issue or expired
    pending: int
    property_issues: int
    party_issues: int
    progress: int  # 0-100, share of items no longer pending


@dataclass
class CategoryGroup:
    category: str
    items: list[ChecklistItem]

    @property
    def completed(self) -> int:
        return sum(1 for i in self.items if i.status in RESOLVED_STATUSES)

    @property
    def attention(self) -> int:
        return sum(1 for i in self.items if i.status in ATTENTION_STATUSES)

    @property
    def progress(self) -> int:
        if not self.items:
            return 0
        return round(self.completed / len(self.items) * 100)


def _count(items: list[ChecklistItem], statuses: frozenset[Status]) -> int:
    return sum(1 for i in items if i.status in statuses)


def dashboard(state: AuditState) -> DashboardSummary:
    """Aggregate counters across every property and party."""
    prop_items = [i for p in state.properties for i in p.items]
    party_items = [i for p in state.parties for i in p.items]
    total = len(prop_items) + len(party_items)
    pending = _count(prop_items + party_items, frozenset({Status.PENDING}))
    prop_issues = _count(prop_items, ATTENTION_STATUSES)
    party_issues = _count(party_items, ATTENTION_STATUSES)
    return DashboardSummary(
        total_items=total,
        issues=prop_issues + party_issues,
        pending=pending,
        property_issues=prop_issues,
        party_issues=party_issues,
        progress=round((total - pending) / total * 100) if total else 0,
    )


def group_by_category(items: list[ChecklistItem]) -> list[CategoryGroup]:
    """Group items by category; groups and members keep insertion order."""
    groups: dict[str, CategoryGroup] = {}
    for item in items:
        groups.setdefault(item.category, CategoryGroup(item.category, [])).items.append(item)
    return list(groups.values())


def search_parties(state: AuditState, query: str) -> list[Party]:
    """Case-insensitive substring match on party name or document."""
    needle = query.strip().lower()
    if not needle:
        return list(state.parties)
    return [p for p in state.parties if needle in p.name.lower() or needle in p.doc.lower()]
