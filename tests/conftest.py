"""Shared fixtures: an in-memory PostgREST stand-in behind httpx.MockTransport."""

from __future__ import annotations

import json
import uuid
from typing import Any

import httpx
import pytest

from rural_audit.gateway import PersistenceGateway

BASE_URL = "https://fake.supabase.co/rest/v1"


class FakeRemote:
    """Just enough of PostgREST: eq filters, inserts returning rows, 204s."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {
            "properties": [],
            "parties": [],
            "audit_items": [],
            "audit_settings": [{"id": 1, "general_notes": ""}],
        }
        self.calls: list[tuple[str, str, dict[str, str]]] = []
        self.failures: set[tuple[str, str]] = set()
        self.offline = False
        self._clock = 0

    def fail(self, method: str, table: str) -> None:
        self.failures.add((method, table))

    def calls_to(self, method: str, table: str) -> list[dict[str, str]]:
        return [params for m, t, params in self.calls if m == method and t == table]

    @staticmethod
    def _matches(row: dict[str, Any], filters: dict[str, str]) -> bool:
        for column, expr in filters.items():
            if not expr.startswith("eq."):
                continue
            if str(row.get(column)) != expr[3:]:
                return False
        return True

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.offline:
            raise httpx.ConnectError("remote unreachable", request=request)

        table = request.url.path.rsplit("/", 1)[-1]
        params = dict(request.url.params)
        self.calls.append((request.method, table, params))
        if (request.method, table) in self.failures:
            return httpx.Response(500, json={"message": "boom"})

        filters = {k: v for k, v in params.items() if k not in ("select", "order")}
        rows = self.tables.setdefault(table, [])

        if request.method == "GET":
            return httpx.Response(200, json=[r for r in rows if self._matches(r, filters)])

        if request.method == "POST":
            payload = json.loads(request.content)
            created = []
            for record in payload if isinstance(payload, list) else [payload]:
                self._clock += 1
                row = {"id": str(uuid.uuid4()), "created_at": self._clock, **record}
                rows.append(row)
                created.append(row)
            return httpx.Response(201, json=created)

        if request.method == "PATCH":
            changes = json.loads(request.content)
            for row in rows:
                if self._matches(row, filters):
                    row.update(changes)
            return httpx.Response(204)

        if request.method == "DELETE":
            self.tables[table] = [r for r in rows if not self._matches(r, filters)]
            return httpx.Response(204)

        return httpx.Response(405)


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def gateway(remote: FakeRemote) -> PersistenceGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(remote), base_url=BASE_URL)
    return PersistenceGateway("https://fake.supabase.co", "test-key", client=client)
