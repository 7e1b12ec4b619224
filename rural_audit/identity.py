"""
Entity identifiers with an explicit origin.

An id is either DURABLE (assigned by the remote store) or LOCAL (minted
client-side while the store was unreachable). Downstream code branches on
the type, never on the string contents. The only place a raw string is
inspected is `parse_id`, at the HTTP boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Union

from pydantic import BeforeValidator, PlainSerializer, WithJsonSchema

LOCAL_PREFIX = "loc-"


@dataclass(frozen=True)
class DurableId:
    """Identifier issued by the remote store."""

    value: str

    is_local = False

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class LocalId:
    """Identifier minted locally. Lost on reload unless reconciled."""

    value: str

    is_local = True

    def __post_init__(self) -> None:
        if not self.value.startswith(LOCAL_PREFIX):
            raise ValueError(f"Local ids must start with {LOCAL_PREFIX!r}: {self.value!r}")

    def __str__(self) -> str:
        return self.value


def parse_id(raw: str | DurableId | LocalId) -> DurableId | LocalId:
    """Rebuild a typed id from its string form (e.g. a URL path segment)."""
    if isinstance(raw, (DurableId, LocalId)):
        return raw
    if raw.startswith(LOCAL_PREFIX):
        return LocalId(raw)
    return DurableId(raw)


def _coerce(value: object) -> object:
    if isinstance(value, str):
        return parse_id(value)
    return value


# Pydantic field type: accepts a typed id or its string form, dumps as a string.
EntityId = Annotated[
    Union[DurableId, LocalId],
    BeforeValidator(_coerce),
    PlainSerializer(str, return_type=str),
    WithJsonSchema({"type": "string"}),
]
