"""
Local Fallback Layer — keeps creates usable without a backend.

Every create is attempted remotely at most once. If the remote call fails
(or there is no remote at all), the locally-built draft is kept as-is: its
LocalIds stand in for durable ones until the next full reload, when the
remote store wins and unsynced local entities are dropped.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar, Union

from pydantic import ValidationError

from .exceptions import GatewayError
from .identity import LOCAL_PREFIX, LocalId

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Persisted(Generic[T]):
    """The remote store accepted the entity; ids are durable."""

    entity: T
    durable = True


@dataclass
class LocalOnly(Generic[T]):
    """The entity exists only in this session."""

    entity: T
    reason: str
    durable = False


CreateOutcome = Union[Persisted[T], LocalOnly[T]]


class LocalFallback:
    """Mints local ids and absorbs failed remote creates."""

    def __init__(self, token_length: int = 9):
        self._token_length = token_length
        self._issued: set[str] = set()

    def mint(self, kind: str = "") -> LocalId:
        """Return a LocalId never handed out before by this instance."""
        while True:
            token = uuid.uuid4().hex[: self._token_length]
            value = f"{LOCAL_PREFIX}{kind}-{token}" if kind else f"{LOCAL_PREFIX}{token}"
            if value not in self._issued:
                self._issued.add(value)
                return LocalId(value)

    async def create(
        self,
        draft: T,
        remote: Callable[[T], Awaitable[T]] | None,
        *,
        skipped_reason: str = "local-only mode",
    ) -> CreateOutcome[T]:
        """Try `remote(draft)` once; on any failure keep the local draft."""
        if remote is None:
            return LocalOnly(draft, skipped_reason)
        try:
            created = await remote(draft)
        except (GatewayError, ValidationError) as exc:
            logger.warning("Remote create failed, keeping local copy: %s", exc)
            return LocalOnly(draft, str(exc))
        return Persisted(created)
