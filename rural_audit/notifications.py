"""
Notification Log — session-scoped, most-recent-first.

Entries are derived from store operations (status changes, creates,
deletes, fallbacks, analysis runs). Nothing here touches the audit tree.
"""

from __future__ import annotations

import uuid

from .models import Notification, NotificationKind


class NotificationLog:
    def __init__(self) -> None:
        self._entries: list[Notification] = []

    def append(self, message: str, kind: NotificationKind | str) -> Notification:
        entry = Notification(
            id=uuid.uuid4().hex[:9],
            message=message,
            kind=NotificationKind(kind),
        )
        self._entries.insert(0, entry)
        return entry

    def mark_all_read(self) -> None:
        for entry in self._entries:
            entry.read = True

    def clear(self) -> None:
        self._entries.clear()

    @property
    def entries(self) -> list[Notification]:
        return list(self._entries)

    @property
    def unread_count(self) -> int:
        return sum(1 for entry in self._entries if not entry.read)

    def __len__(self) -> int:
        return len(self._entries)
