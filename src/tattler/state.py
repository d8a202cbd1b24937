"""In-memory notification state for one client.

The store is the authority for which notification IDs have been seen this
session and which of them count toward the badge. A record's ``unread``
flag is the only thing counted.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field

from .records import NotificationRecord

UNREAD = "unread"
READ = "read"
IGNORED = "ignored"
UNSUBSCRIBED = "unsubscribed"

# States the user chose to retire; fetches can't bring these back into the count
_RETIRED = frozenset({IGNORED, UNSUBSCRIBED})


@dataclass(frozen=True)
class SyncCursor:
    """The minimal state needed to resume polling a client.

    last_update is the ISO-8601 time of the last successful poll; it becomes
    last_read_at when marking everything read. force_refresh makes the next
    fetch skip the ETag revalidation.
    """

    last_update: str | None = None
    force_refresh: bool = False


@dataclass
class ApplyResult:
    """Outcome of feeding one fetch into the store."""

    new_records: list[NotificationRecord] = field(default_factory=list)
    badge_delta: int = 0


class NotificationStateStore:
    def __init__(self) -> None:
        self._records: dict[str, NotificationRecord] = {}
        self._states: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, notification_id: object) -> bool:
        return notification_id in self._records

    def get(self, notification_id: str) -> NotificationRecord | None:
        return self._records.get(notification_id)

    def state(self, notification_id: str) -> str | None:
        return self._states.get(notification_id)

    def records(self, unread_only: bool = False) -> list[NotificationRecord]:
        """Tracked records, most recently updated first."""
        records = sorted(self._records.values(), key=lambda r: r.updated_at, reverse=True)
        if unread_only:
            return [r for r in records if r.unread]
        return records

    def unread_count(self) -> int:
        return sum(1 for r in self._records.values() if r.unread)

    def apply_fetch_result(
        self, records: list[NotificationRecord], complete: bool = True
    ) -> ApplyResult:
        """Merge one fetch into the store.

        Unknown IDs are new. Known IDs get their fields refreshed but are never
        reported as new again. When the fetch is complete (it lists every
        unread thread), tracked unread records missing from it were read
        elsewhere and flip to read.
        """
        before = self.unread_count()
        result = ApplyResult()
        seen: set[str] = set()

        for record in records:
            seen.add(record.id)
            state = self._states.get(record.id)
            if state in _RETIRED:
                record = dataclasses.replace(record, unread=False)
            elif record.unread:
                self._states[record.id] = UNREAD
            else:
                self._states[record.id] = READ

            if record.id not in self._records:
                result.new_records.append(record)
            self._records[record.id] = record

        if complete:
            for notification_id, record in self._records.items():
                if record.unread and notification_id not in seen:
                    self._records[notification_id] = dataclasses.replace(record, unread=False)
                    self._states[notification_id] = READ

        result.badge_delta = self.unread_count() - before
        return result

    def mark_read(self, notification_id: str | None = None) -> bool:
        """Mark one record (or all, with None) read locally.

        Returns True: the caller still owes GitHub the matching call (the bulk
        endpoint when notification_id is None).
        """
        if notification_id is None:
            for tracked_id in list(self._records):
                if self._states.get(tracked_id) not in _RETIRED:
                    self._set(tracked_id, READ)
        else:
            self._set(notification_id, READ)
        return True

    def mark_unread(self, notification_id: str) -> None:
        """Put a record back in the count, e.g. after a failed remote mark-read."""
        if self._states.get(notification_id) == READ:
            self._set(notification_id, UNREAD)

    def ignore(self, notification_id: str) -> None:
        self._set(notification_id, IGNORED)

    def unsubscribe(self, notification_id: str) -> None:
        self._set(notification_id, UNSUBSCRIBED)

    def _set(self, notification_id: str, state: str) -> None:
        self._states[notification_id] = state
        record = self._records.get(notification_id)
        if record is not None:
            self._records[notification_id] = dataclasses.replace(record, unread=state == UNREAD)
