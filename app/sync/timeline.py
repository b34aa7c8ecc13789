"""Ordered, de-duplicated view of one conversation's messages.

Three inputs feed a timeline: history pages, live change events, and
messages this client sends before the server has confirmed them. Every
input is a merge-insert keyed on the server id once it is known, so the
visible sequence never holds two entries for the same message, whatever
order the inputs complete in.

Entry lifecycle::

    PENDING --(send response or matching INSERT)--> CONFIRMED --(UPDATE)--> EDITED
    PENDING --(send error)--> FAILED --(matching INSERT, write had landed)--> CONFIRMED
    CONFIRMED/EDITED --(DELETE)--> removed, id tombstoned

Server-backed entries sort by ``(created_at, id)``; entries still waiting
for the server (PENDING, FAILED) sort after them in send order.
"""

import bisect
import enum
import itertools
import time
from dataclasses import dataclass
from typing import Callable

from app.models.chat import MessageStatus, SenderType
from app.schemas.chat import ChangeEvent, Cursor, MessagePage, MessageRecord

STATUS_RANK = {
    MessageStatus.SENT: 0,
    MessageStatus.DELIVERED: 1,
    MessageStatus.READ: 2,
}


class EntryState(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    EDITED = "edited"
    FAILED = "failed"


@dataclass(frozen=True)
class Draft:
    conversation_id: str
    sender_type: SenderType
    sender_id: str
    content: str | None
    image_url: str | None
    reply_to_id: str | None = None

    def matches(self, record: MessageRecord) -> bool:
        return (
            self.conversation_id == record.conversation_id
            and self.sender_type == record.sender_type
            and self.sender_id == record.sender_id
            and self.content == record.content
            and self.image_url == record.image_url
        )


@dataclass(eq=False)
class TimelineEntry:
    state: EntryState
    seq: int
    message: MessageRecord | None = None
    draft: Draft | None = None
    temp_id: str | None = None
    queued_at: float = 0.0
    error: str | None = None

    @property
    def id(self) -> str:
        return self.message.id if self.message is not None else self.temp_id

    @property
    def server_backed(self) -> bool:
        return self.message is not None

    @property
    def content(self) -> str | None:
        return self.message.content if self.message is not None else self.draft.content

    @property
    def image_url(self) -> str | None:
        return self.message.image_url if self.message is not None else self.draft.image_url

    @property
    def sort_key(self) -> tuple:
        if self.message is not None:
            return (0, self.message.created_at, self.message.id)
        return (1, self.seq)


def _sort_key(entry: TimelineEntry) -> tuple:
    return entry.sort_key


class ConversationTimeline:
    def __init__(
        self,
        conversation_id: str,
        match_window: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.conversation_id = conversation_id
        self.match_window = match_window
        self._clock = clock
        self._entries: list[TimelineEntry] = []
        self._by_id: dict[str, TimelineEntry] = {}
        self._by_temp: dict[str, TimelineEntry] = {}
        self._tombstones: set[str] = set()
        self._seq = itertools.count(1)
        self.oldest_cursor: Cursor | None = None
        self.has_more = False
        self.loaded = False

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))

    # ---------- views ----------
    def visible(self) -> list[TimelineEntry]:
        return list(self._entries)

    def messages(self) -> list[MessageRecord]:
        return [e.message for e in self._entries if e.message is not None]

    def get(self, key: str) -> TimelineEntry | None:
        return self._by_id.get(key) or self._by_temp.get(key)

    def latest_watermark(self) -> Cursor | None:
        for entry in reversed(self._entries):
            if entry.message is not None:
                return Cursor.from_message(entry.message)
        return None

    def is_deleted(self, message_id: str) -> bool:
        return message_id in self._tombstones

    # ---------- ordering primitives ----------
    def _insert(self, entry: TimelineEntry):
        bisect.insort(self._entries, entry, key=_sort_key)

    def _remove(self, entry: TimelineEntry):
        self._entries.remove(entry)

    def _oldest_server_key(self) -> tuple | None:
        for entry in self._entries:
            if entry.message is not None:
                return entry.sort_key
        return None

    # ---------- optimistic sends ----------
    def add_pending(
        self,
        sender_type: SenderType,
        sender_id: str,
        content: str | None = None,
        image_url: str | None = None,
        reply_to_id: str | None = None,
    ) -> TimelineEntry:
        seq = next(self._seq)
        entry = TimelineEntry(
            state=EntryState.PENDING,
            seq=seq,
            draft=Draft(
                conversation_id=self.conversation_id,
                sender_type=SenderType(sender_type),
                sender_id=sender_id,
                content=content,
                image_url=image_url,
                reply_to_id=reply_to_id,
            ),
            temp_id=f"tmp-{seq}",
            queued_at=self._clock(),
        )
        self._by_temp[entry.temp_id] = entry
        self._insert(entry)
        return entry

    def _match_pending(self, record: MessageRecord) -> TimelineEntry | None:
        now = self._clock()
        candidates = [
            e for e in self._entries
            if e.state in (EntryState.PENDING, EntryState.FAILED)
            and e.draft.matches(record)
            and now - e.queued_at <= self.match_window
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda e: e.seq)

    def _promote(self, entry: TimelineEntry, record: MessageRecord):
        self._remove(entry)
        entry.message = record
        entry.state = EntryState.CONFIRMED
        entry.error = None
        self._by_id[record.id] = entry
        self._insert(entry)

    def confirm(self, temp_id: str, record: MessageRecord) -> TimelineEntry | None:
        """Apply the server's response to an optimistic send."""
        entry = self._by_temp.get(temp_id)
        if entry is None:
            return self._accept(record)

        if entry.message is not None:
            if entry.message.id == record.id:
                self._refresh(entry, record, authoritative=False)
                return entry
            # an identical earlier send claimed this entry; route the record normally
            return self._accept(record)

        if record.id in self._tombstones:
            self._remove(entry)
            del self._by_temp[temp_id]
            return None

        other = self._by_id.get(record.id)
        if other is not None:
            # already visible through a push that did not match this entry
            self._remove(entry)
            self._by_temp[temp_id] = other
            return other

        self._promote(entry, record)
        return entry

    def fail(self, temp_id: str, error: str) -> TimelineEntry | None:
        entry = self._by_temp.get(temp_id)
        if entry is None or entry.state != EntryState.PENDING:
            return entry
        entry.state = EntryState.FAILED
        entry.error = error or "send failed"
        return entry

    def discard(self, temp_id: str) -> bool:
        """Drop a FAILED entry the user chose not to retry."""
        entry = self._by_temp.get(temp_id)
        if entry is None or entry.state != EntryState.FAILED:
            return False
        self._remove(entry)
        del self._by_temp[temp_id]
        return True

    # ---------- server records ----------
    def _refresh(self, entry: TimelineEntry, record: MessageRecord, authoritative: bool):
        current = entry.message
        status = record.status
        if STATUS_RANK[current.status] > STATUS_RANK[status]:
            status = current.status

        if authoritative:
            edited = (current.content, current.image_url) != (record.content, record.image_url)
            merged = record.model_copy(update={"status": status})
            if edited:
                entry.state = EntryState.EDITED
        else:
            # pages and duplicate inserts may be older than what we hold
            merged = current.model_copy(update={"status": status})

        if merged.sort_key != current.sort_key:
            self._remove(entry)
            entry.message = merged
            self._insert(entry)
        else:
            entry.message = merged

    def _accept(self, record: MessageRecord, authoritative: bool = False) -> TimelineEntry | None:
        if record.conversation_id != self.conversation_id:
            return None
        if record.id in self._tombstones:
            return None

        existing = self._by_id.get(record.id)
        if existing is not None:
            self._refresh(existing, record, authoritative)
            return existing

        pending = self._match_pending(record)
        if pending is not None:
            self._promote(pending, record)
            return pending

        entry = TimelineEntry(state=EntryState.CONFIRMED, seq=next(self._seq), message=record)
        self._by_id[record.id] = entry
        self._insert(entry)
        return entry

    def remove(self, message_id: str) -> bool:
        self._tombstones.add(message_id)
        entry = self._by_id.pop(message_id, None)
        if entry is None:
            return False
        self._remove(entry)
        return True

    def apply_page(
        self,
        page: MessagePage,
        older: bool = True,
        prune: bool = False,
        authoritative: bool = False,
    ):
        """Merge a page of history.

        ``older`` pages move the "load earlier" watermark. With ``prune``
        the page is treated as the complete truth for the key range it
        spans, so entries inside that range that it no longer contains
        (deleted while this client was not listening) are dropped.
        ``authoritative`` pages also overwrite content of known entries
        (edits missed while the feed was down); status still only moves
        forward.
        """
        if prune and page.items:
            low, high = page.items[0].sort_key, page.items[-1].sort_key
            present = {m.id for m in page.items}
            for entry in list(self._entries):
                if entry.message is None or entry.message.id in present:
                    continue
                if low <= entry.message.sort_key <= high:
                    self._by_id.pop(entry.message.id, None)
                    self._remove(entry)

        for record in page.items:
            self._accept(record, authoritative)

        if older:
            self.oldest_cursor = page.next_cursor
            self.has_more = page.has_more
        self.loaded = True

    def apply_event(self, event: ChangeEvent) -> TimelineEntry | None:
        if event.table != "messages":
            return None
        row = event.row
        if row is None or row.conversation_id != self.conversation_id:
            return None

        if event.event_type == "INSERT":
            return self._accept(event.new)

        if event.event_type == "UPDATE":
            record = event.new
            if record.id in self._tombstones:
                return None
            if record.id in self._by_id:
                return self._accept(record, authoritative=True)
            # only adopt unknown rows that fall inside the loaded window
            oldest = self._oldest_server_key()
            if oldest is None or (0, record.created_at, record.id) >= oldest:
                return self._accept(record, authoritative=True)
            return None

        if event.event_type == "DELETE":
            self.remove(event.old.id)
        return None
