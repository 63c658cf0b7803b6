"""In-memory ordering of stored messages.

The index holds one entry per stored message, ordered by creation time with
insertion sequence as the tiebreak. Pages are served newest first.

Entries live in an immutable tuple that is replaced on every mutation
(copy-on-write under a lock). A reader grabs the current tuple once and
works from it, so it either sees an insertion completely or not at all.
"""

import bisect
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Tuple

from .models import StoredBlob


@dataclass(frozen=True)
class IndexEntry:
    blob_id: str
    created_at: datetime
    size_bytes: int
    sequence: int

    @property
    def sort_key(self) -> Tuple[datetime, int]:
        return (self.created_at, self.sequence)


@dataclass(frozen=True)
class IndexPage:
    entries: List[IndexEntry]
    total_count: int

    @property
    def ids(self) -> List[str]:
        return [entry.blob_id for entry in self.entries]


class MessageIndex:
    """Reverse-chronological index of message identifiers."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Tuple[IndexEntry, ...] = ()
        self._next_sequence = 0

    def __len__(self) -> int:
        return len(self._entries)

    def record_insertion(self, blob: StoredBlob) -> IndexEntry:
        """Add a freshly stored message. Re-recording an id replaces it."""
        with self._lock:
            entries = [e for e in self._entries if e.blob_id != blob.blob_id]
            entry = IndexEntry(
                blob_id=blob.blob_id,
                created_at=blob.created_at,
                size_bytes=blob.size_bytes,
                sequence=self._next_sequence,
            )
            self._next_sequence += 1

            keys = [e.sort_key for e in entries]
            position = bisect.bisect_right(keys, entry.sort_key)
            entries.insert(position, entry)
            self._publish(entries)
            return entry

    def record_deletion(self, blob_id: str) -> bool:
        """Drop an entry. Returns False if the id was not indexed."""
        with self._lock:
            entries = [e for e in self._entries if e.blob_id != blob_id]
            if len(entries) == len(self._entries):
                return False
            self._publish(entries)
            return True

    def rebuild(self, blobs: Iterable[StoredBlob]) -> int:
        """Replace the index with the given blobs.

        Blobs are ordered by ``(created_at, blob_id)`` and get insertion
        sequence numbers in that order, which reproduces the order a live
        index would have built since generated ids sort in save order.
        """
        ordered = sorted(blobs, key=lambda b: (b.created_at, b.blob_id))
        with self._lock:
            entries = []
            for blob in ordered:
                entries.append(IndexEntry(
                    blob_id=blob.blob_id,
                    created_at=blob.created_at,
                    size_bytes=blob.size_bytes,
                    sequence=self._next_sequence,
                ))
                self._next_sequence += 1
            self._publish(entries)
            return len(entries)

    def clear(self) -> None:
        with self._lock:
            self._publish([])

    def page(self, start: int, limit: int) -> IndexPage:
        """Newest-first slice of the index.

        ``start`` past the end gives an empty page. Negative values are
        treated as zero.
        """
        snapshot = self._entries
        total = len(snapshot)
        start = max(start, 0)
        limit = max(limit, 0)
        if start >= total or limit == 0:
            return IndexPage(entries=[], total_count=total)

        # Ascending storage, so newest-first position i maps to total - 1 - i
        high = total - start
        low = max(high - limit, 0)
        return IndexPage(
            entries=list(reversed(snapshot[low:high])),
            total_count=total,
        )

    def _publish(self, entries: List[IndexEntry]) -> None:
        self._entries = tuple(entries)
