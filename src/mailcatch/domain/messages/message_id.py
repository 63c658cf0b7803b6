"""Message identifier generation and parsing.

Identifier format: ``{YYYYMMDDHHMMSSffffff}-{sequence:06d}-{token}.eml``

- timestamp: UTC creation time to the microsecond
- sequence: per-generator save counter (wraps at 10^6)
- token: 8 random hex characters, guards against collisions between
  processes writing to the same store

Identifiers sort lexically in creation order and double as the blob name,
so the creation time can be recovered without side metadata.
"""

import re
import secrets
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Tuple

MESSAGE_FILE_EXTENSION = ".eml"

_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S%f"
_SEQUENCE_MODULO = 1_000_000

# Resolution of identifier timestamps
ID_RESOLUTION = timedelta(microseconds=1)

# Generated identifiers
MESSAGE_ID_PATTERN = re.compile(
    r"^(?P<timestamp>\d{20})-(?P<sequence>\d{6})-(?P<token>[0-9a-f]{8})\.eml$"
)

# Anything the store accepts as a blob name (includes externally dropped files)
BLOB_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*\.eml$")


def is_valid_blob_name(blob_id: str) -> bool:
    """Return True if ``blob_id`` is safe to use as a blob name.

    Rejects path separators, leading dots and anything without the
    ``.eml`` extension.
    """
    return bool(blob_id) and BLOB_NAME_PATTERN.match(blob_id) is not None


def format_message_id(created_at: datetime, sequence: int, token: str) -> str:
    stamp = created_at.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)
    return f"{stamp}-{sequence % _SEQUENCE_MODULO:06d}-{token}{MESSAGE_FILE_EXTENSION}"


def parse_message_id(blob_id: str) -> Optional[Tuple[datetime, int]]:
    """Recover ``(created_at, sequence)`` from a generated identifier.

    Returns None for names that were not produced by MessageIdGenerator.
    """
    match = MESSAGE_ID_PATTERN.match(blob_id)
    if not match:
        return None
    try:
        created_at = datetime.strptime(match.group("timestamp"), _TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return created_at.replace(tzinfo=timezone.utc), int(match.group("sequence"))


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MessageIdGenerator:
    """Issues identifiers whose timestamps never go backwards.

    If the clock returns a time at or before the last issued one (same
    microsecond, or a clock step back), the previous timestamp is reused and
    the sequence number keeps the identifiers in issue order.
    """

    def __init__(self, clock: Callable[[], datetime] = _utc_now):
        self._clock = clock
        self._lock = threading.Lock()
        self._last_created_at: Optional[datetime] = None
        self._sequence = 0

    def next_id(self) -> Tuple[str, datetime]:
        """Return a fresh ``(blob_id, created_at)`` pair."""
        with self._lock:
            now = self._clock().astimezone(timezone.utc)
            if self._last_created_at is not None and now < self._last_created_at:
                now = self._last_created_at
            self._last_created_at = now
            self._sequence += 1
            token = secrets.token_hex(4)
            return format_message_id(now, self._sequence, token), now

    def observe(self, created_at: datetime) -> None:
        """Make sure future identifiers sort after an existing message."""
        with self._lock:
            floor = created_at.astimezone(timezone.utc) + ID_RESOLUTION
            if self._last_created_at is None or floor > self._last_created_at:
                self._last_created_at = floor


def created_at_from_id(blob_id: str, fallback: datetime) -> datetime:
    """Creation time encoded in the identifier, or ``fallback`` for foreign names."""
    parsed = parse_message_id(blob_id)
    if parsed is None:
        return fallback
    return parsed[0]
