"""Exception hierarchy for the message store.

Adapters translate library exceptions (OSError, botocore ClientError,
email parser defects) into these types so callers only ever deal with
one taxonomy.
"""

from typing import Optional


class MailCatchError(Exception):
    """Base exception for all message store errors."""

    def __init__(self, message: str, message_id: Optional[str] = None):
        super().__init__(message)
        self.message_id = message_id


class MessageNotFoundError(MailCatchError):
    """No message is stored under the given identifier."""
    pass


class SectionNotFoundError(MessageNotFoundError):
    """Section index out of range or content-id not present in the message."""
    pass


class MessageParseError(MailCatchError):
    """Stored bytes could not be parsed as a MIME message."""
    pass


class StorageError(MailCatchError):
    """Reading or writing a blob failed on the storage medium."""
    pass
