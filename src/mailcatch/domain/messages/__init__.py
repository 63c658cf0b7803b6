"""Messages domain module - stored message identity, ordering, projections"""

from .errors import (
    MailCatchError,
    MessageNotFoundError,
    MessageParseError,
    SectionNotFoundError,
    StorageError,
)
from .message_index import IndexEntry, IndexPage, MessageIndex
from .models import (
    BodySection,
    EmailAddress,
    HeaderField,
    MessageDetail,
    MessagePage,
    MessageSummary,
    ParsedMessage,
    SectionContent,
    StoredBlob,
)
from .results import Found, LookupResult, NotFound, ParseFailed

__all__ = [
    "MailCatchError",
    "MessageNotFoundError",
    "MessageParseError",
    "SectionNotFoundError",
    "StorageError",
    "IndexEntry",
    "IndexPage",
    "MessageIndex",
    "BodySection",
    "EmailAddress",
    "HeaderField",
    "MessageDetail",
    "MessagePage",
    "MessageSummary",
    "ParsedMessage",
    "SectionContent",
    "StoredBlob",
    "Found",
    "LookupResult",
    "NotFound",
    "ParseFailed",
]
