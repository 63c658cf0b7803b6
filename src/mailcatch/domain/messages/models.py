"""Domain models for stored messages and their MIME projections.

StoredBlob is what the blob store knows about a message. Everything else is
derived from the raw bytes by the MIME projector and never persisted.
"""

from dataclasses import dataclass, field
from datetime import datetime
from email.message import Message
from typing import BinaryIO, List, Optional


@dataclass(frozen=True)
class StoredBlob:
    """Metadata for a message blob in the store.

    Attributes:
        blob_id: URL-safe identifier, also the blob's name on the medium
        created_at: UTC creation time
        size_bytes: Size of the raw message
    """
    blob_id: str
    created_at: datetime
    size_bytes: int


@dataclass(frozen=True)
class EmailAddress:
    name: Optional[str]
    address: str


@dataclass(frozen=True)
class HeaderField:
    name: str
    value: str


@dataclass
class BodySection:
    """One leaf part of the MIME tree.

    ``part`` keeps a reference to the parsed part so the payload can be
    decoded on demand. Decoded bytes are never cached here.
    """
    index: int
    media_type: str
    file_name: Optional[str] = None
    content_id: Optional[str] = None
    is_attachment: bool = False
    part: Optional[Message] = field(default=None, repr=False, compare=False)


@dataclass
class ParsedMessage:
    """Full projection of a raw message (envelope, headers, sections, bodies)."""
    subject: Optional[str]
    date: Optional[datetime]
    from_addresses: List[EmailAddress] = field(default_factory=list)
    to_addresses: List[EmailAddress] = field(default_factory=list)
    cc_addresses: List[EmailAddress] = field(default_factory=list)
    bcc_addresses: List[EmailAddress] = field(default_factory=list)
    headers: List[HeaderField] = field(default_factory=list)
    sections: List[BodySection] = field(default_factory=list)
    text_body: Optional[str] = None
    html_body: Optional[str] = None


@dataclass(frozen=True)
class MessageSummary:
    """Cheap projection used for list views."""
    id: str
    created_at: datetime
    size: int
    subject: Optional[str]


@dataclass
class MessageDetail:
    """ParsedMessage joined with the stored message's identity."""
    id: str
    created_at: datetime
    size: int
    parsed: ParsedMessage


@dataclass
class MessagePage:
    items: List[MessageSummary]
    total_count: int


@dataclass
class SectionContent:
    """A decoded section (or the raw message) ready for download.

    The caller owns ``stream`` and must close it.
    """
    stream: BinaryIO
    media_type: str
    file_name: str

    def close(self) -> None:
        self.stream.close()
