"""Pydantic schemas for the Messages API

Response shapes returned across the HTTP boundary. Field names are
snake_case in Python and camelCase on the wire.
"""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from ..domain.messages.models import (
    EmailAddress,
    MessageDetail,
    MessageSummary,
    ParsedMessage,
)


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _utc(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


# Message List Schemas

class MessageRefResponse(ApiModel):
    """Message list item - summary view for message list"""

    id: str = Field(..., description="Message identifier")
    created_at: datetime = Field(..., description="When the message was stored (UTC)")
    size: int = Field(..., description="Raw message size in bytes")
    subject: Optional[str] = None

    @field_serializer("created_at")
    def serialize_created_at(self, value: datetime) -> str:
        return _utc(value)

    @classmethod
    def from_summary(cls, summary: MessageSummary) -> "MessageRefResponse":
        return cls(
            id=summary.id,
            created_at=summary.created_at,
            size=summary.size,
            subject=summary.subject,
        )


class MessageListResponse(ApiModel):
    """Paginated message list response"""

    total_message_count: int = Field(..., description="Number of stored messages")
    messages: List[MessageRefResponse] = Field(default_factory=list)


# Message Detail Schemas

class AddressEntry(ApiModel):
    name: Optional[str] = None
    address: str


class HeaderEntry(ApiModel):
    name: str
    value: str


class SectionRef(ApiModel):
    """Body section reference; ``id`` is the normalized Content-ID"""

    id: Optional[str] = Field(None, description="Content-ID without angle brackets")
    media_type: str = Field(..., description="MIME type (e.g., image/jpeg)")
    file_name: Optional[str] = None


class MessageDetailResponse(ApiModel):
    """Full message detail with envelope, headers and sections"""

    id: str
    created_at: datetime
    size: int
    subject: Optional[str] = None
    date: Optional[datetime] = None
    from_: List[AddressEntry] = Field(default_factory=list, alias="from")
    to: List[AddressEntry] = Field(default_factory=list)
    cc: List[AddressEntry] = Field(default_factory=list)
    bcc: List[AddressEntry] = Field(default_factory=list)
    text_body: Optional[str] = None
    html_body: Optional[str] = None
    headers: List[HeaderEntry] = Field(default_factory=list)
    sections: List[SectionRef] = Field(default_factory=list)

    @field_serializer("created_at", "date")
    def serialize_timestamps(self, value: Optional[datetime]) -> Optional[str]:
        return _utc(value)

    @classmethod
    def from_detail(cls, detail: MessageDetail) -> "MessageDetailResponse":
        parsed: ParsedMessage = detail.parsed
        return cls(
            id=detail.id,
            created_at=detail.created_at,
            size=detail.size,
            subject=parsed.subject,
            date=parsed.date,
            from_=_address_entries(parsed.from_addresses),
            to=_address_entries(parsed.to_addresses),
            cc=_address_entries(parsed.cc_addresses),
            bcc=_address_entries(parsed.bcc_addresses),
            text_body=parsed.text_body,
            html_body=parsed.html_body,
            headers=[HeaderEntry(name=h.name, value=h.value) for h in parsed.headers],
            sections=[
                SectionRef(
                    id=section.content_id,
                    media_type=section.media_type,
                    file_name=section.file_name,
                )
                for section in parsed.sections
            ],
        )


def _address_entries(addresses: List[EmailAddress]) -> List[AddressEntry]:
    return [AddressEntry(name=a.name, address=a.address) for a in addresses]


class ErrorResponse(BaseModel):
    error: str
    message: str
