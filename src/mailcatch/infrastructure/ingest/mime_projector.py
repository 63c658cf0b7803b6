"""MIME projection of stored messages.

Parses raw MIME bytes into the structured views served by the query API:
a cheap header-only summary for listings, and a full detail with envelope,
ordered headers, body sections and the text/html bodies.

Sections are the leaf parts of the MIME tree in depth-first order as
written. Multipart containers are descended into; everything else
(including attached ``message/rfc822`` parts) is a leaf. Payloads are
decoded from their content-transfer-encoding on every request and never
cached.

Parsing is a pure function of the bytes, so one MimeProjector can serve any
number of threads.
"""

import codecs
import logging
import mimetypes
from datetime import datetime, timezone
from email import errors as email_errors
from email import policy as email_policy
from email.message import EmailMessage, Message
from email.parser import BytesHeaderParser, BytesParser
from typing import BinaryIO, Iterator, List, Optional

from ...domain.messages.errors import MessageParseError, SectionNotFoundError
from ...domain.messages.models import (
    BodySection,
    EmailAddress,
    HeaderField,
    MessageSummary,
    ParsedMessage,
    StoredBlob,
)

logger = logging.getLogger(__name__)

# Defects that mean the multipart structure itself is unusable
_STRUCTURAL_DEFECTS = (
    email_errors.NoBoundaryInMultipartDefect,
    email_errors.StartBoundaryNotFoundDefect,
    email_errors.MultipartInvariantViolationDefect,
)

# Raised by the header registry on some malformed header values
_HEADER_ERRORS = (email_errors.HeaderParseError, ValueError, IndexError, TypeError)

_DEFAULT_CHARSET = "utf-8"
_FALLBACK_EXTENSION = ".bin"
_HEADER_CHUNK_SIZE = 8192


def normalize_content_id(content_id: Optional[str]) -> Optional[str]:
    """Strip whitespace and surrounding angle brackets from a Content-ID.

    Example:
        >>> normalize_content_id(" <part1@example.com> ")
        'part1@example.com'
    """
    if content_id is None:
        return None
    value = str(content_id).strip()
    if value.startswith("<") and value.endswith(">"):
        value = value[1:-1].strip()
    return value or None


def section_file_name(section: BodySection) -> str:
    """File name for downloading a section.

    Uses the section's own file name, otherwise ``section-{index}{ext}`` with
    the extension guessed from the media type.
    """
    if section.file_name:
        return section.file_name
    extension = mimetypes.guess_extension(section.media_type) or _FALLBACK_EXTENSION
    return f"section-{section.index}{extension}"


def parse_mime_message(raw_mime: bytes) -> EmailMessage:
    """Parse raw MIME bytes into an email.message.EmailMessage.

    Args:
        raw_mime: Raw MIME message bytes

    Returns:
        EmailMessage: Parsed MIME message

    Raises:
        MessageParseError: If the bytes are empty, carry no header, or the
            multipart structure is broken
    """
    if not raw_mime.strip():
        raise MessageParseError("Empty message")

    msg = BytesParser(policy=email_policy.default).parsebytes(raw_mime)

    if not msg.keys():
        raise MessageParseError("Message has no parseable header")

    for part in msg.walk():
        for defect in part.defects:
            if isinstance(defect, _STRUCTURAL_DEFECTS):
                raise MessageParseError(
                    f"Malformed MIME structure: {type(defect).__name__}"
                )

    return msg


class MimeProjector:
    """Builds summary, detail and section projections from raw messages."""

    def parse_summary(self, stream: BinaryIO, blob: StoredBlob) -> MessageSummary:
        """Header-only projection for list views.

        Reads the header block and stops at the first blank line; the body
        is neither read nor decoded. A missing or undecodable subject
        becomes None.
        """
        header_bytes = _read_header_block(stream)
        headers = BytesHeaderParser(policy=email_policy.default).parsebytes(header_bytes)
        return MessageSummary(
            id=blob.blob_id,
            created_at=blob.created_at,
            size=blob.size_bytes,
            subject=_subject(headers),
        )

    def parse_detail(self, stream: BinaryIO) -> ParsedMessage:
        """Full projection: envelope, headers, sections and bodies.

        The first non-attachment ``text/plain`` section becomes the text
        body and the first non-attachment ``text/html`` section the HTML
        body. Every section, text ones included, stays in ``sections``.

        Raises:
            MessageParseError: If the message structure is malformed or a
                body cannot be decoded
        """
        msg = parse_mime_message(stream.read())
        sections = _collect_sections(msg)

        text_body = None
        html_body = None
        for section in sections:
            if section.is_attachment:
                continue
            if text_body is None and section.media_type == "text/plain":
                text_body = self.decode_text(section)
            elif html_body is None and section.media_type == "text/html":
                html_body = self.decode_text(section)

        return ParsedMessage(
            subject=_subject(msg),
            date=_date(msg),
            from_addresses=_addresses(msg, "From"),
            to_addresses=_addresses(msg, "To"),
            cc_addresses=_addresses(msg, "Cc"),
            bcc_addresses=_addresses(msg, "Bcc"),
            headers=_headers(msg),
            sections=sections,
            text_body=text_body,
            html_body=html_body,
        )

    def sections(self, stream: BinaryIO) -> List[BodySection]:
        return _collect_sections(parse_mime_message(stream.read()))

    def section_at(self, stream: BinaryIO, index: int) -> BodySection:
        """Section by zero-based position.

        Raises:
            SectionNotFoundError: If ``index`` is out of range
        """
        sections = self.sections(stream)
        if index < 0 or index >= len(sections):
            raise SectionNotFoundError(
                f"Section {index} not found ({len(sections)} sections)"
            )
        return sections[index]

    def section_by_content_id(self, stream: BinaryIO, content_id: str) -> BodySection:
        """First section whose normalized Content-ID matches.

        Raises:
            SectionNotFoundError: If no section carries the content-id
        """
        wanted = normalize_content_id(content_id)
        if wanted is not None:
            for section in self.sections(stream):
                if section.content_id == wanted:
                    return section
        raise SectionNotFoundError(f"No section with content-id {content_id!r}")

    def decode_section(self, section: BodySection) -> bytes:
        """Decode a section's payload into raw bytes.

        Raises:
            MessageParseError: If the transfer encoding cannot be decoded
        """
        part = section.part
        if part is None:
            return b""

        if part.get_content_maintype() == "message":
            payload = part.get_payload()
            if isinstance(payload, list):
                return b"".join(inner.as_bytes() for inner in payload)

        seen_defects = len(part.defects)
        payload = part.get_payload(decode=True)
        for defect in part.defects[seen_defects:]:
            if isinstance(defect, email_errors.InvalidBase64LengthDefect):
                raise MessageParseError(
                    f"Section {section.index} has undecodable base64 content"
                )
        return payload or b""

    def decode_text(self, section: BodySection) -> str:
        """Decode a text section using its declared charset.

        Unknown charsets fall back to UTF-8; undecodable bytes are replaced.
        """
        payload = self.decode_section(section)
        charset = section.part.get_content_charset() if section.part else None
        charset = charset or _DEFAULT_CHARSET
        try:
            codecs.lookup(charset)
        except LookupError:
            logger.debug(f"Unknown charset {charset!r}, decoding as {_DEFAULT_CHARSET}")
            charset = _DEFAULT_CHARSET
        return payload.decode(charset, errors="replace")


def _header_end(buffer: bytes) -> Optional[int]:
    if buffer.startswith((b"\r\n", b"\n")):
        return 0
    ends = []
    for separator in (b"\r\n\r\n", b"\n\n"):
        position = buffer.find(separator)
        if position != -1:
            ends.append(position + len(separator))
    return min(ends) if ends else None


def _read_header_block(stream: BinaryIO) -> bytes:
    # Chunked reads; not every stream (botocore StreamingBody) iterates by line
    buffer = b""
    while True:
        chunk = stream.read(_HEADER_CHUNK_SIZE)
        if not chunk:
            return buffer
        buffer += chunk
        end = _header_end(buffer)
        if end is not None:
            return buffer[:end]


def _iter_leaf_parts(part: Message) -> Iterator[Message]:
    if part.get_content_maintype() == "multipart" and part.is_multipart():
        for child in part.get_payload():
            yield from _iter_leaf_parts(child)
    else:
        yield part


def _has_body(msg: Message) -> bool:
    if msg.is_multipart() or "Content-Type" in msg:
        return True
    payload = msg.get_payload()
    return bool(payload and payload.strip())


def _collect_sections(msg: EmailMessage) -> List[BodySection]:
    if not _has_body(msg):
        return []

    sections = []
    for index, part in enumerate(_iter_leaf_parts(msg)):
        sections.append(BodySection(
            index=index,
            media_type=part.get_content_type(),
            file_name=_file_name(part),
            content_id=normalize_content_id(_header_text(part, "Content-ID")),
            is_attachment=part.get_content_disposition() == "attachment",
            part=part,
        ))
    return sections


def _file_name(part: Message) -> Optional[str]:
    try:
        file_name = part.get_filename()
    except _HEADER_ERRORS:
        return None
    return str(file_name) if file_name else None


def _header_text(msg: Message, name: str) -> Optional[str]:
    try:
        value = msg.get(name)
    except _HEADER_ERRORS:
        return None
    return None if value is None else str(value)


def _subject(msg: Message) -> Optional[str]:
    return _header_text(msg, "Subject")


def _date(msg: Message) -> Optional[datetime]:
    try:
        header = msg.get("Date")
        value = getattr(header, "datetime", None)
    except _HEADER_ERRORS:
        return None
    if value is None:
        return None
    if value.tzinfo is None:
        # "-0000" means UTC with unknown origin
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _addresses(msg: Message, name: str) -> List[EmailAddress]:
    result = []
    try:
        headers = msg.get_all(name, [])
    except _HEADER_ERRORS:
        logger.debug(f"Unparseable {name} header")
        return result

    for header in headers:
        for address in getattr(header, "addresses", ()):
            if not address.username and not address.domain:
                continue
            result.append(EmailAddress(
                name=address.display_name or None,
                address=address.addr_spec,
            ))
    return result


def _unfold(value: str) -> str:
    return " ".join(line.strip() for line in value.splitlines() if line.strip())


def _headers(msg: Message) -> List[HeaderField]:
    fields = []
    for name, raw_value in msg.raw_items():
        try:
            value = str(msg.policy.header_fetch_parse(name, raw_value))
        except _HEADER_ERRORS:
            value = _unfold(str(raw_value))
        fields.append(HeaderField(name=name, value=value))
    return fields
