"""Unit tests for MIME projection of stored messages

Covers summary (header-only) parsing, full detail projection, section
enumeration and addressing, payload decoding and malformed input.
"""

from datetime import datetime, timezone
from email.message import EmailMessage
from io import BytesIO

import pytest

from mailcatch.domain.messages.errors import MessageParseError, SectionNotFoundError
from mailcatch.domain.messages.models import BodySection, StoredBlob
from mailcatch.infrastructure.ingest.mime_projector import (
    MimeProjector,
    normalize_content_id,
    parse_mime_message,
    section_file_name,
)

JPEG_BYTES = b"\xff\xd8\xff\xe0fake-jpeg-data\x00\x01"


@pytest.fixture
def projector():
    return MimeProjector()


def stored(raw: bytes, blob_id: str = "test.eml") -> StoredBlob:
    return StoredBlob(
        blob_id=blob_id,
        created_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
        size_bytes=len(raw),
    )


def rich_message() -> EmailMessage:
    """mixed[alternative[text/plain, text/html], image/jpeg attachment]"""
    msg = EmailMessage()
    msg["Subject"] = "Rich"
    msg["From"] = "Alice Example <alice@example.com>"
    msg["To"] = "bob@example.com"
    msg.set_content("Plain body")
    msg.add_alternative("<p>HTML body</p>", subtype="html")
    msg.add_attachment(
        JPEG_BYTES,
        maintype="image",
        subtype="jpeg",
        filename="photo.jpg",
        cid="<photo@example.com>",
    )
    return msg


class TestNormalizeContentId:
    @pytest.mark.parametrize("value,expected", [
        ("<part1@example.com>", "part1@example.com"),
        (" <part1@example.com> ", "part1@example.com"),
        ("part1@example.com", "part1@example.com"),
        ("<>", None),
        ("", None),
        (None, None),
    ])
    def test_normalize(self, value, expected):
        assert normalize_content_id(value) == expected


class TestParseSummary:
    def test_subject_and_identity(self, projector, make_message):
        raw = make_message(subject="Test", body="Hello").as_bytes()
        summary = projector.parse_summary(BytesIO(raw), stored(raw, "abc.eml"))

        assert summary.id == "abc.eml"
        assert summary.subject == "Test"
        assert summary.size == len(raw)

    def test_missing_subject_is_none(self, projector, make_message):
        raw = make_message(subject=None, body="Hello").as_bytes()
        summary = projector.parse_summary(BytesIO(raw), stored(raw))
        assert summary.subject is None

    def test_encoded_subject_is_decoded(self, projector, make_message):
        raw = make_message(subject="Grüße aus Köln").as_bytes()
        summary = projector.parse_summary(BytesIO(raw), stored(raw))
        assert summary.subject == "Grüße aus Köln"

    def test_body_is_not_read(self, projector, make_message):
        raw = make_message(subject="Big", body="x" * 100_000).as_bytes()
        stream = BytesIO(raw)
        summary = projector.parse_summary(stream, stored(raw))

        assert summary.subject == "Big"
        assert stream.tell() < len(raw)

    def test_crlf_line_endings(self, projector):
        raw = b"Subject: Windows\r\nFrom: a@example.com\r\n\r\nBody\r\n"
        summary = projector.parse_summary(BytesIO(raw), stored(raw))
        assert summary.subject == "Windows"


class TestParseDetail:
    def test_envelope_and_plain_body(self, projector, make_message):
        raw = make_message(
            subject="Test",
            from_=["mffeng@gmail.com"],
            to=["xwliu@gmail.com"],
            cc=["jjchen@gmail.com", "ygma@gmail.com"],
            bcc=["rzhe@gmail.com", "xueting@gmail.com"],
            body="Hello Buddy",
        ).as_bytes()

        parsed = projector.parse_detail(BytesIO(raw))

        assert parsed.subject == "Test"
        assert [a.address for a in parsed.from_addresses] == ["mffeng@gmail.com"]
        assert [a.address for a in parsed.to_addresses] == ["xwliu@gmail.com"]
        assert [a.address for a in parsed.cc_addresses] == ["jjchen@gmail.com", "ygma@gmail.com"]
        assert [a.address for a in parsed.bcc_addresses] == ["rzhe@gmail.com", "xueting@gmail.com"]
        assert parsed.text_body.strip() == "Hello Buddy"
        assert parsed.html_body is None

    def test_display_names(self, projector):
        parsed = projector.parse_detail(BytesIO(rich_message().as_bytes()))

        sender = parsed.from_addresses[0]
        assert sender.name == "Alice Example"
        assert sender.address == "alice@example.com"
        assert parsed.to_addresses[0].name is None

    def test_headers_are_kept_in_order(self, projector, make_message):
        msg = make_message(subject="Test", to=["xwliu@gmail.com"], body="Hello Buddy")
        msg["Reply-To"] = "one@replyto.com"
        msg["X-Extended"] = "extended value"

        parsed = projector.parse_detail(BytesIO(msg.as_bytes()))
        headers = {h.name: h.value for h in parsed.headers}
        names = [h.name for h in parsed.headers]

        assert headers["Reply-To"] == "one@replyto.com"
        assert headers["X-Extended"] == "extended value"
        assert names.index("Subject") < names.index("Reply-To") < names.index("X-Extended")

    def test_repeated_headers_are_all_listed(self, projector):
        raw = (
            b"Subject: Hops\n"
            b"Received: from a.example.com\n"
            b"Received: from b.example.com\n"
            b"\n"
            b"Body\n"
        )
        parsed = projector.parse_detail(BytesIO(raw))
        received = [h.value for h in parsed.headers if h.name == "Received"]
        assert received == ["from a.example.com", "from b.example.com"]

    def test_folded_header_is_unfolded(self, projector, make_message):
        value = " ".join(f"word{i}" for i in range(40))
        msg = make_message(body="Hello")
        msg["X-Long"] = value

        parsed = projector.parse_detail(BytesIO(msg.as_bytes()))
        assert {h.name: h.value for h in parsed.headers}["X-Long"] == value

    def test_date_is_converted_to_utc(self, projector):
        raw = b"Subject: Dated\nDate: Fri, 01 Mar 2024 14:00:00 +0200\n\nBody\n"
        parsed = projector.parse_detail(BytesIO(raw))
        assert parsed.date == datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def test_missing_date_is_none(self, projector, make_message):
        parsed = projector.parse_detail(BytesIO(make_message(body="x").as_bytes()))
        assert parsed.date is None

    def test_alternative_bodies(self, projector):
        parsed = projector.parse_detail(BytesIO(rich_message().as_bytes()))

        assert parsed.text_body.strip() == "Plain body"
        assert parsed.html_body.strip() == "<p>HTML body</p>"

    def test_text_attachment_is_not_a_body(self, projector):
        msg = EmailMessage()
        msg["Subject"] = "Notes"
        msg.add_attachment("attached notes", filename="notes.txt")

        parsed = projector.parse_detail(BytesIO(msg.as_bytes()))

        assert parsed.text_body is None
        assert [s.file_name for s in parsed.sections] == ["notes.txt"]

    def test_latin1_body(self, projector):
        raw = (
            b"Subject: Charset\n"
            b"Content-Type: text/plain; charset=iso-8859-1\n"
            b"Content-Transfer-Encoding: 8bit\n"
            b"\n"
            b"caf\xe9\n"
        )
        parsed = projector.parse_detail(BytesIO(raw))
        assert parsed.text_body.strip() == "café"

    def test_unknown_charset_falls_back(self, projector):
        raw = (
            b"Subject: Charset\n"
            b"Content-Type: text/plain; charset=x-no-such-charset\n"
            b"\n"
            b"plain ascii\n"
        )
        parsed = projector.parse_detail(BytesIO(raw))
        assert parsed.text_body.strip() == "plain ascii"

    def test_parsing_is_repeatable(self, projector):
        raw = rich_message().as_bytes()

        first = projector.parse_detail(BytesIO(raw))
        second = projector.parse_detail(BytesIO(raw))

        assert first.headers == second.headers
        assert first.sections == second.sections
        assert first.text_body == second.text_body
        assert first.html_body == second.html_body


class TestSections:
    def test_depth_first_leaf_order(self, projector):
        sections = projector.sections(BytesIO(rich_message().as_bytes()))

        assert [s.media_type for s in sections] == ["text/plain", "text/html", "image/jpeg"]
        assert [s.index for s in sections] == [0, 1, 2]

    def test_attachment_metadata(self, projector):
        image = projector.sections(BytesIO(rich_message().as_bytes()))[2]

        assert image.file_name == "photo.jpg"
        assert image.content_id == "photo@example.com"
        assert image.is_attachment is True

    def test_headers_only_message_has_no_sections(self, projector, make_message):
        parsed = projector.parse_detail(BytesIO(make_message(subject="Empty").as_bytes()))

        assert parsed.sections == []
        assert parsed.text_body is None

    def test_untyped_body_defaults_to_text_plain(self, projector):
        parsed = projector.parse_detail(BytesIO(b"Subject: Old style\n\nJust text\n"))

        assert [s.media_type for s in parsed.sections] == ["text/plain"]
        assert parsed.text_body.strip() == "Just text"

    def test_attached_message_is_a_single_section(self, projector, make_message):
        inner = make_message(subject="Forwarded", body="Inner body")
        outer = make_message(subject="Outer", body="See attached")
        outer.add_attachment(inner)

        raw = outer.as_bytes()
        sections = projector.sections(BytesIO(raw))

        assert [s.media_type for s in sections] == ["text/plain", "message/rfc822"]
        forwarded = projector.decode_section(projector.section_at(BytesIO(raw), 1))
        assert b"Subject: Forwarded" in forwarded
        assert b"Inner body" in forwarded

    def test_section_at_decodes_payload(self, projector):
        raw = rich_message().as_bytes()
        section = projector.section_at(BytesIO(raw), 2)
        assert projector.decode_section(section) == JPEG_BYTES

    @pytest.mark.parametrize("index", [3, 99, -1])
    def test_section_at_out_of_range(self, projector, index):
        with pytest.raises(SectionNotFoundError):
            projector.section_at(BytesIO(rich_message().as_bytes()), index)

    @pytest.mark.parametrize("content_id", ["photo@example.com", "<photo@example.com>"])
    def test_section_by_content_id(self, projector, content_id):
        raw = rich_message().as_bytes()
        by_cid = projector.section_by_content_id(BytesIO(raw), content_id)
        by_index = projector.section_at(BytesIO(raw), 2)

        assert by_cid.index == by_index.index
        assert by_cid.media_type == by_index.media_type
        assert projector.decode_section(by_cid) == projector.decode_section(by_index)

    def test_unknown_content_id(self, projector):
        with pytest.raises(SectionNotFoundError):
            projector.section_by_content_id(BytesIO(rich_message().as_bytes()), "nope@example.com")

    def test_undecodable_base64(self, projector):
        raw = (
            b"Subject: Broken\n"
            b"MIME-Version: 1.0\n"
            b"Content-Type: multipart/mixed; boundary=\"XX\"\n"
            b"\n"
            b"--XX\n"
            b"Content-Type: image/png\n"
            b"Content-Transfer-Encoding: base64\n"
            b"Content-Disposition: attachment; filename=\"broken.png\"\n"
            b"\n"
            b"QUJDR\n"
            b"--XX--\n"
        )
        section = projector.section_at(BytesIO(raw), 0)
        with pytest.raises(MessageParseError):
            projector.decode_section(section)


class TestMalformedMessages:
    @pytest.mark.parametrize("raw", [b"", b"\n\n  \n"])
    def test_empty_input(self, raw):
        with pytest.raises(MessageParseError):
            parse_mime_message(raw)

    def test_no_header(self):
        with pytest.raises(MessageParseError):
            parse_mime_message(b"this line is not a header\nneither is this\n")

    def test_multipart_without_boundary(self):
        raw = b"Subject: x\nContent-Type: multipart/mixed\n\nbody\n"
        with pytest.raises(MessageParseError):
            parse_mime_message(raw)

    def test_boundary_never_found(self):
        raw = b"Subject: x\nContent-Type: multipart/mixed; boundary=\"abc\"\n\nno parts here\n"
        with pytest.raises(MessageParseError):
            parse_mime_message(raw)

    def test_detail_raises_for_malformed_structure(self, projector):
        raw = b"Subject: x\nContent-Type: multipart/mixed\n\nbody\n"
        with pytest.raises(MessageParseError):
            projector.parse_detail(BytesIO(raw))


class TestSectionFileName:
    def test_own_file_name_wins(self):
        section = BodySection(index=0, media_type="image/jpeg", file_name="photo.jpg")
        assert section_file_name(section) == "photo.jpg"

    def test_generated_name_for_unknown_type(self):
        section = BodySection(index=3, media_type="application/x-mailcatch-unknown")
        assert section_file_name(section) == "section-3.bin"
