"""Unit tests for download responses built by the messages router"""

import asyncio
from io import BytesIO

from mailcatch.domain.messages.models import SectionContent
from mailcatch.domain.messages.results import Found, NotFound, ParseFailed
from mailcatch.messages.router import _download, content_disposition


def make_content(data: bytes = b"attachment bytes") -> SectionContent:
    return SectionContent(
        stream=BytesIO(data),
        media_type="application/pdf",
        file_name="report.pdf",
    )


class TestDownloadResponse:
    def test_stream_is_released_when_body_is_never_sent(self):
        content = make_content()
        response = _download(Found(content), "m1.eml")

        # Response abandoned before the body iterator started
        asyncio.run(response.background())

        assert content.stream.closed

    def test_stream_is_released_after_full_read(self):
        content = make_content()
        response = _download(Found(content), "m1.eml")

        async def drain():
            return b"".join([chunk async for chunk in response.body_iterator])

        assert asyncio.run(drain()) == b"attachment bytes"
        assert content.stream.closed

    def test_headers(self):
        response = _download(Found(make_content()), "m1.eml")

        assert response.media_type == "application/pdf"
        assert response.headers["content-disposition"] == 'attachment; filename="report.pdf"'

    def test_lookup_failures_map_to_status(self):
        assert _download(NotFound(reason="gone"), "m1.eml").status_code == 404
        assert _download(ParseFailed(reason="bad"), "m1.eml").status_code == 422


class TestContentDisposition:
    def test_quotes_are_escaped(self):
        assert content_disposition('a "b".txt') == 'attachment; filename="a \\"b\\".txt"'

    def test_non_ascii_gets_fallback_and_encoded_name(self):
        value = content_disposition("résumé.pdf")

        assert value.startswith('attachment; filename="r?sum?.pdf"; ')
        assert value.endswith("filename*=UTF-8''r%C3%A9sum%C3%A9.pdf")
