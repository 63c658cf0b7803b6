"""Messages API endpoints.

Lists, inspects, downloads and deletes captured messages.

Lookups return Found / NotFound / ParseFailed from the repository and are
mapped here: NotFound -> 404, ParseFailed -> 422. StorageError is left to
the application exception handler (500).
"""

import logging
from typing import Iterator, Optional, Union
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from ..dependencies import get_message_repository
from ..domain.messages.models import SectionContent
from ..domain.messages.results import Found, LookupResult, NotFound
from .repository import MessageRepository
from .schemas import (
    ErrorResponse,
    MessageDetailResponse,
    MessageListResponse,
    MessageRefResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["Messages"])

DOWNLOAD_CHUNK_SIZE = 64 * 1024

_ERROR_RESPONSES = {
    404: {"model": ErrorResponse, "description": "Message or section not found"},
    422: {"model": ErrorResponse, "description": "Message could not be parsed"},
}


def content_disposition(file_name: str) -> str:
    """Build an attachment Content-Disposition header value.

    Non-ASCII names get an ASCII fallback plus an RFC 5987 ``filename*``
    parameter.

    Example:
        >>> content_disposition("report.pdf")
        'attachment; filename="report.pdf"'
    """
    escaped = file_name.replace("\\", "\\\\").replace('"', '\\"')
    try:
        escaped.encode("ascii")
    except UnicodeEncodeError:
        fallback = escaped.encode("ascii", "replace").decode("ascii")
        encoded = quote(file_name, safe="")
        return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{encoded}"
    return f'attachment; filename="{escaped}"'


def _error_response(result: LookupResult, message_id: str) -> JSONResponse:
    if isinstance(result, NotFound):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": "not_found", "message": result.reason},
        )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "message_parse_error",
            "message": f"Message {message_id} could not be parsed: {result.reason}",
        },
    )


def _iter_content(content: SectionContent) -> Iterator[bytes]:
    # Closing the generator early also releases the stream
    try:
        while True:
            chunk = content.stream.read(DOWNLOAD_CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
    finally:
        content.close()


def _download(result: LookupResult[SectionContent], message_id: str) -> Response:
    if not isinstance(result, Found):
        return _error_response(result, message_id)

    content = result.value
    # Runs after the response even when the body was never iterated
    return StreamingResponse(
        _iter_content(content),
        media_type=content.media_type,
        headers={"Content-Disposition": content_disposition(content.file_name)},
        background=BackgroundTask(content.close),
    )


@router.get("", response_model=MessageListResponse, response_model_by_alias=True)
async def list_messages(
    start: int = Query(0, description="Number of newest messages to skip"),
    limit: Optional[int] = Query(None, description="Page size (clamped to the maximum)"),
    repository: MessageRepository = Depends(get_message_repository),
) -> MessageListResponse:
    """List stored messages, newest first.

    ``totalMessageCount`` is the size of the whole collection, not of the
    returned page.
    """
    page = await repository.list_messages(start=start, limit=limit)
    return MessageListResponse(
        total_message_count=page.total_count,
        messages=[MessageRefResponse.from_summary(item) for item in page.items],
    )


@router.get(
    "/{message_id}",
    response_model=MessageDetailResponse,
    response_model_by_alias=True,
    responses=_ERROR_RESPONSES,
)
async def get_message(
    message_id: str,
    repository: MessageRepository = Depends(get_message_repository),
) -> Union[MessageDetailResponse, JSONResponse]:
    result = await repository.load_detail(message_id)
    if not isinstance(result, Found):
        return _error_response(result, message_id)
    return MessageDetailResponse.from_detail(result.value)


@router.get("/{message_id}/sections/{index}", responses=_ERROR_RESPONSES)
async def download_section(
    message_id: str,
    index: int,
    repository: MessageRepository = Depends(get_message_repository),
) -> Response:
    """Download the decoded content of a section by zero-based index."""
    result = await repository.open_section(message_id, index)
    return _download(result, message_id)


@router.get("/{message_id}/contents/{content_id:path}", responses=_ERROR_RESPONSES)
async def download_content(
    message_id: str,
    content_id: str,
    repository: MessageRepository = Depends(get_message_repository),
) -> Response:
    """Download the decoded content of the section with a Content-ID."""
    result = await repository.open_section_by_content_id(message_id, content_id)
    return _download(result, message_id)


@router.get("/{message_id}/raw", responses=_ERROR_RESPONSES)
async def download_raw(
    message_id: str,
    repository: MessageRepository = Depends(get_message_repository),
) -> Response:
    """Download the message exactly as it was received."""
    result = await repository.open_raw(message_id)
    return _download(result, message_id)


@router.delete(
    "/{message_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: _ERROR_RESPONSES[404]},
)
async def delete_message(
    message_id: str,
    repository: MessageRepository = Depends(get_message_repository),
) -> Response:
    if not await repository.delete(message_id):
        return _error_response(NotFound(reason=f"Message {message_id} not found"), message_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def delete_all_messages(
    repository: MessageRepository = Depends(get_message_repository),
) -> Response:
    deleted = await repository.delete_all()
    logger.info(f"Cleared message store: {deleted} messages deleted")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
