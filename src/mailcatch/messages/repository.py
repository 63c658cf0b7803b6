"""Message repository: the query facade over blob store, index and projector.

All public operations are coroutines. Blocking storage I/O and MIME parsing
run in worker threads so one slow request does not hold up the others.

Saves and deletes are serialized by one thread lock covering "assign id +
commit bytes + update index", which keeps the index consistent with the
store whichever event loop or thread the caller runs on. Reads take no lock;
they work from an index snapshot.

Query operations return a LookupResult (Found / NotFound / ParseFailed).
StorageError is never turned into a result: it always propagates.
"""

import asyncio
import logging
import threading
from contextlib import closing
from io import BytesIO
from typing import Callable, List, Optional

from ..domain.messages.errors import MessageNotFoundError, MessageParseError
from ..domain.messages.message_index import IndexEntry, MessageIndex
from ..domain.messages.models import (
    BodySection,
    MessageDetail,
    MessagePage,
    MessageSummary,
    SectionContent,
    StoredBlob,
)
from ..domain.messages.ports.blob_store_port import BlobStorePort, MessageWriter
from ..domain.messages.results import Found, LookupResult, NotFound, ParseFailed
from ..infrastructure.ingest.mime_projector import MimeProjector, section_file_name

logger = logging.getLogger(__name__)

RAW_MEDIA_TYPE = "message/rfc822"


class MessageRepository:
    """Stores raw messages and answers list / detail / section queries.

    Example:
        repository = MessageRepository(
            blob_store=FilesystemBlobStore(Path("./messages")),
            projector=MimeProjector(),
        )
        await repository.refresh_index()

        message_id = await repository.save(lambda sink: sink.write(raw_mime))
        page = await repository.list_messages(start=0, limit=10)
    """

    def __init__(
        self,
        blob_store: BlobStorePort,
        projector: Optional[MimeProjector] = None,
        index: Optional[MessageIndex] = None,
        default_page_size: int = 10,
        max_page_size: int = 100,
    ):
        """Initialize the repository.

        Args:
            blob_store: Storage adapter holding the raw messages
            projector: MIME projector (default: MimeProjector())
            index: Message index (default: a new, empty MessageIndex)
            default_page_size: Page size when list_messages gets no limit
            max_page_size: Upper bound applied to every requested limit
        """
        if max_page_size < 1:
            raise ValueError("max_page_size must be at least 1")

        self.blob_store = blob_store
        self.projector = projector or MimeProjector()
        self.index = index or MessageIndex()
        self.default_page_size = min(max(default_page_size, 1), max_page_size)
        self.max_page_size = max_page_size
        self._mutation_lock = threading.Lock()
        self._index_loaded = False

    @property
    def index_loaded(self) -> bool:
        return self._index_loaded

    def count(self) -> int:
        return len(self.index)

    async def refresh_index(self) -> int:
        """Rebuild the index from the blob store's enumeration.

        Picks up files dropped into the store by other processes.

        Returns:
            int: Number of indexed messages
        """
        count = await asyncio.to_thread(self._refresh_index_sync)
        self._index_loaded = True
        logger.info(f"Message index loaded: {count} messages")
        return count

    async def save(self, writer: MessageWriter) -> str:
        """Persist the bytes written by ``writer`` and index the new message.

        Returns:
            str: Identifier of the stored message

        Raises:
            StorageError: If the bytes could not be committed (nothing is
                indexed in that case)
        """
        return await asyncio.to_thread(self._save_sync, writer)

    async def save_bytes(self, raw_mime: bytes) -> str:
        return await self.save(lambda sink: sink.write(raw_mime))

    async def list_messages(self, start: int = 0, limit: Optional[int] = None) -> MessagePage:
        """Newest-first page of message summaries.

        ``start`` and ``limit`` are clamped to the valid range; a start past
        the end gives an empty page. ``total_count`` is the size of the
        whole collection.
        """
        start = max(start, 0)
        limit = self.default_page_size if limit is None else limit
        limit = min(max(limit, 1), self.max_page_size)

        page = self.index.page(start, limit)
        items = await asyncio.to_thread(self._summaries_sync, page.entries)
        return MessagePage(items=items, total_count=page.total_count)

    async def load_detail(self, message_id: str) -> LookupResult[MessageDetail]:
        return await self._lookup(message_id, self._load_detail_sync, message_id)

    async def open_section(self, message_id: str, index: int) -> LookupResult[SectionContent]:
        """Decoded content of the section at ``index`` (zero-based).

        The caller owns the returned stream.
        """
        return await self._lookup(
            message_id,
            self._open_section_sync,
            message_id,
            lambda stream: self.projector.section_at(stream, index),
        )

    async def open_section_by_content_id(
        self,
        message_id: str,
        content_id: str,
    ) -> LookupResult[SectionContent]:
        """Decoded content of the first section with the given Content-ID."""
        return await self._lookup(
            message_id,
            self._open_section_sync,
            message_id,
            lambda stream: self.projector.section_by_content_id(stream, content_id),
        )

    async def open_raw(self, message_id: str) -> LookupResult[SectionContent]:
        """The original bytes, untouched, with the identifier as file name.

        The caller owns the returned stream.
        """
        return await self._lookup(message_id, self._open_raw_sync, message_id)

    async def delete(self, message_id: str) -> bool:
        """Remove a message from the store and the index.

        Idempotent: returns False when nothing was stored under the id.
        """
        return await asyncio.to_thread(self._delete_sync, message_id)

    async def delete_all(self) -> int:
        """Remove every stored message. Returns how many were deleted."""
        return await asyncio.to_thread(self._delete_all_sync)

    async def _lookup(self, message_id: str, func: Callable, *args) -> LookupResult:
        work = asyncio.ensure_future(asyncio.to_thread(func, *args))
        try:
            value = await asyncio.shield(work)
        except asyncio.CancelledError:
            # The worker thread cannot be interrupted; close what it opens
            work.add_done_callback(_release_abandoned)
            raise
        except MessageNotFoundError as e:
            logger.warning(f"Lookup failed: {e}", extra={"message_id": message_id})
            return NotFound(reason=str(e))
        except MessageParseError as e:
            logger.error(f"Failed to parse message: {e}", extra={"message_id": message_id})
            return ParseFailed(reason=str(e))
        return Found(value)

    def _refresh_index_sync(self) -> int:
        with self._mutation_lock:
            return self.index.rebuild(self.blob_store.list_blobs())

    def _save_sync(self, writer: MessageWriter) -> str:
        with self._mutation_lock:
            blob = self.blob_store.store_blob(writer)
            self.index.record_insertion(blob)
        logger.info(
            f"Saved message: size={blob.size_bytes}",
            extra={"message_id": blob.blob_id},
        )
        return blob.blob_id

    def _summaries_sync(self, entries: List[IndexEntry]) -> List[MessageSummary]:
        summaries = []
        for entry in entries:
            blob = StoredBlob(
                blob_id=entry.blob_id,
                created_at=entry.created_at,
                size_bytes=entry.size_bytes,
            )
            try:
                with closing(self.blob_store.open_blob(entry.blob_id)) as stream:
                    summaries.append(self.projector.parse_summary(stream, blob))
            except MessageNotFoundError:
                # Deleted after the index snapshot was taken
                logger.debug("Skipping vanished message", extra={"message_id": entry.blob_id})
            except MessageParseError as e:
                logger.warning(
                    f"Unreadable message header: {e}",
                    extra={"message_id": entry.blob_id},
                )
                summaries.append(MessageSummary(
                    id=blob.blob_id,
                    created_at=blob.created_at,
                    size=blob.size_bytes,
                    subject=None,
                ))
        return summaries

    def _load_detail_sync(self, message_id: str) -> MessageDetail:
        blob = self.blob_store.get_blob(message_id)
        with closing(self.blob_store.open_blob(message_id)) as stream:
            parsed = self.projector.parse_detail(stream)
        return MessageDetail(
            id=blob.blob_id,
            created_at=blob.created_at,
            size=blob.size_bytes,
            parsed=parsed,
        )

    def _open_section_sync(
        self,
        message_id: str,
        resolve: Callable[..., BodySection],
    ) -> SectionContent:
        with closing(self.blob_store.open_blob(message_id)) as stream:
            section = resolve(stream)
            content = self.projector.decode_section(section)
        return SectionContent(
            stream=BytesIO(content),
            media_type=section.media_type,
            file_name=section_file_name(section),
        )

    def _open_raw_sync(self, message_id: str) -> SectionContent:
        return SectionContent(
            stream=self.blob_store.open_blob(message_id),
            media_type=RAW_MEDIA_TYPE,
            file_name=message_id,
        )

    def _delete_sync(self, message_id: str) -> bool:
        with self._mutation_lock:
            removed = self.blob_store.delete_blob(message_id)
            indexed = self.index.record_deletion(message_id)
        if removed:
            logger.info("Deleted message", extra={"message_id": message_id})
        return removed or indexed

    def _delete_all_sync(self) -> int:
        with self._mutation_lock:
            deleted = 0
            for blob in self.blob_store.list_blobs():
                if self.blob_store.delete_blob(blob.blob_id):
                    deleted += 1
            self.index.clear()
        logger.info(f"Deleted all messages: count={deleted}")
        return deleted


def _release_abandoned(work: asyncio.Future) -> None:
    if work.cancelled() or work.exception() is not None:
        return
    value = work.result()
    if isinstance(value, SectionContent):
        logger.debug("Closing stream opened for a cancelled request")
        value.close()
