"""SMTP Handler for mail capture.

Implements an aiosmtpd handler that accepts every message and stores its
raw bytes through the message repository. Nothing is relayed.

The aiosmtpd Controller runs its own event loop in a separate thread; when
the handler is given the application's loop, saves are scheduled there with
``asyncio.run_coroutine_threadsafe`` so the repository is only driven from
one loop. Each delivery gets an "smtp-" correlation id that follows the
save onto that loop, so its log lines can be traced like an HTTP request.

Architecture: Hexagonal - Infrastructure adapter implementing email ingestion
"""

import asyncio
import logging
from typing import Optional

from aiosmtpd.controller import Controller
from aiosmtpd.smtp import SMTP, Envelope, Session

from ...domain.messages.errors import StorageError
from ...messages.repository import MessageRepository
from ...observability.middleware import bind_request_id

logger = logging.getLogger(__name__)


class MailCatchSMTPHandler:
    """SMTP handler that captures every received message.

    Replies:
        '250 Message accepted as <id>' - Stored
        '554 Empty message' - DATA carried no bytes
        '451 Storage error' - The store rejected the write; the client may retry
    """

    def __init__(
        self,
        repository: MessageRepository,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        """Initialize SMTP handler.

        Args:
            repository: Repository the messages are saved through
            loop: Application event loop to run saves on (default: the
                loop calling handle_DATA)
        """
        self.repository = repository
        self.loop = loop

    async def save_message(self, raw_mime: bytes) -> str:
        if self.loop is None:
            return await self.repository.save_bytes(raw_mime)
        future = asyncio.run_coroutine_threadsafe(
            self.repository.save_bytes(raw_mime), self.loop
        )
        return await asyncio.wrap_future(future)

    async def handle_DATA(
        self,
        server: SMTP,
        session: Session,
        envelope: Envelope,
    ) -> str:
        """Handle email DATA command (main SMTP handler entry point).

        Args:
            server: SMTP server instance
            session: SMTP session
            envelope: Email envelope (content, sender, recipients)

        Returns:
            str: SMTP response code and message
        """
        bind_request_id(prefix="smtp-")

        raw_mime = envelope.original_content or envelope.content
        if isinstance(raw_mime, str):
            raw_mime = raw_mime.encode("utf-8")

        if not raw_mime:
            logger.warning(f"Rejected empty message: from={envelope.mail_from}")
            return '554 Empty message'

        logger.info(
            f"Received email: from={envelope.mail_from}, "
            f"to={','.join(envelope.rcpt_tos)}, size={len(raw_mime)} bytes"
        )

        try:
            message_id = await self.save_message(raw_mime)
        except StorageError as e:
            logger.error(f"Failed to store received message: {e}")
            return '451 Storage error'
        except Exception as e:
            logger.error(f"Unexpected error processing email: {e}", exc_info=True)
            return '451 Temporary server error'

        logger.info("Captured email", extra={"message_id": message_id})
        return f'250 Message accepted as {message_id}'


def create_smtp_controller(
    handler: MailCatchSMTPHandler,
    hostname: str,
    port: int,
    max_message_size: int,
) -> Controller:
    """Build (but do not start) the aiosmtpd Controller for ``handler``."""
    return Controller(
        handler,
        hostname=hostname,
        port=port,
        data_size_limit=max_message_size,
        # Enable SMTPUTF8 for international email addresses
        enable_SMTPUTF8=True,
    )
