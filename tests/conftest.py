"""Shared pytest fixtures.

Provides:
- A filesystem blob store in a per-test temporary directory
- A MessageRepository over that store
- An application and TestClient wired to the same repository
- Factories for building and saving MIME messages

Usage:
    def test_list(client, save_message, make_message):
        save_message(make_message(subject="Test"))
        response = client.get("/api/messages")
        assert response.status_code == 200
"""

import asyncio
from email.message import EmailMessage
from typing import Callable, Iterable, Optional, Union

import pytest
from fastapi.testclient import TestClient

from mailcatch.config import Settings
from mailcatch.infrastructure.storage.filesystem_blob_store import FilesystemBlobStore
from mailcatch.main import create_app
from mailcatch.messages.repository import MessageRepository


@pytest.fixture
def message_directory(tmp_path):
    return tmp_path / "messages"


@pytest.fixture
def blob_store(message_directory) -> FilesystemBlobStore:
    return FilesystemBlobStore(message_directory)


@pytest.fixture
def repository(blob_store) -> MessageRepository:
    return MessageRepository(blob_store=blob_store)


@pytest.fixture
def settings(message_directory) -> Settings:
    return Settings(
        MESSAGE_DIRECTORY=str(message_directory),
        SMTP_ENABLED=False,
        LOG_JSON=False,
        LOG_LEVEL="WARNING",
        ENVIRONMENT="test",
    )


@pytest.fixture
def app(settings, repository):
    return create_app(settings=settings, repository=repository)


@pytest.fixture
def client(app):
    """TestClient with the application lifespan running (index loaded)."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_message() -> Callable[..., EmailMessage]:
    """Factory for simple text/plain messages."""

    def _make(
        subject: Optional[str] = "Test",
        from_: Iterable[str] = ("mffeng@gmail.com",),
        to: Iterable[str] = (),
        cc: Iterable[str] = (),
        bcc: Iterable[str] = (),
        body: Optional[str] = None,
    ) -> EmailMessage:
        msg = EmailMessage()
        if subject is not None:
            msg["Subject"] = subject
        for name, addresses in (("From", from_), ("To", to), ("Cc", cc), ("Bcc", bcc)):
            addresses = list(addresses)
            if addresses:
                msg[name] = ", ".join(addresses)
        if body is not None:
            msg.set_content(body)
        return msg

    return _make


@pytest.fixture
def save_message(repository) -> Callable[[Union[EmailMessage, bytes]], str]:
    """Save a message through the repository and return its identifier."""

    def _save(message: Union[EmailMessage, bytes]) -> str:
        raw = message if isinstance(message, bytes) else message.as_bytes()
        return asyncio.run(repository.save_bytes(raw))

    return _save
