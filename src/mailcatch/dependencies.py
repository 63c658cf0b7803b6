"""Global FastAPI dependencies.

The message repository is built once by ``create_app`` and kept on
``app.state``; endpoints receive it through ``get_message_repository``.
Tests inject their own repository through ``create_app(repository=...)``.
"""

from fastapi import Request

from .messages.repository import MessageRepository


def get_message_repository(request: Request) -> MessageRepository:
    """Return the application's MessageRepository.

    Example:
        @router.get("/api/messages")
        async def list_messages(
            repository: MessageRepository = Depends(get_message_repository),
        ):
            return await repository.list_messages()
    """
    return request.app.state.message_repository
