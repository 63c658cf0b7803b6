"""Messages module - query facade, API schemas and endpoints"""

from .repository import MessageRepository

__all__ = ["MessageRepository"]
