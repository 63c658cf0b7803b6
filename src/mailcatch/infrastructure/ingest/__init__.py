"""Ingest adapters - MIME projection and SMTP capture"""

from .mime_projector import MimeProjector, normalize_content_id, section_file_name

__all__ = ["MimeProjector", "normalize_content_id", "section_file_name"]
