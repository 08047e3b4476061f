"""Attachment lookup keyed by step record id.

Binary content lives elsewhere; execflow only reads descriptors.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from enum import Enum
from typing import Dict, List, Protocol

from pydantic import BaseModel, Field

from .models import utcnow


class FileType(str, Enum):
    IMAGE = "IMAGE"
    DOCUMENT = "DOCUMENT"
    TEXT = "TEXT"
    VIDEO = "VIDEO"
    AUDIO = "AUDIO"
    SPREADSHEET = "SPREADSHEET"
    PRESENTATION = "PRESENTATION"
    OTHER = "OTHER"


class AttachmentDescriptor(BaseModel):
    """Metadata of a file attached to a step record."""

    id: str
    record_id: str
    name: str
    size: int = Field(ge=0)
    type: FileType = FileType.OTHER
    uploaded_at: datetime = Field(default_factory=utcnow)


class AttachmentStore(Protocol):
    """Protocol for attachment metadata sources."""

    async def list_for_record(self, record_id: str) -> list[AttachmentDescriptor]:
        """Return the attachments of a step record, oldest first."""


class InMemoryAttachmentStore(AttachmentStore):
    """Keep attachment descriptors in local memory."""

    def __init__(self) -> None:
        self._by_record: Dict[str, List[AttachmentDescriptor]] = defaultdict(list)

    def add(self, attachment: AttachmentDescriptor) -> None:
        self._by_record[attachment.record_id].append(attachment)

    async def list_for_record(self, record_id: str) -> list[AttachmentDescriptor]:
        return sorted(
            self._by_record.get(record_id, []), key=lambda a: a.uploaded_at
        )
