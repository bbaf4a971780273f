"""
Document domain model

Storage: PostgreSQL (pipeline.documents)
"""
from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum
from typing import Optional

from .envelope import DocumentRef


class DocumentStatus(IntEnum):
    """
    Processing status of a document.

    Integer values are the stored values; the PROCESSING → SCORING → PROCESSED
    chain only moves forward (writes use GREATEST(current, new)).
    """
    PROCESSING = 1
    SCORING = 2
    PROCESSED = 3
    NOT_ACCESSIBLE = 4


@dataclass
class Document:
    source_id: int
    doc_id: str
    status: DocumentStatus
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def ref(self) -> DocumentRef:
        return DocumentRef(self.source_id, self.doc_id)

    @property
    def is_processed(self) -> bool:
        return self.status == DocumentStatus.PROCESSED
