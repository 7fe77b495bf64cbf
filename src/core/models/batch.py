"""
Session-scoped models: uploaded files, processed documents and upload batches.

Batches live only in memory for the lifetime of a DocumentSession; a new
session re-creates them from the store.
"""

import mimetypes
import uuid
from datetime import datetime
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from .shipment import ShipmentFields, ShipmentStatus

PDF_MIME_TYPE = "application/pdf"
XLSX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
XLS_MIME_TYPE = "application/vnd.ms-excel"

ACCEPTED_MIME_TYPES = frozenset({PDF_MIME_TYPE, XLSX_MIME_TYPE, XLS_MIME_TYPE})

_EXTENSION_TYPES = {
    ".pdf": PDF_MIME_TYPE,
    ".xlsx": XLSX_MIME_TYPE,
    ".xls": XLS_MIME_TYPE,
}


def _new_id() -> str:
    return str(uuid.uuid4())


class IntakeFile(BaseModel):
    """
    A file selected for upload.

    Attributes:
        name: Original file name
        content_type: MIME type reported for the file
        content: Raw bytes
        path: Local path when read from disk
    """

    name: str = Field(..., min_length=1)
    content_type: str
    content: bytes
    path: str | None = None

    @classmethod
    def from_path(cls, path: str | Path, content_type: str | None = None) -> "IntakeFile":
        """
        Read a local file, guessing its MIME type from the extension.

        Args:
            path: File to read
            content_type: Explicit MIME type (skips guessing)
        """
        path = Path(path)
        if content_type is None:
            content_type = _EXTENSION_TYPES.get(path.suffix.lower())
        if content_type is None:
            content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(
            name=path.name,
            content_type=content_type,
            content=path.read_bytes(),
            path=str(path),
        )

    @property
    def is_accepted_type(self) -> bool:
        return self.content_type in ACCEPTED_MIME_TYPES


class ProcessedDocument(BaseModel):
    """
    One uploaded file together with the batch's shared extracted fields.

    Attributes:
        id: Session-local identifier
        file_name: Original file name ("Loaded from database" for reloaded records)
        file_type: "pdf" or "excel"
        uploaded_at: Upload (or record creation) time
        data: Shipment fields shown for review
        file_path: Local path of the source file, if known
    """

    id: str = Field(default_factory=_new_id)
    file_name: str
    file_type: Literal["pdf", "excel"]
    uploaded_at: datetime = Field(default_factory=datetime.utcnow)
    data: ShipmentFields
    file_path: str | None = None

    @staticmethod
    def file_type_for(name: str) -> Literal["pdf", "excel"]:
        return "pdf" if name.lower().endswith(".pdf") else "excel"


class Batch(BaseModel):
    """
    One upload session: its documents, status mirror and record link.

    Attributes:
        id: Session-local identifier (record id for batches loaded from the store)
        title: Title entered at upload
        description: Optional description
        status: Mirror of the shipment request status
        files: Processed documents, all sharing the same extracted fields
        uploaded_at: Upload time
        file_count: Number of uploaded files
        shipment_request_id: Linked shipment request
    """

    id: str = Field(default_factory=_new_id)
    title: str
    description: str | None = None
    status: ShipmentStatus = ShipmentStatus.PENDING
    files: list[ProcessedDocument] = Field(default_factory=list)
    uploaded_at: datetime = Field(default_factory=datetime.utcnow)
    file_count: int = 0
    shipment_request_id: str | None = None

    class Config:
        json_schema_extra = {
            "example": {
                "title": "Batch A",
                "status": "needs review",
                "file_count": 1,
                "files": [{"file_name": "inv.pdf", "file_type": "pdf"}],
                "shipment_request_id": "5f0c3c9e-8d0b-4c55-9a57-4a3f0f7a2b11",
            }
        }

    @property
    def is_completed(self) -> bool:
        return self.status == ShipmentStatus.COMPLETED


class HistoryItem(BaseModel):
    """
    Entry of the upload history: either a session batch or a persisted record.
    """

    id: str
    title: str
    description: str | None = None
    status: ShipmentStatus | None = None
    created_at: datetime
    file_count: int | None = None
    source: Literal["database", "session"]
    shipment_request_id: str | None = None
