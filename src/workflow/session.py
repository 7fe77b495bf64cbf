"""
Upload/review workflow for shipment documents.

DocumentSession owns the in-memory batch collection of one user session and
sequences the calls to the store and the extraction API:

    pending --extraction ok--> needs review --completion--> completed
       \\                           \\
        +--------> failed <----------+

Callers only see deep copies of batches and documents; every change goes
through a session operation. Audit entries are written through a
LogDispatcher and never awaited on the critical path.
"""

from datetime import datetime, timezone

from src.core.errors import (
    AuthenticationRequiredError,
    ExtractionError,
    FileTypeError,
    IntakeError,
    LoadError,
    RecordCreationError,
    StoreError,
    UploadInputError,
)
from src.core.models import (
    Batch,
    FieldValidationResult,
    HistoryItem,
    IntakeFile,
    ProcessedDocument,
    ShipmentFields,
    ShipmentStatus,
    can_transition,
)
from src.core.models.audit_log import (
    AI_ACTOR,
    LOG_COMPLETED,
    LOG_PROCESSING_DONE,
    LOG_PROCESSING_FAILED,
    LOG_PROCESSING_STARTED,
    LOG_UPDATED_FIELDS,
    LOG_UPLOADED,
)
from src.core.rules import RuleEngine, default_field_rules
from src.extraction import ExtractionClient
from src.observability.logger import get_logger, log_operation
from src.observability.metrics import (
    completions_total,
    field_commits_total,
    increment_counter,
    uploaded_files_total,
    uploads_total,
)
from src.store import Principal, ShipmentStore

from .dispatcher import LogDispatcher

logger = get_logger(__name__)

LOADED_FILE_NAME = "Loaded from database"


class DocumentSession:
    """
    Session-scoped state machine over upload batches.

    Args:
        store: Data access facade (records, logs, principal)
        extraction_client: Client for the extraction API
        rule_engine: Field validation rules (defaults to the built-in set)
        dispatcher: Audit log writer (defaults to one over ``store``)
    """

    def __init__(
        self,
        store: ShipmentStore,
        extraction_client: ExtractionClient,
        rule_engine: RuleEngine | None = None,
        dispatcher: LogDispatcher | None = None,
    ):
        self.store = store
        self.extraction_client = extraction_client
        self.rule_engine = rule_engine or RuleEngine(default_field_rules())
        self.dispatcher = dispatcher or LogDispatcher(store)

        self._batches: list[Batch] = []
        self._current_batch_id: str | None = None
        self._current_document_id: str | None = None
        # batch id -> values last persisted by commit_field
        self._committed: dict[str, ShipmentFields] = {}
        self._is_processing = False
        self._error: str | None = None

    # --- Read-only views ---

    @property
    def batches(self) -> list[Batch]:
        return [b.model_copy(deep=True) for b in self._batches]

    @property
    def current_batch(self) -> Batch | None:
        batch = self._find_batch(self._current_batch_id)
        return batch.model_copy(deep=True) if batch else None

    @property
    def current_document(self) -> ProcessedDocument | None:
        document = self._find_document(self._current_document_id)
        return document.model_copy(deep=True) if document else None

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    @property
    def error(self) -> str | None:
        return self._error

    # --- Upload ---

    async def upload_documents(
        self,
        files: list[IntakeFile],
        title: str,
        description: str | None = None,
    ) -> Batch:
        """
        Create a shipment request for the files, extract their fields and
        publish the resulting batch.

        File types are checked before the record is created, so a rejected
        upload leaves nothing behind in the store.

        Args:
            files: One or more PDF/spreadsheet files
            title: Non-empty title
            description: Optional description

        Returns:
            The new batch (status "needs review"), now current

        Raises:
            UploadInputError: No files or empty title
            AuthenticationRequiredError: Nobody is signed in
            FileTypeError: A file is neither PDF nor a spreadsheet
            RecordCreationError: The record could not be inserted
            ExtractionError: The extraction API failed
        """
        self._is_processing = True
        self._error = None
        record_id: str | None = None

        try:
            with log_operation("Uploading documents", logger=logger, title=title, file_count=len(files)):
                if not files:
                    raise UploadInputError("Please select at least one file")
                if not title or not title.strip():
                    raise UploadInputError("Please enter a title")

                principal = await self._require_principal("Please sign in to upload documents")

                for file in files:
                    if not file.is_accepted_type:
                        raise FileTypeError(file.name)

                try:
                    record_id = await self.store.insert_request(title, description, principal.id)
                except StoreError as e:
                    raise RecordCreationError(f"Failed to create shipment request: {e}") from e

                self.dispatcher.emit(record_id, LOG_UPLOADED, principal.id)
                self.dispatcher.emit(record_id, LOG_PROCESSING_STARTED, AI_ACTOR)

                result = await self.extraction_client.process_documents(files)
                if not result.success or result.data is None:
                    raise ExtractionError(result.error or "Failed to process documents")

                fields = result.data
                self.dispatcher.emit(
                    record_id,
                    LOG_PROCESSING_DONE,
                    AI_ACTOR,
                    {"extractedData": fields.to_blob()},
                )

                try:
                    await self.store.update_request(
                        record_id,
                        status=ShipmentStatus.NEEDS_REVIEW,
                        extracted_data=fields,
                    )
                except StoreError as e:
                    # the extracted data is still shown for review
                    logger.error(
                        f"Failed to store extracted data: {e}",
                        extra={"shipment_request_id": record_id},
                    )

                batch = self._publish_upload(files, title, description, fields, record_id)

        except IntakeError as e:
            self._error = e.message
            increment_counter(uploads_total, outcome="failed")
            if record_id is not None:
                await self._record_failure(record_id, e.message)
            raise
        finally:
            self._is_processing = False

        increment_counter(uploads_total, outcome="needs_review")
        for file in files:
            increment_counter(uploaded_files_total, file_type=ProcessedDocument.file_type_for(file.name))
        return batch.model_copy(deep=True)

    def _publish_upload(
        self,
        files: list[IntakeFile],
        title: str,
        description: str | None,
        fields: ShipmentFields,
        record_id: str,
    ) -> Batch:
        uploaded_at = datetime.utcnow()
        documents = [
            ProcessedDocument(
                file_name=file.name,
                file_type=ProcessedDocument.file_type_for(file.name),
                uploaded_at=uploaded_at,
                data=fields.model_copy(),
                file_path=file.path,
            )
            for file in files
        ]
        batch = Batch(
            title=title,
            description=description,
            status=ShipmentStatus.NEEDS_REVIEW,
            files=documents,
            uploaded_at=uploaded_at,
            file_count=len(files),
            shipment_request_id=record_id,
        )
        self._batches.insert(0, batch)
        self._select(batch)
        return batch

    async def _record_failure(self, record_id: str, message: str) -> None:
        """Log the failure against the record and mark it failed (best effort)."""
        self.dispatcher.emit(record_id, LOG_PROCESSING_FAILED, AI_ACTOR, {"error": message})
        try:
            await self.store.update_request(record_id, status=ShipmentStatus.FAILED)
        except StoreError as e:
            logger.error(
                f"Failed to mark shipment request as failed: {e}",
                extra={"shipment_request_id": record_id},
            )

    # --- Load ---

    async def load_shipment_request(self, shipment_request_id: str) -> Batch:
        """
        Make a shipment request the current batch.

        A batch already held by this session is reused as is, without reading
        the store. Otherwise the record is fetched and wrapped in a
        one-document batch placed at the front of the collection.

        Raises:
            LoadError: The record does not exist or could not be read
        """
        existing = self._find_batch_for_request(shipment_request_id)
        if existing is not None:
            self._error = None
            self._select(existing)
            return existing.model_copy(deep=True)

        self._is_processing = True
        self._error = None
        try:
            try:
                record = await self.store.fetch_request(shipment_request_id)
            except StoreError as e:
                logger.error(
                    f"Failed to fetch shipment request: {e}",
                    extra={"shipment_request_id": shipment_request_id},
                )
                raise LoadError("Failed to load shipment request") from e
            if record is None:
                raise LoadError("Failed to load shipment request")

            document = ProcessedDocument(
                file_name=LOADED_FILE_NAME,
                file_type="pdf",
                uploaded_at=record.created_at,
                data=record.extracted_data or ShipmentFields.empty(),
            )
            batch = Batch(
                id=record.id,
                title=record.title,
                description=record.description,
                status=record.status,
                files=[document],
                uploaded_at=record.created_at,
                file_count=1,
                shipment_request_id=record.id,
            )
        except LoadError as e:
            self._error = e.message
            raise
        finally:
            self._is_processing = False

        # another load of the same id may have finished while we were fetching
        existing = self._find_batch_for_request(shipment_request_id)
        if existing is not None:
            self._select(existing)
            return existing.model_copy(deep=True)

        self._batches.insert(0, batch)
        self._select(batch)
        logger.info(f"Loaded shipment request {shipment_request_id}")
        return batch.model_copy(deep=True)

    # --- In-memory mutations ---

    def update_document_data(self, document_id: str, partial_fields: dict[str, str]) -> None:
        """
        Merge field values into every document with this id. Not persisted.

        Raises:
            KeyError: A key is not one of the eight shipment fields
        """
        for batch in self._batches:
            for index, document in enumerate(batch.files):
                if document.id == document_id:
                    batch.files[index] = document.model_copy(
                        update={"data": document.data.merged(partial_fields)}
                    )

    def update_batch_status(self, shipment_request_id: str, status: ShipmentStatus | str) -> None:
        """Mirror a record status onto its batches. Completed batches stay completed."""
        status = ShipmentStatus(status)
        for batch in self._batches:
            if batch.shipment_request_id != shipment_request_id:
                continue
            if batch.is_completed and status != ShipmentStatus.COMPLETED:
                logger.warning(
                    f"Ignoring status change to '{status.value}' on a completed batch",
                    extra={"shipment_request_id": shipment_request_id},
                )
                continue
            batch.status = status

    def set_current_batch(self, batch_id: str | None) -> None:
        if batch_id is None:
            self._current_batch_id = None
            self._current_document_id = None
            return
        batch = self._find_batch(batch_id)
        if batch is None:
            raise KeyError(f"Unknown batch: {batch_id}")
        self._select(batch)

    def set_current_document(self, document_id: str | None) -> None:
        """Select a document; its batch becomes the current batch."""
        if document_id is None:
            self._current_document_id = None
            return
        owner = self._find_batch_for_document(document_id)
        if owner is None:
            raise KeyError(f"Unknown document: {document_id}")
        self._current_batch_id = owner.id
        self._current_document_id = document_id

    def clear_error(self) -> None:
        self._error = None

    # --- Review ---

    def validate_current(self, overrides: dict[str, str] | None = None) -> FieldValidationResult:
        """Validate the current document's fields, with optional unsaved values applied."""
        document = self._find_document(self._current_document_id)
        fields = document.data if document else ShipmentFields.empty()
        if overrides:
            fields = fields.merged(overrides)
        return self.rule_engine.validate_fields(fields)

    async def commit_field(self, field: str, value: str) -> bool:
        """
        Persist one edited field of the current document.

        The edit is ignored when there is no current document, the batch is
        completed, any field fails validation, or the value equals the last
        committed one. Otherwise the value is merged in memory, merged into
        the persisted fields and an "updated fields" entry is logged.

        Returns:
            True if the value was stored

        Raises:
            KeyError: ``field`` is not one of the eight shipment fields
        """
        attr = ShipmentFields.resolve_name(field)
        batch = self._find_batch(self._current_batch_id)
        document = self._find_document(self._current_document_id)
        if batch is None or document is None or batch.is_completed:
            increment_counter(field_commits_total, outcome="rejected")
            return False

        if not self.validate_current({attr: value}).passed:
            increment_counter(field_commits_total, outcome="rejected")
            return False

        committed = self._committed.setdefault(batch.id, document.data.model_copy())
        old_value = getattr(committed, attr)
        if old_value == value:
            return False

        # documents of one batch share a single field snapshot
        for file in list(batch.files):
            self.update_document_data(file.id, {attr: value})

        if batch.shipment_request_id is None:
            return False
        record_id = batch.shipment_request_id

        try:
            record = await self.store.fetch_request(record_id)
            if record is None:
                raise StoreError(f"shipment request {record_id} not found")
            persisted = record.extracted_data or ShipmentFields.empty()
            await self.store.update_request(record_id, extracted_data=persisted.merged({attr: value}))
        except StoreError as e:
            increment_counter(field_commits_total, outcome="persist_failed")
            logger.error(
                f"Failed to store field '{attr}': {e}",
                extra={"shipment_request_id": record_id},
            )
            return False

        principal = await self.store.get_principal()
        if principal is not None:
            self.dispatcher.emit(
                record_id,
                LOG_UPDATED_FIELDS,
                principal.id,
                {
                    "extracted_data": {
                        "field": ShipmentFields.model_fields[attr].alias,
                        "old_value": old_value or "",
                        "new_value": value,
                    }
                },
            )
        self._committed[batch.id] = committed.model_copy(update={attr: value})
        increment_counter(field_commits_total, outcome="committed")
        return True

    async def submit_completion(self) -> bool:
        """
        Mark the current batch's shipment request completed.

        Requires status "needs review", no validation errors and a signed-in
        user. A failed store update is logged and leaves the batch unchanged.

        Returns:
            True if the request is now completed
        """
        batch = self._find_batch(self._current_batch_id)
        if batch is None or batch.shipment_request_id is None:
            return False
        if batch.status != ShipmentStatus.NEEDS_REVIEW or not can_transition(batch.status, ShipmentStatus.COMPLETED):
            return False
        if not self.validate_current().passed:
            return False

        principal = await self.store.get_principal()
        if principal is None:
            logger.error("User not authenticated")
            return False

        record_id = batch.shipment_request_id
        try:
            await self.store.update_request(record_id, status=ShipmentStatus.COMPLETED)
        except StoreError as e:
            logger.error(
                f"Failed to complete shipment request: {e}",
                extra={"shipment_request_id": record_id},
            )
            return False

        self.dispatcher.emit(record_id, LOG_COMPLETED, principal.id)
        self.update_batch_status(record_id, ShipmentStatus.COMPLETED)
        increment_counter(completions_total)
        logger.info(f"Completed shipment request {record_id}")
        return True

    # --- History ---

    async def history(self) -> list[HistoryItem]:
        """
        Session batches followed by the user's stored requests not already in
        the session, each group newest first.
        """
        items = [
            HistoryItem(
                id=batch.id,
                title=batch.title,
                description=batch.description,
                status=batch.status,
                created_at=batch.uploaded_at,
                file_count=batch.file_count,
                source="session",
                shipment_request_id=batch.shipment_request_id,
            )
            for batch in sorted(self._batches, key=lambda b: _as_utc(b.uploaded_at), reverse=True)
        ]

        principal = await self.store.get_principal()
        if principal is None:
            return items

        try:
            records = await self.store.list_requests(principal.id)
        except StoreError as e:
            logger.error(f"Failed to list shipment requests: {e}")
            return items

        known = {item.shipment_request_id for item in items}
        items.extend(
            HistoryItem(
                id=record.id,
                title=record.title,
                description=record.description,
                status=record.status,
                created_at=record.created_at,
                source="database",
                shipment_request_id=record.id,
            )
            for record in records
            if record.id not in known
        )
        return items

    async def drain(self) -> None:
        """Wait for outstanding audit log writes."""
        await self.dispatcher.drain()

    # --- Internals ---

    async def _require_principal(self, message: str) -> Principal:
        try:
            principal = await self.store.get_principal()
        except StoreError as e:
            raise AuthenticationRequiredError(message) from e
        if principal is None:
            raise AuthenticationRequiredError(message)
        return principal

    def _select(self, batch: Batch) -> None:
        self._current_batch_id = batch.id
        self._current_document_id = batch.files[0].id if batch.files else None

    def _find_batch(self, batch_id: str | None) -> Batch | None:
        if batch_id is None:
            return None
        return next((b for b in self._batches if b.id == batch_id), None)

    def _find_batch_for_request(self, shipment_request_id: str) -> Batch | None:
        return next(
            (b for b in self._batches if b.shipment_request_id == shipment_request_id),
            None,
        )

    def _find_batch_for_document(self, document_id: str) -> Batch | None:
        return next(
            (b for b in self._batches if any(d.id == document_id for d in b.files)),
            None,
        )

    def _find_document(self, document_id: str | None) -> ProcessedDocument | None:
        if document_id is None:
            return None
        for batch in self._batches:
            for document in batch.files:
                if document.id == document_id:
                    return document
        return None


def _as_utc(ts: datetime) -> datetime:
    # stored timestamps are tz-aware, session uploads are naive UTC
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)
