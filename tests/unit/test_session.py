"""
Unit tests for the DocumentSession upload/review workflow.

Runs against the in-memory store and a mocked extraction API.
"""

import asyncio
import json

import httpx
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from src.core.errors import (
    AuthenticationRequiredError,
    ExtractionError,
    FileTypeError,
    LoadError,
    RecordCreationError,
    StoreError,
    UploadInputError,
)
from src.core.models import IntakeFile, ShipmentFields, ShipmentStatus
from src.core.models.batch import PDF_MIME_TYPE
from src.core.rules import RuleEngine, default_field_rules
from src.extraction import ExtractionClient
from src.store import InMemoryShipmentStore
from src.workflow import DocumentSession

pytestmark = pytest.mark.unit


class FlakyStore(InMemoryShipmentStore):
    """In-memory store with switchable failures and a read counter"""

    def __init__(self, principal=None):
        super().__init__(principal)
        self.fail_insert_request = False
        self.fail_update = False
        self.fail_insert_log = False
        self.fail_fetch = False
        self.fetch_calls = 0

    async def insert_request(self, title, description, user_id):
        if self.fail_insert_request:
            raise StoreError("permission denied for table shipment_requests")
        return await super().insert_request(title, description, user_id)

    async def fetch_request(self, shipment_request_id):
        self.fetch_calls += 1
        if self.fail_fetch:
            raise StoreError("connection reset")
        return await super().fetch_request(shipment_request_id)

    async def update_request(self, shipment_request_id, status=None, extracted_data=None):
        if self.fail_update:
            raise StoreError("update rejected")
        return await super().update_request(shipment_request_id, status, extracted_data)

    async def insert_log(self, entry):
        if self.fail_insert_log:
            raise StoreError("log table unavailable")
        return await super().insert_log(entry)


@pytest.fixture
def flaky_store(user_id) -> FlakyStore:
    store = FlakyStore()
    store.sign_in(user_id)
    return store


@pytest.fixture
def flaky_session(flaky_store, extraction_client, rule_engine) -> DocumentSession:
    return DocumentSession(flaky_store, extraction_client, rule_engine=rule_engine)


async def upload_one(session, pdf_file):
    batch = await session.upload_documents([pdf_file], "Batch A", "March export documents")
    await session.drain()
    return batch


@pytest.mark.asyncio
class TestUploadDocuments:
    """Tests for upload_documents"""

    async def test_successful_upload(self, session, memory_store, pdf_file, user_id):
        batch = await upload_one(session, pdf_file)

        assert batch.status == ShipmentStatus.NEEDS_REVIEW
        assert batch.title == "Batch A"
        assert batch.file_count == 1
        assert len(batch.files) == 1
        document = batch.files[0]
        assert document.file_name == "inv.pdf"
        assert document.file_type == "pdf"
        assert document.data == ShipmentFields(
            bill_of_lading_number="ZMLU34110002",
            container_number="MSCU1234567",
            consignee_name="Acme Imports Ltd.",
            consignee_address="12 Harbour Road, Rotterdam",
            date_of_export="2025-03-14",
            line_items_count="18",
            average_gross_weight="162.37",
            average_price="1250.50",
        )

        assert session.current_batch.id == batch.id
        assert session.current_document.id == document.id
        assert session.error is None
        assert not session.is_processing

        record = await memory_store.fetch_request(batch.shipment_request_id)
        assert record.status == ShipmentStatus.NEEDS_REVIEW
        assert record.user_id == user_id
        assert record.extracted_data == document.data

    async def test_upload_writes_audit_trail(self, session, memory_store, pdf_file, user_id):
        batch = await upload_one(session, pdf_file)

        logs = await memory_store.fetch_logs(batch.shipment_request_id)

        assert [(e.status, e.actor) for e in logs] == [
            ("uploaded", user_id),
            ("processing started", "AI"),
            ("processing done", "AI"),
        ]
        assert logs[2].payload["extractedData"]["averageGrossWeight"] == "162.37"

    async def test_multiple_files_share_fields(self, session, pdf_file, xlsx_file):
        batch = await session.upload_documents([pdf_file, xlsx_file], "Batch B")

        assert batch.file_count == 2
        assert [d.file_type for d in batch.files] == ["pdf", "excel"]
        assert batch.files[0].data == batch.files[1].data
        assert batch.files[0].id != batch.files[1].id

    async def test_new_batches_go_first(self, session, pdf_file):
        first = await session.upload_documents([pdf_file], "First")
        second = await session.upload_documents([pdf_file], "Second")

        assert [b.id for b in session.batches] == [second.id, first.id]
        assert session.current_batch.id == second.id

    async def test_requires_principal(self, anonymous_store, extraction_client, extraction_transport, pdf_file):
        session = DocumentSession(anonymous_store, extraction_client)

        with pytest.raises(AuthenticationRequiredError):
            await session.upload_documents([pdf_file], "Batch A")

        assert session.error == "Please sign in to upload documents"
        assert session.batches == []
        assert extraction_transport.requests == []

    async def test_invalid_file_type_creates_nothing(self, session, memory_store, pdf_file, docx_file, user_id):
        with pytest.raises(FileTypeError) as exc_info:
            await session.upload_documents([pdf_file, docx_file], "Batch A")

        assert exc_info.value.file_name == "notes.docx"
        assert session.error == "Invalid file type for notes.docx. Please upload PDF or Excel files only."
        assert await memory_store.list_requests(user_id) == []
        assert session.batches == []

    @pytest.mark.parametrize("files_fixture,title", [(None, "Batch A"), ("pdf_file", "  ")])
    async def test_input_checks(self, request, session, files_fixture, title):
        files = [request.getfixturevalue(files_fixture)] if files_fixture else []

        with pytest.raises(UploadInputError):
            await session.upload_documents(files, title)

    async def test_record_creation_failure(self, flaky_session, flaky_store, pdf_file):
        flaky_store.fail_insert_request = True

        with pytest.raises(RecordCreationError) as exc_info:
            await flaky_session.upload_documents([pdf_file], "Batch A")

        assert "permission denied" in exc_info.value.message
        assert flaky_session.error.startswith("Failed to create shipment request")

    async def test_extraction_failure_marks_record_failed(self, memory_store, make_transport, pdf_file, user_id):
        transport = make_transport(status_code=502, body={"message": "Upstream model timeout"})
        session = DocumentSession(memory_store, ExtractionClient("http://extraction.test", transport=transport))

        with pytest.raises(ExtractionError):
            await session.upload_documents([pdf_file], "Batch A")
        await session.drain()

        assert session.error == "Upstream model timeout"
        assert session.batches == []
        assert not session.is_processing

        records = await memory_store.list_requests(user_id)
        assert len(records) == 1
        assert records[0].status == ShipmentStatus.FAILED
        assert records[0].extracted_data is None

        logs = await memory_store.fetch_logs(records[0].id)
        assert [e.status for e in logs] == ["uploaded", "processing started", "processing failed"]
        assert logs[-1].actor == "AI"

    async def test_update_failure_still_shows_data(self, flaky_session, flaky_store, pdf_file):
        flaky_store.fail_update = True

        batch = await flaky_session.upload_documents([pdf_file], "Batch A")

        assert batch.status == ShipmentStatus.NEEDS_REVIEW
        assert batch.files[0].data.container_number == "MSCU1234567"
        assert flaky_session.error is None

    async def test_log_failures_never_reach_caller(self, flaky_session, flaky_store, pdf_file):
        flaky_store.fail_insert_log = True

        batch = await upload_one(flaky_session, pdf_file)

        assert batch.status == ShipmentStatus.NEEDS_REVIEW
        failures = flaky_session.dispatcher.failures
        assert [f.entry.status for f in failures] == ["uploaded", "processing started", "processing done"]
        assert all(f.error == "log table unavailable" for f in failures)


@pytest.mark.asyncio
class TestLoadShipmentRequest:
    """Tests for load_shipment_request"""

    async def test_load_from_store(self, flaky_session, flaky_store, user_id):
        record_id = await flaky_store.insert_request("Stored", "from yesterday", user_id)
        await flaky_store.update_request(
            record_id,
            status=ShipmentStatus.NEEDS_REVIEW,
            extracted_data=ShipmentFields(container_number="MSCU1234567"),
        )

        batch = await flaky_session.load_shipment_request(record_id)

        assert batch.id == record_id
        assert batch.shipment_request_id == record_id
        assert batch.status == ShipmentStatus.NEEDS_REVIEW
        assert batch.file_count == 1
        assert batch.files[0].file_name == "Loaded from database"
        assert batch.files[0].data.container_number == "MSCU1234567"
        assert flaky_session.current_document.id == batch.files[0].id

    async def test_placeholder_when_not_extracted(self, flaky_session, flaky_store, user_id):
        record_id = await flaky_store.insert_request("Pending", None, user_id)

        batch = await flaky_session.load_shipment_request(record_id)

        assert batch.status == ShipmentStatus.PENDING
        assert batch.files[0].data == ShipmentFields.empty()

    async def test_session_copy_wins_without_store_read(self, flaky_session, flaky_store, pdf_file):
        uploaded = await flaky_session.upload_documents([pdf_file], "Batch A")
        flaky_session.update_document_data(uploaded.files[0].id, {"consigneeName": "Edited Locally"})
        await flaky_store.update_request(
            uploaded.shipment_request_id,
            extracted_data=ShipmentFields(consignee_name="Changed Elsewhere"),
        )
        reads_before = flaky_store.fetch_calls

        loaded = await flaky_session.load_shipment_request(uploaded.shipment_request_id)

        assert flaky_store.fetch_calls == reads_before
        assert loaded.id == uploaded.id
        assert loaded.files[0].data.consignee_name == "Edited Locally"
        assert len(flaky_session.batches) == 1

    async def test_second_load_is_cached(self, flaky_session, flaky_store, user_id):
        record_id = await flaky_store.insert_request("Stored", None, user_id)

        await flaky_session.load_shipment_request(record_id)
        await flaky_session.load_shipment_request(record_id)

        assert flaky_store.fetch_calls == 1
        assert len(flaky_session.batches) == 1

    async def test_missing_record(self, session):
        with pytest.raises(LoadError):
            await session.load_shipment_request("does-not-exist")

        assert session.error == "Failed to load shipment request"
        assert not session.is_processing

    async def test_fetch_error(self, flaky_session, flaky_store):
        flaky_store.fail_fetch = True

        with pytest.raises(LoadError):
            await flaky_session.load_shipment_request("any")

        assert flaky_session.error == "Failed to load shipment request"


@pytest.mark.asyncio
class TestInMemoryMutations:
    """Tests for update_document_data, update_batch_status and current selection"""

    async def test_update_document_data_is_local(self, session, memory_store, pdf_file):
        batch = await session.upload_documents([pdf_file], "Batch A")
        document_id = batch.files[0].id

        session.update_document_data(document_id, {"averagePrice": "99.99"})

        assert session.current_document.data.average_price == "99.99"
        assert session.batches[0].files[0].data.average_price == "99.99"
        record = await memory_store.fetch_request(batch.shipment_request_id)
        assert record.extracted_data.average_price == "1250.50"

    async def test_update_document_data_only_matching(self, session, pdf_file, xlsx_file):
        batch = await session.upload_documents([pdf_file, xlsx_file], "Batch A")

        session.update_document_data(batch.files[1].id, {"average_price": "1.00"})

        files = session.current_batch.files
        assert files[0].data.average_price == "1250.50"
        assert files[1].data.average_price == "1.00"

    async def test_views_are_copies(self, session, pdf_file):
        await session.upload_documents([pdf_file], "Batch A")

        view = session.current_batch
        view.status = ShipmentStatus.COMPLETED
        view.files[0].data.container_number = "XXXX0000000"

        assert session.current_batch.status == ShipmentStatus.NEEDS_REVIEW
        assert session.current_document.data.container_number == "MSCU1234567"

    async def test_update_batch_status(self, session, pdf_file):
        batch = await session.upload_documents([pdf_file], "Batch A")

        session.update_batch_status(batch.shipment_request_id, "failed")

        assert session.current_batch.status == ShipmentStatus.FAILED

    async def test_completed_batch_never_reopens(self, session, pdf_file):
        batch = await session.upload_documents([pdf_file], "Batch A")
        session.update_batch_status(batch.shipment_request_id, ShipmentStatus.COMPLETED)

        session.update_batch_status(batch.shipment_request_id, ShipmentStatus.NEEDS_REVIEW)

        assert session.current_batch.status == ShipmentStatus.COMPLETED

    async def test_set_current(self, session, pdf_file, xlsx_file):
        first = await session.upload_documents([pdf_file, xlsx_file], "First")
        await session.upload_documents([pdf_file], "Second")

        session.set_current_batch(first.id)
        session.set_current_document(first.files[1].id)

        assert session.current_batch.id == first.id
        assert session.current_document.file_name == "packing.xlsx"

        with pytest.raises(KeyError):
            session.set_current_batch("unknown")

        session.set_current_batch(None)
        assert session.current_batch is None
        assert session.current_document is None

    async def test_selecting_document_switches_batch(self, session, pdf_file, xlsx_file):
        first = await session.upload_documents([pdf_file, xlsx_file], "First")
        await session.upload_documents([pdf_file], "Second")

        session.set_current_document(first.files[1].id)

        assert session.current_batch.id == first.id
        assert session.current_document.id == first.files[1].id

        with pytest.raises(KeyError):
            session.set_current_document("unknown")

    async def test_clear_error(self, session):
        with pytest.raises(LoadError):
            await session.load_shipment_request("missing")

        session.clear_error()

        assert session.error is None


@pytest.mark.asyncio
class TestCommitField:
    """Tests for the field commit path"""

    async def test_commit_persists_merge_and_logs(self, session, memory_store, pdf_file, user_id):
        batch = await upload_one(session, pdf_file)

        committed = await session.commit_field("containerNumber", "TGHU7654321")
        await session.drain()

        assert committed
        assert session.current_document.data.container_number == "TGHU7654321"
        record = await memory_store.fetch_request(batch.shipment_request_id)
        assert record.extracted_data.container_number == "TGHU7654321"
        assert record.extracted_data.bill_of_lading_number == "ZMLU34110002"

        last = (await memory_store.fetch_logs(batch.shipment_request_id))[-1]
        assert last.status == "updated fields"
        assert last.actor == user_id
        assert last.payload == {
            "extracted_data": {
                "field": "containerNumber",
                "old_value": "MSCU1234567",
                "new_value": "TGHU7654321",
            }
        }

    async def test_old_value_tracks_last_commit(self, session, memory_store, pdf_file):
        batch = await upload_one(session, pdf_file)

        await session.commit_field("average_price", "10.00")
        await session.commit_field("average_price", "20.00")
        await session.drain()

        logs = await memory_store.fetch_logs(batch.shipment_request_id)
        diffs = [e.payload["extracted_data"] for e in logs if e.status == "updated fields"]
        assert [(d["old_value"], d["new_value"]) for d in diffs] == [("1250.50", "10.00"), ("10.00", "20.00")]

    async def test_unchanged_value_ignored(self, session, memory_store, pdf_file):
        batch = await upload_one(session, pdf_file)

        assert not await session.commit_field("container_number", "MSCU1234567")
        await session.drain()

        logs = await memory_store.fetch_logs(batch.shipment_request_id)
        assert "updated fields" not in [e.status for e in logs]

    async def test_invalid_value_rejected(self, session, memory_store, pdf_file):
        batch = await upload_one(session, pdf_file)

        assert not await session.commit_field("container_number", "ABC123")

        assert session.current_document.data.container_number == "MSCU1234567"
        record = await memory_store.fetch_request(batch.shipment_request_id)
        assert record.extracted_data.container_number == "MSCU1234567"

    async def test_any_invalid_field_blocks_commit(self, session, pdf_file):
        batch = await upload_one(session, pdf_file)
        session.update_document_data(batch.files[0].id, {"consignee_address": "short"})

        assert not await session.commit_field("average_price", "10.00")

    async def test_completed_batch_is_read_only(self, session, pdf_file):
        await upload_one(session, pdf_file)
        assert await session.submit_completion()

        assert not await session.commit_field("average_price", "10.00")

    async def test_no_current_document(self, session):
        assert not await session.commit_field("average_price", "10.00")

    async def test_unknown_field(self, session, pdf_file):
        await upload_one(session, pdf_file)

        with pytest.raises(KeyError):
            await session.commit_field("vesselName", "Ever Given")

    async def test_commit_targets_document_owner(self, session, memory_store, pdf_file):
        first = await upload_one(session, pdf_file)
        second = await upload_one(session, pdf_file)

        session.set_current_document(first.files[0].id)
        assert await session.commit_field("container_number", "ABCD7654321")

        by_id = {b.id: b for b in session.batches}
        for batch in (first, second):
            record = await memory_store.fetch_request(batch.shipment_request_id)
            assert record.extracted_data == by_id[batch.id].files[0].data
        assert by_id[first.id].files[0].data.container_number == "ABCD7654321"
        assert by_id[second.id].files[0].data.container_number == "MSCU1234567"

    async def test_commit_updates_every_document_of_batch(self, session, memory_store, pdf_file, xlsx_file):
        batch = await session.upload_documents([pdf_file, xlsx_file], "Batch A")
        session.set_current_document(batch.files[1].id)

        assert await session.commit_field("average_price", "10.00")

        files = session.current_batch.files
        assert [f.data.average_price for f in files] == ["10.00", "10.00"]
        record = await memory_store.fetch_request(batch.shipment_request_id)
        assert record.extracted_data == files[0].data

        session.set_current_document(batch.files[0].id)
        assert not await session.commit_field("average_price", "10.00")

    async def test_store_failure_keeps_committed_value(self, flaky_session, flaky_store, pdf_file):
        batch = await upload_one(flaky_session, pdf_file)
        flaky_store.fail_update = True

        assert not await flaky_session.commit_field("average_price", "10.00")
        # the local edit stays visible
        assert flaky_session.current_document.data.average_price == "10.00"

        flaky_store.fail_update = False
        assert await flaky_session.commit_field("average_price", "10.00")
        await flaky_session.drain()

        logs = await flaky_store.fetch_logs(batch.shipment_request_id)
        diff = [e.payload for e in logs if e.status == "updated fields"][0]["extracted_data"]
        assert diff["old_value"] == "1250.50"


@pytest.mark.asyncio
class TestSubmitCompletion:
    """Tests for submit_completion"""

    async def test_complete(self, session, memory_store, pdf_file, user_id):
        batch = await upload_one(session, pdf_file)

        assert await session.submit_completion()
        await session.drain()

        assert session.current_batch.status == ShipmentStatus.COMPLETED
        record = await memory_store.fetch_request(batch.shipment_request_id)
        assert record.status == ShipmentStatus.COMPLETED
        last = (await memory_store.fetch_logs(batch.shipment_request_id))[-1]
        assert (last.status, last.actor) == ("completed", user_id)

    async def test_completion_is_irreversible(self, session, pdf_file):
        await upload_one(session, pdf_file)
        await session.submit_completion()

        assert not await session.submit_completion()
        assert session.current_batch.status == ShipmentStatus.COMPLETED

    async def test_requires_valid_fields(self, session, pdf_file):
        batch = await upload_one(session, pdf_file)
        session.update_document_data(batch.files[0].id, {"container_number": "ABC123"})

        assert not await session.submit_completion()
        assert session.current_batch.status == ShipmentStatus.NEEDS_REVIEW

    async def test_requires_needs_review(self, session, memory_store, user_id):
        record_id = await memory_store.insert_request("Pending", None, user_id)
        await session.load_shipment_request(record_id)

        assert not await session.submit_completion()

    async def test_requires_principal(self, session, memory_store, pdf_file):
        await upload_one(session, pdf_file)
        memory_store.sign_out()

        assert not await session.submit_completion()
        assert session.current_batch.status == ShipmentStatus.NEEDS_REVIEW

    async def test_store_failure(self, flaky_session, flaky_store, pdf_file):
        await upload_one(flaky_session, pdf_file)
        flaky_store.fail_update = True

        assert not await flaky_session.submit_completion()
        assert flaky_session.current_batch.status == ShipmentStatus.NEEDS_REVIEW


@pytest.mark.asyncio
class TestHistory:
    """Tests for history"""

    async def test_session_then_database(self, session, memory_store, pdf_file, user_id):
        older = await memory_store.insert_request("Older", None, user_id)
        await memory_store.insert_request("Someone else's", None, "other-user")
        batch = await session.upload_documents([pdf_file], "Batch A")

        items = await session.history()

        assert [(i.source, i.shipment_request_id) for i in items] == [
            ("session", batch.shipment_request_id),
            ("database", older),
        ]
        assert items[0].file_count == 1

    async def test_anonymous_history_is_session_only(self, anonymous_store, extraction_client):
        session = DocumentSession(anonymous_store, extraction_client)
        assert await session.history() == []


VALID_EDITS = st.one_of(
    st.tuples(st.just("container_number"), st.from_regex(r"[A-Z]{4}[0-9]{7}", fullmatch=True)),
    st.tuples(st.just("line_items_count"), st.integers(min_value=1, max_value=10000).map(str)),
    st.tuples(st.just("average_price"), st.integers(min_value=1, max_value=999999).map(lambda c: f"{c / 100:.2f}")),
    st.tuples(st.just("consignee_name"), st.from_regex(r"[A-Za-z0-9][A-Za-z0-9 .\-]{1,40}", fullmatch=True)),
)


@settings(max_examples=25, deadline=None)
@given(st.lists(VALID_EDITS, min_size=1, max_size=8))
def test_property_committed_edits_match_store(edits):
    """Property: after any sequence of valid commits, stored fields equal in-memory fields"""
    response = {
        "bill_of_lading_number": "ZMLU34110002",
        "container_number": "MSCU1234567",
        "consignee_name": "Acme Imports Ltd.",
        "consignee_address": "12 Harbour Road, Rotterdam",
        "date_of_export": "2025-03-14",
        "line_items_count": "18",
        "average_gross_weight": "162.37 KG",
        "average_price": "1250.50",
    }

    async def scenario():
        store = InMemoryShipmentStore()
        store.sign_in("property-user")
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=json.dumps(response).encode()))
        session = DocumentSession(
            store,
            ExtractionClient("http://extraction.test", transport=transport),
            rule_engine=RuleEngine(default_field_rules()),
        )
        batch = await session.upload_documents(
            [IntakeFile(name="inv.pdf", content_type=PDF_MIME_TYPE, content=b"%PDF")], "Batch"
        )
        for field, value in edits:
            await session.commit_field(field, value)
        await session.drain()

        record = await store.fetch_request(batch.shipment_request_id)
        return record.extracted_data, session.current_document.data

    stored, in_memory = asyncio.run(scenario())
    assert stored == in_memory
