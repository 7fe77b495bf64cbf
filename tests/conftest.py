"""
Pytest configuration and fixtures for shipment-intake tests

This module provides shared fixtures for unit, integration, and E2E tests.
"""
import json
from typing import AsyncGenerator, Generator

import httpx
import pytest
import pytest_asyncio
from testcontainers.postgres import PostgresContainer

from src.core.models import IntakeFile
from src.core.models.batch import PDF_MIME_TYPE, XLSX_MIME_TYPE
from src.core.rules import RuleEngine, default_field_rules
from src.extraction import ExtractionClient
from src.store import (
    AsyncDatabaseConnectionPool,
    InMemoryShipmentStore,
    PostgresShipmentStore,
    Principal,
    apply_schema,
)
from src.store.schema import truncate_all
from src.workflow import DocumentSession

TEST_USER_ID = "3f1b7c52-0d7e-4a4e-9c2b-5b1f7e6a9d10"

EXTRACTION_RESPONSE = {
    "bill_of_lading_number": "ZMLU34110002",
    "container_number": "MSCU1234567",
    "consignee_name": "Acme Imports Ltd.",
    "consignee_address": "12 Harbour Road, Rotterdam",
    "date_of_export": "2025-03-14",
    "line_items_count": "18",
    "average_gross_weight": "162.37 KG",
    "average_price": "1250.50",
}


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that test the full workflow"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """
    Start PostgreSQL container for integration tests

    Yields:
        PostgresContainer instance
    """
    with PostgresContainer(
        image="postgres:16.2-alpine",
        username="test_intake",
        password="test_password",
        dbname="test_shipments"
    ) as postgres:
        # Wait for container to be ready
        postgres.get_connection_url()
        yield postgres


@pytest_asyncio.fixture
async def db_pool(postgres_container) -> AsyncGenerator[AsyncDatabaseConnectionPool, None]:
    """
    Open pool against the container with the schema applied and all rows removed

    Args:
        postgres_container: PostgreSQL container fixture

    Yields:
        Open AsyncDatabaseConnectionPool
    """
    pool = AsyncDatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_shipments",
        user="test_intake",
        password="test_password",
    )
    await pool.open()
    await apply_schema(pool)
    await truncate_all(pool)
    yield pool
    await pool.close()


@pytest_asyncio.fixture
async def pg_store(db_pool) -> AsyncGenerator[PostgresShipmentStore, None]:
    """PostgresShipmentStore signed in as the test user"""
    store = PostgresShipmentStore(db_pool, Principal(id=TEST_USER_ID, email="ops@example.com"))
    yield store
    await store.close()


# =======================
# IN-MEMORY FIXTURES
# =======================

@pytest.fixture
def user_id() -> str:
    return TEST_USER_ID


@pytest.fixture
def memory_store() -> InMemoryShipmentStore:
    """In-memory store signed in as the test user"""
    store = InMemoryShipmentStore()
    store.sign_in(TEST_USER_ID, "ops@example.com")
    return store


@pytest.fixture
def anonymous_store() -> InMemoryShipmentStore:
    """In-memory store with nobody signed in"""
    return InMemoryShipmentStore()


# =======================
# EXTRACTION FIXTURES
# =======================

class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served"""

    def __init__(self, status_code: int = 200, body=None, content: bytes | None = None):
        self.requests: list[httpx.Request] = []
        self.status_code = status_code
        self.body = EXTRACTION_RESPONSE if body is None else body
        self.content = content
        super().__init__(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.content is not None:
            return httpx.Response(self.status_code, content=self.content)
        return httpx.Response(self.status_code, content=json.dumps(self.body).encode())


@pytest.fixture
def extraction_response() -> dict:
    return dict(EXTRACTION_RESPONSE)


@pytest.fixture
def make_transport():
    """Factory for RecordingTransport instances with a canned response"""
    return RecordingTransport


@pytest.fixture
def extraction_transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def extraction_client(extraction_transport) -> ExtractionClient:
    return ExtractionClient("http://extraction.test", transport=extraction_transport)


@pytest.fixture
def rule_engine() -> RuleEngine:
    return RuleEngine(default_field_rules())


@pytest.fixture
def session(memory_store, extraction_client, rule_engine) -> DocumentSession:
    """DocumentSession over the in-memory store and a mocked extraction API"""
    return DocumentSession(memory_store, extraction_client, rule_engine=rule_engine)


# =======================
# FILE FIXTURES
# =======================

@pytest.fixture
def pdf_file() -> IntakeFile:
    return IntakeFile(name="inv.pdf", content_type=PDF_MIME_TYPE, content=b"%PDF-1.7 test")


@pytest.fixture
def xlsx_file() -> IntakeFile:
    return IntakeFile(name="packing.xlsx", content_type=XLSX_MIME_TYPE, content=b"PK\x03\x04 test")


@pytest.fixture
def docx_file() -> IntakeFile:
    return IntakeFile(
        name="notes.docx",
        content_type="application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        content=b"PK\x03\x04 docx",
    )
