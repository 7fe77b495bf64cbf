"""
HTTP client for the document extraction API.

Sends the uploaded files as one multipart request and normalizes the JSON
response into ShipmentFields. Every failure is reported through
ExtractionResult; nothing is raised and nothing is retried here.
"""

import re
import time
from typing import Any

import httpx

from src.core.models import ExtractionResult, IntakeFile, ShipmentFields
from src.observability.logger import get_logger
from src.observability.metrics import extraction_duration_seconds, observe_histogram

logger = get_logger(__name__)

PROCESS_DOCUMENTS_PATH = "/process-documents"

# Response key -> ShipmentFields attribute
RESPONSE_FIELD_MAP = {
    "bill_of_lading_number": "bill_of_lading_number",
    "container_number": "container_number",
    "consignee_name": "consignee_name",
    "consignee_address": "consignee_address",
    "date_of_export": "date_of_export",
    "line_items_count": "line_items_count",
    "average_gross_weight": "average_gross_weight",
    "average_price": "average_price",
}

_UNIT_SUFFIX = re.compile(r"\s*(kg|lbs|g)\s*$", re.IGNORECASE)


def clean_numeric_value(value: Any) -> str:
    """
    Strip a trailing weight unit (kg, lbs, g; any case) and surrounding whitespace.

    >>> clean_numeric_value("162.37 KG")
    '162.37'
    """
    if value is None or value == "":
        return ""
    return _UNIT_SUFFIX.sub("", str(value)).strip()


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def map_response(body: dict[str, Any]) -> ShipmentFields:
    """
    Map an extraction response body onto ShipmentFields.

    Missing keys become empty strings; the gross weight loses its unit suffix.
    """
    values = {attr: _as_text(body.get(key)) for key, attr in RESPONSE_FIELD_MAP.items()}
    values["average_gross_weight"] = clean_numeric_value(body.get("average_gross_weight"))
    return ShipmentFields(**values)


class ExtractionClient:
    """
    Client for ``POST /process-documents``.

    Args:
        base_url: Service base URL (e.g. http://localhost:8000)
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}{PROCESS_DOCUMENTS_PATH}"

    async def process_documents(self, files: list[IntakeFile]) -> ExtractionResult:
        """
        Send files for extraction.

        Args:
            files: Non-empty list of PDF/spreadsheet files

        Returns:
            ExtractionResult with normalized fields or a failure message
        """
        if not files:
            return ExtractionResult.failure("No files to process")

        multipart = [
            ("files", (f.name, f.content, f.content_type))
            for f in files
        ]

        start = time.monotonic()
        result = await self._post(multipart)
        observe_histogram(
            extraction_duration_seconds,
            time.monotonic() - start,
            outcome="success" if result.success else "failure",
        )
        return result

    async def _post(self, multipart: list[tuple[str, tuple[str, bytes, str]]]) -> ExtractionResult:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.endpoint, files=multipart)
        except httpx.HTTPError as e:
            logger.error(f"Extraction request failed: {e}")
            return ExtractionResult.failure(str(e) or "Failed to process document")

        if not response.is_success:
            message = self._error_message(response)
            logger.error(f"Extraction API returned {response.status_code}: {message}")
            return ExtractionResult.failure(message)

        try:
            body = response.json()
        except ValueError as e:
            logger.error(f"Extraction API returned malformed JSON: {e}")
            return ExtractionResult.failure("Extraction service returned an invalid response")

        if not isinstance(body, dict):
            return ExtractionResult.failure("Extraction service returned an invalid response")

        if body.get("success") is False:
            message = body.get("message") or body.get("error") or "Failed to process documents"
            logger.warning(f"Extraction API reported failure: {message}")
            return ExtractionResult.failure(str(message))

        fields = map_response(body)
        logger.info(
            "Extraction succeeded",
            extra={"files": len(multipart), "container_number": fields.container_number},
        )
        return ExtractionResult.ok(fields)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return f"HTTP error! status: {response.status_code}"
