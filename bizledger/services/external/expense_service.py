"""
External Expense Service Client

The external service performs receipt OCR/classification and keeps its
own copy of every expense it extracted. Three operations are consumed:

    GET    /get-my-expenses/{userId}   -> list of raw expense objects
    POST   /upload                     -> extraction for one receipt image
    DELETE /expenses/{id}              -> best-effort removal

DESIGN DECISION: The client returns raw dicts for listing. Shape
unification belongs to the reconciliation layer so that one place owns
the record contract. Upload responses are parsed here because their
envelope (object, single-element array, or {"expenses": [...]}) is a
property of this service, not of the expense record.

A timeout is always enforced. Calls are single-attempt unless
EXPENSE_SERVICE_MAX_ATTEMPTS says otherwise.
"""

from datetime import date, datetime
from typing import Any, Optional

import httpx
import structlog
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from bizledger.config import ExpenseServiceSettings, get_settings
from bizledger.models.expense import ReceiptConfidence, ReceiptExtraction
from bizledger.reconciliation.unifier import parse_amount


logger = structlog.get_logger(__name__)


class ExpenseServiceError(Exception):
    """Base exception for external expense service errors."""
    pass


class ServiceUnavailableError(ExpenseServiceError):
    """The service could not be reached or answered with an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ReceiptRejectedError(ExpenseServiceError):
    """The service could not produce any extraction for the image."""
    pass


def _safe_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            pass
        for fmt in ("%m/%d/%Y", "%Y/%m/%d", "%d-%m-%Y"):
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
    return None


def _optional_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _parse_confidence(value: Any) -> ReceiptConfidence:
    """Accept 'high'/'medium'/'low' or a 0..1 score."""
    if isinstance(value, str):
        try:
            return ReceiptConfidence(value.strip().lower())
        except ValueError:
            return ReceiptConfidence.MEDIUM
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if value >= 0.8:
            return ReceiptConfidence.HIGH
        if value >= 0.5:
            return ReceiptConfidence.MEDIUM
        return ReceiptConfidence.LOW
    return ReceiptConfidence.MEDIUM


def parse_receipt_response(body: Any, description_cap: int = 200) -> ReceiptExtraction:
    """
    Turn an /upload response body into a ReceiptExtraction.

    Accepts a bare object, a single-element array, or an envelope
    {"success": ..., "expenses": [...], "receiptUrl": ..., "confidence": ...}.

    Raises:
        ReceiptRejectedError: The body holds no extraction at all, or its
            fields cannot form an extraction
    """
    envelope: dict = {}
    item: Any = body

    if isinstance(body, dict) and "expenses" in body:
        envelope = body
        if body.get("success") is False:
            raise ReceiptRejectedError(body.get("error") or "Receipt could not be processed")
        item = body.get("expenses") or []

    if isinstance(item, list):
        if not item:
            raise ReceiptRejectedError("No expense was found on the receipt")
        item = item[0]

    if not isinstance(item, dict):
        raise ReceiptRejectedError("Receipt service returned an unreadable result")

    title = _optional_text(item.get("title")) or ""
    description = _optional_text(item.get("description")) or ""

    try:
        return ReceiptExtraction(
            amount=parse_amount(item.get("amount")),
            category=_optional_text(item.get("category")),
            title=title[:75],
            description=description[:description_cap],
            vendor=_optional_text(item.get("vendor")),
            expense_date=_safe_date(item.get("date")),
            subtotal=parse_amount(item.get("subtotal")),
            tax=parse_amount(item.get("tax")),
            currency=_optional_text(item.get("currency")),
            confidence=_parse_confidence(item.get("confidence", envelope.get("confidence"))),
            receipt_url=_optional_text(item.get("receiptUrl") or envelope.get("receiptUrl")),
        )
    except ValidationError as e:
        logger.warning("receipt_response_invalid", error=str(e))
        raise ReceiptRejectedError("Receipt service returned an unreadable result") from e


class ExpenseServiceClient:
    """
    Client for the external receipt/classification service.

    Args:
        settings: Service settings (defaults to EXPENSE_SERVICE_* env vars)
        client: Pre-built httpx client, mainly for tests
    """

    def __init__(
        self,
        settings: Optional[ExpenseServiceSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        receipt_description_cap: Optional[int] = None,
    ):
        self._settings = settings or get_settings().expense_service
        self._client = client
        self._receipt_description_cap = (
            receipt_description_cap
            or get_settings().reconciliation.receipt_description_max_length
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {}
            if self._settings.api_key:
                headers["Authorization"] = f"Bearer {self._settings.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self._settings.base_url,
                timeout=self._settings.timeout_seconds,
                headers=headers,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """
        Send one request, retrying transport failures up to max_attempts.

        Raises:
            ServiceUnavailableError: Network failure, timeout, or error status
        """
        client = self._get_client()
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._settings.max_attempts),
                wait=wait_exponential(multiplier=1, min=1, max=8),
                retry=retry_if_exception_type(httpx.TransportError),
                reraise=True,
            ):
                with attempt:
                    response = await client.request(
                        method,
                        path,
                        timeout=self._settings.timeout_seconds,
                        **kwargs,
                    )
        except httpx.TimeoutException as e:
            logger.warning("expense_service_timeout", method=method, path=path,
                           timeout=self._settings.timeout_seconds)
            raise ServiceUnavailableError("The expense service took too long to respond") from e
        except httpx.RequestError as e:
            logger.warning("expense_service_unreachable", method=method, path=path, error=str(e))
            raise ServiceUnavailableError(f"Could not reach the expense service: {e}") from e

        if response.is_error:
            logger.error("expense_service_error_status", method=method, path=path,
                         status_code=response.status_code, body=response.text[:500])
            raise ServiceUnavailableError(
                f"Expense service returned {response.status_code}",
                status_code=response.status_code,
            )
        return response

    async def fetch_expenses(self, user_id: str) -> list[dict]:
        """
        Fetch every expense the service holds for a user.

        Raises:
            ServiceUnavailableError: If the service cannot be reached
        """
        response = await self._request("GET", f"/get-my-expenses/{user_id}")
        try:
            body = response.json()
        except ValueError as e:
            raise ServiceUnavailableError("Expense service returned invalid JSON") from e

        if isinstance(body, dict):
            body = body.get("expenses", [])
        if not isinstance(body, list):
            raise ServiceUnavailableError("Expense service returned an unexpected payload")

        records = [item for item in body if isinstance(item, dict)]
        logger.info("external_expenses_fetched", user_id=user_id, count=len(records))
        return records

    async def upload_receipt(
        self,
        image_bytes: bytes,
        filename: str,
        mime_type: str = "image/jpeg",
        user_id: Optional[str] = None,
    ) -> ReceiptExtraction:
        """
        Send a receipt image for extraction.

        A result with a missing amount or category is still returned;
        the validator decides whether it is usable.

        Raises:
            ServiceUnavailableError: If the service cannot be reached
            ReceiptRejectedError: If nothing could be extracted
        """
        data = {"userId": user_id} if user_id else None
        response = await self._request(
            "POST",
            "/upload",
            files={"file": (filename, image_bytes, mime_type)},
            data=data,
        )
        try:
            body = response.json()
        except ValueError as e:
            raise ReceiptRejectedError("Receipt service returned an unreadable result") from e

        extraction = parse_receipt_response(body, self._receipt_description_cap)
        logger.info(
            "receipt_extracted",
            filename=filename,
            has_amount=extraction.amount is not None,
            category=extraction.category,
            confidence=extraction.confidence.value,
        )
        return extraction

    async def delete_expense(self, expense_id: str) -> bool:
        """
        Best-effort delete. Failures are logged and reported as False.
        """
        try:
            await self._request("DELETE", f"/expenses/{expense_id}")
        except ServiceUnavailableError as e:
            logger.warning("external_delete_failed", expense_id=expense_id, error=str(e))
            return False
        return True
