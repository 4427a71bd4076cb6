"""
Supabase (PostgREST) Expense Store

DESIGN DECISION: The hosted relational store is reached over its REST
surface with httpx rather than a vendor SDK. The three operations the
dashboard needs (insert, update and delete by id, owner-scoped select)
map directly onto PostgREST filters:

    GET    /rest/v1/expenses?user_id=eq.<owner>&order=created_at.desc
    POST   /rest/v1/expenses                (Prefer: return=representation)
    PATCH  /rest/v1/expenses?id=eq.<id>&user_id=eq.<owner>
    DELETE /rest/v1/expenses?id=eq.<id>&user_id=eq.<owner>

Calls are single-attempt by default. A timeout is always enforced.
"""

from typing import Any, Optional
from uuid import UUID

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from bizledger.config import SupabaseSettings, get_settings
from bizledger.services.storage.interface import (
    ConnectionError,
    ExpenseStoreInterface,
    NotFoundError,
    StorageError,
)


logger = structlog.get_logger(__name__)


class SupabaseExpenseStore(ExpenseStoreInterface):
    """
    Expense rows in a Supabase table.

    Args:
        settings: Connection settings (defaults to SUPABASE_* env vars)
        client: Pre-built httpx client, mainly for tests. When omitted a
                client is created lazily and owned by this store.
    """

    def __init__(
        self,
        settings: Optional[SupabaseSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings or get_settings().supabase
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._settings.url,
                timeout=self._settings.timeout_seconds,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def _table_path(self) -> str:
        return f"/rest/v1/{self._settings.expenses_table}"

    def _headers(self, prefer: Optional[str] = None) -> dict[str, str]:
        headers = {
            "apikey": self._settings.api_key,
            "Authorization": f"Bearer {self._settings.api_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(self, method: str, **kwargs: Any) -> httpx.Response:
        """
        Send one request, retrying transport failures up to max_attempts.

        Raises:
            ConnectionError: Network failure after the last attempt
            StorageError: Non-2xx response
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
                        self._table_path,
                        timeout=self._settings.timeout_seconds,
                        **kwargs,
                    )
        except httpx.RequestError as e:
            logger.warning("supabase_unreachable", method=method, error=str(e))
            raise ConnectionError(f"Could not reach the expense database: {e}") from e

        if response.is_error:
            logger.error(
                "supabase_request_failed",
                method=method,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise StorageError(
                f"Expense database returned {response.status_code} for {method}"
            )
        return response

    @staticmethod
    def _json(response: httpx.Response, method: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            logger.error("supabase_invalid_json", method=method, body=response.text[:500])
            raise StorageError("Expense database returned invalid JSON") from e

    async def insert_expense(self, owner_id: str, row: dict) -> dict:
        payload = {**row, "user_id": owner_id}
        response = await self._request(
            "POST",
            json=payload,
            headers=self._headers(prefer="return=representation"),
        )
        body = self._json(response, "POST")
        stored = body[0] if isinstance(body, list) and body else body
        if not isinstance(stored, dict):
            raise StorageError("Expense database returned no row for insert")

        logger.info("expense_row_inserted", owner_id=owner_id, expense_id=stored.get("id"))
        return stored

    async def update_expense(self, owner_id: str, expense_id: UUID, row: dict) -> dict:
        response = await self._request(
            "PATCH",
            json=row,
            params={"id": f"eq.{expense_id}", "user_id": f"eq.{owner_id}"},
            headers=self._headers(prefer="return=representation"),
        )
        body = self._json(response, "PATCH") if response.content else []
        if not isinstance(body, list):
            body = [body]
        if not body:
            raise NotFoundError(f"Expense {expense_id} not found")
        stored = body[0]
        if not isinstance(stored, dict):
            raise StorageError("Expense database returned no row for update")

        logger.info("expense_row_updated", owner_id=owner_id, expense_id=str(expense_id))
        return stored

    async def delete_expense(self, owner_id: str, expense_id: UUID) -> bool:
        response = await self._request(
            "DELETE",
            params={"id": f"eq.{expense_id}", "user_id": f"eq.{owner_id}"},
            headers=self._headers(prefer="return=representation"),
        )
        deleted = self._json(response, "DELETE") if response.content else []
        if not deleted:
            raise NotFoundError(f"Expense {expense_id} not found")

        logger.info("expense_row_deleted", owner_id=owner_id, expense_id=str(expense_id))
        return True

    async def list_expenses(self, owner_id: str) -> list[dict]:
        response = await self._request(
            "GET",
            params={
                "select": "*",
                "user_id": f"eq.{owner_id}",
                "order": "created_at.desc",
            },
            headers=self._headers(),
        )
        rows = self._json(response, "GET")
        if not isinstance(rows, list):
            raise StorageError("Expense database returned an unexpected payload")
        return rows
