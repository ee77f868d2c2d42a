"""
REST Backend Implementation

Talks to the finance server over its JSON API:

    GET    /api/users                    PATCH  /api/users/{id}
    GET    /api/users/{id}               DELETE /api/users/{id}
    POST   /api/users
    GET    /api/expenses/{user_id}       PUT    /api/expenses/{id}
    POST   /api/expenses                 DELETE /api/expenses/{id}
    (incomes: same shapes under /api/incomes)

DESIGN DECISION: Requests use urllib in a worker thread. The event loop
never blocks, and the client needs no HTTP dependency for a handful of
JSON calls.

Status mapping:
- 404           -> NotFoundError
- other 4xx     -> ValidationFailure
- 5xx, timeouts, connection errors, undecodable bodies -> NetworkFailure

Only idempotent reads are retried. A failed mutation is reported to the
caller as-is; retrying it is the user's decision.
"""

import asyncio
import json
from typing import Any, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from finance_tracker.config import BackendSettings, get_settings
from finance_tracker.services.backend.interface import (
    BackendError,
    FinanceBackend,
    NetworkFailure,
    NotFoundError,
    ValidationFailure,
)


logger = structlog.get_logger(__name__)


def error_for_status(status_code: int, message: str) -> BackendError:
    """Map an HTTP error status to the backend error taxonomy."""
    if status_code == 404:
        return NotFoundError(message, status_code=status_code)
    if 400 <= status_code < 500:
        return ValidationFailure(message, status_code=status_code)
    return NetworkFailure(message, status_code=status_code)


def _error_message(exc: HTTPError) -> str:
    """Best-effort human message from an error response body."""
    try:
        body = exc.read().decode("utf-8")
        payload = json.loads(body)
    except Exception:
        return f"HTTP {exc.code}: {exc.reason}"

    if isinstance(payload, dict):
        for key in ("error", "message", "detail"):
            if payload.get(key):
                return str(payload[key])
    return f"HTTP {exc.code}: {exc.reason}"


def _segment(value: str) -> str:
    return quote(str(value), safe="")


class RestBackend(FinanceBackend):
    """
    Finance backend reached over HTTP.

    Args:
        settings: Connection settings. Defaults to the configured ones.
        retry_wait: Wait strategy between read retries.
    """

    def __init__(
        self,
        settings: Optional[BackendSettings] = None,
        retry_wait: Optional[wait_base] = None,
    ):
        self._settings = settings or get_settings().backend
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=8)

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _request_sync(self, method: str, path: str, payload: Optional[dict] = None) -> Any:
        url = f"{self._settings.base_url}{path}"
        headers = {"Accept": "application/json"}
        data = None
        if payload is not None:
            data = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"

        request = Request(url, data=data, headers=headers, method=method)
        try:
            with urlopen(request, timeout=self._settings.timeout_seconds) as response:
                body = response.read()
        except HTTPError as exc:
            raise error_for_status(exc.code, _error_message(exc)) from exc
        except (URLError, TimeoutError, OSError) as exc:
            raise NetworkFailure(f"{method} {path} failed: {exc}") from exc

        if not body:
            return None
        try:
            return json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise NetworkFailure(f"{method} {path} returned an undecodable body") from exc

    async def _send(self, method: str, path: str, payload: Optional[dict] = None) -> Any:
        logger.debug("backend_request", method=method, path=path)
        return await asyncio.to_thread(self._request_sync, method, path, payload)

    async def _read(self, path: str) -> Any:
        """GET with retries on network failure."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.read_retry_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception_type(NetworkFailure),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "backend_read_retry",
                        path=path,
                        attempt=attempt.retry_state.attempt_number,
                    )
                result = await self._send("GET", path)
        return result

    async def _read_list(self, path: str) -> list[dict]:
        result = await self._read(path)
        if not isinstance(result, list):
            raise NetworkFailure(f"GET {path} did not return a list")
        return result

    async def _write(self, method: str, path: str, payload: Optional[dict] = None) -> Any:
        result = await self._send(method, path, payload)
        if method != "DELETE" and not isinstance(result, dict):
            raise NetworkFailure(f"{method} {path} did not return a record")
        return result

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def fetch_users(self) -> list[dict]:
        return await self._read_list("/api/users")

    async def fetch_user(self, user_id: str) -> dict:
        path = f"/api/users/{_segment(user_id)}"
        result = await self._read(path)
        if not isinstance(result, dict):
            raise NetworkFailure(f"GET {path} did not return a user")
        return result

    async def create_user(self, payload: dict) -> dict:
        return await self._write("POST", "/api/users", payload)

    async def update_user(self, user_id: str, partial: dict) -> dict:
        return await self._write("PATCH", f"/api/users/{_segment(user_id)}", partial)

    async def delete_user(self, user_id: str) -> None:
        await self._write("DELETE", f"/api/users/{_segment(user_id)}")

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    async def fetch_expenses_by_user(self, user_id: str) -> list[dict]:
        return await self._read_list(f"/api/expenses/{_segment(user_id)}")

    async def create_expense(self, payload: dict) -> dict:
        return await self._write("POST", "/api/expenses", payload)

    async def update_expense(self, expense_id: str, partial: dict) -> dict:
        return await self._write("PUT", f"/api/expenses/{_segment(expense_id)}", partial)

    async def delete_expense(self, expense_id: str) -> None:
        await self._write("DELETE", f"/api/expenses/{_segment(expense_id)}")

    # -------------------------------------------------------------------------
    # Incomes
    # -------------------------------------------------------------------------

    async def fetch_incomes_by_user(self, user_id: str) -> list[dict]:
        return await self._read_list(f"/api/incomes/{_segment(user_id)}")

    async def create_income(self, payload: dict) -> dict:
        return await self._write("POST", "/api/incomes", payload)

    async def update_income(self, income_id: str, partial: dict) -> dict:
        return await self._write("PUT", f"/api/incomes/{_segment(income_id)}", partial)

    async def delete_income(self, income_id: str) -> None:
        await self._write("DELETE", f"/api/incomes/{_segment(income_id)}")
