"""
Async HTTP client for the CRM API, used by the kanban engine.
"""
from decimal import Decimal
from typing import Any, Optional

import httpx

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


class CRMClientError(Exception):
    """Any failed call: transport error or non-2xx response."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        self.status_code = status_code
        self.code = code
        super().__init__(message)


def _error_from_response(response: httpx.Response) -> CRMClientError:
    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = None
    if isinstance(detail, dict):
        message = detail.get("detail") or detail.get("message") or response.reason_phrase
        return CRMClientError(str(message), response.status_code, detail.get("code"))
    return CRMClientError(str(detail or response.reason_phrase), response.status_code)


class CRMClient:
    """
    Thin wrapper over ``httpx.AsyncClient``. Calls are never retried: a failure is reported
    to the caller, which decides whether to roll back.
    """

    def __init__(
        self,
        token: str,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._http = httpx.AsyncClient(
            base_url=base_url or settings.CRM_API_BASE_URL,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout or settings.CRM_API_TIMEOUT,
            transport=transport,
        )

    async def __aenter__(self) -> "CRMClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("crm_request_failed", method=method, path=path, error=str(e))
            raise CRMClientError(f"Connection error: {e}") from e
        if response.is_error:
            raise _error_from_response(response)
        if response.status_code == 204:
            return None
        return response.json()

    async def list_stages(self) -> list[dict[str, Any]]:
        return await self._request("GET", "/lead-stages")

    async def list_leads(self, status: str | None = None) -> list[dict[str, Any]]:
        params = {"status": status} if status else None
        return await self._request("GET", "/leads", params=params)

    async def update_lead_status(
        self,
        lead_id: int,
        status: str,
        notes: str | None = None,
        estimated_value: Decimal | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"status": status}
        if notes:
            payload["notes"] = notes
        if estimated_value is not None:
            payload["estimated_value"] = str(estimated_value)
        return await self._request("PATCH", f"/leads/{lead_id}/status", json=payload)

    async def assign_lead(self, lead_id: int, consultant_id: int) -> dict[str, Any]:
        return await self._request("PATCH", f"/leads/{lead_id}/assign", json={"consultant_id": consultant_id})
