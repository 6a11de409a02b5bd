"""REST client for the remote system of record."""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
from pydantic_core import to_jsonable_python

from order_sync.core.exceptions import NetworkError, RemoteBackendError
from order_sync.schemas.order import CartLine, ChangeRecord, HistoryEntry, LedgerEntry
from order_sync.services.remote.base import RemoteBackend

logger = logging.getLogger(__name__)

# Gateway-class statuses mean "could not reach the service", not "service said no"
NETWORK_STATUS_CODES = {502, 503, 504}


class HttpRemoteBackend(RemoteBackend):
    """httpx-based client. Timeouts and transport errors surface as NetworkError."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
        allow_404: bool = False,
    ) -> Optional[Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                headers=self._headers(),
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                resp = await client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{method} {path} timed out: {e}")
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {path} failed: {e}")

        if allow_404 and resp.status_code == 404:
            return None
        if resp.status_code in NETWORK_STATUS_CODES:
            raise NetworkError(f"{method} {path} returned {resp.status_code}", status_code=resp.status_code)
        if resp.status_code >= 400:
            raise RemoteBackendError(
                f"{method} {path} returned {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        if not resp.content:
            return None
        return resp.json()

    async def ping(self) -> bool:
        try:
            await self._request("GET", "/health")
            return True
        except RemoteBackendError as e:
            logger.debug(f"Backend health check failed: {e}")
            return False

    # ==================== ORDERS ====================

    async def create_order(self, fields: Dict[str, Any]) -> str:
        data = await self._request("POST", "/orders", json=to_jsonable_python(fields))
        return str(data["id"])

    async def update_order(self, order_id: str, fields: Dict[str, Any]) -> None:
        await self._request("PATCH", f"/orders/{order_id}", json=to_jsonable_python(fields))

    async def insert_order_items(self, order_id: str, items: List[CartLine]) -> None:
        await self._request(
            "POST",
            f"/orders/{order_id}/items",
            json={"items": [item.model_dump(mode="json") for item in items]},
        )

    async def delete_order_items(self, order_id: str) -> None:
        await self._request("DELETE", f"/orders/{order_id}/items")

    # ==================== HISTORY ====================

    async def create_history_entry(self, order_id: str, action: str, details: Dict[str, Any]) -> str:
        data = await self._request(
            "POST", f"/orders/{order_id}/history", json={"action": action, "details": details}
        )
        return str(data["id"])

    async def insert_change_records(self, history_id: str, records: List[ChangeRecord]) -> None:
        await self._request(
            "POST",
            f"/history/{history_id}/changes",
            json={"records": [r.model_dump(mode="json") for r in records]},
        )

    async def get_latest_history_entry(self, order_id: str) -> Optional[HistoryEntry]:
        data = await self._request("GET", f"/orders/{order_id}/history/latest", allow_404=True)
        return HistoryEntry.model_validate(data) if data else None

    async def list_change_records(self, history_id: str) -> List[ChangeRecord]:
        data = await self._request("GET", f"/history/{history_id}/changes") or {}
        return [ChangeRecord.model_validate(item) for item in data.get("items", [])]

    # ==================== CUSTOMER LEDGER ====================

    async def find_ledger_entry(self, order_id: str) -> Optional[LedgerEntry]:
        data = await self._request(
            "GET", "/ledger", params={"order_id": order_id, "transaction_type": "debit"}
        ) or {}
        items = data.get("items", [])
        return LedgerEntry.model_validate(items[0]) if items else None

    async def delete_ledger_entry(self, entry_id: str) -> None:
        await self._request("DELETE", f"/ledger/{entry_id}")

    async def insert_ledger_entry(self, entry: LedgerEntry) -> str:
        data = await self._request("POST", "/ledger", json=entry.model_dump(mode="json", exclude={"id"}))
        return str(data["id"])

    async def get_customer_balance(self, customer_id: str) -> Decimal:
        data = await self._request("GET", f"/customers/{customer_id}/balance") or {}
        return Decimal(str(data.get("balance", "0")))

    # ==================== LOYALTY ====================

    async def get_loyalty_balance(self, customer_id: str) -> int:
        data = await self._request("GET", f"/customers/{customer_id}/loyalty") or {}
        return int(data.get("current_balance", 0))

    async def award_loyalty_points(self, customer_id: str, order_id: str, points: int) -> int:
        data = await self._request(
            "POST",
            f"/customers/{customer_id}/loyalty/award",
            json={"order_id": order_id, "points": points},
        )
        return int(data["current_balance"])

    async def redeem_loyalty_points(self, customer_id: str, order_id: str, points: int) -> int:
        data = await self._request(
            "POST",
            f"/customers/{customer_id}/loyalty/redeem",
            json={"order_id": order_id, "points": points},
        )
        return int(data["current_balance"])
