from __future__ import annotations

from typing import Any, Optional, Protocol

import httpx
from pydantic import ValidationError

from .errors import BackendUnavailable, OrderNotFound, PaymentNotFound, PaymentStateConflict
from .schemas import GatewayRedirect, OrderSnapshot, PaymentSnapshot


class OrderServiceClient(Protocol):
    async def list_my_orders(self, user_id: str) -> list[OrderSnapshot]: ...

    async def get_order(self, order_id: int) -> OrderSnapshot: ...

    async def get_payment(self, payment_id: int) -> PaymentSnapshot: ...

    async def mark_payment_success(self, payment_id: int) -> PaymentSnapshot: ...

    async def mark_payment_failed(self, payment_id: int) -> PaymentSnapshot: ...

    async def create_gateway_payment(self, order_id: int, user_id: str) -> GatewayRedirect: ...


class HTTPOrderServiceClient:
    """Talks to the order service, the system of record for orders and payments."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list_my_orders(self, user_id: str) -> list[OrderSnapshot]:
        payload = await self._request("GET", "/orders/mine", user_id=user_id)
        if not isinstance(payload, list):
            raise BackendUnavailable("Order service returned a non-list order history")
        return [_validate(OrderSnapshot, entry) for entry in payload]

    async def get_order(self, order_id: int) -> OrderSnapshot:
        payload = await self._request("GET", f"/orders/{order_id}", not_found=OrderNotFound)
        return _validate(OrderSnapshot, payload)

    async def get_payment(self, payment_id: int) -> PaymentSnapshot:
        payload = await self._request("GET", f"/payments/{payment_id}", not_found=PaymentNotFound)
        return _validate(PaymentSnapshot, payload)

    async def mark_payment_success(self, payment_id: int) -> PaymentSnapshot:
        payload = await self._request(
            "PUT", f"/payments/{payment_id}/success", not_found=PaymentNotFound
        )
        return _validate(PaymentSnapshot, payload)

    async def mark_payment_failed(self, payment_id: int) -> PaymentSnapshot:
        payload = await self._request(
            "PUT", f"/payments/{payment_id}/failed", not_found=PaymentNotFound
        )
        return _validate(PaymentSnapshot, payload)

    async def create_gateway_payment(self, order_id: int, user_id: str) -> GatewayRedirect:
        payload = await self._request(
            "POST",
            f"/orders/{order_id}/payments/gateway-url",
            user_id=user_id,
            not_found=OrderNotFound,
        )
        return _validate(GatewayRedirect, payload)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        user_id: Optional[str] = None,
        not_found: type[Exception] = BackendUnavailable,
    ) -> Any:
        headers = {"X-User-Id": user_id} if user_id else {}
        try:
            response = await self._client.request(method, f"{self._base_url}{path}", headers=headers)
        except httpx.HTTPError as exc:
            raise BackendUnavailable(f"Order service unreachable: {exc}") from exc

        if response.status_code == 404:
            raise not_found(f"{method} {path} returned 404: {response.text}")
        if response.status_code == 409:
            raise PaymentStateConflict(f"{method} {path} was refused: {response.text}")
        if response.status_code >= 400:
            raise BackendUnavailable(
                f"Order service failed ({response.status_code}) on {method} {path}: {response.text}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise BackendUnavailable(f"Order service sent invalid JSON on {method} {path}") from exc


def _validate(model, payload):
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise BackendUnavailable(f"Unexpected order service payload: {exc}") from exc
