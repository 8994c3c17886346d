#delivery_store.py
# Клиент удалённого Delivery API (источник истины по доставкам)

import json
import logging
import os
from typing import Any, Dict, List, Optional

import httpx

from delivery_models import Delivery

log = logging.getLogger("delivery_store")

DELIVERY_API_URL = os.getenv("DELIVERY_API_URL")
DELIVERY_API_TOKEN = os.getenv("DELIVERY_API_TOKEN")
DELIVERY_API_TIMEOUT = float(os.getenv("DELIVERY_API_TIMEOUT", "10"))

# API требует location в теле PUT/POST
DEFAULT_LOCATION = {"latitude": 0, "longitude": 0}

FILTER_PARAMS = {
    "status": "filters[Status]",
    "client_id": "filters[ClientId]",
    "user_id": "filters[UserId]",
    "from_date": "filters[DateFrom]",
    "to_date": "filters[DateTo]",
}


# =========================
# Exceptions
# =========================

class StoreError(Exception):
    """Store rejected the request (4xx/5xx with a readable body)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class StoreFieldError(StoreError):
    def __init__(self, field: str, message: str, status_code: int | None = None):
        super().__init__(message, status_code)
        self.field = field


class StoreUnavailable(Exception):
    """Network failure or a response we could not parse."""


# =========================
# Low-level
# =========================

def _base_url() -> str:
    if not DELIVERY_API_URL:
        raise RuntimeError("DELIVERY_API_URL is not set")
    return DELIVERY_API_URL.rstrip("/")


def _headers() -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if DELIVERY_API_TOKEN:
        headers["Authorization"] = f"Bearer {DELIVERY_API_TOKEN}"
    return headers


def _make_client() -> httpx.AsyncClient:
    timeout = httpx.Timeout(DELIVERY_API_TIMEOUT, connect=3.0)
    return httpx.AsyncClient(timeout=timeout)


def _with_location(method: str, body: Optional[dict]) -> Optional[dict]:
    if method not in ("POST", "PUT"):
        return body
    if not body:
        return {"location": dict(DEFAULT_LOCATION)}
    if body.get("location"):
        return body
    return {**body, "location": dict(DEFAULT_LOCATION)}


def _raise_for_error(resp: httpx.Response):
    text = resp.text or ""

    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None

    if isinstance(parsed, dict):
        field = parsed.get("campo") or parsed.get("field")
        error = parsed.get("error")
        if field and error:
            raise StoreFieldError(field, error, resp.status_code)
        if error:
            raise StoreError(error, resp.status_code)

    raise StoreError(text or "Unknown error", resp.status_code)


async def _request(
    method: str,
    path: str,
    body: Optional[dict] = None,
    params: Optional[dict] = None,
) -> Any:
    url = f"{_base_url()}{path}"
    payload = _with_location(method, body)

    log.info("[STORE] %s %s", method, url)

    try:
        async with _make_client() as client:
            resp = await client.request(
                method,
                url,
                json=payload,
                params=params,
                headers=_headers(),
            )
    except httpx.HTTPError as e:
        log.warning("[STORE] transport error %s %s: %s", method, url, e)
        raise StoreUnavailable(str(e)) from e

    if resp.status_code >= 400:
        log.warning(
            "[STORE] %s %s -> %s body=%s",
            method,
            url,
            resp.status_code,
            resp.text,
        )
        _raise_for_error(resp)

    if resp.status_code == 204 or not resp.content:
        return None

    try:
        return resp.json()
    except ValueError as e:
        raise StoreUnavailable(f"Unparseable response from {url}") from e


def _parse_delivery(data: Any) -> Delivery:
    if not isinstance(data, dict):
        raise StoreUnavailable("Store response is not a delivery record")
    try:
        return Delivery.model_validate(data)
    except ValueError as e:
        raise StoreUnavailable(f"Invalid delivery record: {e}") from e


# =========================
# Public API
# =========================

async def get_deliveries(
    page: int = 1,
    page_size: int = 10,
    filters: Optional[Dict[str, Any]] = None,
) -> List[Delivery]:
    params: Dict[str, Any] = {"Page": page, "PageSize": page_size}

    for key, value in (filters or {}).items():
        if value in (None, ""):
            continue
        params[FILTER_PARAMS[key]] = str(value)

    data = await _request("GET", "/Delivery", params=params)
    return [_parse_delivery(row) for row in (data or [])]


async def get_delivery(delivery_id: int) -> Delivery:
    data = await _request("GET", f"/Delivery/{delivery_id}")
    return _parse_delivery(data)


async def update_delivery(delivery_id: int, changes: Dict[str, Any]) -> Delivery:
    """Partial update (observations and other non-status fields)."""
    data = await _request("PUT", f"/Delivery/{delivery_id}", body={"id": delivery_id, **changes})
    return _parse_delivery(data)


async def change_delivery_status(
    delivery_id: int,
    status: str,
    amount: float | None = None,
    payment_method: str | None = None,
    crates: int | None = None,
    include_payment: bool = False,
) -> Delivery:
    """
    PUT /Delivery/changestatus/{id}

    include_payment=True always sends amount/paymentMethod/crates
    (paymentMethod may be null — это валидно при amount == 0).
    """
    body: Dict[str, Any] = {"status": status}

    if include_payment:
        body["amount"] = amount
        body["paymentMethod"] = payment_method
        body["crates"] = crates

    data = await _request("PUT", f"/Delivery/changestatus/{delivery_id}", body=body)
    return _parse_delivery(data)


async def get_confirmed_deliveries_by_client(client_id: int) -> List[Delivery]:
    data = await _request("GET", f"/Delivery/client/{client_id}/confirmed")
    return [_parse_delivery(row) for row in (data or [])]
