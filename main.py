from fastapi import FastAPI, Header, HTTPException, Depends, Query
from typing import Optional
import logging
import os

import delivery_store
from delivery_lifecycle import (
    DeliveryValidationError,
    RemoteTransitionError,
    TransitionPreconditionError,
    TransitionResult,
    TransportError,
    cancel_delivery,
    confirm_delivery,
    update_observations,
)
from delivery_models import ConfirmInput, Delivery, ObservationsInput
from display import delivery_display, format_money
from pricing import InvalidLineItem, reconstruct_pricing

log = logging.getLogger("DELIVERY_API")

# таймаут одного перехода статуса (сек), None — без таймаута
TRANSITION_TIMEOUT = float(os.getenv("TRANSITION_TIMEOUT", "15")) or None

#===========1. App ===========#

app = FastAPI(
    title="Delivery Back-Office API",
    version="1.0",
)

#2. Простая auth (заглушка, реальная auth — снаружи)#

API_KEY = os.getenv("API_KEY", "DEV_KEY")

def require_api_key(x_api_key: str = Header(...)):
    if x_api_key != API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")

#3. Helpers#

async def load_delivery(delivery_id: int) -> Delivery:
    try:
        return await delivery_store.get_delivery(delivery_id)
    except delivery_store.StoreError as e:
        if e.status_code == 404:
            raise HTTPException(status_code=404, detail="Delivery not found")
        raise HTTPException(status_code=400, detail={"error": e.message})
    except delivery_store.StoreUnavailable:
        log.exception("[LOAD] store unavailable delivery=%s", delivery_id)
        raise HTTPException(status_code=503, detail="Delivery store unavailable")


def pricing_payload(delivery: Delivery) -> dict:
    try:
        summary = reconstruct_pricing(delivery.productItems)
    except InvalidLineItem as e:
        raise HTTPException(status_code=422, detail={"error": str(e)})

    data = summary.to_dict()
    data["display"] = {
        "subtotal": format_money(summary.subtotal),
        "totalDiscount": format_money(summary.total_discount),
        "total": format_money(summary.total),
    }
    return data


def result_or_error(result: TransitionResult) -> Delivery:
    if result.ok:
        return result.delivery

    error = result.error

    if isinstance(error, DeliveryValidationError):
        raise HTTPException(status_code=422, detail=error.to_dict())

    if isinstance(error, TransitionPreconditionError):
        raise HTTPException(status_code=409, detail=error.to_dict())

    if isinstance(error, RemoteTransitionError):
        raise HTTPException(status_code=400, detail=error.to_dict())

    if isinstance(error, TransportError):
        raise HTTPException(status_code=503, detail=error.to_dict())

    raise HTTPException(status_code=500, detail={"error": str(error)})

#4. Health#

@app.get("/health")
def health():
    return {"status": "ok"}

#5. Список доставок#

@app.get(
    "/api/v1/deliveries",
    dependencies=[Depends(require_api_key)],
)
async def list_deliveries(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    client_id: Optional[int] = None,
    user_id: Optional[int] = None,
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
):
    try:
        deliveries = await delivery_store.get_deliveries(
            page,
            page_size,
            {
                "status": status,
                "client_id": client_id,
                "user_id": user_id,
                "from_date": from_date,
                "to_date": to_date,
            },
        )
    except delivery_store.StoreError as e:
        raise HTTPException(status_code=400, detail={"error": e.message})
    except delivery_store.StoreUnavailable:
        raise HTTPException(status_code=503, detail="Delivery store unavailable")

    return [d.model_dump(mode="json") for d in deliveries]

#6. Детали доставки + цены#

@app.get(
    "/api/v1/deliveries/{delivery_id}",
    dependencies=[Depends(require_api_key)],
)
async def get_delivery(delivery_id: int):
    delivery = await load_delivery(delivery_id)
    return {
        "delivery": delivery.model_dump(mode="json"),
        "pricing": pricing_payload(delivery),
        "display": delivery_display(delivery),
    }


@app.get(
    "/api/v1/deliveries/{delivery_id}/pricing",
    dependencies=[Depends(require_api_key)],
)
async def get_delivery_pricing(delivery_id: int):
    delivery = await load_delivery(delivery_id)
    return pricing_payload(delivery)

#7. Переходы статуса#

@app.post(
    "/api/v1/deliveries/{delivery_id}/confirm",
    dependencies=[Depends(require_api_key)],
)
async def confirm(delivery_id: int, payload: ConfirmInput):
    delivery = await load_delivery(delivery_id)
    result = await confirm_delivery(delivery, payload, timeout=TRANSITION_TIMEOUT)
    return result_or_error(result).model_dump(mode="json")


@app.post(
    "/api/v1/deliveries/{delivery_id}/cancel",
    dependencies=[Depends(require_api_key)],
)
async def cancel(delivery_id: int):
    delivery = await load_delivery(delivery_id)
    result = await cancel_delivery(delivery, timeout=TRANSITION_TIMEOUT)
    return result_or_error(result).model_dump(mode="json")

#8. Observations#

@app.put(
    "/api/v1/deliveries/{delivery_id}/observations",
    dependencies=[Depends(require_api_key)],
)
async def edit_observations(delivery_id: int, payload: ObservationsInput):
    delivery = await load_delivery(delivery_id)
    result = await update_observations(delivery, payload.observations, timeout=TRANSITION_TIMEOUT)
    return result_or_error(result).model_dump(mode="json")

#9. Подтверждённые доставки клиента#

@app.get(
    "/api/v1/clients/{client_id}/deliveries/confirmed",
    dependencies=[Depends(require_api_key)],
)
async def get_client_confirmed_deliveries(client_id: int):
    try:
        deliveries = await delivery_store.get_confirmed_deliveries_by_client(client_id)
    except delivery_store.StoreError as e:
        raise HTTPException(status_code=400, detail={"error": e.message})
    except delivery_store.StoreUnavailable:
        raise HTTPException(status_code=503, detail="Delivery store unavailable")

    return [d.model_dump(mode="json") for d in deliveries]
