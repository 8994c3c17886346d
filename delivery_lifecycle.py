# delivery_lifecycle.py
"""
Delivery status machine.

Pending -> Confirmed | Canceled, both terminal.

Rules:
- local validation first, store call second
- at most one transition in flight per delivery (per guard)
- the store acknowledgement is the only source of truth:
  the input Delivery is never mutated, a new one is returned on success
- errors are returned as TransitionResult.error, not raised
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional, Set

import delivery_store
from delivery_fsm import CANCELLED, CONFIRMED, is_valid_transition, normalize_status
from delivery_models import ConfirmInput, Delivery, PaymentMethod

log = logging.getLogger("delivery_lifecycle")


# =========================
# Errors
# =========================

class DeliveryError(Exception):
    def __init__(
        self,
        message: str,
        field: str | None = None,
        fields: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.field = field
        self.fields = fields or ({field: message} if field else {})

    def to_dict(self) -> dict:
        data = {"error": self.message}
        if self.field:
            data["field"] = self.field
        if self.fields:
            data["fields"] = dict(self.fields)
        return data


class DeliveryValidationError(DeliveryError):
    pass


class TransitionPreconditionError(DeliveryError):
    pass


class RemoteTransitionError(DeliveryError):
    pass


class TransportError(DeliveryError):
    pass


@dataclass
class TransitionResult:
    ok: bool
    delivery: Delivery
    error: Optional[DeliveryError] = None


# =========================
# In-flight guard
# =========================

class TransitionGuard:
    """
    Caller-held registry of deliveries with a transition in flight.
    A second request for the same delivery is rejected, not queued.
    """

    def __init__(self):
        self._in_flight: Set[int] = set()

    def try_acquire(self, delivery_id: int) -> bool:
        if delivery_id in self._in_flight:
            return False
        self._in_flight.add(delivery_id)
        return True

    def release(self, delivery_id: int):
        self._in_flight.discard(delivery_id)

    def is_in_flight(self, delivery_id: int) -> bool:
        return delivery_id in self._in_flight

    def clear(self):
        self._in_flight.clear()


_default_guard = TransitionGuard()


def default_guard() -> TransitionGuard:
    return _default_guard


# ===== Events =====

def emit_event(event_type: str, delivery_id: int, payload: dict | None = None):
    log.info(
        "[EVENT] %s",
        {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": event_type,
            "delivery_id": delivery_id,
            "payload": payload or {},
        },
    )


# =========================
# Validation
# =========================

def validate_confirm_input(payload: ConfirmInput) -> Dict[str, str]:
    errors: Dict[str, str] = {}

    if not math.isfinite(payload.amountReceived):
        errors["amountReceived"] = "Amount received must be a finite number"
        return errors

    if payload.amountReceived < 0:
        errors["amountReceived"] = "Amount received cannot be negative"

    # asymmetric: amount > 0 requires a method, amount == 0 forbids one
    if payload.amountReceived > 0 and payload.paymentMethod is None:
        errors["paymentMethod"] = "A payment method is required when an amount is received"
    elif payload.amountReceived == 0 and payload.paymentMethod is not None:
        errors["paymentMethod"] = "No payment method may be set when the amount received is zero"

    if payload.returnedCrates < 0:
        errors["returnedCrates"] = "Returned crates cannot be negative"

    return errors


def _check_precondition(delivery: Delivery, target: str) -> Optional[DeliveryError]:
    if not is_valid_transition(delivery.status, target):
        return TransitionPreconditionError(
            f"Delivery {delivery.id} cannot move from {delivery.status} to {target}"
        )
    return None


def _check_ack(delivery: Delivery, updated: Delivery, target: str) -> Optional[DeliveryError]:
    if updated.id != delivery.id:
        return RemoteTransitionError(
            f"Store acknowledged delivery {updated.id}, expected {delivery.id}"
        )
    if normalize_status(updated.status) != target:
        return RemoteTransitionError(
            f"Store returned status {updated.status}, expected {target}"
        )
    return None


def _fail(delivery: Delivery, error: DeliveryError, event: str) -> TransitionResult:
    emit_event(event, delivery.id, error.to_dict())
    return TransitionResult(ok=False, delivery=delivery, error=error)


# =========================
# Transitions
# =========================

async def _transition(
    delivery: Delivery,
    target: str,
    guard: Optional[TransitionGuard],
    timeout: Optional[float],
    **store_kwargs,
) -> TransitionResult:
    guard = guard or _default_guard

    if not guard.try_acquire(delivery.id):
        return _fail(
            delivery,
            TransitionPreconditionError(
                f"A status change for delivery {delivery.id} is already in progress"
            ),
            "delivery_status_rejected",
        )

    try:
        updated = await asyncio.wait_for(
            delivery_store.change_delivery_status(delivery.id, target, **store_kwargs),
            timeout=timeout,
        )
    except delivery_store.StoreFieldError as e:
        return _fail(
            delivery,
            RemoteTransitionError(e.message, field=e.field),
            "delivery_status_rejected",
        )
    except delivery_store.StoreError as e:
        return _fail(delivery, RemoteTransitionError(e.message), "delivery_status_rejected")
    except asyncio.TimeoutError:
        return _fail(
            delivery,
            TransportError(f"Status change for delivery {delivery.id} timed out"),
            "delivery_status_failed",
        )
    except delivery_store.StoreUnavailable as e:
        return _fail(delivery, TransportError(str(e) or "Delivery store unavailable"), "delivery_status_failed")
    except Exception as e:
        log.exception("[TRANSITION] unexpected error delivery=%s target=%s", delivery.id, target)
        return _fail(delivery, TransportError(str(e) or "Delivery store unavailable"), "delivery_status_failed")
    finally:
        guard.release(delivery.id)

    ack_error = _check_ack(delivery, updated, target)
    if ack_error:
        return _fail(delivery, ack_error, "delivery_status_rejected")

    emit_event(
        "delivery_status_changed",
        delivery.id,
        {"from": delivery.status, "to": updated.status},
    )
    return TransitionResult(ok=True, delivery=updated)


async def confirm_delivery(
    delivery: Delivery,
    payload: ConfirmInput | None = None,
    guard: TransitionGuard | None = None,
    timeout: float | None = None,
) -> TransitionResult:
    """
    Pending -> Confirmed with payment and returned crates.

    paymentMethod is sent as the wire value ("Cash"/"Check"),
    or null when amountReceived == 0.
    """
    payload = payload or ConfirmInput()

    error = _check_precondition(delivery, CONFIRMED)
    if error:
        return _fail(delivery, error, "delivery_status_rejected")

    fields = validate_confirm_input(payload)
    if fields:
        return _fail(
            delivery,
            DeliveryValidationError("Invalid confirmation data", fields=fields),
            "delivery_confirm_invalid",
        )

    method: Optional[PaymentMethod] = payload.paymentMethod
    log.info(
        "[CONFIRM] delivery=%s amount=%s method=%s crates=%s",
        delivery.id,
        payload.amountReceived,
        method.value if method else None,
        payload.returnedCrates,
    )

    return await _transition(
        delivery,
        CONFIRMED,
        guard,
        timeout,
        amount=payload.amountReceived,
        payment_method=method.value if method and payload.amountReceived > 0 else None,
        crates=payload.returnedCrates,
        include_payment=True,
    )


async def cancel_delivery(
    delivery: Delivery,
    guard: TransitionGuard | None = None,
    timeout: float | None = None,
) -> TransitionResult:
    """Pending -> Canceled. No payload."""
    error = _check_precondition(delivery, CANCELLED)
    if error:
        return _fail(delivery, error, "delivery_status_rejected")

    log.info("[CANCEL] delivery=%s", delivery.id)
    return await _transition(delivery, CANCELLED, guard, timeout)


async def update_observations(
    delivery: Delivery,
    observations: str,
    timeout: float | None = None,
) -> TransitionResult:
    """
    Edits observations only. Status is untouched;
    confirmed deliveries are read-only.
    """
    if normalize_status(delivery.status) == CONFIRMED:
        return _fail(
            delivery,
            TransitionPreconditionError(f"Delivery {delivery.id} is confirmed and cannot be edited"),
            "delivery_edit_rejected",
        )

    text = (observations or "").strip()
    if not text:
        return _fail(
            delivery,
            DeliveryValidationError(
                "Invalid observations",
                fields={"observations": "Observations cannot be empty"},
            ),
            "delivery_edit_invalid",
        )

    try:
        updated = await asyncio.wait_for(
            delivery_store.update_delivery(delivery.id, {"observations": text}),
            timeout=timeout,
        )
    except delivery_store.StoreFieldError as e:
        return _fail(delivery, RemoteTransitionError(e.message, field=e.field), "delivery_edit_rejected")
    except delivery_store.StoreError as e:
        return _fail(delivery, RemoteTransitionError(e.message), "delivery_edit_rejected")
    except (asyncio.TimeoutError, delivery_store.StoreUnavailable) as e:
        return _fail(
            delivery,
            TransportError(str(e) or "Delivery store unavailable"),
            "delivery_edit_failed",
        )
    except Exception as e:
        log.exception("[EDIT] unexpected error delivery=%s", delivery.id)
        return _fail(delivery, TransportError(str(e) or "Delivery store unavailable"), "delivery_edit_failed")

    emit_event("delivery_observations_updated", delivery.id)
    return TransitionResult(ok=True, delivery=updated)
