# display.py

from datetime import datetime
from typing import Dict, Optional

from delivery_fsm import PENDING, normalize_status, status_label
from delivery_models import Delivery, PaymentMethod


def format_money(amount: float | None) -> str:
    """
    Two decimals with a dollar sign.
    Example: 1234.5 -> "$1234.50"
    """
    return f"${(amount or 0):.2f}"


def format_datetime(value: Optional[datetime]) -> str:
    if not value:
        return "-"
    return value.strftime("%d/%m/%Y %H:%M")


def payment_method_label(raw: str | None) -> str:
    if not raw:
        return "Sin método"
    try:
        method = PaymentMethod.parse(raw)
    except ValueError:
        return "Método desconocido"
    return method.label if method else "Sin método"


def returned_crates_display(delivery: Delivery) -> str:
    # пока Pending — поле не имеет смысла
    if normalize_status(delivery.status) == PENDING:
        return "-"
    return str(delivery.crates or 0)


def order_crates_display(delivery: Delivery) -> str:
    if delivery.order and delivery.order.crates and delivery.order.crates > 0:
        return str(delivery.order.crates)
    return "No definido"


def delivery_display(delivery: Delivery) -> Dict[str, str]:
    return {
        "status": status_label(delivery.status),
        "date": format_datetime(delivery.date),
        "confirmedDate": format_datetime(delivery.confirmedDate),
        "orderCrates": order_crates_display(delivery),
        "returnedCrates": returned_crates_display(delivery),
        "paymentMethod": payment_method_label(delivery.paymentMethod),
        "amountReceived": format_money(delivery.amountReceived),
        "observations": delivery.observations or "Sin observaciones",
    }
