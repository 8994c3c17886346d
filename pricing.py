# pricing.py
"""
Price reconstruction for delivery line items.

Only the discounted unit price and the discount percentage are stored.
Original price, discount amount and totals are always rebuilt from
those two fields, for any delivery status. Live catalog prices are never
consulted.

    original_unit_price  = unit_price / (1 - discount / 100)
    line_discount_amount = (original_unit_price - unit_price) * quantity
    line_subtotal        = original_unit_price * quantity
    line_total           = unit_price * quantity
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from delivery_models import UnitType

MAX_DISCOUNT = 100


class InvalidLineItem(ValueError):
    pass


@dataclass(frozen=True)
class LinePricing:
    quantity: int
    unit_price: float
    discount: float
    original_unit_price: float
    line_discount_amount: float
    line_subtotal: float
    line_total: float
    weight: Optional[float] = None  # только для отображения (Kilo)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "discount": self.discount,
            "originalUnitPrice": self.original_unit_price,
            "lineDiscountAmount": self.line_discount_amount,
            "lineSubtotal": self.line_subtotal,
            "lineTotal": self.line_total,
            "weight": self.weight,
        }


@dataclass(frozen=True)
class PricingSummary:
    subtotal: float = 0.0
    total_discount: float = 0.0
    total: float = 0.0
    per_item: List[LinePricing] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subtotal": self.subtotal,
            "totalDiscount": self.total_discount,
            "total": self.total,
            "perItem": [line.to_dict() for line in self.per_item],
        }


def _get(item: Any, name: str, default=None):
    if isinstance(item, Mapping):
        return item.get(name, default)
    return getattr(item, name, default)


def _unit_type(item: Any) -> Optional[str]:
    product = _get(item, "product")
    if product is None:
        return None
    return _get(product, "unitType")


def validate_line_items(items: Iterable[Any]) -> Dict[str, str]:
    """
    Data-entry check for line items.
    Returns {"productItems[i].<field>": message}; empty dict means valid.
    """
    errors: Dict[str, str] = {}

    for idx, item in enumerate(items or []):
        prefix = f"productItems[{idx}]"

        quantity = _get(item, "quantity")
        if quantity is None or quantity <= 0:
            errors[f"{prefix}.quantity"] = "Quantity must be greater than zero"

        discount = _get(item, "discount") or 0
        if discount < 0 or discount >= MAX_DISCOUNT:
            errors[f"{prefix}.discount"] = "Discount must be between 0 and 100 (exclusive)"

        unit_price = _get(item, "unitPrice")
        if unit_price is None or unit_price < 0:
            errors[f"{prefix}.unitPrice"] = "Unit price must not be negative"
        elif unit_price == 0 and discount > 0:
            errors[f"{prefix}.unitPrice"] = "Unit price must be positive when a discount is set"

    return errors


def price_line(item: Any) -> LinePricing:
    quantity = _get(item, "quantity") or 0
    unit_price = _get(item, "unitPrice") or 0
    discount = _get(item, "discount") or 0

    if discount >= MAX_DISCOUNT or discount < 0:
        raise InvalidLineItem(f"discount out of range: {discount}")

    original_unit_price = unit_price / (1 - discount / 100)

    return LinePricing(
        quantity=quantity,
        unit_price=unit_price,
        discount=discount,
        original_unit_price=original_unit_price,
        line_discount_amount=(original_unit_price - unit_price) * quantity,
        line_subtotal=original_unit_price * quantity,
        line_total=unit_price * quantity,
        weight=quantity if _unit_type(item) == UnitType.KILO.value else None,
    )


def reconstruct_pricing(product_items: Optional[Iterable[Any]]) -> PricingSummary:
    """
    Rebuild subtotal / discount / total for a list of line items.

    Accepts LineItem / ProductItem models or plain dicts with the store keys
    (quantity, unitPrice, discount, product.unitType).
    Raises InvalidLineItem on discount >= 100.
    """
    per_item = [price_line(item) for item in (product_items or [])]

    subtotal = sum(line.line_subtotal for line in per_item)
    total_discount = sum(line.line_discount_amount for line in per_item)

    return PricingSummary(
        subtotal=subtotal,
        total_discount=total_discount,
        total=subtotal - total_discount,
        per_item=per_item,
    )
