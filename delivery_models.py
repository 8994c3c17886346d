# delivery_models.py
"""
Delivery data model.

Field names follow the camelCase names of the remote Delivery API,
so records can be validated straight from store responses.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from delivery_fsm import PENDING, normalize_status

# store пишет 0001-01-01T00:00:00 вместо null
SENTINEL_MAX_YEAR = 1900


class UnitType(str, Enum):
    KILO = "Kilo"
    UNIT = "Unit"


class PaymentMethod(str, Enum):
    """
    Payment method with two representations:
    wire value (what the store expects) and form value (what the UI sends).
    """
    CASH = "Cash"
    CHECK = "Check"

    @property
    def form_value(self) -> str:
        return _FORM_VALUES[self]

    @property
    def label(self) -> str:
        return _LABELS[self]

    @classmethod
    def parse(cls, value) -> Optional["PaymentMethod"]:
        """
        Accepts wire value ("Cash"), form value ("efectivo") or label.
        Blank -> None.
        """
        if value is None or isinstance(value, cls):
            return value

        key = str(value).strip().lower()
        if not key:
            return None

        for method in cls:
            if key in (method.value.lower(), method.form_value, method.label.lower()):
                return method

        raise ValueError(f"Unknown payment method: {value}")


_FORM_VALUES = {
    PaymentMethod.CASH: "efectivo",
    PaymentMethod.CHECK: "cheque",
}

_LABELS = {
    PaymentMethod.CASH: "Efectivo",
    PaymentMethod.CHECK: "Cheque",
}


def _unset_date(value):
    if value in ("", None):
        return None
    return value


class _StoreModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Product(_StoreModel):
    id: Optional[int] = None
    name: Optional[str] = None
    unitType: Optional[str] = None


class LineItem(_StoreModel):
    """
    Line item as the store returns it. No range checks: the store is the
    source of truth, pricing.validate_line_items reports bad records.
    """
    quantity: int = 0
    weight: Optional[float] = None
    unitPrice: float = 0
    discount: float = 0
    product: Optional[Product] = None

    @field_validator("quantity", "unitPrice", "discount", mode="before")
    @classmethod
    def _null_is_zero(cls, value):
        return 0 if value is None else value


class ProductItem(LineItem):
    """Line item at data entry: 0 <= discount < 100, positive quantity."""
    quantity: int = Field(gt=0)
    unitPrice: float = Field(ge=0)
    discount: float = Field(default=0, ge=0, lt=100)

    @model_validator(mode="after")
    def _discounted_price_positive(self):
        if self.discount > 0 and self.unitPrice <= 0:
            raise ValueError("unitPrice must be positive when a discount is set")
        return self


class Client(_StoreModel):
    id: Optional[int] = None
    name: Optional[str] = None


class DeliveryOrder(_StoreModel):
    id: Optional[int] = None
    crates: Optional[int] = None


class Delivery(_StoreModel):
    id: int
    client: Optional[Client] = None
    status: str = PENDING
    date: Optional[datetime] = None
    confirmedDate: Optional[datetime] = None
    observations: Optional[str] = ""
    crates: int = 0
    amountReceived: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("amountReceived", "amount"),
    )
    paymentMethod: Optional[str] = None
    productItems: List[LineItem] = Field(default_factory=list)
    order: Optional[DeliveryOrder] = None

    @field_validator("status", mode="before")
    @classmethod
    def _canonical_status(cls, value):
        # неизвестный статус оставляем как есть — FSM его отклонит
        return normalize_status(value) or value or ""

    @field_validator("date", "confirmedDate", mode="before")
    @classmethod
    def _blank_date(cls, value):
        return _unset_date(value)

    @field_validator("date", "confirmedDate")
    @classmethod
    def _sentinel_date(cls, value: Optional[datetime]):
        if value is not None and value.year <= SENTINEL_MAX_YEAR:
            return None
        return value

    @field_validator("crates", mode="before")
    @classmethod
    def _null_crates(cls, value):
        return 0 if value is None else value


class ConfirmInput(_StoreModel):
    """
    Confirmation payload. Numbers are not range-checked here;
    delivery_lifecycle.validate_confirm_input reports per-field errors.
    """
    amountReceived: float = 0
    paymentMethod: Optional[PaymentMethod] = None
    returnedCrates: int = 0

    @field_validator("paymentMethod", mode="before")
    @classmethod
    def _parse_method(cls, value):
        return PaymentMethod.parse(value)

    @field_validator("amountReceived", "returnedCrates", mode="before")
    @classmethod
    def _null_is_zero(cls, value):
        return 0 if value in (None, "") else value


class ObservationsInput(_StoreModel):
    observations: str
