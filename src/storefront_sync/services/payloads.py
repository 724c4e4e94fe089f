"""Typed payloads for records pushed by the storefront plugin.

Records arrive as loosely typed JSON objects. They are parsed into these
models at the ingestion boundary; anything that does not parse is a
structural error and the record is skipped, never coerced. Identifiers must be
integral numbers (1001.0 is accepted as 1001; numeric strings and booleans are
not) and money fields real numbers.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    Strict,
    StringConstraints,
)

from shared.clock import to_naive_utc


class EntityKind(str, Enum):
    """Entity kinds the upsert engine accepts. Values double as sync types."""

    ORDERS = "orders"
    PRODUCTS = "products"
    CUSTOMERS = "customers"
    CATEGORIES = "categories"

    @property
    def singular(self) -> str:
        return "category" if self is EntityKind.CATEGORIES else self.value[:-1]


def _parse_iso_datetime(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError("expected a non-empty ISO-8601 date string")
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    return to_naive_utc(parsed)


def _integral_float(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


# JSON encoders may send 1001.0 for an integer id; bools and strings still fail
ExternalId = Annotated[int, Strict(), BeforeValidator(_integral_float)]
Amount = Annotated[float, Strict()]
Count = Annotated[int, Strict(), Field(ge=0)]
IsoDatetime = Annotated[datetime, BeforeValidator(_parse_iso_datetime)]
NonEmptyStr = Annotated[str, Strict(), StringConstraints(min_length=1)]
NonBlankStr = Annotated[str, Strict(), StringConstraints(strip_whitespace=True, min_length=1)]
OptionalStr = Annotated[str, Strict()] | None


def is_reference(external_id: int | None) -> bool:
    """``0``, negatives and ``None`` mean "no reference" in storefront payloads."""
    return external_id is not None and external_id > 0


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    def references(self) -> dict[str, list[int | None]]:
        """External ids this record points at, keyed by referenced table."""
        return {}


# =============================================================================
# Orders
# =============================================================================


class OrderItemPayload(_Payload):
    """A line item inside an order payload."""

    wc_product_id: ExternalId | None = None
    product_name: OptionalStr = None
    sku: OptionalStr = None
    quantity: Count = 1
    subtotal: Amount | None = None
    total: Amount | None = None


class OrderPayload(_Payload):
    """Order with its line items."""

    wc_order_id: ExternalId
    date_created: IsoDatetime
    date_modified: IsoDatetime | None = None
    status: NonEmptyStr
    total: Amount
    subtotal: Amount | None = None
    tax_total: Amount | None = None
    shipping_total: Amount | None = None
    discount_total: Amount | None = None
    currency: OptionalStr = None
    customer_id: ExternalId | None = None
    payment_method: OptionalStr = None
    coupon_used: OptionalStr = None
    items: list[OrderItemPayload] | None = None

    @property
    def external_id(self) -> int:
        return self.wc_order_id

    def references(self) -> dict[str, list[int | None]]:
        return {
            "customers": [self.customer_id],
            "products": [item.wc_product_id for item in self.items or []],
        }


# =============================================================================
# Catalog
# =============================================================================


class ProductPayload(_Payload):
    """Product. ``category_id`` 0 means uncategorized."""

    wc_product_id: ExternalId
    name: NonBlankStr
    sku: OptionalStr = None
    price: Amount | None = None
    regular_price: Amount | None = None
    sale_price: Amount | None = None
    category_id: ExternalId | None = None
    category_name: OptionalStr = None
    stock_quantity: Annotated[int, Strict()] | None = None
    stock_status: OptionalStr = None
    status: OptionalStr = None
    type: OptionalStr = None
    created_at: IsoDatetime | None = None
    updated_at: IsoDatetime | None = None

    @property
    def external_id(self) -> int:
        return self.wc_product_id

    def references(self) -> dict[str, list[int | None]]:
        return {"categories": [self.category_id]}


class CategoryPayload(_Payload):
    """Category. ``parent_id`` 0 means a root category."""

    wc_category_id: ExternalId
    name: NonBlankStr
    parent_id: ExternalId | None = None
    product_count: Count | None = None

    @property
    def external_id(self) -> int:
        return self.wc_category_id

    def references(self) -> dict[str, list[int | None]]:
        return {"categories": [self.parent_id]}


# =============================================================================
# Customers
# =============================================================================


class CustomerPayload(_Payload):
    """Customer aggregate. The plaintext email is hashed and then dropped."""

    wc_customer_id: ExternalId
    email: OptionalStr = Field(default=None, exclude=True, repr=False)
    display_name: OptionalStr = None
    total_spent: Amount | None = None
    order_count: Count | None = None
    first_order_date: IsoDatetime | None = None
    last_order_date: IsoDatetime | None = None
    created_at: IsoDatetime | None = None

    @property
    def external_id(self) -> int:
        return self.wc_customer_id


Payload = OrderPayload | ProductPayload | CustomerPayload | CategoryPayload

PAYLOAD_MODELS: dict[EntityKind, type[_Payload]] = {
    EntityKind.ORDERS: OrderPayload,
    EntityKind.PRODUCTS: ProductPayload,
    EntityKind.CUSTOMERS: CustomerPayload,
    EntityKind.CATEGORIES: CategoryPayload,
}
