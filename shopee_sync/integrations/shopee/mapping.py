"""
Boundary mapping from Shopee payloads to validated records.

Everything the platform sends is untrusted until it passes through here:
- status strings are translated through fixed tables (unknown -> default)
- money arrives in micro-units and is rescaled to two-decimal Decimal
- timestamps arrive as unix seconds and become aware UTC datetimes
- weights arrive in grams and become kilograms

A payload that cannot be mapped raises ItemMappingError. The sync engine
records it against that one item and moves on.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from shopee_sync.platform.errors import ItemMappingError

# Platform amounts are integers scaled by 100000
MICRO_UNITS_PER_UNIT = Decimal(100000)
TWO_PLACES = Decimal("0.01")
GRAMS_PER_KILOGRAM = Decimal(1000)

ORDER_STATUS_MAP = {
    "UNPAID": "unpaid",
    "INVOICE_PENDING": "unpaid",
    "TO_SHIP": "to_ship",
    "READY_TO_SHIP": "to_ship",
    "PROCESSED": "to_ship",
    "RETRY_SHIP": "to_ship",
    "RETRY_SHIPPING": "to_ship",
    "SHIPPED": "shipped",
    "TO_CONFIRM_RECEIVE": "to_confirm_receive",
    "IN_CANCEL": "in_cancel",
    "CANCELLED": "cancelled",
    "TO_RETURN": "to_return",
    "COMPLETED": "completed",
}
DEFAULT_ORDER_STATUS = "unpaid"

PRODUCT_STATUS_MAP = {
    "NORMAL": "normal",
    "DELETED": "deleted",
    "SELLER_DELETE": "deleted",
    "SHOPEE_DELETE": "deleted",
    "BANNED": "banned",
    "REVIEWING": "reviewing",
    "DRAFT": "reviewing",
}
DEFAULT_PRODUCT_STATUS = "normal"

# Local order statuses that mean the parcel has left the seller
SHIPPED_ORDER_STATUSES = frozenset({"shipped", "to_confirm_receive", "completed"})

SHIPMENT_FIELDS = ("tracking_number", "shipping_carrier", "ship_time")

REGION_CURRENCIES = {
    "VN": "VND",
    "TH": "THB",
    "MY": "MYR",
    "SG": "SGD",
    "PH": "PHP",
    "ID": "IDR",
    "BR": "BRL",
    "TW": "TWD",
}


def map_order_status(remote_status: Optional[str]) -> str:
    return ORDER_STATUS_MAP.get(remote_status or "", DEFAULT_ORDER_STATUS)


def map_product_status(remote_status: Optional[str]) -> str:
    return PRODUCT_STATUS_MAP.get(remote_status or "", DEFAULT_PRODUCT_STATUS)


def from_micro_units(value: Any) -> Decimal:
    """
    Convert a platform micro-unit amount to a two-decimal Decimal.

    Raises:
        ValueError: If the value is not numeric
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Invalid amount: {value!r}")
    try:
        amount = Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return (amount / MICRO_UNITS_PER_UNIT).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def optional_micro_units(value: Any) -> Decimal:
    """Like from_micro_units, with a missing amount counted as zero."""
    return from_micro_units(0 if value is None else value)


def from_unix(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


class RemoteLineItem(BaseModel):
    """One purchased model within an order."""
    model_config = ConfigDict(protected_namespaces=())

    item_id: str
    item_name: str = ""
    item_sku: str = ""
    model_id: Optional[str] = None
    model_name: Optional[str] = None
    model_sku: Optional[str] = None
    quantity: int = Field(default=0, ge=0)
    original_price: Decimal
    discounted_price: Decimal
    wholesale_price: Optional[Decimal] = None
    weight: Optional[float] = None
    image_url: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        """JSON-safe dict for the order's items column (amounts as strings)."""
        return self.model_dump(mode="json")


class RemoteOrder(BaseModel):
    """Order detail as validated at the API boundary."""
    order_sn: str = Field(min_length=1)
    shop_id: str
    remote_status: str
    order_status: str
    payment_status: str = "pending"
    buyer_user_id: Optional[str] = None
    buyer_username: Optional[str] = None
    recipient_address: Optional[Dict[str, Any]] = None
    total_amount: Decimal
    actual_shipping_fee: Decimal = Decimal("0.00")
    goods_to_receive: Decimal = Decimal("0.00")
    coin_offset: Decimal = Decimal("0.00")
    escrow_amount: Decimal = Decimal("0.00")
    currency: Optional[str] = None
    items: List[RemoteLineItem] = Field(default_factory=list)
    payment_method: Optional[str] = None
    tracking_number: Optional[str] = None
    shipping_carrier: Optional[str] = None
    create_time: Optional[datetime] = None
    update_time: Optional[datetime] = None
    pay_time: Optional[datetime] = None
    ship_time: Optional[datetime] = None
    delivery_time: Optional[datetime] = None
    note: Optional[str] = None
    cancel_reason: Optional[str] = None
    cancel_by: Optional[str] = None

    @property
    def is_shipped(self) -> bool:
        return self.order_status in SHIPPED_ORDER_STATUSES

    def mutable_fields(self) -> Dict[str, Any]:
        """
        Columns sync overwrites on every pass. Excludes creation metadata.

        Shipment fields are only included when the platform sent them, so a
        sync never erases tracking recorded by a ship action.
        """
        fields = {
            "shop_id": self.shop_id,
            "order_status": self.order_status,
            "remote_status": self.remote_status,
            "payment_status": self.payment_status,
            "buyer_user_id": self.buyer_user_id,
            "buyer_username": self.buyer_username,
            "recipient_address": self.recipient_address,
            "total_amount": self.total_amount,
            "actual_shipping_fee": self.actual_shipping_fee,
            "goods_to_receive": self.goods_to_receive,
            "coin_offset": self.coin_offset,
            "escrow_amount": self.escrow_amount,
            "currency": self.currency,
            "items": [item.to_json() for item in self.items],
            "payment_method": self.payment_method,
            "tracking_number": self.tracking_number,
            "shipping_carrier": self.shipping_carrier,
            "update_time": self.update_time,
            "pay_time": self.pay_time,
            "ship_time": self.ship_time,
            "delivery_time": self.delivery_time,
            "note": self.note,
            "cancel_reason": self.cancel_reason,
            "cancel_by": self.cancel_by,
        }
        for column in SHIPMENT_FIELDS:
            if fields[column] is None:
                del fields[column]
        return fields


class RemoteProduct(BaseModel):
    """Item base info as validated at the API boundary."""
    item_id: str = Field(min_length=1)
    shop_id: str
    item_name: str
    item_sku: Optional[str] = None
    description: Optional[str] = None
    price: Decimal = Decimal("0.00")
    original_price: Decimal = Decimal("0.00")
    stock: int = Field(default=0, ge=0)
    remote_status: Optional[str] = None
    item_status: str
    category_id: Optional[str] = None
    weight: Optional[Decimal] = None
    dimension: Optional[Dict[str, Any]] = None
    images: List[str] = Field(default_factory=list)
    has_model: bool = False
    logistic_info: Optional[List[Dict[str, Any]]] = None
    wholesale: Optional[List[Dict[str, Any]]] = None
    create_time: Optional[datetime] = None
    update_time: Optional[datetime] = None

    @field_validator("item_name")
    @classmethod
    def _non_blank_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("item_name must not be blank")
        return value

    def mutable_fields(self) -> Dict[str, Any]:
        """Columns sync overwrites on every pass. Excludes creation metadata."""
        return {
            "item_name": self.item_name,
            "item_sku": self.item_sku,
            "description": self.description,
            "price": self.price,
            "original_price": self.original_price,
            "stock": self.stock,
            "item_status": self.item_status,
            "remote_status": self.remote_status,
            "category_id": self.category_id,
            "weight": self.weight,
            "dimension": self.dimension,
            "images": self.images,
            "has_model": self.has_model,
            "logistic_info": self.logistic_info,
            "wholesale": self.wholesale,
            "update_time": self.update_time,
        }


def _mapping_error(kind: str, ref: Optional[str], error: Exception) -> ItemMappingError:
    if isinstance(error, ValidationError):
        reasons = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or kind}: {err['msg']}"
            for err in error.errors()
        )
    else:
        reasons = str(error)
    return ItemMappingError(f"Invalid {kind} payload: {reasons}", item_ref=ref)


# Anything a structurally wrong payload can raise while being read
MAPPING_ERRORS = (ValidationError, ValueError, TypeError, AttributeError, KeyError, InvalidOperation)


def _object(value: Any, name: str) -> Dict[str, Any]:
    """A nested object that may be absent; present but not an object is an error."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{name} must be an object")
    return value


def _object_list(value: Any, name: str) -> List[Dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(entry, dict) for entry in value):
        raise ValueError(f"{name} must be a list of objects")
    return value


def _map_line_item(raw: Dict[str, Any]) -> RemoteLineItem:
    wholesale = raw.get("wholesale_price")
    image_info = _object(raw.get("image_info"), "item_list.image_info")
    return RemoteLineItem(
        item_id=str(raw.get("item_id") or ""),
        item_name=raw.get("item_name") or "",
        item_sku=raw.get("item_sku") or "",
        model_id=_optional_str(raw.get("model_id")),
        model_name=raw.get("model_name"),
        model_sku=raw.get("model_sku"),
        quantity=raw.get("model_quantity_purchased") or 0,
        original_price=optional_micro_units(raw.get("model_original_price")),
        discounted_price=optional_micro_units(raw.get("model_discounted_price")),
        wholesale_price=from_micro_units(wholesale) if wholesale else None,
        weight=raw.get("weight"),
        image_url=raw.get("item_image_url") or image_info.get("image_url"),
    )


def map_order(raw: Dict[str, Any], shop_id: str, region: Optional[str] = None) -> RemoteOrder:
    """
    Map an ``order/get_order_detail`` entry to a RemoteOrder.

    Raises:
        ItemMappingError: If the payload is missing required fields, holds
            values that do not convert (e.g. a non-numeric total_amount) or
            has nested members of the wrong shape
    """
    if not isinstance(raw, dict):
        raise ItemMappingError("Invalid order payload: expected an object")

    order_sn = _optional_str(raw.get("order_sn"))

    try:
        remote_status = raw.get("order_status") or ""
        line_items = _object_list(raw.get("item_list"), "item_list")
        return RemoteOrder(
            order_sn=order_sn or "",
            shop_id=str(shop_id),
            remote_status=remote_status,
            order_status=map_order_status(remote_status),
            payment_status=raw.get("payment_status") or "pending",
            buyer_user_id=_optional_str(raw.get("buyer_user_id")),
            buyer_username=raw.get("buyer_username"),
            recipient_address=raw.get("recipient_address"),
            total_amount=from_micro_units(raw.get("total_amount")),
            actual_shipping_fee=optional_micro_units(raw.get("actual_shipping_fee")),
            goods_to_receive=optional_micro_units(raw.get("goods_to_receive")),
            coin_offset=optional_micro_units(raw.get("coin_offset")),
            escrow_amount=optional_micro_units(raw.get("escrow_amount")),
            currency=raw.get("currency") or REGION_CURRENCIES.get((region or "").upper()),
            items=[_map_line_item(item) for item in line_items],
            payment_method=raw.get("payment_method"),
            tracking_number=raw.get("tracking_number"),
            shipping_carrier=raw.get("shipping_carrier"),
            create_time=from_unix(raw.get("create_time")),
            update_time=from_unix(raw.get("update_time")),
            pay_time=from_unix(raw.get("pay_time")),
            ship_time=from_unix(raw.get("ship_time")),
            delivery_time=from_unix(raw.get("delivery_time")),
            note=raw.get("note"),
            cancel_reason=raw.get("cancel_reason") or raw.get("buyer_cancel_reason"),
            cancel_by=raw.get("cancel_by"),
        )
    except MAPPING_ERRORS as e:
        raise _mapping_error("order", order_sn, e) from e


def map_product(raw: Dict[str, Any], shop_id: str) -> RemoteProduct:
    """
    Map an ``product/get_item_base_info`` entry to a RemoteProduct.

    Raises:
        ItemMappingError: If the payload cannot be validated
    """
    if not isinstance(raw, dict):
        raise ItemMappingError("Invalid product payload: expected an object")

    item_id = _optional_str(raw.get("item_id"))

    try:
        remote_status = raw.get("item_status")
        # First entry carries the base (non-model) price
        price_entries = _object_list(raw.get("price_info"), "price_info")
        price_info = price_entries[0] if price_entries else {}
        weight = raw.get("weight")
        dimension = _object(raw.get("dimension"), "dimension")
        image = _object(raw.get("image"), "image")
        wholesale = raw.get("wholesale")

        return RemoteProduct(
            item_id=item_id or "",
            shop_id=str(shop_id),
            item_name=raw.get("item_name") or "",
            item_sku=raw.get("item_sku") or None,
            description=raw.get("description") or None,
            price=optional_micro_units(price_info.get("current_price")),
            original_price=optional_micro_units(price_info.get("original_price")),
            stock=raw.get("stock") or 0,
            remote_status=remote_status,
            item_status=map_product_status(remote_status),
            category_id=_optional_str(raw.get("category_id")),
            weight=(Decimal(str(weight)) / GRAMS_PER_KILOGRAM) if weight else None,
            dimension={
                "package_length": dimension.get("package_length") or 0,
                "package_width": dimension.get("package_width") or 0,
                "package_height": dimension.get("package_height") or 0,
            } if dimension else None,
            images=image.get("image_url_list") or [],
            has_model=bool(raw.get("has_model")),
            logistic_info=raw.get("logistic_info"),
            wholesale=wholesale if isinstance(wholesale, list) else None,
            create_time=from_unix(raw.get("create_time")),
            update_time=from_unix(raw.get("update_time")),
        )
    except MAPPING_ERRORS as e:
        raise _mapping_error("product", item_id, e) from e
