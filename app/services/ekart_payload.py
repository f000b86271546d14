"""
Ekart reverse-shipment request builder.

Builds the RETURNS_SMART_CHECK / REVERSE create body from an order plus caller overrides.
Field precedence is: caller value, then the value stored on the order, then a fallback.
Pure apart from the clock and randomness used for the tracking ID.
"""
import logging
import re
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from app.config import settings
from app.services.ekart_errors import ValidationError

logger = logging.getLogger(__name__)

SERVICE_CODE = "RETURNS_SMART_CHECK"
SERVICE_LEG = "REVERSE"
GOODS_CATEGORY = "ESSENTIAL"
DEFAULT_ITEM_CATEGORY = "Apparel"
DEFAULT_SMART_CHECK_CODE = "ITEM_MATCH"
MIN_DIMENSION = 1

# Override key -> Order attribute
ORDER_FIELDS = {
    "order_id": "order_id",
    "customer_name": "customer_name",
    "customer_phone": "customer_phone",
    "customer_email": "customer_email",
    "customer_address": "customer_address",
    "city": "city",
    "state": "state",
    "pincode": "pincode",
    "amount": "amount",
    "payment_mode": "payment_mode",
    "hsn": "hsn_code",
    "invoice_id": "invoice_reference",
    "gstin": "gstin_number",
    "category": "category",
    "dead_weight": "dead_weight",
    "volumetric_weight": "volumetric_weight",
    "length": "length",
    "breadth": "breadth",
    "height": "height",
    "cgst": "cgst",
    "sgst": "sgst",
    "igst": "igst",
}

REQUIRED_FIELDS = (
    "order_id",
    "customer_name",
    "customer_phone",
    "customer_address",
    "city",
    "state",
    "pincode",
    "products",
    "amount",
    "hsn",
    "invoice_id",
)

DESTINATION_FIELDS = (
    "destination_name",
    "destination_address_line1",
    "destination_address_line2",
    "destination_city",
    "destination_state",
    "destination_pincode",
    "destination_phone",
)


@dataclass
class ShipmentRequest:
    order_id: str
    tracking_id: str
    client_reference_id: str
    payload: dict
    # destination_* values actually sent; persisted as the order's address-of-record on success
    destination: dict = field(default_factory=dict)


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _pick(overrides: dict, order: Any, key: str, attr: Optional[str] = None, fallback: Any = None) -> Any:
    value = overrides.get(key)
    if not _blank(value):
        return value
    value = getattr(order, attr or key, None) if order is not None else None
    if not _blank(value):
        return value
    return fallback


def _positive_number(value: Any, default: float = MIN_DIMENSION) -> float:
    """Coerce to a positive float; zero, negative, missing or garbage -> default."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number or number <= 0:  # NaN or non-positive
        return default
    return number


def _money(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def generate_tracking_id(
    order_id: str,
    *,
    prefix: Optional[str] = None,
    exclude: Iterable[str] = (),
    clock: Callable[[], float] = time.time,
) -> str:
    """
    Correlation ID = prefix + last 6 digits of order_id + millisecond clock + 4 random digits.
    Never returns a value in `exclude`, so a retry for the same order always gets a new ID.
    """
    prefix = settings.EKART_TRACKING_PREFIX if prefix is None else prefix
    digits = re.sub(r"\D", "", str(order_id or ""))[-6:].rjust(6, "0")
    excluded = {e for e in exclude if e}
    while True:
        stamp = str(int(clock() * 1000))[-8:]
        candidate = f"{prefix}{digits}{stamp}{secrets.randbelow(10000):04d}"
        if candidate not in excluded:
            return candidate


def client_reference_id(order_id: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "", str(order_id or ""))[:20]


def product_dicts(order: Any) -> list[dict]:
    """Stored OrderProduct rows as plain dicts in request shape."""
    if order is None:
        return []
    return [
        {
            "product_name": p.product_name,
            "quantity": p.quantity,
            "smart_checks": p.smart_checks or [],
        }
        for p in (getattr(order, "products", None) or [])
    ]


def translate_smart_checks(checks: Optional[list], product_title: str) -> list[dict]:
    """
    Caller checks [{code, inputs, is_mandatory}] -> Ekart smart_checks.
    Inputs may be a mapping or an already name/value list. Without caller checks a single
    non-mandatory item-match check is synthesized.
    """
    translated = []
    for check in checks or []:
        if not isinstance(check, dict) or _blank(check.get("code")):
            continue
        inputs = check.get("inputs") or {}
        if isinstance(inputs, dict):
            check_inputs = [{"name": str(k), "value": v} for k, v in inputs.items()]
        else:
            check_inputs = [i for i in inputs if isinstance(i, dict)]
        translated.append(
            {
                "check_code": str(check["code"]).strip().upper(),
                "check_inputs": check_inputs,
                "is_mandatory": bool(check.get("is_mandatory", False)),
            }
        )
    if translated:
        return translated
    return [
        {
            "check_code": DEFAULT_SMART_CHECK_CODE,
            "check_inputs": [{"name": "product_title", "value": product_title}],
            "is_mandatory": False,
        }
    ]


def resolve_destination(order: Any, destination_overrides: Optional[dict], config: Any = settings) -> dict:
    overrides = destination_overrides or {}
    fallback = config.RETURN_DESTINATION_FALLBACK
    return {key: _pick(overrides, order, key, fallback=fallback.get(key) or "") for key in DESTINATION_FIELDS}


def build_shipment_request(
    order: Any,
    overrides: Optional[dict] = None,
    destination_overrides: Optional[dict] = None,
    *,
    exclude_tracking_ids: Iterable[str] = (),
    config: Any = settings,
) -> ShipmentRequest:
    """
    Merge caller fields over the stored order and build the Ekart create body.
    Raises ValidationError naming the first missing required field.
    """
    overrides = dict(overrides or {})
    fields = {key: _pick(overrides, order, key, attr) for key, attr in ORDER_FIELDS.items()}
    products = overrides.get("products")
    if not products:
        products = product_dicts(order)
    fields["products"] = products

    for name in REQUIRED_FIELDS:
        value = fields.get(name)
        if name == "products":
            if not isinstance(value, list) or not value:
                raise ValidationError(f"Missing or invalid field: {name}")
        elif _blank(value) or (name == "amount" and not _money(value)):
            raise ValidationError(f"Missing or invalid field: {name}")

    order_id = str(fields["order_id"])
    tracking_id = generate_tracking_id(
        order_id, prefix=config.EKART_TRACKING_PREFIX, exclude=exclude_tracking_ids
    )
    amount = _money(fields["amount"])
    weight = fields["dead_weight"] if not _blank(fields["dead_weight"]) else fields["volumetric_weight"]
    dimensions = {
        "length": {"value": _positive_number(fields["length"])},
        "breadth": {"value": _positive_number(fields["breadth"])},
        "height": {"value": _positive_number(fields["height"])},
        "weight": {"value": _positive_number(weight)},
    }

    destination = resolve_destination(order, destination_overrides, config)
    destination_block: dict = {
        "address": {
            "first_name": destination["destination_name"],
            "address_line1": destination["destination_address_line1"],
            "address_line2": destination["destination_address_line2"],
            "pincode": destination["destination_pincode"],
            "city": destination["destination_city"],
            "state": destination["destination_state"],
            "primary_contact_number": str(destination["destination_phone"]),
        }
    }
    if config.EKART_RETURN_LOCATION_CODE:
        destination_block["location_code"] = config.EKART_RETURN_LOCATION_CODE

    tax_breakup = {k: f"{_money(fields[k]):.1f}" for k in ("cgst", "sgst", "igst")}
    items = []
    for idx, item in enumerate(products):
        title = str(item.get("product_name") or item.get("productName") or f"Item {idx + 1}")
        items.append(
            {
                "product_id": f"SKU-{idx + 1}",
                "category": fields["category"] or DEFAULT_ITEM_CATEGORY,
                "product_title": title,
                "quantity": int(_positive_number(item.get("quantity"))),
                "cost": {
                    "total_sale_value": amount,
                    "total_tax_value": 0,
                    "tax_breakup": tax_breakup,
                },
                "seller_details": {
                    "seller_reg_name": config.EKART_SELLER_NAME,
                    "gstin_id": fields["gstin"] or "",
                },
                "hsn": str(fields["hsn"] or ""),
                "ern": "",
                "discount": "",
                "item_attributes": [
                    {"name": "order_id", "value": order_id},
                    {"name": "invoice_id", "value": str(fields["invoice_id"])},
                ],
                "pickup_info": {
                    "reason": "OTHER_REASON",
                    "sub_reason": "OTHER_REASON",
                    "reason_description": "Customer requested for Return",
                },
                "smart_checks": translate_smart_checks(item.get("smart_checks"), title),
            }
        )

    reference = client_reference_id(order_id)
    payload = {
        "client_name": config.EKART_CLIENT_NAME,
        "goods_category": GOODS_CATEGORY,
        "services": [
            {
                "service_code": SERVICE_CODE,
                "service_details": [
                    {
                        "service_leg": SERVICE_LEG,
                        "service_data": {
                            "amount_to_collect": 0,
                            "delivery_type": "SMALL",
                            "source": {
                                "address": {
                                    "first_name": str(fields["customer_name"]),
                                    "address_line1": str(fields["customer_address"]),
                                    "address_line2": str(fields["city"]),
                                    "pincode": str(fields["pincode"]),
                                    "city": str(fields["city"]),
                                    "state": str(fields["state"]),
                                    "primary_contact_number": str(fields["customer_phone"]),
                                }
                            },
                            "destination": destination_block,
                        },
                        "shipment": {
                            "client_reference_id": reference,
                            "tracking_id": tracking_id,
                            "shipment_value": amount,
                            "shipment_dimensions": dimensions,
                            "shipment_items": items,
                        },
                    }
                ],
            }
        ],
    }
    logger.debug("Built Ekart return request order_id=%s tracking_id=%s items=%s", order_id, tracking_id, len(items))
    return ShipmentRequest(
        order_id=order_id,
        tracking_id=tracking_id,
        client_reference_id=reference,
        payload=payload,
        destination=destination,
    )
