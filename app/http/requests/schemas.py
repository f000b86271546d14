"""
Pydantic schemas for request validation (Http/Requests).
Bodies use the camelCase keys the frontend sends; services receive snake_case dicts.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Union, List
from datetime import datetime


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def fields_dict(self, exclude: Optional[set] = None) -> dict:
        """Set, non-null fields keyed by attribute (snake_case) name."""
        return self.model_dump(exclude_none=True, exclude_unset=True, exclude=exclude)


# Return Schemas
class SmartCheckIn(BaseModel):
    code: str
    inputs: Union[dict, List[dict]] = Field(default_factory=dict)
    is_mandatory: bool = False


class ProductIn(CamelModel):
    product_name: str = Field(..., alias="productName")
    quantity: int = Field(..., ge=1)
    image_url: Optional[str] = Field(None, alias="imageUrl")
    smart_checks: Optional[List[SmartCheckIn]] = Field(None, alias="smartChecks")

    @field_validator("product_name")
    @classmethod
    def validate_product_name(cls, v):
        if not v.strip():
            raise ValueError("productName must not be empty")
        return v.strip()


DESTINATION_KEYS = {
    "destination_name",
    "destination_address_line1",
    "destination_address_line2",
    "destination_city",
    "destination_state",
    "destination_pincode",
    "destination_phone",
}


class ReturnFields(CamelModel):
    """Caller-supplied return fields; anything omitted falls back to the stored order."""
    customer_name: Optional[str] = Field(None, alias="customerName")
    customer_phone: Optional[str] = Field(None, alias="customerPhone")
    customer_email: Optional[str] = Field(None, alias="customerEmail")
    customer_address: Optional[str] = Field(None, alias="customerAddress")
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    products: Optional[List[ProductIn]] = None
    dead_weight: Optional[float] = Field(None, alias="deadWeight")
    length: Optional[float] = None
    breadth: Optional[float] = None
    height: Optional[float] = None
    volumetric_weight: Optional[float] = Field(None, alias="volumetricWeight")
    amount: Optional[float] = None
    payment_mode: Optional[str] = Field(None, alias="paymentMode")
    gstin: Optional[str] = None
    hsn: Optional[str] = None
    invoice_id: Optional[str] = Field(None, alias="invoiceId")
    category: Optional[str] = None
    cgst: Optional[float] = None
    sgst: Optional[float] = None
    igst: Optional[float] = None

    destination_name: Optional[str] = Field(None, alias="destinationName")
    destination_address_line1: Optional[str] = Field(None, alias="destinationAddressLine1")
    destination_address_line2: Optional[str] = Field(None, alias="destinationAddressLine2")
    destination_city: Optional[str] = Field(None, alias="destinationCity")
    destination_state: Optional[str] = Field(None, alias="destinationState")
    destination_pincode: Optional[str] = Field(None, alias="destinationPincode")
    destination_phone: Optional[str] = Field(None, alias="destinationPhone")

    @field_validator("customer_phone", "pincode", "destination_phone", "destination_pincode", mode="before")
    @classmethod
    def coerce_numeric_strings(cls, v):
        # Spreadsheet-sourced phones and pincodes often arrive as numbers
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(int(v))
        return v

    def customer_fields(self) -> dict:
        return self.fields_dict(exclude=DESTINATION_KEYS)

    def destination_overrides(self) -> dict:
        return {k: v for k, v in self.fields_dict().items() if k in DESTINATION_KEYS}


class CreateReturnRequest(ReturnFields):
    order_id: str = Field(..., alias="orderId")

    @field_validator("order_id")
    @classmethod
    def validate_order_id(cls, v):
        v = v.strip().lstrip("#")
        if not v:
            raise ValueError("orderId must not be empty")
        return v

    def customer_fields(self) -> dict:
        return self.fields_dict(exclude=DESTINATION_KEYS | {"order_id"})

    def destination_overrides(self) -> dict:
        return {k: v for k, v in self.fields_dict(exclude={"order_id"}).items() if k in DESTINATION_KEYS}


class BulkTrackRequest(CamelModel):
    tracking_ids: List[str] = Field(..., alias="trackingIds", min_length=1)


# Order Schemas
class OrderFields(CamelModel):
    shopify_id: Optional[str] = Field(None, alias="shopifyId")
    order_date: Optional[datetime] = Field(None, alias="orderDate")
    awb: Optional[str] = None
    customer_name: Optional[str] = Field(None, alias="customerName")
    customer_phone: Optional[str] = Field(None, alias="customerPhone")
    customer_email: Optional[str] = Field(None, alias="customerEmail")
    customer_address: Optional[str] = Field(None, alias="customerAddress")
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    destination_name: Optional[str] = Field(None, alias="destinationName")
    destination_address_line1: Optional[str] = Field(None, alias="destinationAddressLine1")
    destination_address_line2: Optional[str] = Field(None, alias="destinationAddressLine2")
    destination_city: Optional[str] = Field(None, alias="destinationCity")
    destination_state: Optional[str] = Field(None, alias="destinationState")
    destination_pincode: Optional[str] = Field(None, alias="destinationPincode")
    destination_phone: Optional[str] = Field(None, alias="destinationPhone")
    products: Optional[List[ProductIn]] = None
    image_url: Optional[str] = Field(None, alias="imageUrl")
    dead_weight: Optional[float] = Field(None, alias="deadWeight")
    length: Optional[float] = None
    breadth: Optional[float] = None
    height: Optional[float] = None
    amount: Optional[float] = None
    payment_mode: Optional[str] = Field(None, alias="paymentMode")
    cgst: Optional[float] = None
    sgst: Optional[float] = None
    igst: Optional[float] = None
    hsn_code: Optional[str] = Field(None, alias="hsnCode")
    gstin_number: Optional[str] = Field(None, alias="gstinNumber")
    category: Optional[str] = None
    unit_price: Optional[float] = Field(None, alias="unitPrice")
    pickup_address: Optional[str] = Field(None, alias="pickupAddress")
    pickup_city: Optional[str] = Field(None, alias="pickupCity")
    pickup_state: Optional[str] = Field(None, alias="pickupState")
    pickup_pincode: Optional[str] = Field(None, alias="pickupPincode")
    service_tier: Optional[str] = Field(None, alias="serviceTier")
    invoice_reference: Optional[str] = Field(None, alias="invoiceReference")

    @field_validator("customer_phone", "pincode", "destination_phone", "destination_pincode", "pickup_pincode", mode="before")
    @classmethod
    def coerce_numeric_strings(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(int(v))
        return v


class OrderCreate(OrderFields):
    order_id: str = Field(..., alias="orderId")

    @field_validator("order_id")
    @classmethod
    def validate_order_id(cls, v):
        v = v.strip().lstrip("#")
        if not v:
            raise ValueError("orderId must not be empty")
        return v


class OrderUpdate(OrderFields):
    pass
