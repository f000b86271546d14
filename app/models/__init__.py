"""
SQLAlchemy models for orders and their return tracking.
All model and enum definitions live here for simplicity and to avoid circular imports.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, Numeric, Float, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum
import uuid

# Enums
class OrderStatus(str, enum.Enum):
    """Order-level statuses written by the return lifecycle. Other values (e.g. InfoReceived) may come from upstream."""
    NEW = "New"
    RETURN_REQUESTED = "RETURN_REQUESTED"

# Courier status (case-sensitive) after which retry-reset and reschedule are allowed
PICKUP_CANCELLED_STATUS = "Reverse pickup cancelled"

# Models
class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column("order_id", String, unique=True, nullable=False, index=True)
    shopify_id = Column("shopify_id", String, unique=True, nullable=True)
    order_date = Column("order_date", DateTime, server_default=func.now())
    awb = Column("awb", String, nullable=True)

    customer_name = Column("customer_name", String, nullable=True)
    customer_phone = Column("customer_phone", String, nullable=True)
    customer_email = Column("customer_email", String, nullable=True)
    customer_address = Column("customer_address", String, nullable=True)
    city = Column("city", String, nullable=True)
    state = Column("state", String, nullable=True)
    pincode = Column("pincode", String, nullable=True)

    # Address-of-record for return shipments
    destination_name = Column("destination_name", String, nullable=True)
    destination_address_line1 = Column("destination_address_line1", String, nullable=True)
    destination_address_line2 = Column("destination_address_line2", String, nullable=True)
    destination_city = Column("destination_city", String, nullable=True)
    destination_state = Column("destination_state", String, nullable=True)
    destination_pincode = Column("destination_pincode", String, nullable=True)
    destination_phone = Column("destination_phone", String, nullable=True)

    image_url = Column("image_url", String, default="")

    dead_weight = Column("dead_weight", Float, nullable=True)
    length = Column("length", Float, nullable=True)
    breadth = Column("breadth", Float, nullable=True)
    height = Column("height", Float, nullable=True)
    volumetric_weight = Column("volumetric_weight", Float, nullable=True)

    amount = Column("amount", Numeric(12, 2), default=0)
    payment_mode = Column("payment_mode", String, default="")

    cgst = Column("cgst", Numeric(12, 2), nullable=True)
    sgst = Column("sgst", Numeric(12, 2), nullable=True)
    igst = Column("igst", Numeric(12, 2), nullable=True)
    hsn_code = Column("hsn_code", String, nullable=True)
    gstin_number = Column("gstin_number", String, nullable=True)
    category = Column("category", String, nullable=True)
    unit_price = Column("unit_price", Numeric(12, 2), nullable=True)
    pickup_address = Column("pickup_address", String, nullable=True)
    pickup_city = Column("pickup_city", String, nullable=True)
    pickup_state = Column("pickup_state", String, nullable=True)
    pickup_pincode = Column("pickup_pincode", String, nullable=True)
    service_tier = Column("service_tier", String, nullable=True)
    invoice_reference = Column("invoice_reference", String, nullable=True)

    ekart_response = Column("ekart_response", JSON, nullable=True)

    status = Column("status", String, nullable=False, default=OrderStatus.NEW.value)
    version = Column("version", Integer, nullable=False, default=1)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    products = relationship("OrderProduct", back_populates="order", cascade="all, delete-orphan", order_by="OrderProduct.position")
    return_tracking = relationship("ReturnTracking", back_populates="order", uselist=False, cascade="all, delete-orphan")

    # Optimistic check: concurrent writers of the same order row get StaleDataError
    __mapper_args__ = {"version_id_col": version}

class OrderProduct(Base):
    __tablename__ = "order_products"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column("order_id", String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column("position", Integer, nullable=False, default=0)
    product_name = Column("product_name", String, nullable=False)
    quantity = Column("quantity", Integer, nullable=False)
    image_url = Column("image_url", String, default="")
    # [{"code": ..., "inputs": {...}, "is_mandatory": bool}]
    smart_checks = Column("smart_checks", JSON, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())

    order = relationship("Order", back_populates="products")

class ReturnTracking(Base):
    __tablename__ = "return_trackings"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column("order_id", String, ForeignKey("orders.id", ondelete="CASCADE"), unique=True, nullable=False)
    current_status = Column("current_status", String, nullable=False, default="")
    ekart_tracking_id = Column("ekart_tracking_id", String, nullable=False, default="", index=True)
    last_updated = Column("last_updated", DateTime(timezone=True), nullable=True)
    retry_count = Column("retry_count", Integer, nullable=False, default=0)
    previous_attempt_cancelled = Column("previous_attempt_cancelled", Boolean, nullable=False, default=False)
    cancelled_date = Column("cancelled_date", DateTime(timezone=True), nullable=True)
    previous_tracking_id = Column("previous_tracking_id", String, nullable=True)

    order = relationship("Order", back_populates="return_tracking")
    history = relationship(
        "ReturnTrackingEvent",
        back_populates="return_tracking",
        cascade="all, delete-orphan",
        order_by="ReturnTrackingEvent.seq",
    )

class ReturnTrackingEvent(Base):
    """One audit entry of a return. Rows are only ever appended; retry-reset deletes them all."""
    __tablename__ = "return_tracking_events"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    return_tracking_id = Column("return_tracking_id", String, ForeignKey("return_trackings.id", ondelete="CASCADE"), nullable=False, index=True)
    seq = Column("seq", Integer, nullable=False)
    status = Column("status", String, nullable=False)
    timestamp = Column("timestamp", DateTime(timezone=True), nullable=False)
    description = Column("description", String, nullable=True)
    city = Column("city", String, nullable=True)
    hub_name = Column("hub_name", String, nullable=True)
    previous_tracking_id = Column("previous_tracking_id", String, nullable=True)

    return_tracking = relationship("ReturnTracking", back_populates="history")

    __table_args__ = (
        UniqueConstraint("return_tracking_id", "seq", name="return_tracking_events_seq_unique"),
    )
