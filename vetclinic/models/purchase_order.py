# vetclinic/models/purchase_order.py
from sqlalchemy import Column, String, ForeignKey, DateTime, Date, Integer, Index, CheckConstraint, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from vetclinic.models.base import Base
from sqlalchemy import Enum as SqlEnum
from enum import Enum
from datetime import datetime
from vetclinic.utils.money import Money
from decimal import Decimal
import uuid


class PurchaseOrderStatus(str, Enum):
    draft = "draft"
    approved = "approved"
    partially_received = "partially_received"
    received = "received"
    cancelled = "cancelled"


RECEIVABLE_STATUSES = (PurchaseOrderStatus.approved, PurchaseOrderStatus.partially_received)
CANCELLABLE_STATUSES = (PurchaseOrderStatus.draft, PurchaseOrderStatus.approved)


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    po_number = Column(String, nullable=False, unique=True, index=True)
    supplier_name = Column(String, nullable=False)
    status = Column(SqlEnum(PurchaseOrderStatus, name="purchase_order_status"), default=PurchaseOrderStatus.draft, nullable=False)
    expected_delivery_date = Column(Date, nullable=True)
    actual_delivery_date = Column(Date, nullable=True)

    subtotal_cents = Column(Integer, nullable=False, default=0)
    tax_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False, default=0)

    notes = Column(String, nullable=True)
    created_by = Column(String, nullable=True)
    approved_by = Column(String, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship("PurchaseOrderItem", back_populates="purchase_order", cascade="all, delete-orphan", order_by="PurchaseOrderItem.position")

    __table_args__ = (
        Index("ix_purchase_orders_status", "status"),
    )

    @property
    def subtotal(self) -> Decimal:
        return Money.from_cents(self.subtotal_cents).amount

    @property
    def tax(self) -> Decimal:
        return Money.from_cents(self.tax_cents).amount

    @property
    def total(self) -> Decimal:
        return Money.from_cents(self.total_cents).amount

    @property
    def is_fully_received(self) -> bool:
        return all(line.quantity_outstanding == 0 for line in self.items)


class PurchaseOrderItem(Base):
    __tablename__ = "purchase_order_items"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    purchase_order_id = Column(Uuid(as_uuid=True), ForeignKey("purchase_orders.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    item_id = Column(Uuid(as_uuid=True), ForeignKey("inventory_items.id"), nullable=False)
    quantity_ordered = Column(Integer, nullable=False)
    quantity_received = Column(Integer, nullable=False, default=0)
    unit_cost_cents = Column(Integer, nullable=False, default=0)
    total_cost_cents = Column(Integer, nullable=False, default=0)

    purchase_order = relationship("PurchaseOrder", back_populates="items")
    item = relationship("InventoryItem")

    __table_args__ = (
        CheckConstraint("quantity_ordered > 0", name="po_item_quantity_positive"),
        CheckConstraint("quantity_received >= 0 AND quantity_received <= quantity_ordered", name="po_item_received_in_range"),
        UniqueConstraint("purchase_order_id", "item_id", name="uq_po_item_per_order"),
    )

    @property
    def quantity_outstanding(self) -> int:
        return self.quantity_ordered - (self.quantity_received or 0)

    @property
    def unit_cost(self) -> Decimal:
        return Money.from_cents(self.unit_cost_cents).amount

    @property
    def total_cost(self) -> Decimal:
        return Money.from_cents(self.total_cost_cents).amount
