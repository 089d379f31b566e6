# vetclinic/models/invoice.py
from sqlalchemy import Column, String, ForeignKey, DateTime, Date, Integer, Numeric, Index, CheckConstraint, Uuid
from sqlalchemy.orm import relationship, validates
from vetclinic.models.base import Base
from sqlalchemy import Enum as SqlEnum
from enum import Enum
from datetime import datetime
from vetclinic.utils.money import Money
from decimal import Decimal
import uuid


class InvoiceStatus(str, Enum):
    draft = "draft"
    pending_approval = "pending_approval"
    approved = "approved"
    sent = "sent"
    partially_paid = "partially_paid"
    paid = "paid"
    cancelled = "cancelled"


# statuses from which an invoice may still be edited, approved or cancelled
PRE_APPROVAL_STATUSES = (InvoiceStatus.draft, InvoiceStatus.pending_approval)
PAYABLE_STATUSES = (InvoiceStatus.approved, InvoiceStatus.sent, InvoiceStatus.partially_paid)


class InvoiceItemType(str, Enum):
    service = "service"
    product = "product"
    medication = "medication"
    diagnostic = "diagnostic"


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_number = Column(String, nullable=False, unique=True, index=True)
    status = Column(SqlEnum(InvoiceStatus, name="invoice_status"), default=InvoiceStatus.draft, nullable=False)
    client_id = Column(Uuid(as_uuid=True), ForeignKey("clients.id"), nullable=False)
    pet_id = Column(Uuid(as_uuid=True), ForeignKey("pets.id"), nullable=True)
    appointment_id = Column(String, nullable=True)

    subtotal_cents = Column(Integer, nullable=False, default=0)
    tax_amount_cents = Column(Integer, nullable=False, default=0)
    total_amount_cents = Column(Integer, nullable=False, default=0)
    amount_paid_cents = Column(Integer, nullable=False, default=0)
    balance_due_cents = Column(Integer, nullable=False, default=0)

    notes = Column(String, nullable=True)
    issue_date = Column(Date, nullable=False, default=lambda: datetime.utcnow().date())
    due_date = Column(Date, nullable=True)
    generated_by = Column(String, nullable=True)
    approved_by = Column(String, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship("InvoiceItem", back_populates="invoice", cascade="all, delete-orphan", order_by="InvoiceItem.position")
    payments = relationship("Payment", back_populates="invoice", order_by="Payment.created_at")
    client = relationship("Client")
    pet = relationship("Pet")

    __table_args__ = (
        Index("ix_invoices_client_id", "client_id"),
        Index("ix_invoices_status", "status"),
    )

    @property
    def subtotal(self) -> Decimal:
        return Money.from_cents(self.subtotal_cents).amount

    @property
    def tax_amount(self) -> Decimal:
        return Money.from_cents(self.tax_amount_cents).amount

    @property
    def total_amount(self) -> Decimal:
        return Money.from_cents(self.total_amount_cents).amount

    @property
    def amount_paid(self) -> Decimal:
        return Money.from_cents(self.amount_paid_cents).amount

    @property
    def balance_due(self) -> Decimal:
        return Money.from_cents(self.balance_due_cents).amount

    @property
    def is_editable(self) -> bool:
        return self.status in PRE_APPROVAL_STATUSES

    def set_totals(self, subtotal: Money, tax_amount: Money):
        """Store new financials, keeping total = subtotal + tax and
        balance = total - paid."""
        self.subtotal_cents = subtotal.to_cents()
        self.tax_amount_cents = tax_amount.to_cents()
        self.total_amount_cents = self.subtotal_cents + self.tax_amount_cents
        self.balance_due_cents = self.total_amount_cents - (self.amount_paid_cents or 0)

    def apply_payment(self, amount: Money):
        self.amount_paid_cents = (self.amount_paid_cents or 0) + amount.to_cents()
        self.balance_due_cents = self.total_amount_cents - self.amount_paid_cents


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_id = Column(Uuid(as_uuid=True), ForeignKey("invoices.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    item_type = Column(SqlEnum(InvoiceItemType, name="invoice_item_type"), nullable=False)
    description = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price_cents = Column(Integer, nullable=False)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)
    discount_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    inventory_item_id = Column(Uuid(as_uuid=True), ForeignKey("inventory_items.id"), nullable=True)
    subtotal_cents = Column(Integer, nullable=False)
    total_cents = Column(Integer, nullable=False)

    invoice = relationship("Invoice", back_populates="items")
    inventory_item = relationship("InventoryItem")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="invoice_item_quantity_positive"),
    )

    @validates("quantity")
    def _validate_quantity(self, key, value):
        if value is None or value <= 0:
            raise ValueError(f"quantity must be positive (got {value})")
        return value

    @property
    def unit_price(self) -> Decimal:
        return Money.from_cents(self.unit_price_cents).amount

    @property
    def subtotal(self) -> Decimal:
        return Money.from_cents(self.subtotal_cents).amount

    @property
    def total(self) -> Decimal:
        return Money.from_cents(self.total_cents).amount
