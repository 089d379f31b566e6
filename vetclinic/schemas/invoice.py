from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional
from decimal import Decimal
from uuid import UUID
from datetime import date, datetime
from vetclinic.core.config import settings
from vetclinic.models.invoice import InvoiceItemType, InvoiceStatus
from vetclinic.models.payment import PaymentMethod


class InvoiceItemCreate(BaseModel):
    item_type: InvoiceItemType
    description: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    tax_rate: Decimal = Field(default_factory=lambda: Decimal(str(settings.default_tax_rate)), ge=0, le=100)
    discount_percentage: Decimal = Field(Decimal("0"), ge=0, le=100)
    inventory_item_id: Optional[UUID] = None


class InvoiceCreate(BaseModel):
    client_id: UUID
    pet_id: Optional[UUID] = None
    appointment_id: Optional[str] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    items: List[InvoiceItemCreate] = Field(..., min_length=1)


class InvoiceUpdate(BaseModel):
    """Only the free-text and scheduling fields; items and status have their
    own operations."""
    notes: Optional[str] = None
    due_date: Optional[date] = None


class ReplaceItemsRequest(BaseModel):
    items: List[InvoiceItemCreate] = Field(..., min_length=1)


class ApproveInvoiceRequest(BaseModel):
    items: Optional[List[InvoiceItemCreate]] = None
    notes: Optional[str] = None


class PaymentCreate(BaseModel):
    payment_method: PaymentMethod
    amount: Decimal = Field(..., gt=0)
    reference_number: Optional[str] = None
    notes: Optional[str] = None


class InvoiceItemSchema(BaseModel):
    id: UUID
    item_type: InvoiceItemType
    description: str
    quantity: int
    unit_price: Decimal
    tax_rate: Decimal
    discount_percentage: Decimal
    inventory_item_id: Optional[UUID] = None
    subtotal: Decimal
    total: Decimal
    model_config = ConfigDict(from_attributes=True)


class PaymentSchema(BaseModel):
    id: UUID
    payment_method: PaymentMethod
    amount: Decimal
    reference_number: Optional[str] = None
    processed_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class InvoiceSchema(BaseModel):
    id: UUID
    invoice_number: str
    status: InvoiceStatus
    client_id: UUID
    pet_id: Optional[UUID] = None
    appointment_id: Optional[str] = None
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    notes: Optional[str] = None
    issue_date: date
    due_date: Optional[date] = None
    generated_by: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    items: List[InvoiceItemSchema]
    payments: List[PaymentSchema] = []
    model_config = ConfigDict(from_attributes=True)


class InvoiceSummarySchema(BaseModel):
    id: UUID
    invoice_number: str
    status: InvoiceStatus
    client_id: UUID
    pet_id: Optional[UUID] = None
    total_amount: Decimal
    balance_due: Decimal
    issue_date: date
    model_config = ConfigDict(from_attributes=True)


class LabelInstructionSchema(BaseModel):
    inventory_item_id: UUID
    item_name: str
    description: str
    quantity: int
    patient_name: str
    owner_name: str
    model_config = ConfigDict(from_attributes=True)


class ApprovalResponse(BaseModel):
    message: str = "Invoice approved successfully"
    invoice: InvoiceSchema
    inventory_deducted: int
    labels_generated: int
    labels: List[LabelInstructionSchema]


class PaymentResponse(BaseModel):
    payment: PaymentSchema
    invoice: InvoiceSchema
