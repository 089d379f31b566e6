from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional
from decimal import Decimal
from uuid import UUID
from datetime import date, datetime
from vetclinic.core.config import settings
from vetclinic.models.purchase_order import PurchaseOrderStatus


class PurchaseOrderItemCreate(BaseModel):
    item_id: UUID
    quantity: int = Field(..., gt=0)
    unit_cost: Decimal = Field(..., ge=0)


class PurchaseOrderCreate(BaseModel):
    supplier_name: str = Field(..., min_length=1)
    expected_delivery_date: Optional[date] = None
    tax_rate: Decimal = Field(default_factory=lambda: Decimal(str(settings.default_tax_rate)), ge=0, le=100)
    notes: Optional[str] = None
    items: List[PurchaseOrderItemCreate] = Field(..., min_length=1)


class ReceivedItem(BaseModel):
    item_id: UUID
    quantity_received: int = Field(..., gt=0)


class ReceivePurchaseOrderRequest(BaseModel):
    """Leave `items` out to receive everything still outstanding."""
    items: Optional[List[ReceivedItem]] = None
    notes: Optional[str] = None


class PurchaseOrderItemSchema(BaseModel):
    id: UUID
    item_id: UUID
    quantity_ordered: int
    quantity_received: int
    quantity_outstanding: int
    unit_cost: Decimal
    total_cost: Decimal
    model_config = ConfigDict(from_attributes=True)


class PurchaseOrderSchema(BaseModel):
    id: UUID
    po_number: str
    supplier_name: str
    status: PurchaseOrderStatus
    expected_delivery_date: Optional[date] = None
    actual_delivery_date: Optional[date] = None
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    notes: Optional[str] = None
    created_by: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    items: List[PurchaseOrderItemSchema]
    model_config = ConfigDict(from_attributes=True)


class PurchaseOrderSummarySchema(BaseModel):
    id: UUID
    po_number: str
    supplier_name: str
    status: PurchaseOrderStatus
    total: Decimal
    expected_delivery_date: Optional[date] = None
    model_config = ConfigDict(from_attributes=True)


class ReceiptResponse(BaseModel):
    purchase_order: PurchaseOrderSchema
    items_received: int
    units_received: int
