from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List
from decimal import Decimal
from uuid import UUID
from datetime import datetime
from vetclinic.models.inventory import InventoryTransactionTypeEnum, StockStatus


class InventoryItemCreate(BaseModel):
    name: str = Field(..., min_length=1)
    sku: Optional[str] = None
    description: Optional[str] = None
    manufacturer: Optional[str] = None
    unit_of_measure: Optional[str] = None
    cost_per_unit: Decimal = Field(Decimal("0"), ge=0)
    selling_price: Decimal = Field(Decimal("0"), ge=0)
    is_prescription: bool = False
    current_stock: int = Field(0, ge=0)
    minimum_stock: int = Field(0, ge=0)
    optimal_stock: Optional[int] = Field(None, ge=0)
    location: Optional[str] = None


class InventoryItemUpdate(BaseModel):
    """Stock level is deliberately absent: it only moves through adjustments."""
    name: Optional[str] = Field(None, min_length=1)
    sku: Optional[str] = None
    description: Optional[str] = None
    manufacturer: Optional[str] = None
    unit_of_measure: Optional[str] = None
    cost_per_unit: Optional[Decimal] = Field(None, ge=0)
    selling_price: Optional[Decimal] = Field(None, ge=0)
    is_prescription: Optional[bool] = None
    minimum_stock: Optional[int] = Field(None, ge=0)
    optimal_stock: Optional[int] = Field(None, ge=0)
    location: Optional[str] = None


class InventoryItemSchema(BaseModel):
    id: UUID
    sku: Optional[str] = None
    name: str
    description: Optional[str] = None
    manufacturer: Optional[str] = None
    unit_of_measure: Optional[str] = None
    cost_per_unit: Decimal
    selling_price: Decimal
    is_prescription: bool
    current_stock: int
    minimum_stock: int
    optimal_stock: Optional[int] = None
    location: Optional[str] = None
    stock_status: StockStatus

    model_config = ConfigDict(from_attributes=True)


class StockAdjustmentRequest(BaseModel):
    quantity: int
    reason: InventoryTransactionTypeEnum = InventoryTransactionTypeEnum.adjustment
    notes: Optional[str] = None

    @field_validator("quantity")
    @classmethod
    def non_zero(cls, value: int) -> int:
        if value == 0:
            raise ValueError("quantity must be non-zero")
        return value


class InventoryTransactionSchema(BaseModel):
    id: UUID
    item_id: UUID
    transaction_type: InventoryTransactionTypeEnum
    quantity: int
    unit_cost: Decimal
    total_cost: Decimal
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    performed_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class StockAdjustmentResponse(BaseModel):
    item: InventoryItemSchema
    transaction: InventoryTransactionSchema
    low_stock: bool


class ReorderSuggestion(BaseModel):
    item: InventoryItemSchema
    recommended_order_quantity: int
    days_until_stockout: Optional[int] = None


class AlertSummary(BaseModel):
    low_stock_count: int
    out_of_stock_count: int
    needs_ordering_count: int


class InventoryAlerts(BaseModel):
    low_stock: List[InventoryItemSchema]
    out_of_stock: List[InventoryItemSchema]
    needs_ordering: List[ReorderSuggestion]
    summary: AlertSummary


class ValuedItem(BaseModel):
    id: UUID
    name: str
    current_stock: int
    total_cost: Decimal
    total_value: Decimal
    potential_profit: Decimal


class ValuationSummary(BaseModel):
    total_items: int
    total_cost: Decimal
    total_retail_value: Decimal
    potential_profit: Decimal
    markup_percentage: Decimal


class InventoryValuation(BaseModel):
    items: List[ValuedItem]
    summary: ValuationSummary


class ReconciliationReport(BaseModel):
    item_id: UUID
    current_stock: int
    transaction_total: int
    transaction_count: int
    difference: int
    is_reconciled: bool
