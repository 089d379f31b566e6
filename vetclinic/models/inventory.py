# vetclinic/models/inventory.py
from sqlalchemy import Column, String, ForeignKey, DateTime, Integer, Boolean, Index, CheckConstraint, Uuid
from sqlalchemy.orm import relationship, validates
from vetclinic.models.base import Base
import uuid
from sqlalchemy import Enum as SqlEnum
from enum import Enum
from datetime import datetime
from vetclinic.utils.money import Money
from decimal import Decimal


class StockStatus(str, Enum):
    out_of_stock = "out_of_stock"
    low_stock = "low_stock"
    in_stock = "in_stock"
    optimal = "optimal"


class InventoryItem(Base):
    __tablename__ = "inventory_items"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sku = Column(String, nullable=True, unique=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    manufacturer = Column(String, nullable=True)
    unit_of_measure = Column(String, nullable=True)
    cost_per_unit_cents = Column(Integer, nullable=False, default=0)
    selling_price_cents = Column(Integer, nullable=False, default=0)
    is_prescription = Column(Boolean, nullable=False, default=False)
    current_stock = Column(Integer, nullable=False, default=0)
    minimum_stock = Column(Integer, nullable=False, default=0)
    optimal_stock = Column(Integer, nullable=True)
    location = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    transactions = relationship("InventoryTransaction", back_populates="item", order_by="InventoryTransaction.created_at")

    __table_args__ = (
        CheckConstraint("current_stock >= 0", name="current_stock_non_negative"),
        CheckConstraint("minimum_stock >= 0", name="minimum_stock_non_negative"),
        Index("ix_inventory_items_name", "name"),
    )

    @validates("current_stock", "minimum_stock", "optimal_stock")
    def _validate_levels(self, key, value):
        if value is not None and value < 0:
            raise ValueError(f"{key} cannot be negative (got {value})")
        return value

    @property
    def cost_per_unit(self) -> Decimal:
        """Expose as Money when reading."""
        return Money.from_cents(self.cost_per_unit_cents).amount

    @cost_per_unit.setter
    def cost_per_unit(self, value: Money | Decimal | str | float):
        if not isinstance(value, Money):
            value = Money(value)
        self.cost_per_unit_cents = value.to_cents()

    @property
    def selling_price(self) -> Decimal:
        return Money.from_cents(self.selling_price_cents).amount

    @selling_price.setter
    def selling_price(self, value: Money | Decimal | str | float):
        if not isinstance(value, Money):
            value = Money(value)
        self.selling_price_cents = value.to_cents()

    @property
    def stock_status(self) -> StockStatus:
        if self.current_stock == 0:
            return StockStatus.out_of_stock
        if self.current_stock <= self.minimum_stock:
            return StockStatus.low_stock
        if self.optimal_stock and self.current_stock >= self.optimal_stock:
            return StockStatus.optimal
        return StockStatus.in_stock


class InventoryTransactionTypeEnum(str, Enum):
    sale = "sale"
    purchase = "purchase"
    adjustment = "adjustment"


class InventoryTransaction(Base):
    """One stock movement. Rows are only ever inserted."""
    __tablename__ = "inventory_transactions"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    item_id = Column(Uuid(as_uuid=True), ForeignKey("inventory_items.id"), nullable=False)
    transaction_type = Column(SqlEnum(InventoryTransactionTypeEnum, name="inv_trans_type"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_cost_cents = Column(Integer, nullable=False, default=0)
    total_cost_cents = Column(Integer, nullable=False, default=0)
    reference_type = Column(String, nullable=True)
    reference_id = Column(String, nullable=True)
    performed_by = Column(String, nullable=True)
    notes = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    item = relationship("InventoryItem", back_populates="transactions")

    __table_args__ = (
        CheckConstraint("quantity <> 0", name="quantity_non_zero"),
        Index("ix_inventory_transactions_item_id", "item_id"),
        Index("ix_inventory_transactions_reference", "reference_type", "reference_id"),
    )

    @property
    def unit_cost(self) -> Decimal:
        return Money.from_cents(self.unit_cost_cents).amount

    @property
    def total_cost(self) -> Decimal:
        return Money.from_cents(self.total_cost_cents).amount
