from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Optional
from uuid import UUID
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from vetclinic.models.inventory import InventoryItem, InventoryTransaction, InventoryTransactionTypeEnum
from vetclinic.core.exceptions import InsufficientStockError, NotFoundError, ValidationError
import logging

logger = logging.getLogger(__name__)


@dataclass
class StockAdjustment:
    item: InventoryItem
    transaction: InventoryTransaction
    previous_stock: int

    @property
    def low_stock(self) -> bool:
        """True when the new level sits at or under the reorder threshold
        but is not empty."""
        return 0 < self.item.current_stock <= self.item.minimum_stock


def shortage(item: InventoryItem, required: int, available: Optional[int] = None) -> Dict[str, Any]:
    return {
        "item_id": item.id,
        "item_name": item.name,
        "available": item.current_stock if available is None else available,
        "required": required,
    }


class StockAdjuster:
    """Applies one signed quantity change to one inventory item and writes
    the matching transaction row.

    Works inside the caller's unit of work: it flushes but never commits,
    so the stock write and the transaction insert land (or vanish) together
    with everything else the caller does.
    """

    def __init__(self):
        pass

    async def lock_items(self, item_ids: Iterable[UUID], db: AsyncSession) -> Dict[UUID, InventoryItem]:
        """Load and row-lock several items. Locks are taken in id order so two
        workers touching overlapping items cannot deadlock."""
        ids = sorted(set(item_ids), key=str)
        if not ids:
            return {}
        result = await db.execute(
            select(InventoryItem)
            .where(InventoryItem.id.in_(ids))
            .order_by(InventoryItem.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {item.id: item for item in result.scalars().all()}

    async def adjust(self,
        db: AsyncSession,
        item_id: UUID,
        quantity: int,
        reason: InventoryTransactionTypeEnum | str,
        actor_id: Optional[Any],
        reference_type: Optional[str] = None,
        reference_id: Optional[Any] = None,
        notes: Optional[str] = None,
        unit_cost_cents: Optional[int] = None) -> StockAdjustment:

        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity == 0:
            raise ValidationError(f"quantity must be a non-zero integer, got {quantity!r}")
        try:
            reason = InventoryTransactionTypeEnum(reason)
        except ValueError:
            raise ValidationError(f"unknown stock movement reason {reason!r}")

        result = await db.execute(
            select(InventoryItem)
            .where(InventoryItem.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        item = result.scalar_one_or_none()
        if not item:
            raise NotFoundError("Inventory item", item_id)

        previous_stock = item.current_stock
        if previous_stock + quantity < 0:
            raise InsufficientStockError([shortage(item, required=-quantity)])

        # relative update guarded on the resulting level: a concurrent writer
        # that slipped past the row lock can only make this match nothing
        result = await db.execute(
            update(InventoryItem)
            .where(InventoryItem.id == item.id, InventoryItem.current_stock + quantity >= 0)
            .values(current_stock=InventoryItem.current_stock + quantity, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.refresh(item)
            raise InsufficientStockError([shortage(item, required=-quantity)])
        await db.refresh(item)

        if unit_cost_cents is None:
            unit_cost_cents = item.cost_per_unit_cents or 0
        transaction = InventoryTransaction(
            item_id=item.id,
            transaction_type=reason,
            quantity=quantity,
            unit_cost_cents=unit_cost_cents,
            total_cost_cents=abs(quantity) * unit_cost_cents,
            reference_type=reference_type,
            reference_id=str(reference_id) if reference_id is not None else None,
            performed_by=str(actor_id) if actor_id is not None else None,
            notes=notes,
        )
        db.add(transaction)
        await db.flush()

        adjustment = StockAdjustment(item=item, transaction=transaction, previous_stock=previous_stock)
        logger.info(f"stock {item.name} ({item.id}) {previous_stock} -> {item.current_stock} reason={reason.value} ref={reference_type}:{reference_id}")
        if adjustment.low_stock:
            logger.warning(f"Low stock alert: {item.name} ({item.current_stock} remaining, minimum: {item.minimum_stock})")
        return adjustment
