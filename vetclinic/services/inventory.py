from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID
from fastapi import BackgroundTasks
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from vetclinic.core.config import settings
from vetclinic.core.exceptions import NotFoundError, ResourceConflictException, StorageError
from vetclinic.db.service import PaginationService
from vetclinic.db.session import unit_of_work
from vetclinic.models.inventory import InventoryItem, InventoryTransaction, InventoryTransactionTypeEnum
from vetclinic.schemas.inventory import (
    AlertSummary,
    InventoryAlerts,
    InventoryItemCreate,
    InventoryItemSchema,
    InventoryItemUpdate,
    InventoryTransactionSchema,
    InventoryValuation,
    ReconciliationReport,
    ReorderSuggestion,
    StockAdjustmentRequest,
    ValuationSummary,
    ValuedItem,
)
from vetclinic.schemas.pagination import SortOrder
from vetclinic.services import reorder
from vetclinic.services.notification import (
    NotificationDispatcher,
    NotificationEvent,
    NotificationType,
    get_notification_dispatcher,
    low_stock_event,
)
from vetclinic.services.stock import StockAdjuster, StockAdjustment
from vetclinic.utils.money import Money
import logging

logger = logging.getLogger(__name__)


class InventoryService:
    def __init__(self,
        stock_adjuster: Optional[StockAdjuster] = None,
        notifier: Optional[NotificationDispatcher] = None):
        self.stock_adjuster = stock_adjuster or StockAdjuster()
        self.notifier = notifier or get_notification_dispatcher()

    async def _ensure_unique_sku(self, sku: Optional[str], db: AsyncSession, exclude_id: Optional[UUID] = None):
        if not sku:
            return
        stmt = select(InventoryItem.id).where(InventoryItem.sku == sku)
        if exclude_id:
            stmt = stmt.where(InventoryItem.id != exclude_id)
        if (await db.execute(stmt)).first():
            raise ResourceConflictException(409, f"Inventory item with SKU {sku} already exists")

    async def create_item(self, data: InventoryItemCreate, actor_id: Any, db: AsyncSession) -> InventoryItem:
        """Create an item. Opening stock is booked as an adjustment so the
        transaction ledger sums to the stock level from day one."""
        try:
            async with unit_of_work(db):
                await self._ensure_unique_sku(data.sku, db)
                item = InventoryItem(**data.model_dump(exclude={"current_stock", "cost_per_unit", "selling_price"}))
                item.cost_per_unit = data.cost_per_unit
                item.selling_price = data.selling_price
                item.current_stock = 0
                db.add(item)
                await db.flush()
                if data.current_stock:
                    await self.stock_adjuster.adjust(
                        db, item.id, data.current_stock, InventoryTransactionTypeEnum.adjustment, actor_id,
                        notes="Opening stock",
                    )
        except IntegrityError:
            raise ResourceConflictException(409, f"Inventory item with SKU {data.sku} already exists")
        except SQLAlchemyError as ex:
            logger.exception(f"unexpected error creating inventory item {data.name}")
            raise StorageError("Unexpected error while creating inventory item", ex)

        logger.info(f"Inventory item created: {item.name} ({item.id}) stock={item.current_stock} by user {actor_id}")
        return item

    async def get_item(self, item_id: UUID, db: AsyncSession) -> InventoryItem:
        item = await db.get(InventoryItem, item_id, populate_existing=True)
        if not item:
            raise NotFoundError("Inventory item", item_id)
        return item

    async def update_item(self, item_id: UUID, data: InventoryItemUpdate, actor_id: Any, db: AsyncSession) -> InventoryItem:
        changes = data.model_dump(exclude_unset=True)
        try:
            async with unit_of_work(db):
                item = await self.get_item(item_id, db)
                if "sku" in changes:
                    await self._ensure_unique_sku(changes["sku"], db, exclude_id=item.id)
                for field, value in changes.items():
                    setattr(item, field, value)
                await db.flush()
        except IntegrityError:
            raise ResourceConflictException(409, f"Inventory item with SKU {changes.get('sku')} already exists")
        except SQLAlchemyError as ex:
            logger.exception(f"unexpected error updating inventory item {item_id}")
            raise StorageError("Unexpected error while updating inventory item", ex)

        logger.info(f"Inventory item {item_id} updated by user {actor_id}: {sorted(changes)}")
        return item

    async def list_items(self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 20,
        query_str: Optional[str] = None,
        low_stock: bool = False,
        out_of_stock: bool = False):

        conditions = []
        if out_of_stock:
            conditions.append(InventoryItem.current_stock == 0)
        elif low_stock:
            conditions.append(InventoryItem.current_stock <= InventoryItem.minimum_stock)

        pagination_service = PaginationService(db)
        try:
            return await pagination_service.paginate(
                model_class=InventoryItem,
                output_schema=InventoryItemSchema,
                page=page,
                limit=limit,
                sort_by="name",
                sort_order=SortOrder.asc,
                conditions=conditions,
                query_str=query_str,
                search_columns=["name", "sku", "description", "manufacturer"],
            )
        except SQLAlchemyError as ex:
            logger.exception("unexpected error listing inventory items")
            raise StorageError("Unexpected error while listing inventory items", ex)

    async def adjust_stock(self,
        item_id: UUID,
        data: StockAdjustmentRequest,
        actor_id: Any,
        db: AsyncSession,
        background_tasks: Optional[BackgroundTasks] = None) -> StockAdjustment:

        try:
            async with unit_of_work(db):
                adjustment = await self.stock_adjuster.adjust(
                    db, item_id, data.quantity, data.reason, actor_id, notes=data.notes,
                )
        except SQLAlchemyError as ex:
            logger.exception(f"unexpected error adjusting stock of item {item_id}")
            raise StorageError("Unexpected error while adjusting stock", ex)

        item = adjustment.item
        events = [NotificationEvent(
            type=NotificationType.stock_adjusted,
            payload={
                "item_id": str(item.id),
                "previous_stock": adjustment.previous_stock,
                "current_stock": item.current_stock,
                "quantity": data.quantity,
                "reason": adjustment.transaction.transaction_type.value,
            },
        )]
        if adjustment.low_stock:
            events.append(low_stock_event(item))
        await self.notifier.dispatch(events, background_tasks)
        return adjustment

    async def get_history(self, item_id: UUID, db: AsyncSession, page: int = 1, limit: int = 20):
        await self.get_item(item_id, db)
        pagination_service = PaginationService(db)
        return await pagination_service.paginate(
            model_class=InventoryTransaction,
            output_schema=InventoryTransactionSchema,
            page=page,
            limit=limit,
            sort_by="created_at",
            sort_order=SortOrder.desc,
            filters={"item_id": item_id},
        )

    async def _consumption(self, db: AsyncSession, window_days: int):
        """Units sold per item over the trailing window."""
        since = datetime.utcnow() - timedelta(days=window_days)
        result = await db.execute(
            select(InventoryTransaction.item_id, func.sum(-InventoryTransaction.quantity))
            .where(
                InventoryTransaction.transaction_type == InventoryTransactionTypeEnum.sale,
                InventoryTransaction.created_at >= since,
            )
            .group_by(InventoryTransaction.item_id)
        )
        return {item_id: int(total or 0) for item_id, total in result.all()}

    async def get_alerts(self, db: AsyncSession) -> InventoryAlerts:
        window = settings.reorder_window_days
        try:
            result = await db.execute(
                select(InventoryItem)
                .where(InventoryItem.current_stock <= InventoryItem.minimum_stock)
                .order_by(InventoryItem.current_stock, InventoryItem.name)
            )
            items = result.scalars().all()
            consumption = await self._consumption(db, window)
        except SQLAlchemyError as ex:
            logger.exception("unexpected error building stock alerts")
            raise StorageError("Unexpected error while building stock alerts", ex)

        out_of_stock = [InventoryItemSchema.model_validate(i) for i in items if i.current_stock == 0]
        low_stock = [InventoryItemSchema.model_validate(i) for i in items if i.current_stock > 0]
        needs_ordering = [
            ReorderSuggestion(
                item=InventoryItemSchema.model_validate(i),
                recommended_order_quantity=reorder.recommended_order_quantity(i),
                days_until_stockout=reorder.days_until_stockout(i, consumption.get(i.id, 0), window),
            )
            for i in items if reorder.needs_ordering(i)
        ]
        return InventoryAlerts(
            low_stock=low_stock,
            out_of_stock=out_of_stock,
            needs_ordering=needs_ordering,
            summary=AlertSummary(
                low_stock_count=len(low_stock),
                out_of_stock_count=len(out_of_stock),
                needs_ordering_count=len(needs_ordering),
            ),
        )

    async def get_valuation(self, db: AsyncSession) -> InventoryValuation:
        try:
            result = await db.execute(select(InventoryItem).order_by(InventoryItem.name))
            items = result.scalars().all()
        except SQLAlchemyError as ex:
            logger.exception("unexpected error computing inventory valuation")
            raise StorageError("Unexpected error while computing inventory valuation", ex)

        valued = []
        for item in items:
            cost = Money.from_cents(item.cost_per_unit_cents) * item.current_stock
            value = Money.from_cents(item.selling_price_cents) * item.current_stock
            valued.append(ValuedItem(
                id=item.id,
                name=item.name,
                current_stock=item.current_stock,
                total_cost=cost.amount,
                total_value=value.amount,
                potential_profit=(value - cost).amount,
            ))

        total_cost = Money.sum(Money(v.total_cost) for v in valued)
        total_value = Money.sum(Money(v.total_value) for v in valued)
        profit = total_value - total_cost
        markup = Decimal("0")
        if total_cost > Money(0):
            markup = (profit.amount / total_cost.amount * 100).quantize(Decimal("0.01"))
        return InventoryValuation(
            items=valued,
            summary=ValuationSummary(
                total_items=len(valued),
                total_cost=total_cost.amount,
                total_retail_value=total_value.amount,
                potential_profit=profit.amount,
                markup_percentage=markup,
            ),
        )

    async def reconcile(self, item_id: UUID, db: AsyncSession) -> ReconciliationReport:
        item = await self.get_item(item_id, db)
        result = await db.execute(
            select(func.coalesce(func.sum(InventoryTransaction.quantity), 0), func.count(InventoryTransaction.id))
            .where(InventoryTransaction.item_id == item_id)
        )
        total, count = result.one()
        total = int(total)
        if total != item.current_stock:
            logger.warning(f"Stock of {item.name} ({item.id}) is {item.current_stock} but its transactions sum to {total}")
        return ReconciliationReport(
            item_id=item.id,
            current_stock=item.current_stock,
            transaction_total=total,
            transaction_count=count,
            difference=item.current_stock - total,
            is_reconciled=total == item.current_stock,
        )
