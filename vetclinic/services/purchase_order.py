"""Purchase orders: the supplier side of the stock ledger.

Receiving goods is the path that books ``purchase`` transactions. Every
received line goes through the stock adjuster inside one unit of work, so a
receipt either lands completely or not at all.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID
from fastapi import BackgroundTasks
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from vetclinic.core.config import settings
from vetclinic.core.exceptions import InvalidStateError, NotFoundError, StorageError, ValidationError
from vetclinic.db.service import PaginationService
from vetclinic.db.session import unit_of_work
from vetclinic.models.inventory import InventoryItem, InventoryTransactionTypeEnum
from vetclinic.models.purchase_order import (
    CANCELLABLE_STATUSES,
    RECEIVABLE_STATUSES,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderStatus,
)
from vetclinic.schemas.pagination import SortOrder
from vetclinic.schemas.purchase_order import PurchaseOrderCreate, PurchaseOrderSummarySchema, ReceivePurchaseOrderRequest
from vetclinic.services.notification import NotificationDispatcher, NotificationEvent, NotificationType, get_notification_dispatcher
from vetclinic.services.sequence import SequenceService
from vetclinic.services.stock import StockAdjuster, StockAdjustment
from vetclinic.utils.money import Money
import logging

logger = logging.getLogger(__name__)


@dataclass
class ReceiptResult:
    purchase_order: PurchaseOrder
    adjustments: List[StockAdjustment] = field(default_factory=list)

    @property
    def items_received(self) -> int:
        return len(self.adjustments)

    @property
    def units_received(self) -> int:
        return sum(adjustment.transaction.quantity for adjustment in self.adjustments)


async def load_purchase_order(po_id: UUID, db: AsyncSession, for_update: bool = False) -> Optional[PurchaseOrder]:
    stmt = (
        select(PurchaseOrder)
        .options(selectinload(PurchaseOrder.items))
        .where(PurchaseOrder.id == po_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update(of=PurchaseOrder)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


class PurchaseOrderService:
    def __init__(self,
        stock_adjuster: Optional[StockAdjuster] = None,
        notifier: Optional[NotificationDispatcher] = None,
        sequences: Optional[SequenceService] = None):
        self.stock_adjuster = stock_adjuster or StockAdjuster()
        self.notifier = notifier or get_notification_dispatcher()
        self.sequences = sequences or SequenceService()

    async def next_po_number(self, db: AsyncSession, today: Optional[date] = None) -> str:
        year = (today or datetime.utcnow().date()).year
        value = await self.sequences.next_value(f"purchase-order-{year}", db)
        return f"{settings.purchase_order_number_prefix}-{year}-{value:06d}"

    async def create_purchase_order(self, data: PurchaseOrderCreate, actor_id: Any, db: AsyncSession) -> PurchaseOrder:
        item_ids = [line.item_id for line in data.items]
        if len(set(item_ids)) != len(item_ids):
            raise ValidationError("Each inventory item may appear only once on a purchase order")

        try:
            async with unit_of_work(db):
                result = await db.execute(select(InventoryItem.id).where(InventoryItem.id.in_(item_ids)))
                missing = set(item_ids) - set(result.scalars().all())
                if missing:
                    raise NotFoundError("Inventory item", sorted(missing, key=str)[0])

                rows = []
                for position, line in enumerate(data.items):
                    unit_cost = Money(line.unit_cost)
                    rows.append(PurchaseOrderItem(
                        position=position,
                        item_id=line.item_id,
                        quantity_ordered=line.quantity,
                        quantity_received=0,
                        unit_cost_cents=unit_cost.to_cents(),
                        total_cost_cents=(unit_cost * line.quantity).to_cents(),
                    ))
                subtotal = Money.from_cents(sum(row.total_cost_cents for row in rows))
                tax = subtotal.percent(data.tax_rate)

                po = PurchaseOrder(
                    po_number=await self.next_po_number(db),
                    supplier_name=data.supplier_name,
                    status=PurchaseOrderStatus.draft,
                    expected_delivery_date=data.expected_delivery_date,
                    subtotal_cents=subtotal.to_cents(),
                    tax_cents=tax.to_cents(),
                    total_cents=subtotal.to_cents() + tax.to_cents(),
                    notes=data.notes,
                    created_by=str(actor_id) if actor_id is not None else None,
                    items=rows,
                )
                db.add(po)
                await db.flush()
                po_id = po.id
        except SQLAlchemyError as ex:
            logger.exception(f"unexpected error creating purchase order for {data.supplier_name}")
            raise StorageError("Unexpected error while creating purchase order", ex)

        logger.info(f"Purchase order created: {po.po_number} ({po_id}) by user {actor_id}")
        return await self.get_purchase_order(po_id, db)

    async def get_purchase_order(self, po_id: UUID, db: AsyncSession) -> PurchaseOrder:
        try:
            po = await load_purchase_order(po_id, db)
        except SQLAlchemyError as ex:
            logger.exception(f"unexpected error reading purchase order {po_id}")
            raise StorageError("Unexpected error while reading purchase order", ex)
        if not po:
            raise NotFoundError("Purchase order", po_id)
        return po

    async def list_purchase_orders(self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 20,
        status: Optional[PurchaseOrderStatus] = None,
        query_str: Optional[str] = None):

        filters = {"status": status} if status else {}
        pagination_service = PaginationService(db)
        try:
            return await pagination_service.paginate(
                model_class=PurchaseOrder,
                output_schema=PurchaseOrderSummarySchema,
                page=page,
                limit=limit,
                sort_by="created_at",
                sort_order=SortOrder.desc,
                filters=filters,
                query_str=query_str,
                search_columns=["po_number", "supplier_name"],
            )
        except SQLAlchemyError as ex:
            logger.exception("unexpected error listing purchase orders")
            raise StorageError("Unexpected error while listing purchase orders", ex)

    async def _locked(self, po_id: UUID, db: AsyncSession) -> PurchaseOrder:
        po = await load_purchase_order(po_id, db, for_update=True)
        if not po:
            raise NotFoundError("Purchase order", po_id)
        return po

    async def approve_purchase_order(self, po_id: UUID, actor_id: Any, db: AsyncSession) -> PurchaseOrder:
        try:
            async with unit_of_work(db):
                po = await self._locked(po_id, db)
                if po.status != PurchaseOrderStatus.draft:
                    raise InvalidStateError("Only draft purchase orders can be approved", po.status)
                po.status = PurchaseOrderStatus.approved
                po.approved_by = str(actor_id) if actor_id is not None else None
                po.approved_at = datetime.utcnow()
                await db.flush()
        except SQLAlchemyError as ex:
            logger.exception(f"unexpected error approving purchase order {po_id}")
            raise StorageError("Unexpected error while approving purchase order", ex)

        logger.info(f"Purchase order approved: {po.po_number} by user {actor_id}")
        return po

    async def cancel_purchase_order(self, po_id: UUID, actor_id: Any, db: AsyncSession) -> PurchaseOrder:
        try:
            async with unit_of_work(db):
                po = await self._locked(po_id, db)
                if po.status not in CANCELLABLE_STATUSES:
                    raise InvalidStateError("Purchase orders cannot be cancelled once goods were received", po.status)
                po.status = PurchaseOrderStatus.cancelled
                await db.flush()
        except SQLAlchemyError as ex:
            logger.exception(f"unexpected error cancelling purchase order {po_id}")
            raise StorageError("Unexpected error while cancelling purchase order", ex)

        logger.info(f"Purchase order cancelled: {po.po_number} by user {actor_id}")
        return po

    def _quantities_to_receive(self, po: PurchaseOrder, data: ReceivePurchaseOrderRequest) -> Dict[UUID, int]:
        lines = {line.item_id: line for line in po.items}
        if data.items is None:
            return {line.item_id: line.quantity_outstanding for line in po.items if line.quantity_outstanding > 0}

        quantities: Dict[UUID, int] = defaultdict(int)
        for received in data.items:
            if received.item_id not in lines:
                raise ValidationError(f"Inventory item {received.item_id} is not on purchase order {po.po_number}")
            quantities[received.item_id] += received.quantity_received
        for item_id, quantity in quantities.items():
            outstanding = lines[item_id].quantity_outstanding
            if quantity > outstanding:
                raise ValidationError(
                    f"Cannot receive {quantity} of inventory item {item_id}: only {outstanding} outstanding on {po.po_number}"
                )
        return dict(quantities)

    async def receive_purchase_order(self,
        po_id: UUID,
        data: ReceivePurchaseOrderRequest,
        actor_id: Any,
        db: AsyncSession,
        background_tasks: Optional[BackgroundTasks] = None) -> ReceiptResult:
        """Book received goods into stock.

        Each received line becomes one ``purchase`` transaction at the
        ordered unit cost. The order moves to ``received`` once nothing is
        outstanding, otherwise to ``partially_received``.
        """
        try:
            async with unit_of_work(db):
                po = await self._locked(po_id, db)
                if po.status not in RECEIVABLE_STATUSES:
                    raise InvalidStateError("Purchase order must be approved before goods can be received", po.status)
                quantities = self._quantities_to_receive(po, data)
                if not quantities:
                    raise ValidationError(f"Nothing left to receive on purchase order {po.po_number}")

                await self.stock_adjuster.lock_items(quantities.keys(), db)
                notes = f"Received from PO {po.po_number}"
                if data.notes:
                    notes = f"{notes}: {data.notes}"

                adjustments = []
                for line in po.items:
                    quantity = quantities.get(line.item_id)
                    if not quantity:
                        continue
                    adjustments.append(await self.stock_adjuster.adjust(
                        db,
                        line.item_id,
                        quantity,
                        InventoryTransactionTypeEnum.purchase,
                        actor_id,
                        reference_type="purchase_order",
                        reference_id=po.id,
                        notes=notes,
                        unit_cost_cents=line.unit_cost_cents,
                    ))
                    line.quantity_received += quantity

                if po.is_fully_received:
                    po.status = PurchaseOrderStatus.received
                    po.actual_delivery_date = datetime.utcnow().date()
                else:
                    po.status = PurchaseOrderStatus.partially_received
                await db.flush()
        except SQLAlchemyError as ex:
            logger.exception(f"storage error receiving purchase order {po_id}")
            raise StorageError("Failed to receive purchase order; no changes were applied", ex)

        result = ReceiptResult(purchase_order=po, adjustments=adjustments)
        logger.info(f"Inventory received for PO {po.po_number}: {result.units_received} units across {result.items_received} items, status {po.status.value}")
        await self.notifier.dispatch([NotificationEvent(
            type=NotificationType.inventory_received,
            payload={
                "purchase_order_id": str(po.id),
                "po_number": po.po_number,
                "status": po.status.value,
                "items": [
                    {"item_id": str(adjustment.item.id), "quantity": adjustment.transaction.quantity, "current_stock": adjustment.item.current_stock}
                    for adjustment in adjustments
                ],
            },
        )], background_tasks)
        return result
