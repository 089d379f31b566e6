"""Invoice approval: the one transition that commits an invoice's
financials and consumes inventory.

Everything from loading the invoice to writing the ``approved`` status is a
single unit of work. Stock is checked for the whole invoice before the
first deduction, duplicate references to one inventory item are netted,
and any failure (short stock, missing rows, storage errors, timeouts)
rolls the entire unit back. Label printing and the approval broadcast are
only published after the commit.
"""
import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID
from fastapi import BackgroundTasks
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from vetclinic.core.config import settings
from vetclinic.core.exceptions import InsufficientStockError, InvalidStateError, NotFoundError, StorageError, ValidationError
from vetclinic.db.session import unit_of_work
from vetclinic.models.inventory import InventoryItem, InventoryTransactionTypeEnum
from vetclinic.models.invoice import Invoice, InvoiceItemType, InvoiceStatus, PRE_APPROVAL_STATUSES
from vetclinic.schemas.invoice import InvoiceItemCreate
from vetclinic.services.invoice import ensure_inventory_items_exist, load_invoice
from vetclinic.services.notification import NotificationDispatcher, NotificationEvent, NotificationType, get_notification_dispatcher, low_stock_event
from vetclinic.services.pricing import build_invoice_items
from vetclinic.services.stock import StockAdjuster, StockAdjustment, shortage
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LabelInstruction:
    inventory_item_id: UUID
    item_name: str
    description: str
    quantity: int
    patient_name: str
    owner_name: str

    def as_payload(self) -> Dict[str, Any]:
        return {
            "inventory_item_id": str(self.inventory_item_id),
            "item_name": self.item_name,
            "description": self.description,
            "quantity": self.quantity,
            "patient_name": self.patient_name,
            "owner_name": self.owner_name,
        }


@dataclass
class ApprovalResult:
    invoice: Invoice
    adjustments: List[StockAdjustment] = field(default_factory=list)
    labels: List[LabelInstruction] = field(default_factory=list)

    @property
    def inventory_updated_count(self) -> int:
        return len(self.adjustments)

    @property
    def labels_generated(self) -> int:
        return len(self.labels)

    @property
    def low_stock_items(self) -> List[InventoryItem]:
        seen = {}
        for adjustment in self.adjustments:
            item = adjustment.item
            if 0 < item.current_stock <= item.minimum_stock:
                seen[item.id] = item
        return list(seen.values())


class InvoiceApprovalEngine:
    def __init__(self,
        stock_adjuster: Optional[StockAdjuster] = None,
        notifier: Optional[NotificationDispatcher] = None,
        timeout: Optional[float] = None):
        self.stock_adjuster = stock_adjuster or StockAdjuster()
        self.notifier = notifier or get_notification_dispatcher()
        self.timeout = timeout if timeout is not None else settings.approval_timeout_seconds

    async def approve(self,
        invoice_id: UUID,
        actor_id: Optional[Any],
        db: AsyncSession,
        items: Optional[Sequence[InvoiceItemCreate | dict]] = None,
        notes: Optional[str] = None,
        background_tasks: Optional[BackgroundTasks] = None) -> ApprovalResult:
        """Approve a draft or pending invoice.

        When `items` is given (and non-empty) it replaces the invoice's line
        items and the totals are recomputed before stock is deducted.

        Raises NotFoundError, InvalidStateError, InsufficientStockError,
        ValidationError or StorageError; in every case nothing is written.
        """
        override_items = self._validate_items(items)

        try:
            result = await asyncio.wait_for(
                self._approve_in_unit(invoice_id, actor_id, override_items, notes, db),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"approval of invoice {invoice_id} timed out after {self.timeout}s, rolled back")
            raise StorageError("Invoice approval timed out; no changes were applied")
        except SQLAlchemyError as ex:
            logger.exception(f"storage error approving invoice {invoice_id}")
            raise StorageError("Failed to approve invoice; no changes were applied", ex)

        logger.info(
            f"Invoice approved: {invoice_id} by {actor_id}. "
            f"{result.inventory_updated_count} items deducted from inventory, "
            f"{result.labels_generated} labels generated."
        )
        await self.notifier.dispatch(self._events(result), background_tasks)
        return result

    def _validate_items(self, items) -> Optional[List[InvoiceItemCreate]]:
        # an empty override means "keep the current items"
        if not items:
            return None
        validated = []
        for index, item in enumerate(items):
            if isinstance(item, InvoiceItemCreate):
                validated.append(item)
                continue
            try:
                validated.append(InvoiceItemCreate.model_validate(item))
            except PydanticValidationError as ex:
                raise ValidationError(f"invalid invoice item at position {index}: {ex.errors()[0]['msg']}")
        return validated

    async def _approve_in_unit(self,
        invoice_id: UUID,
        actor_id: Optional[Any],
        override_items: Optional[List[InvoiceItemCreate]],
        notes: Optional[str],
        db: AsyncSession) -> ApprovalResult:

        async with unit_of_work(db):
            invoice = await load_invoice(invoice_id, db, for_update=True)
            if not invoice:
                raise NotFoundError("Invoice", invoice_id)
            if invoice.status not in PRE_APPROVAL_STATUSES:
                raise InvalidStateError("Invoice cannot be approved in current status", invoice.status)

            if override_items:
                await ensure_inventory_items_exist(override_items, db)
                rows, totals = build_invoice_items(override_items)
                invoice.items = rows  # delete-orphan drops the previous rows
                invoice.set_totals(totals.subtotal, totals.tax_amount)
                await db.flush()

            adjustments = await self._deduct_inventory(invoice, actor_id, db)
            labels = self._label_instructions(invoice, adjustments)
            await self._mark_approved(invoice, actor_id, notes, db)

        return ApprovalResult(
            invoice=invoice,
            adjustments=[adjustment for _, adjustment in adjustments],
            labels=labels,
        )

    async def _deduct_inventory(self, invoice: Invoice, actor_id, db: AsyncSession):
        stock_lines = [line for line in invoice.items if line.inventory_item_id]
        if not stock_lines:
            return []

        # net duplicate references before judging sufficiency
        required: Dict[UUID, int] = defaultdict(int)
        for line in stock_lines:
            required[line.inventory_item_id] += line.quantity

        locked = await self.stock_adjuster.lock_items(required.keys(), db)
        for item_id in required:
            if item_id not in locked:
                raise NotFoundError("Inventory item", item_id)

        shortages = [
            shortage(locked[item_id], quantity)
            for item_id, quantity in required.items()
            if locked[item_id].current_stock < quantity
        ]
        if shortages:
            raise InsufficientStockError(shortages)

        adjustments = []
        for line in stock_lines:
            adjustment = await self.stock_adjuster.adjust(
                db,
                line.inventory_item_id,
                -line.quantity,
                InventoryTransactionTypeEnum.sale,
                actor_id,
                reference_type="invoice",
                reference_id=invoice.id,
                notes=f"Deducted from invoice {invoice.invoice_number}",
            )
            adjustments.append((line, adjustment))
        return adjustments

    def _label_instructions(self, invoice: Invoice, adjustments) -> List[LabelInstruction]:
        patient_name = invoice.pet.name if invoice.pet else "Unknown"
        owner_name = invoice.client.full_name if invoice.client else "Unknown"
        return [
            LabelInstruction(
                inventory_item_id=adjustment.item.id,
                item_name=adjustment.item.name,
                description=line.description,
                quantity=line.quantity,
                patient_name=patient_name,
                owner_name=owner_name,
            )
            for line, adjustment in adjustments
            if line.item_type == InvoiceItemType.medication
        ]

    async def _mark_approved(self, invoice: Invoice, actor_id, notes: Optional[str], db: AsyncSession):
        now = datetime.utcnow()
        result = await db.execute(
            update(Invoice)
            .where(Invoice.id == invoice.id, Invoice.status.in_(PRE_APPROVAL_STATUSES))
            .values(
                status=InvoiceStatus.approved,
                approved_by=str(actor_id) if actor_id is not None else None,
                approved_at=now,
                notes=notes if notes is not None else invoice.notes,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            # someone else moved the invoice on between our read and write
            await db.refresh(invoice, attribute_names=["status"])
            raise InvalidStateError("Invoice cannot be approved in current status", invoice.status)
        await db.refresh(invoice, attribute_names=["status", "approved_by", "approved_at", "notes", "updated_at"])

    def _events(self, result: ApprovalResult) -> List[NotificationEvent]:
        invoice = result.invoice
        events = []
        if result.labels:
            logger.info(f"Printing {result.labels_generated} medication labels for invoice {invoice.id}")
            events.append(NotificationEvent(
                type=NotificationType.medication_labels,
                payload={
                    "invoice_id": str(invoice.id),
                    "labels": [label.as_payload() for label in result.labels],
                },
            ))
        events.append(NotificationEvent(
            type=NotificationType.invoice_approved,
            payload={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "inventory_updated": result.inventory_updated_count,
            },
        ))
        for item in result.low_stock_items:
            events.append(low_stock_event(item))
        return events
