from datetime import date, datetime
from typing import Any, List, Optional, Tuple
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
from vetclinic.models.client import Client, Pet
from vetclinic.models.inventory import InventoryItem
from vetclinic.models.invoice import Invoice, InvoiceStatus, PAYABLE_STATUSES, PRE_APPROVAL_STATUSES
from vetclinic.models.payment import Payment
from vetclinic.schemas.invoice import InvoiceCreate, InvoiceItemCreate, InvoiceSummarySchema, InvoiceUpdate, PaymentCreate
from vetclinic.schemas.pagination import SortOrder
from vetclinic.services.notification import NotificationDispatcher, NotificationEvent, NotificationType, get_notification_dispatcher
from vetclinic.services.pricing import build_invoice_items
from vetclinic.services.sequence import SequenceService
from vetclinic.utils.money import Money
import logging

logger = logging.getLogger(__name__)


async def load_invoice(invoice_id: UUID, db: AsyncSession, for_update: bool = False) -> Optional[Invoice]:
    """Fetch an invoice with items, payments, client and pet loaded.
    With `for_update` the invoice row stays locked until the transaction ends."""
    stmt = (
        select(Invoice)
        .options(
            selectinload(Invoice.items),
            selectinload(Invoice.payments),
            selectinload(Invoice.client),
            selectinload(Invoice.pet),
        )
        .where(Invoice.id == invoice_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update(of=Invoice)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def ensure_inventory_items_exist(items: List[InvoiceItemCreate], db: AsyncSession):
    ids = {item.inventory_item_id for item in items if item.inventory_item_id}
    if not ids:
        return
    result = await db.execute(select(InventoryItem.id).where(InventoryItem.id.in_(ids)))
    missing = ids - set(result.scalars().all())
    if missing:
        raise NotFoundError("Inventory item", sorted(missing, key=str)[0])


class InvoiceService:
    def __init__(self, notifier: Optional[NotificationDispatcher] = None, sequences: Optional[SequenceService] = None):
        self.notifier = notifier or get_notification_dispatcher()
        self.sequences = sequences or SequenceService()

    async def next_invoice_number(self, db: AsyncSession, today: Optional[date] = None) -> str:
        year = (today or datetime.utcnow().date()).year
        value = await self.sequences.next_value(f"invoice-{year}", db)
        return f"{settings.invoice_number_prefix}-{year}-{value:06d}"

    async def create_invoice(self, data: InvoiceCreate, actor_id: Any, db: AsyncSession) -> Invoice:
        try:
            async with unit_of_work(db):
                client = await db.get(Client, data.client_id)
                if not client:
                    raise NotFoundError("Client", data.client_id)
                if data.pet_id:
                    pet = await db.get(Pet, data.pet_id)
                    if not pet or pet.client_id != client.id:
                        raise NotFoundError("Pet", data.pet_id)
                await ensure_inventory_items_exist(data.items, db)

                rows, totals = build_invoice_items(data.items)
                invoice = Invoice(
                    invoice_number=await self.next_invoice_number(db),
                    client_id=data.client_id,
                    pet_id=data.pet_id,
                    appointment_id=data.appointment_id,
                    status=InvoiceStatus.draft,
                    due_date=data.due_date,
                    notes=data.notes,
                    generated_by=str(actor_id) if actor_id is not None else None,
                    items=rows,
                )
                invoice.set_totals(totals.subtotal, totals.tax_amount)
                db.add(invoice)
                await db.flush()
                invoice_id = invoice.id
        except SQLAlchemyError as ex:
            logger.exception(f"unexpected error creating invoice for client {data.client_id}")
            raise StorageError("Unexpected error while creating invoice", ex)

        logger.info(f"Invoice created: {invoice.invoice_number} ({invoice_id}) by user {actor_id}")
        return await self.get_invoice(invoice_id, db)

    async def get_invoice(self, invoice_id: UUID, db: AsyncSession) -> Invoice:
        try:
            invoice = await load_invoice(invoice_id, db)
        except SQLAlchemyError as ex:
            logger.exception(f"unexpected error reading invoice {invoice_id}")
            raise StorageError("Unexpected error while reading invoice", ex)
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def list_invoices(self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 20,
        status: Optional[InvoiceStatus] = None,
        client_id: Optional[UUID] = None,
        pet_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        query_str: Optional[str] = None):

        filters = {}
        if status:
            filters["status"] = status
        if client_id:
            filters["client_id"] = client_id
        if pet_id:
            filters["pet_id"] = pet_id
        issue_date_filters = {}
        if date_from:
            issue_date_filters["gte"] = date_from
        if date_to:
            issue_date_filters["lte"] = date_to
        if issue_date_filters:
            filters["issue_date"] = issue_date_filters

        pagination_service = PaginationService(db)
        try:
            return await pagination_service.paginate(
                model_class=Invoice,
                output_schema=InvoiceSummarySchema,
                page=page,
                limit=limit,
                sort_by="created_at",
                sort_order=SortOrder.desc,
                filters=filters,
                query_str=query_str,
                search_columns=["invoice_number"],
            )
        except SQLAlchemyError as ex:
            logger.exception("unexpected error listing invoices")
            raise StorageError("Unexpected error while listing invoices", ex)

    async def _locked(self, invoice_id: UUID, db: AsyncSession) -> Invoice:
        invoice = await load_invoice(invoice_id, db, for_update=True)
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def replace_items(self, invoice_id: UUID, items: List[InvoiceItemCreate], actor_id: Any, db: AsyncSession) -> Invoice:
        """Swap the whole item set of an invoice that is still being drafted."""
        try:
            async with unit_of_work(db):
                invoice = await self._locked(invoice_id, db)
                if not invoice.is_editable:
                    raise InvalidStateError("Invoice items can only be changed before approval", invoice.status)
                await ensure_inventory_items_exist(items, db)
                rows, totals = build_invoice_items(items)
                invoice.items = rows
                invoice.set_totals(totals.subtotal, totals.tax_amount)
                await db.flush()
        except SQLAlchemyError as ex:
            logger.exception(f"unexpected error replacing items of invoice {invoice_id}")
            raise StorageError("Unexpected error while updating invoice items", ex)
        logger.info(f"Invoice {invoice_id} items replaced by user {actor_id} ({len(items)} items)")
        return await self.get_invoice(invoice_id, db)

    async def update_invoice(self, invoice_id: UUID, data: InvoiceUpdate, actor_id: Any, db: AsyncSession) -> Invoice:
        changes = data.model_dump(exclude_unset=True)
        try:
            async with unit_of_work(db):
                invoice = await self._locked(invoice_id, db)
                if not invoice.is_editable:
                    raise InvalidStateError("Invoice can only be changed before approval", invoice.status)
                for field, value in changes.items():
                    setattr(invoice, field, value)
                await db.flush()
        except SQLAlchemyError as ex:
            logger.exception(f"unexpected error updating invoice {invoice_id}")
            raise StorageError(f"Unexpected error while updating invoice {invoice_id}", ex)
        logger.info(f"Invoice {invoice_id} updated by user {actor_id}: {sorted(changes)}")
        return await self.get_invoice(invoice_id, db)

    async def _transition(self, invoice_id: UUID, allowed, target: InvoiceStatus, detail: str, db: AsyncSession) -> Invoice:
        try:
            async with unit_of_work(db):
                invoice = await self._locked(invoice_id, db)
                if invoice.status not in allowed:
                    raise InvalidStateError(detail, invoice.status)
                invoice.status = target
                await db.flush()
        except SQLAlchemyError as ex:
            logger.exception(f"unexpected error moving invoice {invoice_id} to {target.value}")
            raise StorageError(f"Unexpected error while updating invoice {invoice_id}", ex)
        return invoice

    async def submit_for_approval(self, invoice_id: UUID, actor_id: Any, db: AsyncSession) -> Invoice:
        invoice = await self._transition(
            invoice_id, (InvoiceStatus.draft,), InvoiceStatus.pending_approval,
            "Only draft invoices can be submitted for approval", db)
        logger.info(f"Invoice {invoice_id} submitted for approval by user {actor_id}")
        return invoice

    async def cancel_invoice(self, invoice_id: UUID, actor_id: Any, db: AsyncSession) -> Invoice:
        invoice = await self._transition(
            invoice_id, PRE_APPROVAL_STATUSES, InvoiceStatus.cancelled,
            "Only invoices that have not been approved can be cancelled", db)
        logger.info(f"Invoice {invoice_id} cancelled by user {actor_id}")
        return invoice

    async def send_invoice(self, invoice_id: UUID, actor_id: Any, db: AsyncSession, background_tasks: Optional[BackgroundTasks] = None) -> Invoice:
        try:
            async with unit_of_work(db):
                invoice = await self._locked(invoice_id, db)
                if invoice.status not in (InvoiceStatus.approved, InvoiceStatus.sent):
                    raise InvalidStateError("Invoice must be approved before it can be sent", invoice.status)
                if not invoice.client or not invoice.client.email:
                    raise ValidationError("Client does not have an email address")
                invoice.status = InvoiceStatus.sent
                await db.flush()
        except SQLAlchemyError as ex:
            logger.exception(f"unexpected error sending invoice {invoice_id}")
            raise StorageError(f"Unexpected error while sending invoice {invoice_id}", ex)

        logger.info(f"Invoice sent to {invoice.client.email}: {invoice.invoice_number} by user {actor_id}")
        await self.notifier.dispatch([NotificationEvent(
            type=NotificationType.invoice_sent,
            payload={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "email": invoice.client.email,
            },
        )], background_tasks)
        return invoice

    async def record_payment(self,
        invoice_id: UUID,
        data: PaymentCreate,
        actor_id: Any,
        db: AsyncSession,
        background_tasks: Optional[BackgroundTasks] = None) -> Tuple[Payment, Invoice]:

        amount = Money(data.amount)
        if amount <= Money(0):
            raise ValidationError("Payment amount must be positive")
        try:
            async with unit_of_work(db):
                invoice = await self._locked(invoice_id, db)
                if invoice.status not in PAYABLE_STATUSES:
                    raise InvalidStateError("Invoice must be approved before accepting payment", invoice.status)
                if amount.to_cents() > invoice.balance_due_cents:
                    raise ValidationError(f"Payment of {amount} exceeds balance due of {Money(invoice.balance_due)}")

                payment = Payment(
                    invoice_id=invoice.id,
                    payment_method=data.payment_method,
                    amount=amount,
                    reference_number=data.reference_number,
                    processed_by=str(actor_id) if actor_id is not None else None,
                    notes=data.notes,
                )
                db.add(payment)
                invoice.apply_payment(amount)
                invoice.status = InvoiceStatus.paid if invoice.balance_due_cents <= 0 else InvoiceStatus.partially_paid
                await db.flush()
        except SQLAlchemyError as ex:
            logger.exception(f"unexpected error recording payment for invoice {invoice_id}")
            raise StorageError("Unexpected error while recording payment", ex)

        logger.info(f"Payment recorded: {amount} for invoice {invoice_id}, balance due {Money(invoice.balance_due)}")
        await self.notifier.dispatch([NotificationEvent(
            type=NotificationType.payment_recorded,
            payload={
                "invoice_id": str(invoice.id),
                "amount": str(amount),
                "balance_due": str(Money(invoice.balance_due)),
                "status": invoice.status.value,
            },
        )], background_tasks)
        return payment, await self.get_invoice(invoice_id, db)
