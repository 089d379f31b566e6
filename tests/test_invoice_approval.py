import asyncio
import uuid
from decimal import Decimal

import pytest
from hypothesis import HealthCheck, given, settings as hypothesis_settings, strategies as st
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conftest import line
from vetclinic.core.exceptions import InsufficientStockError, InvalidStateError, NotFoundError, StorageError, ValidationError
from vetclinic.db.session import build_engine, init_db
from vetclinic.models.client import Client
from vetclinic.models.inventory import InventoryItem, InventoryTransaction, InventoryTransactionTypeEnum
from vetclinic.models.invoice import Invoice, InvoiceItem, InvoiceStatus
from vetclinic.schemas.invoice import InvoiceCreate, InvoiceItemCreate
from vetclinic.services.approval import InvoiceApprovalEngine
from vetclinic.services.invoice import InvoiceService, load_invoice
from vetclinic.services.notification import NotificationDispatcher, NotificationType
from vetclinic.services.stock import StockAdjuster


async def draft_invoice(db, notifier, client, items, pet=None):
    invoice = await InvoiceService(notifier=notifier).create_invoice(
        InvoiceCreate(client_id=client.id, pet_id=pet.id if pet else None, items=items),
        "vet-1",
        db,
    )
    # end the read transaction so other sessions can take the write lock
    await db.commit()
    return invoice.id


async def stock_of(session_factory, item_id):
    async with session_factory() as session:
        return (await session.get(InventoryItem, item_id)).current_stock


async def transaction_count(session_factory, item_id=None):
    async with session_factory() as session:
        stmt = select(func.count(InventoryTransaction.id))
        if item_id:
            stmt = stmt.where(InventoryTransaction.item_id == item_id)
        return (await session.execute(stmt)).scalar_one()


async def status_of(session_factory, invoice_id):
    async with session_factory() as session:
        return (await session.get(Invoice, invoice_id)).status


@pytest.mark.anyio
async def test_medication_is_deducted_and_labelled(db, session_factory, notifier, sink, client, pet, make_item):
    item = await make_item(name="Amoxicillin 250mg", current_stock=5)
    item_id = item.id
    invoice_id = await draft_invoice(db, notifier, client, [
        line("Amoxicillin 250mg, 1 tab BID", item_type="medication", quantity=2, unit_price="3.00", inventory_item_id=item_id),
    ], pet=pet)

    result = await InvoiceApprovalEngine(notifier=notifier).approve(invoice_id, "vet-2", db)

    assert result.invoice.status == InvoiceStatus.approved
    assert result.invoice.approved_by == "vet-2"
    assert result.invoice.approved_at is not None
    assert result.inventory_updated_count == 1
    assert result.labels_generated == 1
    label = result.labels[0]
    assert label.item_name == "Amoxicillin 250mg"
    assert label.quantity == 2
    assert label.patient_name == "Rex"
    assert label.owner_name == "Jane Doe"

    assert await stock_of(session_factory, item_id) == 3
    async with session_factory() as session:
        txns = (await session.execute(select(InventoryTransaction))).scalars().all()
    assert len(txns) == 1
    assert txns[0].quantity == -2
    assert txns[0].transaction_type == InventoryTransactionTypeEnum.sale
    assert txns[0].reference_type == "invoice"
    assert txns[0].reference_id == str(invoice_id)
    assert txns[0].performed_by == "vet-2"

    assert [event.type for event in sink.events] == [NotificationType.medication_labels, NotificationType.invoice_approved]
    assert sink.of_type(NotificationType.invoice_approved)[0].payload["inventory_updated"] == 1


@pytest.mark.anyio
async def test_insufficient_stock_changes_nothing(db, session_factory, notifier, sink, client, make_item):
    item = await make_item(name="Cefovecin", current_stock=1)
    item_id = item.id
    invoice_id = await draft_invoice(db, notifier, client, [
        line("Cefovecin injection", item_type="medication", quantity=3, inventory_item_id=item_id),
    ])

    with pytest.raises(InsufficientStockError) as exc_info:
        await InvoiceApprovalEngine(notifier=notifier).approve(invoice_id, "vet-2", db)

    error = exc_info.value
    assert error.item_id == item_id
    assert error.item_name == "Cefovecin"
    assert error.available == 1
    assert error.required == 3
    assert "Cefovecin" in error.detail
    assert await stock_of(session_factory, item_id) == 1
    assert await status_of(session_factory, invoice_id) == InvoiceStatus.draft
    assert await transaction_count(session_factory) == 0
    assert sink.of_type(NotificationType.invoice_approved) == []


@pytest.mark.anyio
async def test_one_short_item_rolls_back_every_deduction(db, session_factory, notifier, client, make_item):
    plenty = await make_item(name="Gauze", current_stock=50)
    scarce = await make_item(name="Insulin", current_stock=1)
    empty = await make_item(name="Vaccine", current_stock=0)
    plenty_id, scarce_id, empty_id = plenty.id, scarce.id, empty.id
    invoice_id = await draft_invoice(db, notifier, client, [
        line("Gauze", item_type="product", quantity=5, inventory_item_id=plenty_id),
        line("Insulin", item_type="medication", quantity=2, inventory_item_id=scarce_id),
        line("Vaccine", item_type="medication", quantity=1, inventory_item_id=empty_id),
    ])

    with pytest.raises(InsufficientStockError) as exc_info:
        await InvoiceApprovalEngine(notifier=notifier).approve(invoice_id, "vet-2", db)

    shortages = {s["item_id"]: s for s in exc_info.value.shortages}
    assert set(shortages) == {scarce_id, empty_id}
    assert shortages[scarce_id]["required"] == 2
    assert await stock_of(session_factory, plenty_id) == 50
    assert await stock_of(session_factory, scarce_id) == 1
    assert await transaction_count(session_factory) == 0
    assert await status_of(session_factory, invoice_id) == InvoiceStatus.draft


@pytest.mark.anyio
async def test_duplicate_references_are_netted_before_checking(db, session_factory, notifier, client, make_item):
    item = await make_item(name="Prednisolone", current_stock=5)
    item_id = item.id
    invoice_id = await draft_invoice(db, notifier, client, [
        line("Prednisolone AM", item_type="medication", quantity=3, inventory_item_id=item_id),
        line("Prednisolone PM", item_type="medication", quantity=3, inventory_item_id=item_id),
    ])

    with pytest.raises(InsufficientStockError) as exc_info:
        await InvoiceApprovalEngine(notifier=notifier).approve(invoice_id, "vet-2", db)
    assert exc_info.value.required == 6
    assert exc_info.value.available == 5
    assert await stock_of(session_factory, item_id) == 5
    assert await transaction_count(session_factory) == 0


@pytest.mark.anyio
async def test_duplicate_references_get_one_transaction_per_line(db, session_factory, notifier, client, make_item):
    item = await make_item(name="Prednisolone", current_stock=6, minimum_stock=0)
    item_id = item.id
    invoice_id = await draft_invoice(db, notifier, client, [
        line("Prednisolone AM", item_type="medication", quantity=3, inventory_item_id=item_id),
        line("Prednisolone PM", item_type="medication", quantity=3, inventory_item_id=item_id),
    ])

    result = await InvoiceApprovalEngine(notifier=notifier).approve(invoice_id, "vet-2", db)

    assert result.inventory_updated_count == 2
    assert result.labels_generated == 2
    assert await stock_of(session_factory, item_id) == 0
    assert await transaction_count(session_factory, item_id) == 2


@pytest.mark.anyio
async def test_lines_without_inventory_do_not_touch_stock(db, session_factory, notifier, client, make_item):
    item = await make_item(current_stock=4)
    item_id = item.id
    invoice_id = await draft_invoice(db, notifier, client, [
        line("Consultation", item_type="service", quantity=1, unit_price="45.00"),
        line("Blood panel", item_type="diagnostic", quantity=1, unit_price="80.00"),
    ])

    result = await InvoiceApprovalEngine(notifier=notifier).approve(invoice_id, "vet-2", db)

    assert result.inventory_updated_count == 0
    assert result.labels_generated == 0
    assert await stock_of(session_factory, item_id) == 4


@pytest.mark.anyio
async def test_pending_invoice_can_be_approved(db, notifier, client):
    invoice_id = await draft_invoice(db, notifier, client, [line()])
    await InvoiceService(notifier=notifier).submit_for_approval(invoice_id, "vet-1", db)

    result = await InvoiceApprovalEngine(notifier=notifier).approve(invoice_id, "vet-2", db, notes="checked")

    assert result.invoice.status == InvoiceStatus.approved
    assert result.invoice.notes == "checked"


@pytest.mark.anyio
async def test_second_approval_is_rejected(db, session_factory, notifier, client, make_item):
    item = await make_item(current_stock=5)
    item_id = item.id
    invoice_id = await draft_invoice(db, notifier, client, [
        line("Amoxicillin", item_type="medication", quantity=2, inventory_item_id=item_id),
    ])
    approval_engine = InvoiceApprovalEngine(notifier=notifier)
    await approval_engine.approve(invoice_id, "vet-2", db)

    with pytest.raises(InvalidStateError) as exc_info:
        await approval_engine.approve(invoice_id, "vet-2", db)

    assert exc_info.value.current_status == InvoiceStatus.approved
    assert await stock_of(session_factory, item_id) == 3
    assert await transaction_count(session_factory) == 1


@pytest.mark.anyio
async def test_concurrent_approvals_deduct_once(db, session_factory, notifier, client, make_item):
    item = await make_item(current_stock=5)
    item_id = item.id
    invoice_id = await draft_invoice(db, notifier, client, [
        line("Amoxicillin", item_type="medication", quantity=2, inventory_item_id=item_id),
    ])
    approval_engine = InvoiceApprovalEngine(notifier=notifier)

    async def approve_in_own_session(actor_id):
        async with session_factory() as session:
            return await approval_engine.approve(invoice_id, actor_id, session)

    outcomes = await asyncio.gather(
        approve_in_own_session("vet-a"),
        approve_in_own_session("vet-b"),
        return_exceptions=True,
    )

    succeeded = [o for o in outcomes if not isinstance(o, BaseException)]
    rejected = [o for o in outcomes if isinstance(o, InvalidStateError)]
    assert len(succeeded) == 1
    assert len(rejected) == 1
    assert await stock_of(session_factory, item_id) == 3
    assert await transaction_count(session_factory) == 1
    assert await status_of(session_factory, invoice_id) == InvoiceStatus.approved


@pytest.mark.anyio
async def test_invoices_competing_for_one_item_serialize(db, session_factory, notifier, client, make_item):
    item = await make_item(current_stock=3)
    item_id = item.id
    first_id = await draft_invoice(db, notifier, client, [
        line("Amoxicillin", item_type="medication", quantity=2, inventory_item_id=item_id),
    ])
    second_id = await draft_invoice(db, notifier, client, [
        line("Amoxicillin", item_type="medication", quantity=2, inventory_item_id=item_id),
    ])
    approval_engine = InvoiceApprovalEngine(notifier=notifier)

    async def approve_in_own_session(invoice_id):
        async with session_factory() as session:
            return await approval_engine.approve(invoice_id, "vet-2", session)

    outcomes = await asyncio.gather(
        approve_in_own_session(first_id),
        approve_in_own_session(second_id),
        return_exceptions=True,
    )

    succeeded = [o for o in outcomes if not isinstance(o, BaseException)]
    rejected = [o for o in outcomes if isinstance(o, InsufficientStockError)]
    assert len(succeeded) == 1
    assert len(rejected) == 1
    assert rejected[0].available == 1
    assert rejected[0].required == 2
    assert await stock_of(session_factory, item_id) == 1
    assert await transaction_count(session_factory, item_id) == 1

    winner = succeeded[0].invoice.id
    loser = second_id if winner == first_id else first_id
    assert await status_of(session_factory, winner) == InvoiceStatus.approved
    assert await status_of(session_factory, loser) == InvoiceStatus.draft


@pytest.mark.anyio
async def test_override_items_replace_lines_and_totals(db, session_factory, notifier, client, make_item):
    item = await make_item(current_stock=10)
    item_id = item.id
    invoice_id = await draft_invoice(db, notifier, client, [line("Consultation", unit_price="45.00")])

    result = await InvoiceApprovalEngine(notifier=notifier).approve(invoice_id, "vet-2", db, items=[
        line("Consultation", unit_price="40.00", tax_rate="20"),
        line("Meloxicam", item_type="medication", quantity=4, unit_price="2.50", tax_rate="0",
             discount_percentage="10", inventory_item_id=item_id),
    ])

    invoice = result.invoice
    assert [i.description for i in invoice.items] == ["Consultation", "Meloxicam"]
    assert invoice.subtotal_cents == 5000
    # 40 + 8 tax; 10 - 1 discount
    assert invoice.total_amount_cents == 5700
    assert invoice.total_amount_cents == invoice.subtotal_cents + invoice.tax_amount_cents
    assert invoice.balance_due_cents == invoice.total_amount_cents
    assert await stock_of(session_factory, item_id) == 6

    async with session_factory() as session:
        count = (await session.execute(
            select(func.count(InvoiceItem.id)).where(InvoiceItem.invoice_id == invoice_id)
        )).scalar_one()
    assert count == 2


@pytest.mark.anyio
async def test_empty_override_keeps_current_items(db, notifier, client):
    invoice_id = await draft_invoice(db, notifier, client, [line("Consultation", unit_price="45.00")])
    result = await InvoiceApprovalEngine(notifier=notifier).approve(invoice_id, "vet-2", db, items=[])
    assert [i.description for i in result.invoice.items] == ["Consultation"]
    assert result.invoice.subtotal_cents == 4500


@pytest.mark.anyio
async def test_invalid_override_item_is_rejected_before_storage(db, session_factory, notifier, client):
    invoice_id = await draft_invoice(db, notifier, client, [line()])
    with pytest.raises(ValidationError):
        await InvoiceApprovalEngine(notifier=notifier).approve(invoice_id, "vet-2", db, items=[
            {"item_type": "service", "description": "Exam", "quantity": 0, "unit_price": "10.00"},
        ])
    assert await status_of(session_factory, invoice_id) == InvoiceStatus.draft


@pytest.mark.anyio
async def test_override_referencing_unknown_item_is_rolled_back(db, session_factory, notifier, client):
    invoice_id = await draft_invoice(db, notifier, client, [line("Consultation", unit_price="45.00")])

    with pytest.raises(NotFoundError):
        await InvoiceApprovalEngine(notifier=notifier).approve(invoice_id, "vet-2", db, items=[
            line("Ghost", item_type="product", inventory_item_id=uuid.uuid4()),
        ])

    async with session_factory() as session:
        invoice = await load_invoice(invoice_id, session)
        assert invoice.status == InvoiceStatus.draft
        assert [i.description for i in invoice.items] == ["Consultation"]
        assert invoice.subtotal_cents == 4500


@pytest.mark.anyio
async def test_unknown_and_cancelled_invoices(db, notifier, client):
    invoice_id = await draft_invoice(db, notifier, client, [line()])
    await InvoiceService(notifier=notifier).cancel_invoice(invoice_id, "vet-1", db)
    approval_engine = InvoiceApprovalEngine(notifier=notifier)
    with pytest.raises(NotFoundError):
        await approval_engine.approve(uuid.uuid4(), "vet-2", db)

    with pytest.raises(InvalidStateError) as exc_info:
        await approval_engine.approve(invoice_id, "vet-2", db)
    assert exc_info.value.current_status == InvoiceStatus.cancelled


@pytest.mark.anyio
async def test_low_stock_crossing_is_published(db, notifier, sink, client, make_item):
    item = await make_item(name="Bandage", current_stock=5, minimum_stock=3)
    item_id = item.id
    invoice_id = await draft_invoice(db, notifier, client, [
        line("Bandage", item_type="product", quantity=3, inventory_item_id=item_id),
    ])

    await InvoiceApprovalEngine(notifier=notifier).approve(invoice_id, "vet-2", db)

    low_stock = sink.of_type(NotificationType.low_stock)
    assert len(low_stock) == 1
    assert low_stock[0].payload["item_id"] == str(item_id)
    assert low_stock[0].payload["current_stock"] == 2


class BrokenSink:
    async def send(self, event):
        raise RuntimeError("printer offline")


@pytest.mark.anyio
async def test_notification_failure_does_not_undo_approval(db, session_factory, sink, client, make_item, caplog):
    item = await make_item(current_stock=5)
    item_id = item.id
    notifier = NotificationDispatcher([BrokenSink(), sink])
    invoice_id = await draft_invoice(db, notifier, client, [
        line("Amoxicillin", item_type="medication", quantity=2, inventory_item_id=item_id),
    ])

    result = await InvoiceApprovalEngine(notifier=notifier).approve(invoice_id, "vet-2", db)

    assert result.invoice.status == InvoiceStatus.approved
    assert await status_of(session_factory, invoice_id) == InvoiceStatus.approved
    assert await stock_of(session_factory, item_id) == 3
    assert "failed to deliver" in caplog.text
    # the healthy sink still got everything
    assert len(sink.of_type(NotificationType.invoice_approved)) == 1


class FlakyAdjuster(StockAdjuster):
    """Fails on the n-th adjustment as if the database dropped the write."""

    def __init__(self, fail_on):
        super().__init__()
        self.fail_on = fail_on
        self.calls = 0

    async def adjust(self, *args, **kwargs):
        self.calls += 1
        if self.calls == self.fail_on:
            raise OperationalError("UPDATE inventory_items", {}, Exception("disk I/O error"))
        return await super().adjust(*args, **kwargs)


@pytest.mark.anyio
async def test_storage_fault_mid_approval_rolls_back(db, session_factory, notifier, sink, client, make_item):
    first = await make_item(name="Gauze", current_stock=10)
    second = await make_item(name="Tape", current_stock=10)
    first_id, second_id = first.id, second.id
    invoice_id = await draft_invoice(db, notifier, client, [
        line("Gauze", item_type="product", quantity=2, inventory_item_id=first_id),
        line("Tape", item_type="product", quantity=1, inventory_item_id=second_id),
    ])

    with pytest.raises(StorageError):
        await InvoiceApprovalEngine(stock_adjuster=FlakyAdjuster(fail_on=2), notifier=notifier).approve(invoice_id, "vet-2", db)

    assert await stock_of(session_factory, first_id) == 10
    assert await stock_of(session_factory, second_id) == 10
    assert await transaction_count(session_factory) == 0
    assert await status_of(session_factory, invoice_id) == InvoiceStatus.draft
    assert sink.events == []


class SlowAdjuster(StockAdjuster):
    async def adjust(self, *args, **kwargs):
        adjustment = await super().adjust(*args, **kwargs)
        await asyncio.sleep(5)
        return adjustment


@pytest.mark.anyio
async def test_timeout_rolls_back_and_reports_storage_error(db, session_factory, notifier, client, make_item):
    item = await make_item(current_stock=10)
    item_id = item.id
    invoice_id = await draft_invoice(db, notifier, client, [
        line("Gauze", item_type="product", quantity=2, inventory_item_id=item_id),
    ])
    approval_engine = InvoiceApprovalEngine(stock_adjuster=SlowAdjuster(), notifier=notifier, timeout=0.2)

    with pytest.raises(StorageError):
        await approval_engine.approve(invoice_id, "vet-2", db)

    assert await stock_of(session_factory, item_id) == 10
    assert await transaction_count(session_factory) == 0
    assert await status_of(session_factory, invoice_id) == InvoiceStatus.draft


override_line = st.fixed_dictionaries({
    "item_type": st.sampled_from(["service", "product", "medication", "diagnostic"]),
    "description": st.just("line"),
    "quantity": st.integers(min_value=1, max_value=50),
    "unit_price": st.integers(min_value=0, max_value=1_000_000).map(lambda cents: Decimal(cents) / 100),
    "tax_rate": st.decimals(min_value=0, max_value=100, places=2),
    "discount_percentage": st.decimals(min_value=0, max_value=100, places=2),
})


async def approve_with_override(db_path, lines):
    """Approve a fresh invoice with `lines` as overrides, each optionally
    linked to one well-stocked item; return what was persisted."""
    engine = build_engine(f"sqlite+aiosqlite:///{db_path}")
    try:
        await init_db(engine)
        session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
        notifier = NotificationDispatcher([])
        async with session_factory() as db:
            client = Client(first_name="Jane", last_name="Doe")
            item = InventoryItem(name="Gauze", current_stock=1000, minimum_stock=0)
            db.add_all([client, item])
            await db.commit()
            invoice_id = await draft_invoice(db, notifier, client, [line("Exam", unit_price="45.00")])
            items = [
                InvoiceItemCreate(**fields, inventory_item_id=item.id if linked else None)
                for fields, linked in lines
            ]
            await InvoiceApprovalEngine(notifier=notifier).approve(invoice_id, "vet-2", db, items=items)

        async with session_factory() as db:
            invoice = await load_invoice(invoice_id, db)
            stock = (await db.get(InventoryItem, item.id)).current_stock
        return invoice, stock
    finally:
        await engine.dispose()


@hypothesis_settings(max_examples=15, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(lines=st.lists(st.tuples(override_line, st.booleans()), min_size=1, max_size=6))
def test_financial_identity_after_override_approval(tmp_path, lines):
    invoice, stock = asyncio.run(approve_with_override(tmp_path / f"{uuid.uuid4()}.db", lines))

    assert invoice.status == InvoiceStatus.approved
    assert len(invoice.items) == len(lines)
    assert invoice.total_amount_cents == invoice.subtotal_cents + invoice.tax_amount_cents
    assert invoice.subtotal_cents == sum(item.subtotal_cents for item in invoice.items)
    assert invoice.total_amount_cents == sum(item.total_cents for item in invoice.items)
    assert invoice.balance_due_cents == invoice.total_amount_cents - invoice.amount_paid_cents
    assert stock == 1000 - sum(fields["quantity"] for fields, linked in lines if linked)
