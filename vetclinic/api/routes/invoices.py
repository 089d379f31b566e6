from fastapi import APIRouter, Depends, status, Query, BackgroundTasks
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import date
from typing import Optional
from uuid import UUID
from vetclinic.api.deps import get_current_actor
from vetclinic.db.session import get_db
from vetclinic.models.invoice import InvoiceStatus
from vetclinic.schemas.invoice import (
    ApprovalResponse,
    ApproveInvoiceRequest,
    InvoiceCreate,
    InvoiceSchema,
    InvoiceSummarySchema,
    InvoiceUpdate,
    LabelInstructionSchema,
    PaymentCreate,
    PaymentResponse,
    PaymentSchema,
    ReplaceItemsRequest,
)
from vetclinic.schemas.pagination import PaginatedResponse
from vetclinic.services.approval import InvoiceApprovalEngine
from vetclinic.services.invoice import InvoiceService

router = APIRouter()

def get_invoice_service():
    return InvoiceService()

def get_approval_engine():
    return InvoiceApprovalEngine()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=InvoiceSchema)
async def create_invoice(
    data: InvoiceCreate,
    actor_id: str = Depends(get_current_actor),
    invoice_service: InvoiceService = Depends(get_invoice_service),
    db: AsyncSession = Depends(get_db)):
    return await invoice_service.create_invoice(data, actor_id, db)

@router.get("", response_model=PaginatedResponse[InvoiceSummarySchema])
async def list_invoices(
    page: Optional[int] = Query(1, ge=1),
    limit: Optional[int] = Query(20, ge=1, le=100),
    status: Optional[InvoiceStatus] = Query(None),
    client_id: Optional[UUID] = Query(None),
    pet_id: Optional[UUID] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    q: Optional[str] = Query(None, description="Invoice number search"),
    actor_id: str = Depends(get_current_actor),
    invoice_service: InvoiceService = Depends(get_invoice_service),
    db: AsyncSession = Depends(get_db)):
    return await invoice_service.list_invoices(db, page, limit, status, client_id, pet_id, date_from, date_to, q)

@router.get("/{invoice_id}", response_model=InvoiceSchema)
async def get_invoice(
    invoice_id: UUID,
    actor_id: str = Depends(get_current_actor),
    invoice_service: InvoiceService = Depends(get_invoice_service),
    db: AsyncSession = Depends(get_db)):
    return await invoice_service.get_invoice(invoice_id, db)

@router.patch("/{invoice_id}", response_model=InvoiceSchema)
async def update_invoice(
    invoice_id: UUID,
    data: InvoiceUpdate,
    actor_id: str = Depends(get_current_actor),
    invoice_service: InvoiceService = Depends(get_invoice_service),
    db: AsyncSession = Depends(get_db)):
    return await invoice_service.update_invoice(invoice_id, data, actor_id, db)

@router.put("/{invoice_id}/items", response_model=InvoiceSchema)
async def replace_invoice_items(
    invoice_id: UUID,
    data: ReplaceItemsRequest,
    actor_id: str = Depends(get_current_actor),
    invoice_service: InvoiceService = Depends(get_invoice_service),
    db: AsyncSession = Depends(get_db)):
    return await invoice_service.replace_items(invoice_id, data.items, actor_id, db)

@router.post("/{invoice_id}/submit", response_model=InvoiceSchema)
async def submit_invoice(
    invoice_id: UUID,
    actor_id: str = Depends(get_current_actor),
    invoice_service: InvoiceService = Depends(get_invoice_service),
    db: AsyncSession = Depends(get_db)):
    return await invoice_service.submit_for_approval(invoice_id, actor_id, db)

@router.post("/{invoice_id}/approve", response_model=ApprovalResponse)
async def approve_invoice(
    invoice_id: UUID,
    background_tasks: BackgroundTasks,
    data: Optional[ApproveInvoiceRequest] = None,
    actor_id: str = Depends(get_current_actor),
    approval_engine: InvoiceApprovalEngine = Depends(get_approval_engine),
    db: AsyncSession = Depends(get_db)):
    data = data or ApproveInvoiceRequest()
    result = await approval_engine.approve(
        invoice_id, actor_id, db,
        items=data.items,
        notes=data.notes,
        background_tasks=background_tasks,
    )
    return ApprovalResponse(
        invoice=InvoiceSchema.model_validate(result.invoice),
        inventory_deducted=result.inventory_updated_count,
        labels_generated=result.labels_generated,
        labels=[LabelInstructionSchema.model_validate(label) for label in result.labels],
    )

@router.post("/{invoice_id}/cancel", response_model=InvoiceSchema)
async def cancel_invoice(
    invoice_id: UUID,
    actor_id: str = Depends(get_current_actor),
    invoice_service: InvoiceService = Depends(get_invoice_service),
    db: AsyncSession = Depends(get_db)):
    return await invoice_service.cancel_invoice(invoice_id, actor_id, db)

@router.post("/{invoice_id}/send", response_model=InvoiceSchema)
async def send_invoice(
    invoice_id: UUID,
    background_tasks: BackgroundTasks,
    actor_id: str = Depends(get_current_actor),
    invoice_service: InvoiceService = Depends(get_invoice_service),
    db: AsyncSession = Depends(get_db)):
    return await invoice_service.send_invoice(invoice_id, actor_id, db, background_tasks)

@router.post("/{invoice_id}/payments", status_code=status.HTTP_201_CREATED, response_model=PaymentResponse)
async def record_invoice_payment(
    invoice_id: UUID,
    data: PaymentCreate,
    background_tasks: BackgroundTasks,
    actor_id: str = Depends(get_current_actor),
    invoice_service: InvoiceService = Depends(get_invoice_service),
    db: AsyncSession = Depends(get_db)):
    payment, invoice = await invoice_service.record_payment(invoice_id, data, actor_id, db, background_tasks)
    return PaymentResponse(
        payment=PaymentSchema.model_validate(payment),
        invoice=InvoiceSchema.model_validate(invoice),
    )
