from fastapi import APIRouter, Depends, status, Query, BackgroundTasks
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from uuid import UUID
from vetclinic.api.deps import get_current_actor
from vetclinic.db.session import get_db
from vetclinic.models.purchase_order import PurchaseOrderStatus
from vetclinic.schemas.pagination import PaginatedResponse
from vetclinic.schemas.purchase_order import (
    PurchaseOrderCreate,
    PurchaseOrderSchema,
    PurchaseOrderSummarySchema,
    ReceiptResponse,
    ReceivePurchaseOrderRequest,
)
from vetclinic.services.purchase_order import PurchaseOrderService

router = APIRouter()

def get_purchase_order_service():
    return PurchaseOrderService()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=PurchaseOrderSchema)
async def create_purchase_order(
    data: PurchaseOrderCreate,
    actor_id: str = Depends(get_current_actor),
    purchase_order_service: PurchaseOrderService = Depends(get_purchase_order_service),
    db: AsyncSession = Depends(get_db)):
    return await purchase_order_service.create_purchase_order(data, actor_id, db)

@router.get("", response_model=PaginatedResponse[PurchaseOrderSummarySchema])
async def list_purchase_orders(
    page: Optional[int] = Query(1, ge=1),
    limit: Optional[int] = Query(20, ge=1, le=100),
    status: Optional[PurchaseOrderStatus] = Query(None),
    q: Optional[str] = Query(None, description="PO number or supplier search"),
    actor_id: str = Depends(get_current_actor),
    purchase_order_service: PurchaseOrderService = Depends(get_purchase_order_service),
    db: AsyncSession = Depends(get_db)):
    return await purchase_order_service.list_purchase_orders(db, page, limit, status, q)

@router.get("/{po_id}", response_model=PurchaseOrderSchema)
async def get_purchase_order(
    po_id: UUID,
    actor_id: str = Depends(get_current_actor),
    purchase_order_service: PurchaseOrderService = Depends(get_purchase_order_service),
    db: AsyncSession = Depends(get_db)):
    return await purchase_order_service.get_purchase_order(po_id, db)

@router.post("/{po_id}/approve", response_model=PurchaseOrderSchema)
async def approve_purchase_order(
    po_id: UUID,
    actor_id: str = Depends(get_current_actor),
    purchase_order_service: PurchaseOrderService = Depends(get_purchase_order_service),
    db: AsyncSession = Depends(get_db)):
    return await purchase_order_service.approve_purchase_order(po_id, actor_id, db)

@router.post("/{po_id}/cancel", response_model=PurchaseOrderSchema)
async def cancel_purchase_order(
    po_id: UUID,
    actor_id: str = Depends(get_current_actor),
    purchase_order_service: PurchaseOrderService = Depends(get_purchase_order_service),
    db: AsyncSession = Depends(get_db)):
    return await purchase_order_service.cancel_purchase_order(po_id, actor_id, db)

@router.post("/{po_id}/receive", response_model=ReceiptResponse)
async def receive_purchase_order(
    po_id: UUID,
    background_tasks: BackgroundTasks,
    data: Optional[ReceivePurchaseOrderRequest] = None,
    actor_id: str = Depends(get_current_actor),
    purchase_order_service: PurchaseOrderService = Depends(get_purchase_order_service),
    db: AsyncSession = Depends(get_db)):
    data = data or ReceivePurchaseOrderRequest()
    result = await purchase_order_service.receive_purchase_order(po_id, data, actor_id, db, background_tasks)
    return ReceiptResponse(
        purchase_order=PurchaseOrderSchema.model_validate(result.purchase_order),
        items_received=result.items_received,
        units_received=result.units_received,
    )
