from fastapi import APIRouter, Depends, status, Query, BackgroundTasks
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from uuid import UUID
from vetclinic.api.deps import get_current_actor
from vetclinic.db.session import get_db
from vetclinic.schemas.inventory import (
    InventoryAlerts,
    InventoryItemCreate,
    InventoryItemSchema,
    InventoryItemUpdate,
    InventoryTransactionSchema,
    InventoryValuation,
    ReconciliationReport,
    StockAdjustmentRequest,
    StockAdjustmentResponse,
)
from vetclinic.schemas.pagination import PaginatedResponse
from vetclinic.services.inventory import InventoryService

router = APIRouter()

def get_inventory_service():
    return InventoryService()


@router.post("/items", status_code=status.HTTP_201_CREATED, response_model=InventoryItemSchema)
async def create_inventory_item(
    data: InventoryItemCreate,
    actor_id: str = Depends(get_current_actor),
    inventory_service: InventoryService = Depends(get_inventory_service),
    db: AsyncSession = Depends(get_db)):
    return await inventory_service.create_item(data, actor_id, db)

@router.get("/items", response_model=PaginatedResponse[InventoryItemSchema])
async def list_inventory_items(
    page: Optional[int] = Query(1, ge=1),
    limit: Optional[int] = Query(20, ge=1, le=100),
    q: Optional[str] = Query(None, description="Search term"),
    low_stock: bool = Query(False),
    out_of_stock: bool = Query(False),
    actor_id: str = Depends(get_current_actor),
    inventory_service: InventoryService = Depends(get_inventory_service),
    db: AsyncSession = Depends(get_db)):
    return await inventory_service.list_items(db, page, limit, q, low_stock, out_of_stock)

@router.get("/alerts", response_model=InventoryAlerts)
async def get_inventory_alerts(
    actor_id: str = Depends(get_current_actor),
    inventory_service: InventoryService = Depends(get_inventory_service),
    db: AsyncSession = Depends(get_db)):
    return await inventory_service.get_alerts(db)

@router.get("/valuation", response_model=InventoryValuation)
async def get_inventory_valuation(
    actor_id: str = Depends(get_current_actor),
    inventory_service: InventoryService = Depends(get_inventory_service),
    db: AsyncSession = Depends(get_db)):
    return await inventory_service.get_valuation(db)

@router.get("/items/{item_id}", response_model=InventoryItemSchema)
async def get_inventory_item(
    item_id: UUID,
    actor_id: str = Depends(get_current_actor),
    inventory_service: InventoryService = Depends(get_inventory_service),
    db: AsyncSession = Depends(get_db)):
    return await inventory_service.get_item(item_id, db)

@router.patch("/items/{item_id}", response_model=InventoryItemSchema)
async def update_inventory_item(
    item_id: UUID,
    data: InventoryItemUpdate,
    actor_id: str = Depends(get_current_actor),
    inventory_service: InventoryService = Depends(get_inventory_service),
    db: AsyncSession = Depends(get_db)):
    return await inventory_service.update_item(item_id, data, actor_id, db)

@router.post("/items/{item_id}/adjust", response_model=StockAdjustmentResponse)
async def adjust_inventory_stock(
    item_id: UUID,
    data: StockAdjustmentRequest,
    background_tasks: BackgroundTasks,
    actor_id: str = Depends(get_current_actor),
    inventory_service: InventoryService = Depends(get_inventory_service),
    db: AsyncSession = Depends(get_db)):
    adjustment = await inventory_service.adjust_stock(item_id, data, actor_id, db, background_tasks)
    return StockAdjustmentResponse(
        item=InventoryItemSchema.model_validate(adjustment.item),
        transaction=InventoryTransactionSchema.model_validate(adjustment.transaction),
        low_stock=adjustment.low_stock,
    )

@router.get("/items/{item_id}/transactions", response_model=PaginatedResponse[InventoryTransactionSchema])
async def get_inventory_item_transactions(
    item_id: UUID,
    page: Optional[int] = Query(1, ge=1),
    limit: Optional[int] = Query(20, ge=1, le=100),
    actor_id: str = Depends(get_current_actor),
    inventory_service: InventoryService = Depends(get_inventory_service),
    db: AsyncSession = Depends(get_db)):
    return await inventory_service.get_history(item_id, db, page, limit)

@router.get("/items/{item_id}/reconciliation", response_model=ReconciliationReport)
async def reconcile_inventory_item(
    item_id: UUID,
    actor_id: str = Depends(get_current_actor),
    inventory_service: InventoryService = Depends(get_inventory_service),
    db: AsyncSession = Depends(get_db)):
    return await inventory_service.reconcile(item_id, db)
