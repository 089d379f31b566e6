from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from vetclinic.api.routes import inventory, invoices, purchase_orders, health
from vetclinic.core.config import settings
from vetclinic.db.session import init_db
from vetclinic.handlers.exception_handlers import init_exception_handlers
import logging
from vetclinic.core.logging_config import setup_logging
setup_logging()

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


#init exception handlers
init_exception_handlers(app)
app.include_router(inventory.router, prefix="/inventory", tags=["Inventory"])
app.include_router(purchase_orders.router, prefix="/inventory/purchase-orders", tags=["Purchase Orders"])
app.include_router(invoices.router, prefix="/invoices", tags=["Invoices"])
app.include_router(health.router, prefix="/health", tags=["Health"])


@app.on_event("startup")
async def startup():
    await init_db()
    logger.info(f"{settings.app_name} started")
