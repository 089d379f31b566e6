from fastapi import Request, FastAPI
from fastapi.responses import JSONResponse
from vetclinic.core.exceptions import BusinessLogicException, DatabaseException, ResourceConflictException, ExternalServiceException
import logging

logger = logging.getLogger(__name__)


async def business_logic_exception_handler(request: Request, exc: BusinessLogicException):
    # shortages, current_status etc. sit next to detail so clients can act on them
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, **exc.extra()}
    )

async def database_exception_handler(request: Request, exc: DatabaseException):
    logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers={"Retry-After": "1"} if exc.status_code == 503 else None,
    )

async def resource_conflict_exception_handler(request: Request, exc: ResourceConflictException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )

async def external_service_exception_handler(request: Request, exc: ExternalServiceException):
    logger.error(f"{request.method} {request.url.path} failed on an upstream service: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc)}
    )

def init_exception_handlers(app: FastAPI):
    app.add_exception_handler(BusinessLogicException, business_logic_exception_handler)
    app.add_exception_handler(DatabaseException, database_exception_handler)
    app.add_exception_handler(ResourceConflictException, resource_conflict_exception_handler)
    app.add_exception_handler(ExternalServiceException, external_service_exception_handler)
