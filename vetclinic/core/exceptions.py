# exceptions.py
from typing import Any, Dict, List, Optional


class BusinessLogicException(Exception):
    """Base class for business-related exceptions."""
    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(self.detail)

    def extra(self) -> Dict[str, Any]:
        """Additional fields rendered next to `detail` in the error body."""
        return {}


class NotFoundError(BusinessLogicException):
    def __init__(self, resource: str, resource_id: Any):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            status_code=404,
            detail=f"{resource} {resource_id} not found"
        )


class InvalidStateError(BusinessLogicException):
    def __init__(self, detail: str, current_status: Any):
        self.current_status = getattr(current_status, "value", current_status)
        super().__init__(status_code=400, detail=detail)

    def extra(self):
        return {"current_status": self.current_status}


class ValidationError(BusinessLogicException):
    def __init__(self, detail: str):
        super().__init__(status_code=400, detail=detail)


class InsufficientStockError(BusinessLogicException):
    """One or more inventory items cannot cover the requested quantity.

    `shortages` holds one entry per short item:
    ``{"item_id", "item_name", "available", "required"}``.
    """
    def __init__(self, shortages: List[Dict[str, Any]]):
        self.shortages = shortages
        first = shortages[0]
        self.item_id = first["item_id"]
        self.item_name = first["item_name"]
        self.available = first["available"]
        self.required = first["required"]
        detail = "; ".join(
            f"Insufficient stock for {s['item_name']}. "
            f"Available: {s['available']}, Required: {s['required']}"
            for s in shortages
        )
        super().__init__(status_code=400, detail=detail)

    def extra(self):
        return {
            "shortages": [
                {**s, "item_id": str(s["item_id"])} for s in self.shortages
            ]
        }


class ResourceConflictException(Exception):
    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(self.detail)


class DatabaseException(Exception):
    """Base class for database-related exceptions."""
    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(self.detail)


class StorageError(DatabaseException):
    """Transient persistence failure. The unit of work was rolled back, so
    the whole operation may be retried."""
    def __init__(self, detail: str, original: Optional[BaseException] = None):
        self.original = original
        super().__init__(status_code=503, detail=detail)


class ExternalServiceException(Exception):
    """Base class for external service-related exceptions."""
    def __init__(self, detail: str, status_code: int = 500):
        self.status_code = status_code
        self.detail = detail
        super().__init__(self.detail)


class ExternalServiceServerError(ExternalServiceException):
    """Exception raised when there is an issue connecting to the external service."""
    def __init__(self, message: str):
        super().__init__(status_code=502, detail=message)
