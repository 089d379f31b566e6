from typing import Generic, List, Optional, TypeVar
from pydantic import BaseModel
from enum import Enum


class SortOrder(str, Enum):
    asc = "asc"
    desc = "desc"

class PaginationInfo(BaseModel):
    current_page: Optional[int] = None
    total_pages: Optional[int] = None
    total_items: Optional[int] = None
    items_per_page: int
    has_next: bool
    has_previous: bool

# T can be any output schema (InventoryItemSchema, InvoiceSchema, ...)
T = TypeVar('T')

class PaginatedResponse(BaseModel, Generic[T]):
    data: List[T]
    pagination: PaginationInfo
