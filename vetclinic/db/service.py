# Core pagination service

from typing import Any, Dict, List, Optional, Type, TypeVar
from pydantic import BaseModel
from sqlalchemy import or_, desc, asc, select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from vetclinic.core.exceptions import ValidationError
from vetclinic.schemas.pagination import PaginatedResponse, PaginationInfo, SortOrder
import logging

# Generic type for the output schema classes
T = TypeVar('T', bound=BaseModel)
logger = logging.getLogger(__name__)

RANGE_OPERATORS = {
    "gte": lambda column, value: column >= value,
    "lte": lambda column, value: column <= value,
    "gt": lambda column, value: column > value,
    "lt": lambda column, value: column < value,
}


class PaginationService:
    def __init__(self, db: AsyncSession):
        self.db = db

    def _get_column(self, model_class, name: str):
        try:
            return getattr(model_class, name)
        except AttributeError:
            raise ValidationError(f"Invalid field: {name}")

    def _build_filters(self, model_class, filters: Dict[str, Any]):
        """`{"status": "draft", "issue_date": {"gte": d1, "lte": d2}}`"""
        conditions = []
        for name, value in (filters or {}).items():
            column = self._get_column(model_class, name)
            if isinstance(value, dict):
                for op, operand in value.items():
                    if op not in RANGE_OPERATORS:
                        raise ValidationError(f"Invalid filter operator: {op}")
                    conditions.append(RANGE_OPERATORS[op](column, operand))
            elif isinstance(value, (list, tuple, set)):
                conditions.append(column.in_(list(value)))
            else:
                conditions.append(column == value)
        return conditions

    def _build_search_condition(self, model_class, search_columns: List[str], query_str: Optional[str]):
        if not query_str or not search_columns:
            return None
        pattern = f"%{query_str.lower()}%"
        return or_(*[func.lower(self._get_column(model_class, col)).like(pattern) for col in search_columns])

    async def paginate(self,
        model_class,
        output_schema: Type[T],
        page: Optional[int] = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: SortOrder = SortOrder.desc,
        filters: Optional[Dict[str, Any]] = None,
        conditions: Optional[list] = None,
        query_str: Optional[str] = None,
        search_columns: Optional[List[str]] = None,
        eager_load: Optional[List[str]] = None) -> PaginatedResponse:

        where = self._build_filters(model_class, filters) + list(conditions or [])
        search = self._build_search_condition(model_class, search_columns or [], query_str)
        if search is not None:
            where.append(search)

        stmt = select(model_class).where(*where)
        for path in eager_load or []:
            stmt = stmt.options(selectinload(self._get_column(model_class, path)))

        count_stmt = select(func.count()).select_from(select(model_class).where(*where).subquery())
        total_items = (await self.db.execute(count_stmt)).scalar_one()
        total_pages = (total_items + limit - 1) // limit

        if page is None or page < 1:
            page = 1

        sort_column = self._get_column(model_class, sort_by)
        order = desc(sort_column) if sort_order == SortOrder.desc else asc(sort_column)
        stmt = stmt.order_by(order, asc(model_class.id)).offset((page - 1) * limit).limit(limit)

        result = await self.db.execute(stmt)
        items = result.scalars().all()

        pagination = PaginationInfo(
            current_page=page,
            total_pages=total_pages,
            total_items=total_items,
            items_per_page=limit,
            has_next=page < total_pages,
            has_previous=page > 1
        )
        return PaginatedResponse(
            data=[output_schema.model_validate(item) for item in items],
            pagination=pagination,
        )
