"""Page-based slicing shared by the list endpoints."""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any, Generic, TypeVar

from fastapi import Query
from pydantic import BaseModel
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class PaginationParams:
    """Inject with ``Depends()``; newest first unless ``sort_order=asc``."""

    def __init__(
        self,
        page: int = Query(1, ge=1, description="Page number"),
        page_size: int = Query(20, ge=1, le=100, description="Items per page"),
        sort_order: str = Query("desc", pattern="^(asc|desc)$", description="asc or desc"),
    ):
        self.page = page
        self.page_size = page_size
        self.sort_order = sort_order

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class PaginatedResponse(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    page_size: int
    total_pages: int

    @classmethod
    def build(cls, items: list[Any], total: int, params: PaginationParams) -> "PaginatedResponse[T]":
        return cls(
            items=items,
            total=total,
            page=params.page,
            page_size=params.page_size,
            total_pages=math.ceil(total / params.page_size) if total else 0,
        )


async def paginate_query(
    db: AsyncSession,
    query: Select,
    params: PaginationParams,
    order_column: Any,
) -> tuple[list[Any], int]:
    """Count, order and slice a select; returns (items, total_count)."""
    count_q = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_q)).scalar() or 0

    order = order_column.asc() if params.sort_order == "asc" else order_column.desc()
    query = query.order_by(order).offset(params.offset).limit(params.page_size)

    result = await db.execute(query)
    return list(result.scalars().all()), total


def paginate_sequence(items: Sequence[T], params: PaginationParams) -> tuple[list[T], int]:
    """Same contract as ``paginate_query`` for items already in memory, oldest first."""
    ordered = list(items) if params.sort_order == "asc" else list(reversed(items))
    return ordered[params.offset:params.offset + params.page_size], len(ordered)
