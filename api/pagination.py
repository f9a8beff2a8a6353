"""
api/pagination.py -- Shared page/limit/sort_order query parameters.

Used as a FastAPI dependency by every list route. Out-of-range values
(page < 1, limit outside 1..100, unknown sort_order) fail query validation
and surface as 400 validation_error through the handler in api/main.py.

sort_by is declared per route with that resource's whitelist Enum.
"""

from dataclasses import dataclass

from fastapi import Query

from api.models import SortOrder

MAX_PAGE_SIZE = 100


@dataclass
class PageParams:
    page: int
    limit: int
    sort_order: str

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def page_params(
    page: int = Query(1, ge=1, description="1-based page number"),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE, description="Items per page (max 100)"),
    sort_order: SortOrder = Query(SortOrder.desc),
) -> PageParams:
    return PageParams(page=page, limit=limit, sort_order=sort_order.value)
