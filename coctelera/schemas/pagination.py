from typing import Generic, List, Sequence, TypeVar

from fastapi import Query
from pydantic import BaseModel

T = TypeVar("T")

MAX_PAGE_SIZE = 200


class PaginationParams:
    """Inject as Depends() into listing endpoints."""
    def __init__(
        self,
        offset: int = Query(0, ge=0, description="Number of clients to skip"),
        limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE, description="Max clients to return"),
    ):
        self.offset = offset
        self.limit = limit


class PaginatedResponse(BaseModel, Generic[T]):
    items: List[T]
    total: int
    offset: int
    limit: int

    @classmethod
    def page(cls, items: Sequence, total: int, params: PaginationParams) -> "PaginatedResponse[T]":
        return cls(items=list(items), total=total, offset=params.offset, limit=params.limit)
