from typing import Generic, List, TypeVar, Optional
from pydantic import BaseModel, Field

T = TypeVar("T")


class PaginationMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class OffsetMeta(BaseModel):
    limit: int
    offset: int
    total: int
    has_more: bool


class PaginatedResponse(BaseModel, Generic[T]):
    data: List[T] = Field(default_factory=list)  # type: ignore[assignment]
    pagination: PaginationMeta


class OffsetPaginatedResponse(BaseModel, Generic[T]):
    data: List[T] = Field(default_factory=list)  # type: ignore[assignment]
    pagination: OffsetMeta


class MessageResponse(BaseModel):
    message: str
    detail: Optional[dict] = None


def build_pagination(page: int, limit: int, total: int) -> PaginationMeta:
    total_pages = max(1, (total + limit - 1) // limit)
    return PaginationMeta(
        page=page,
        limit=limit,
        total=total,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_prev=page > 1,
    )


def build_offset_pagination(limit: int, offset: int, total: int) -> OffsetMeta:
    return OffsetMeta(limit=limit, offset=offset, total=total, has_more=offset + limit < total)


def iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None
