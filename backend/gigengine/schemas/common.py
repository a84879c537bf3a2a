"""Response envelopes shared by every endpoint."""
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel

DataT = TypeVar("DataT")


class ApiResponse(BaseModel, Generic[DataT]):
    """Success envelope: {success: true, message?, data}."""
    success: bool = True
    message: Optional[str] = None
    data: DataT


class ErrorResponse(BaseModel):
    """Failure envelope: {success: false, error, code, details?}."""
    success: bool = False
    error: str
    code: str
    details: Optional[Any] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int
    has_more: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        pages = (total + limit - 1) // limit if total else 0
        return cls(page=page, limit=limit, total=total, pages=pages, has_more=page * limit < total)
