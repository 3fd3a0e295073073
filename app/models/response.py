from typing import Any

from pydantic import BaseModel


class ApiResponse(BaseModel):
    """Standard response envelope"""
    success: bool = True
    data: Any = None
    message: str = ""


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_count: int
    has_more: bool

    @classmethod
    def build(cls, page: int, limit: int, total_count: int) -> "Pagination":
        total_pages = (total_count + limit - 1) // limit if limit > 0 else 0
        return cls(
            current_page=page,
            total_pages=total_pages,
            total_count=total_count,
            has_more=page * limit < total_count,
        )
