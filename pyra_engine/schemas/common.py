"""
Shared response schemas.
"""
from typing import Generic, TypeVar

from pydantic import BaseModel


T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    """Paginated list response."""
    data: list[T]
    total: int
    page: int
    page_size: int
