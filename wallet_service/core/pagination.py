"""Pagination helpers."""

from typing import TypeVar, Generic

from pydantic import BaseModel, computed_field

T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    items: list[T]
    page: int
    page_size: int
    total: int = 0

    @computed_field
    @property
    def pages(self) -> int:
        return -(-self.total // self.page_size) if self.page_size else 0


def paginate(page: int, page_size: int, max_page_size: int = 200) -> tuple[int, int]:
    """Clamp page/page_size; return (page, page_size)."""
    page_size = max(1, min(page_size, max_page_size))
    page = max(1, page)
    return page, page_size


def slice_page(items: list[T], page: int, page_size: int) -> Page[T]:
    page, page_size = paginate(page, page_size)
    start = (page - 1) * page_size
    return Page[T](items=items[start:start + page_size], page=page, page_size=page_size, total=len(items))
