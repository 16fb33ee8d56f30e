"""Page bounds and paged query execution."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

from docvault.exceptions import ValidationError

from .types import Page

if TYPE_CHECKING:
    from sqlalchemy import Select
    from sqlalchemy.ext.asyncio import AsyncSession

    from docvault.config import VaultConfig


def page_bounds(
    page: int, page_size: int | None, config: VaultConfig
) -> tuple[int, int]:
    """Validate paging input and return ``(offset, limit)``."""
    size = config.default_page_size if page_size is None else page_size
    if page < 1:
        raise ValidationError("page must be >= 1")
    if not 1 <= size <= config.max_page_size:
        raise ValidationError(f"page_size must be between 1 and {config.max_page_size}")
    return (page - 1) * size, size


async def fetch_page(
    session: AsyncSession,
    query: Select[Any],
    page: int,
    page_size: int | None,
    config: VaultConfig,
) -> Page[Any]:
    """Run *query* (already ordered) for one page and count the full result."""
    offset, limit = page_bounds(page, page_size, config)
    count_query = select(func.count()).select_from(query.order_by(None).subquery())
    total = (await session.execute(count_query)).scalar_one()
    result = await session.execute(query.offset(offset).limit(limit))
    return Page(items=list(result.scalars().all()), total=total, page=page, page_size=limit)
