"""Pagination helpers."""

import math


def paginate(page: int, limit: int, max_limit: int = 200) -> tuple[int, int]:
    """Clamp page/limit; return (skip, limit)."""
    limit = max(1, min(limit, max_limit))
    page = max(1, page)
    return (page - 1) * limit, limit


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0
