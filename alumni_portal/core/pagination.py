from __future__ import annotations

import math

from rest_framework.pagination import PageNumberPagination


class PageLimitPagination(PageNumberPagination):
    """`?page=&limit=` pagination used by every list endpoint."""

    page_size = 20
    page_query_param = "page"
    page_size_query_param = "limit"
    max_page_size = 100

    def get_pagination_meta(self) -> dict[str, int | bool]:
        page = self.page
        total = page.paginator.count
        limit = page.paginator.per_page
        return {
            "current_page": page.number,
            "total_pages": math.ceil(total / limit) if limit else 0,
            "total_items": total,
            "limit": limit,
            "has_next": page.has_next(),
            "has_prev": page.has_previous(),
        }
