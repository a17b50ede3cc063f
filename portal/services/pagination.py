from __future__ import annotations

import math
from typing import Any, Dict, List, Tuple

from sqlalchemy.orm import Query

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def paginate(query: Query, page: int, limit: int) -> Tuple[List[Any], Dict[str, int]]:
    page = max(1, page)
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    total = query.count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return rows, {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if total else 0,
    }


def paginate_items(items: List[Any], page: int, limit: int) -> Tuple[List[Any], Dict[str, int]]:
    page = max(1, page)
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    total = len(items)
    return items[(page - 1) * limit : page * limit], {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if total else 0,
    }


def in_department(row: Any, department: str) -> bool:
    return department in (getattr(row, "departments", None) or [])
