import math
from typing import Any, Optional

from database import serialize_doc


def ok(data: Any = None, message: Optional[str] = None) -> dict:
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = serialize_doc(data)
    return body


def pagination(page: int, limit: int, total: int) -> dict:
    return {
        "currentPage": page,
        "totalPages": math.ceil(total / limit) if limit else 0,
        "total": total,
        "hasNext": page * limit < total,
        "hasPrev": page > 1,
    }
