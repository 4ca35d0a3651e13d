import math
from typing import Any


def pagination_payload(items: list[dict[str, Any]], *, total: int, page: int, per_page: int) -> dict[str, Any]:
    return {
        "items": items,
        "meta": {
            "current_page": page,
            "per_page": per_page,
            "total": total,
            "last_page": max(1, math.ceil(total / per_page)) if per_page else 1,
        },
    }
