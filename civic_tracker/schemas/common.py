"""
Response envelope shared by every endpoint.

Success bodies are ``{"success": true, "data": ..., "message"?: str}``; list
bodies add paging counters. Error bodies are built in ``core.errors``.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

from fastapi.encoders import jsonable_encoder


def success(data: Any = None, message: Optional[str] = None) -> dict:
    body: dict[str, Any] = {"success": True, "data": jsonable_encoder(data)}
    if message:
        body["message"] = message
    return body


def collection(items: Sequence[Any]) -> dict:
    """Unpaged list envelope."""
    return {"success": True, "count": len(items), "data": jsonable_encoder(list(items))}


def paginated(items: Sequence[Any], total: int, page: int, total_pages: int) -> dict:
    """List envelope; ``count`` is the size of this page, ``total`` of the match set."""
    return {
        "success": True,
        "count": len(items),
        "total": total,
        "total_pages": total_pages,
        "current_page": page,
        "data": jsonable_encoder(list(items)),
    }


__all__ = ["success", "collection", "paginated"]
