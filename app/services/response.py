from typing import Any


def list_response(items: list, limit: int, offset: int) -> dict[str, Any]:
    return {"items": items, "count": len(items), "limit": limit, "offset": offset}


class ListResponseMixin:
    """Adds ``list_response`` on top of a manager's ``list`` staticmethod."""

    @classmethod
    def list_response(cls, db, *args, **kwargs) -> dict[str, Any]:
        items = cls.list(db, *args, **kwargs)
        limit = kwargs.get("limit", 50)
        offset = kwargs.get("offset", 0)
        return list_response(items, limit, offset)
