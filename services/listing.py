"""
Full-scan listing for remote metaobject collections.

The remote store offers no server-side filtering on field values and no total
count, so listing walks every cursor page, filters in memory and then windows
the result. Cost is O(n) in the size of the collection per list call; the
``Lister`` protocol is the seam for swapping in an indexed implementation.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, TypeVar

from settings import LIST_PAGE_SIZE

logger = logging.getLogger(__name__)

T = TypeVar("T")

METAOBJECTS_PAGE_QUERY = """
query ListMetaobjects($type: String!, $first: Int!, $after: String) {
  metaobjects(type: $type, first: $first, after: $after) {
    edges {
      node {
        id
        handle
        fields { key value }
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""


class Lister(Protocol):
    async def fetch_all(self, metaobject_type: str) -> List[Dict[str, Any]]:
        """Return every node of ``metaobject_type`` in remote order."""
        ...


class FullScanLister:
    """Cursor-walks the ``metaobjects`` connection until ``hasNextPage`` is false."""

    def __init__(self, admin, page_size: int = LIST_PAGE_SIZE):
        self.admin = admin
        self.page_size = page_size

    async def fetch_all(self, metaobject_type: str) -> List[Dict[str, Any]]:
        nodes: List[Dict[str, Any]] = []
        cursor: Optional[str] = None
        pages = 0
        while True:
            # Failures mid-scan propagate; a partial listing is never returned.
            data = await self.admin.graphql(
                METAOBJECTS_PAGE_QUERY,
                {"type": metaobject_type, "first": self.page_size, "after": cursor},
            )
            connection = data.get("metaobjects") or {}
            nodes.extend(edge["node"] for edge in connection.get("edges") or [])
            pages += 1
            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            cursor = page_info.get("endCursor")
        logger.debug("[listing] scanned %d %s nodes in %d pages", len(nodes), metaobject_type, pages)
        return nodes


def window(items: List[T], page: int, limit: int) -> Tuple[List[T], bool]:
    """Slice ``[(page-1)*limit, page*limit)`` and report whether more follow."""
    start = (page - 1) * limit
    end = start + limit
    return items[start:end], end < len(items)


def filter_items(items: List[T], predicate: Optional[Callable[[T], bool]]) -> List[T]:
    if predicate is None:
        return list(items)
    return [item for item in items if predicate(item)]
