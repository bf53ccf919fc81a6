"""
Repository interface the cache layer reads through to.
"""

from typing import Any, Dict, List, Optional, Protocol

from ..domain.models import ItemFilter


class IndexItemRepository(Protocol):
    """Origin store for index items. Errors propagate to the caller."""

    async def find_many(self, filters: ItemFilter) -> List[Dict[str, Any]]:
        ...

    async def count(self, filters: ItemFilter) -> int:
        ...

    async def get(self, item_id: int) -> Optional[Dict[str, Any]]:
        ...

    async def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def update(self, item_id: int, fields: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def delete(self, item_id: int) -> Dict[str, Any]:
        ...
