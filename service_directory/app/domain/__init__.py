"""
Domain models for the Directory Service.

Filters and request models shared by the HTTP layer, the cache and the
repository. Kept free of I/O.
"""

from .models import CachePriority, IndexItem, IndexItemCreate, IndexItemUpdate, ItemFilter

__all__ = [
    "CachePriority",
    "IndexItem",
    "IndexItemCreate",
    "IndexItemUpdate",
    "ItemFilter",
]
