"""
Index item data models for the Directory Service.
"""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, Field, field_validator


CAMPUSES = (
    "College of San Mateo",
    "Skyline College",
    "Cañada College",
    "District Office",
)


class CachePriority(str, Enum):
    """Expected popularity of a query; selects the TTL tier."""
    HOT = "hot"
    WARM = "warm"
    COLD = "cold"


@dataclass(frozen=True)
class ItemFilter:
    """Listing filter. Absent components mean "any"."""
    campus: Optional[str] = None
    letter: Optional[str] = None
    search: Optional[str] = None

    @classmethod
    def from_row(cls, row: Optional[Dict[str, Any]]) -> "ItemFilter":
        if not row:
            return cls()
        return cls(campus=row.get("campus"), letter=row.get("letter"))

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {"campus": self.campus, "letter": self.letter, "search": self.search}


def _clean(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be blank")
    return value


class IndexItemCreate(BaseModel):
    """Request model for creating an index item."""
    title: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., min_length=1, max_length=2048)
    letter: str = Field(..., min_length=1, max_length=1)
    campus: str = Field(..., min_length=1, max_length=100)

    @field_validator("letter")
    @classmethod
    def _upper_letter(cls, value: str) -> str:
        return _clean(value).upper()

    @field_validator("title", "url", "campus")
    @classmethod
    def _strip(cls, value: str) -> str:
        return _clean(value)


class IndexItemUpdate(BaseModel):
    """Request model for a partial update; at least one field is required."""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    url: Optional[str] = Field(None, min_length=1, max_length=2048)
    letter: Optional[str] = Field(None, min_length=1, max_length=1)
    campus: Optional[str] = Field(None, min_length=1, max_length=100)

    @field_validator("letter")
    @classmethod
    def _upper_letter(cls, value: Optional[str]) -> Optional[str]:
        return _clean(value).upper() if value is not None else None

    @field_validator("title", "url", "campus")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        return _clean(value) if value is not None else None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class IndexItem(BaseModel):
    """A directory row as returned by the repository."""
    id: int
    title: str
    url: str
    letter: str
    campus: str


class CacheInvalidateRequest(BaseModel):
    """Admin request to drop cache entries by key, keys or glob pattern."""
    key: Optional[str] = None
    keys: Optional[List[str]] = None
    pattern: Optional[str] = None
