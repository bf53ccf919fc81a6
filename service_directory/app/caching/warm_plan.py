"""
Loading the curated set of listings to pre-load when warming the cache.
"""

from __future__ import annotations

import json
import string
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from shared.logging import get_logger
from ..domain.models import CAMPUSES, ItemFilter


DEFAULT_DATA_FILE = Path(__file__).resolve().parent / "data" / "warm_plan.json"

DEFAULT_LETTERS = tuple(string.ascii_uppercase + string.digits)
DEFAULT_SEARCHES = ("financial aid", "library", "admissions", "registration")


@dataclass(frozen=True)
class WarmPlan:
    """The listings a warm run should pre-load."""

    campuses: Tuple[str, ...] = CAMPUSES
    letters: Tuple[str, ...] = DEFAULT_LETTERS
    searches: Tuple[str, ...] = DEFAULT_SEARCHES
    max_entries: Optional[int] = None

    def filters(self) -> List[ItemFilter]:
        """
        Expand the plan into listing filters, most valuable first.

        Order: the unfiltered listing, each campus, each letter, every
        campus and letter pair, then the curated searches. ``max_entries``
        truncates from the end so the hot listings always survive.
        """
        planned: List[ItemFilter] = [ItemFilter()]
        planned.extend(ItemFilter(campus=campus) for campus in self.campuses)
        planned.extend(ItemFilter(letter=letter) for letter in self.letters)
        planned.extend(
            ItemFilter(campus=campus, letter=letter)
            for campus in self.campuses
            for letter in self.letters
        )
        planned.extend(ItemFilter(search=search) for search in self.searches)

        if self.max_entries:
            planned = planned[: self.max_entries]
        return planned


class WarmPlanLoader:
    """
    Reads the warm plan from a JSON file.

    The file may set any of ``campuses``, ``letters``, ``searches`` and
    ``max_entries``; omitted keys keep their defaults. A missing or malformed
    file yields the default plan so warming degrades instead of failing.
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        self._path = Path(config_path) if config_path else DEFAULT_DATA_FILE
        self._lock = threading.Lock()
        self.logger = get_logger("directory.cache.warm_plan")
        self._plan = self._load()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def plan(self) -> WarmPlan:
        return self._plan

    def refresh(self) -> None:
        """Reload the plan from disk."""
        with self._lock:
            self._plan = self._load()

    def _load(self) -> WarmPlan:
        if not self._path.exists():
            self.logger.info("No warm plan file found; using defaults", path=str(self._path))
            return WarmPlan()

        try:
            with self._path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
            return self._parse(payload)
        except (ValueError, TypeError, OSError) as e:
            self.logger.warning("Failed to parse warm plan file; using defaults", path=str(self._path), error=str(e))
            return WarmPlan()

    @staticmethod
    def _parse(payload: Dict[str, Any]) -> WarmPlan:
        if not isinstance(payload, dict):
            raise ValueError("warm plan must be a JSON object")

        defaults = WarmPlan()

        def _strings(name: str, fallback: Tuple[str, ...]) -> Tuple[str, ...]:
            values = payload.get(name)
            if values is None:
                return fallback
            if not isinstance(values, list):
                raise ValueError(f"{name} must be a list")
            return tuple(str(value).strip() for value in values if str(value).strip())

        max_entries = payload.get("max_entries")
        return WarmPlan(
            campuses=_strings("campuses", defaults.campuses),
            letters=tuple(letter.upper() for letter in _strings("letters", defaults.letters)),
            searches=_strings("searches", defaults.searches),
            max_entries=int(max_entries) if max_entries else None,
        )
