"""Bounded in-memory history of processed screenshots."""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from typing import Callable, List, Optional

from models.processed_item import ProcessedItem

DEFAULT_LIMIT = 50


class HistoryStore:
	"""Append-ordered, bounded collection of ProcessedItems.

	Every read and write happens under one asyncio lock so concurrent
	submissions append in arrival order and readers see a consistent snapshot.
	Items are updated in place when finalized, so completion order never
	reorders the history.
	"""

	def __init__(self, limit: int = DEFAULT_LIMIT) -> None:
		if limit < 1:
			raise ValueError("History limit must be at least 1.")
		self.limit = limit
		self._items: "OrderedDict[str, ProcessedItem]" = OrderedDict()
		self._lock = asyncio.Lock()

	async def append(self, item: ProcessedItem) -> None:
		"""Record a new item, evicting the oldest ones beyond the limit."""
		async with self._lock:
			if item.id in self._items:
				raise ValueError(f"Item {item.id} is already recorded")
			self._items[item.id] = item
			while len(self._items) > self.limit:
				self._items.popitem(last=False)

	async def set_limit(self, limit: int) -> None:
		"""Change the bound, evicting the oldest items if it shrank."""
		if limit < 1:
			raise ValueError("History limit must be at least 1.")
		async with self._lock:
			self.limit = limit
			while len(self._items) > self.limit:
				self._items.popitem(last=False)

	async def update(self, item_id: str, mutate: Callable[[ProcessedItem], None]) -> Optional[ProcessedItem]:
		"""Apply `mutate` to a recorded item in the critical section.

		Returns the item, or None when it has already been evicted.
		"""
		async with self._lock:
			item = self._items.get(item_id)
			if item is None:
				return None
			mutate(item)
			return item

	async def get(self, item_id: str) -> Optional[ProcessedItem]:
		async with self._lock:
			return self._items.get(item_id)

	async def snapshot(self) -> List[ProcessedItem]:
		"""Return the items most-recent-first."""
		async with self._lock:
			return list(reversed(self._items.values()))

	def __len__(self) -> int:
		return len(self._items)
