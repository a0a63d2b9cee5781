"""
Debounced treatment search.

Each query gets an issue number. A result is delivered only if no newer
query was issued while it was waiting or in flight, so the latest query
wins regardless of which response arrives first.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from careena.models.uploads import Treatment

logger = logging.getLogger(__name__)

SearchFn = Callable[[str], Awaitable[list[Treatment]]]

MIN_QUERY_LENGTH = 2


class TreatmentSearch:
    def __init__(self, search: SearchFn, debounce: float = 0.3):
        self._search = search
        self._debounce = debounce
        self._issued = 0
        self.results: list[Treatment] = []

    def _stale(self, ticket: int) -> bool:
        return ticket != self._issued

    async def query(self, text: str) -> Optional[list[Treatment]]:
        """Returns results, or None when a newer query superseded this one."""
        self._issued += 1
        ticket = self._issued
        text = text.strip()
        if len(text) < MIN_QUERY_LENGTH:
            self.results = []
            return []
        if self._debounce > 0:
            await asyncio.sleep(self._debounce)
        if self._stale(ticket):
            return None
        results = await self._search(text)
        if self._stale(ticket):
            logger.debug(f"Discarding stale search results for {text!r}")
            return None
        self.results = results
        return results
