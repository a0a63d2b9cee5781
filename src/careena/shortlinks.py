"""
Short-link resolution cache.

Short links look like `scheme://host/s/<code>`. Each one is resolved at
most once per cache: concurrent callers share the in-flight task, and a
failed resolution is remembered as the original URL so it is never
retried.
"""

import asyncio
import logging
import re
from enum import Enum
from typing import Any, Awaitable, Callable, NamedTuple, Optional

from careena.interpret.patterns import extract_urls

logger = logging.getLogger(__name__)

SHORT_LINK_RE = re.compile(r"^[a-z][a-z0-9+.-]*://[^/\s?#]+/s/([A-Za-z0-9]+)$", re.IGNORECASE)

Resolver = Callable[[str], Awaitable[dict[str, Any]]]
Listener = Callable[[str, str], None]


class LinkState(str, Enum):
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    FAILED = "failed"


class ShortLinkEntry(NamedTuple):
    state: LinkState
    url: str


def short_code(url: str) -> Optional[str]:
    match = SHORT_LINK_RE.match(url or "")
    return match.group(1) if match else None


def is_short_link(url: str) -> bool:
    return short_code(url) is not None


class ShortLinkCache:
    def __init__(self, resolver: Resolver):
        self._resolver = resolver
        self._resolved: dict[str, str] = {}
        self._failed: set[str] = set()
        self._inflight: dict[str, asyncio.Task[str]] = {}
        self._listeners: list[Listener] = []
        self.backend_calls = 0

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Call `listener(short_url, resolved_url)` whenever a link settles. Returns a remover."""
        self._listeners.append(listener)

        def remove() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass
        return remove

    def peek(self, url: str) -> Optional[ShortLinkEntry]:
        if url in self._failed:
            return ShortLinkEntry(LinkState.FAILED, url)
        if url in self._resolved:
            return ShortLinkEntry(LinkState.RESOLVED, self._resolved[url])
        if url in self._inflight:
            return ShortLinkEntry(LinkState.RESOLVING, url)
        return None

    def display_url(self, url: str) -> str:
        """What to show right now: the long URL once known, else the URL itself."""
        return self._resolved.get(url, url)

    def share_target(self, url: str) -> str:
        """Link used for copy/share. Falls back to the short URL when resolution failed."""
        if url in self._failed:
            return url
        return self._resolved.get(url, url)

    async def resolve(self, url: str) -> str:
        if url in self._resolved:
            return self._resolved[url]
        code = short_code(url)
        if code is None:
            return url
        task = self._inflight.get(url)
        if task is None:
            task = asyncio.ensure_future(self._resolve(url, code))
            self._inflight[url] = task
        return await asyncio.shield(task)

    async def resolve_all(self, urls: list[str]) -> dict[str, str]:
        unique = list(dict.fromkeys(urls))
        results = await asyncio.gather(*(self.resolve(u) for u in unique))
        return dict(zip(unique, results))

    def prefetch(self, text: str) -> list[str]:
        """Start resolving every short link in `text` without waiting. Returns those links."""
        links = [u for u in extract_urls(text) if is_short_link(u)]
        for url in links:
            if url not in self._resolved and url not in self._inflight:
                code = short_code(url)
                self._inflight[url] = asyncio.ensure_future(self._resolve(url, code))  # type: ignore[arg-type]
        return links

    async def _resolve(self, url: str, code: str) -> str:
        self.backend_calls += 1
        try:
            result = await self._resolver(code)
            long_url = result.get("long_url") if isinstance(result, dict) else None
            status = str(result.get("status", "")).lower() if isinstance(result, dict) else ""
            if status not in ("success", "200", "ok") or not long_url:
                raise ValueError(f"unusable resolution response: {result!r}")
            resolved = str(long_url)
        except Exception as e:
            logger.warning(f"Short link {url} could not be resolved, keeping original: {e}")
            self._failed.add(url)
            resolved = url
        self._resolved[url] = resolved
        self._inflight.pop(url, None)
        for listener in list(self._listeners):
            try:
                listener(url, resolved)
            except Exception:
                logger.exception(f"Short link listener failed for {url}")
        return resolved
