"""Search across registered sources with caching and ordered fallback.

A query first consults the result cache. On a miss the enabled sources are
tried one at a time, in the order the registry ranks them, until one
returns at least one record; that result is written to the cache and
returned. A source that fails to load, cannot be parsed or yields no records is
logged and skipped. When every source has been tried the query fails with
``AllSourcesUnavailable``, naming the sources that were attempted.
"""

from __future__ import annotations

from typing import List, Optional

from loguru import logger

from .cache import ResultCache
from .errors import AllSourcesUnavailable, FetchFailed, InvalidQuery
from .extractor import extract_chapters, extract_list
from .fetcher import ResilientFetcher
from .models import ChapterRef, NovelRecord, SearchQuery
from .registry import SourceRegistry


class SearchOrchestrator:
    def __init__(self, registry: SourceRegistry, fetcher: ResilientFetcher, cache: ResultCache) -> None:
        self.registry = registry
        self.fetcher = fetcher
        self.cache = cache

    async def search(self, keyword: Optional[str], source: Optional[str] = None) -> List[NovelRecord]:
        try:
            query = SearchQuery.parse(keyword, source)
        except InvalidQuery as e:
            e.available = self.registry.names()
            raise
        if query.source and self.registry.get(query.source) is None:
            raise InvalidQuery(f"Unknown source {query.source}", self.registry.names(enabled_only=False))

        signature = query.signature()
        cached = await self.cache.get(signature)
        if cached is not None:
            logger.debug(f"Cache hit for {signature}")
            return cached

        candidates = self.registry.list(enabled_only=True)
        if query.source:
            candidates = [s for s in candidates if s.name == query.source]

        tried: List[str] = []
        for src in candidates:
            tried.append(src.name)
            try:
                html_doc = await self.fetcher.fetch(src.search_url_for(query.keyword), headers=src.headers, delay=src.delay)
            except FetchFailed as e:
                logger.warning(f"Source {src.name} unavailable for {query.keyword!r}: {e}")
                continue
            try:
                records = extract_list(html_doc, src.selectors, src.url, source=src.name)
            except Exception as e:
                logger.warning(f"Could not parse results from {src.name}: {type(e).__name__}: {e}")
                continue
            if not records:
                logger.info(f"Source {src.name} returned no results for {query.keyword!r}, trying next source")
                continue
            logger.info(f"Source {src.name} returned {len(records)} results for {query.keyword!r}")
            await self.cache.put(signature, records)
            return records

        raise AllSourcesUnavailable(tried, self.registry.names())

    async def list_chapters(self, url: str, source: Optional[str] = None) -> List[ChapterRef]:
        """Fetch a novel's index page and return its chapters in order.

        The owning source is looked up by name, or by host when no name is
        given, to pick request headers, the post-load delay and the kind of
        chapter rules. Unknown sites use the generic rules.
        """
        if not (url or "").strip():
            raise InvalidQuery("A novel url is required")
        src = self.registry.get(source) if source else None
        src = src or self.registry.find_by_url(url)
        html_doc = await self.fetcher.fetch(
            url,
            headers=src.headers if src else None,
            delay=src.delay if src else 0.0,
        )
        chapters = extract_chapters(html_doc, src.kind if src else None, url)
        logger.info(f"Found {len(chapters)} chapters at {url}")
        return chapters
