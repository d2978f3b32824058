"""Multi-chapter document assembly.

Chapters are fetched one after another in the order given. A chapter that
cannot be fetched or holds no readable text becomes a placeholder section
carrying the reason, so the output always has exactly one section per
input chapter, in input order, and one bad page never sinks the download.
"""

from __future__ import annotations

from typing import AsyncIterator, Callable, List, Optional, Sequence

from loguru import logger

from .errors import ExtractionError
from .extractor import extract_content
from .fetcher import ResilientFetcher
from .models import AssembledDocument, ChapterContent, ChapterRef, SourceDefinition
from .registry import SourceRegistry

FAILURE_MARKER = "[Failed to retrieve chapter: {reason}]"

ProgressCallback = Callable[[int, int], None]


class ChapterAssembler:
    def __init__(self, fetcher: ResilientFetcher, registry: SourceRegistry) -> None:
        self.fetcher = fetcher
        self.registry = registry

    def _resolve(self, url: str, source: Optional[str]) -> Optional[SourceDefinition]:
        src = self.registry.get(source) if source else None
        return src or self.registry.find_by_url(url)

    async def fetch_content(self, url: str, source: Optional[str] = None) -> str:
        """Fetch one chapter page and return its text."""
        src = self._resolve(url, source)
        html_doc = await self.fetcher.fetch(
            url,
            headers=src.headers if src else None,
            delay=src.delay if src else 0.0,
        )
        content = extract_content(html_doc, src.kind if src else None)
        if not content:
            raise ExtractionError(f"No readable content found at {url}")
        return content

    async def stream(
        self, chapters: Sequence[ChapterRef], source: Optional[str] = None
    ) -> AsyncIterator[ChapterContent]:
        """Yield one ``ChapterContent`` per chapter, strictly in input order."""
        for chapter in chapters:
            try:
                content = await self.fetch_content(chapter.link, source)
            except Exception as e:
                reason = getattr(e, "message", None) or str(e) or type(e).__name__
                logger.warning(f"Chapter {chapter.title!r} failed: {reason}")
                yield ChapterContent(
                    chapter=chapter,
                    content=FAILURE_MARKER.format(reason=reason),
                    ok=False,
                    error=reason,
                )
                continue
            yield ChapterContent(chapter=chapter, content=content)

    async def assemble(
        self,
        chapters: Sequence[ChapterRef],
        source: Optional[str] = None,
        title: str = "",
        on_progress: Optional[ProgressCallback] = None,
    ) -> AssembledDocument:
        total = len(chapters)
        sections: List[ChapterContent] = []
        async for section in self.stream(chapters, source):
            sections.append(section)
            processed = len(sections)
            logger.info(f"Processed {processed} of {total} chapters")
            if on_progress is not None:
                on_progress(processed, total)
        document = AssembledDocument(title=title, sections=sections)
        if document.failed:
            logger.warning(f"{document.failed} of {total} chapters could not be retrieved")
        return document
