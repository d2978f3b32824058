"""Registry of configured sources and their health state."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

import soupsieve as sv
from loguru import logger
from pydantic import ValidationError

from . import config, db
from .errors import DuplicateSource, InvalidSource, NovelScoutError, SourceNotFound
from .models import SourceDefinition


class SourceRegistry:
    """Holds every known source in registration order.

    The registry is the only owner of ``SourceDefinition`` objects. Each
    mutation is written through to the ``sources`` table so that health
    state and user-registered sources survive restarts. ``ordering``
    controls how ``list()`` ranks enabled sources: ``"latency"`` puts the
    fastest probed source first, ``"registration"`` keeps insertion order.
    """

    def __init__(self, ordering: str = config.SOURCE_ORDERING, persist: bool = True) -> None:
        if ordering not in ("latency", "registration"):
            raise ValueError(f"Unknown source ordering {ordering!r}")
        self.ordering = ordering
        self.persist = persist
        self._sources: List[SourceDefinition] = []

    def load(self) -> None:
        """Replace in-memory state with the persisted source rows."""
        self._sources = [SourceDefinition.model_validate(row) for row in db.list_sources()]
        logger.info(f"Loaded {len(self._sources)} sources from storage")

    def seed(self, definitions: Iterable[SourceDefinition]) -> int:
        """Register each definition whose name and URL are not yet known.

        Definitions that fail registration are logged and skipped.
        """
        added = 0
        for definition in definitions:
            if self.get(definition.name) or self._find_url(definition.url):
                continue
            try:
                self.register(definition)
            except NovelScoutError as e:
                logger.error(f"Skipping source {definition.name!r}: {e.message}")
                continue
            added += 1
        return added

    def list(self, enabled_only: bool = True) -> List[SourceDefinition]:
        if not enabled_only:
            return list(self._sources)
        ranked = [(pos, s) for pos, s in enumerate(self._sources) if s.enabled and not s.disabled]
        if self.ordering == "latency":
            # Never-probed sources go after every probed one.
            ranked.sort(key=lambda item: (item[1].latency is None, item[1].latency or 0.0, item[0]))
        return [s for _, s in ranked]

    def names(self, enabled_only: bool = True) -> List[str]:
        return [s.name for s in self.list(enabled_only)]

    def get(self, name: Optional[str]) -> Optional[SourceDefinition]:
        for source in self._sources:
            if source.name == name:
                return source
        return None

    def find_by_url(self, url: str) -> Optional[SourceDefinition]:
        """Return the source whose host matches ``url``'s host."""
        host = urlparse(url).netloc.lower()
        if not host:
            return None
        for source in self._sources:
            if source.host == host:
                return source
        return None

    def register(self, definition: Any) -> SourceDefinition:
        """Add a source.

        ``definition`` may be a ``SourceDefinition`` or a raw mapping (as
        posted to the API). Raises ``InvalidSource`` when the name or URL is
        missing or malformed and ``DuplicateSource`` when either is taken.
        """
        if not isinstance(definition, SourceDefinition):
            definition = self._validate(definition)
        self._check_selectors(definition)
        name = definition.name.strip()
        url = definition.url.strip().rstrip("/")
        if not name or not url:
            raise InvalidSource("Source name and url are required")
        if urlparse(url).scheme not in ("http", "https") or not urlparse(url).netloc:
            raise InvalidSource(f"Source url must be an absolute http(s) URL: {url}")
        if self._find_url(url):
            raise DuplicateSource(f"A source with url {url} is already registered")
        if self.get(name):
            raise DuplicateSource(f"A source named {name} is already registered")

        definition = definition.model_copy(update={"name": name, "url": url})
        self._sources.append(definition)
        self._save(definition)
        logger.info(f"Registered source {name} ({url})")
        return definition

    def update_health(self, name: str, ok: bool, latency: Optional[float] = None) -> None:
        """Record a probe outcome.

        A failed probe keeps the previous latency. A source switched off with
        ``set_enabled`` stays off whatever the probe says.
        """
        source = self.get(name)
        if source is None:
            logger.warning(f"Health update for unknown source {name}")
            return
        source.enabled = ok and not source.disabled
        if latency is not None:
            source.latency = latency
        source.last_checked = datetime.now(timezone.utc)
        self._save(source)

    def set_enabled(self, name: str, enabled: bool) -> SourceDefinition:
        source = self.get(name)
        if source is None:
            raise SourceNotFound(f"Unknown source {name}")
        source.disabled = not enabled
        source.enabled = enabled
        self._save(source)
        logger.info(f"Source {name} {'enabled' if enabled else 'disabled'}")
        return source

    def _find_url(self, url: str) -> Optional[SourceDefinition]:
        url = url.strip().rstrip("/")
        for source in self._sources:
            if source.url.rstrip("/") == url:
                return source
        return None

    def _save(self, source: SourceDefinition) -> None:
        if not self.persist:
            return
        position = self._sources.index(source)
        db.upsert_source(source.model_dump(mode="json"), position)

    @staticmethod
    def _check_selectors(definition: SourceDefinition) -> None:
        """Compile every CSS rule of the selector map so bad rules fail registration."""
        rules = definition.selectors
        if not rules.item.strip():
            raise InvalidSource("Selector map needs an item selector")
        for field in ("item", "title", "link", "author", "cover", "description"):
            selector = getattr(rules, field).partition("@")[0].strip()
            if not selector:
                continue
            try:
                sv.compile(selector)
            except sv.SelectorSyntaxError as e:
                raise InvalidSource(f"Invalid {field} selector {selector!r}: {e}") from e

    @staticmethod
    def _validate(data: Any) -> SourceDefinition:
        if not isinstance(data, dict):
            raise InvalidSource("Source definition must be a JSON object")
        if not str(data.get("name") or "").strip() or not str(data.get("url") or "").strip():
            raise InvalidSource("Source name and url are required")
        try:
            return SourceDefinition.model_validate(data)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise InvalidSource(f"Invalid source definition ({fields})") from e
