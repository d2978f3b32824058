"""Aggregated web novel search and download service.

This package implements a FastAPI based service that searches several
unreliable novel sites through one interface, lists and fetches chapters,
and merges whole novels into a single text download.

The modules in this package are:

* ``registry.py`` – The set of configured sources with their health state,
  persisted to SQLite through ``db.py``.

* ``health.py`` – A background monitor that probes every source with a
  HEAD request and enables or disables it accordingly.

* ``browser.py`` / ``fetcher.py`` – One shared headless Chromium
  (Playwright) from which short-lived pages are leased, and a fetcher that
  loads pages through it with bounded timeouts and retries.

* ``extractor.py`` – Functions that map raw HTML plus a source's selector
  map (or its kind's chapter rules from ``sources.py``) to normalised
  records, chapter lists and chapter text.

* ``cache.py`` – A TTL cache for search results, in memory or in Redis.

* ``search.py`` – The search orchestrator: cache lookup followed by
  sequential fallback across sources.

* ``assembler.py`` – Ordered chapter retrieval that never aborts on a
  single failed chapter.

* ``main.py`` – The FastAPI application itself.
"""

__version__ = "1.0.0"
