"""Exception taxonomy shared by the orchestration core and the HTTP layer.

Each error carries the HTTP status it maps to and a human readable message.
The FastAPI app renders ``payload()`` as the JSON body, so internal causes
(tracebacks, raw library exceptions) never reach the client.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class NovelScoutError(Exception):
    """Base class for all errors raised by novelscout."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def payload(self) -> Dict[str, Any]:
        return {"error": self.message}


class InvalidQuery(NovelScoutError):
    status_code = 400

    def __init__(self, message: str, available: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.available = list(available or [])

    def payload(self) -> Dict[str, Any]:
        return {"error": self.message, "availableSources": self.available}


class InvalidSource(NovelScoutError):
    status_code = 400


class SourceNotFound(NovelScoutError):
    status_code = 404


class DuplicateSource(NovelScoutError):
    status_code = 409


class PoolUnavailable(NovelScoutError):
    """The headless browser could not be started."""

    status_code = 503


class FetchFailed(NovelScoutError):
    """A page could not be fetched in any of the allowed attempts."""

    status_code = 502

    def __init__(self, url: str, attempts: int, cause: Optional[BaseException] = None) -> None:
        reason = _describe(cause) if cause is not None else "unknown error"
        super().__init__(f"Failed to fetch {url} after {attempts} attempts: {reason}")
        self.url = url
        self.attempts = attempts
        self.cause = cause


class ExtractionError(NovelScoutError):
    """A fetched page held nothing the extraction rules could read."""

    status_code = 502


class AllSourcesUnavailable(NovelScoutError):
    status_code = 503

    def __init__(self, tried: List[str], available: List[str]) -> None:
        if tried:
            message = "No source returned results (tried: " + ", ".join(tried) + ")"
        else:
            message = "No enabled source is available"
        super().__init__(message)
        self.tried = list(tried)
        self.available = list(available)

    def payload(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "availableSources": self.available,
            "triedSources": self.tried,
        }


def _describe(exc: BaseException) -> str:
    text = str(exc).strip().splitlines()
    # Playwright errors carry a multi-line call log; the first line is the reason.
    return text[0] if text else type(exc).__name__
