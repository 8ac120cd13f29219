from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple

import requests

from .config import Settings
from .models import CandidateBuild

log = logging.getLogger(__name__)


class CatalogUnavailable(RuntimeError):
    """Raised when every attempt of a catalog query failed."""

    def __init__(self, endpoint: str, attempts: int, last_error: Optional[BaseException]) -> None:
        self.endpoint = endpoint
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Catalog query {endpoint} failed after {attempts} attempts: {last_error}")


class InconsistentCatalogResponse(RuntimeError):
    """Raised when two catalog calls disagree about the same build."""


class CatalogResponseError(ValueError):
    """A catalog reply that parsed but does not carry a usable response."""


class CatalogTransport:
    """Narrow HTTP surface used by the catalog client and the package stager."""

    def get_json(self, url: str, params: Mapping[str, str]) -> Any:
        raise NotImplementedError

    def download(self, url: str, data: Mapping[str, Any], destination: Path) -> Path:
        raise NotImplementedError


class RequestsTransport(CatalogTransport):
    def __init__(self, settings: Settings, session: Optional[requests.Session] = None) -> None:
        self.timeout = settings.request_timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": settings.user_agent})

    def get_json(self, url: str, params: Mapping[str, str]) -> Any:
        response = self.session.get(url, params=dict(params), timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def download(self, url: str, data: Mapping[str, Any], destination: Path) -> Path:
        destination = Path(destination)
        with self.session.post(url, data=dict(data), timeout=self.timeout, stream=True) as response:
            response.raise_for_status()
            with open(destination, "wb") as handle:
                for chunk in response.iter_content(chunk_size=1024 * 1024):
                    if chunk:
                        handle.write(chunk)
        return destination


def _unwrap(payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, dict) or not isinstance(payload.get("response"), dict):
        raise CatalogResponseError("catalog reply has no 'response' object")
    body = payload["response"]
    if body.get("error"):
        raise CatalogResponseError(f"catalog reported error: {body['error']}")
    return body


class CatalogClient:
    """Read-only client for the build catalog with a fixed-delay retry policy."""

    def __init__(
        self,
        transport: CatalogTransport,
        settings: Optional[Settings] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.transport = transport
        self.settings = settings or Settings()
        self._sleep = sleep

    def query(self, endpoint: str, params: Mapping[str, str]) -> Dict[str, Any]:
        url = f"{self.settings.api_base_url}/{endpoint}"
        attempts = self.settings.attempts
        last_error: Optional[BaseException] = None
        for attempt in range(1, attempts + 1):
            if attempt > 1:
                self._sleep(self.settings.retry_delay)
            try:
                return _unwrap(self.transport.get_json(url, params))
            except (requests.RequestException, ValueError) as exc:
                last_error = exc
                log.warning("Catalog query %s failed (attempt %d/%d): %s", endpoint, attempt, attempts, exc)
        raise CatalogUnavailable(endpoint, attempts, last_error)

    def list_builds(self, search: str) -> List[CandidateBuild]:
        body = self.query("listid.php", {"search": search})
        builds = body.get("builds") or []
        entries = builds.values() if isinstance(builds, dict) else builds
        return [
            CandidateBuild(id=entry["uuid"], title=entry["title"], build=str(entry["build"]))
            for entry in entries
        ]

    def list_languages(self, build_id: str) -> Tuple[str, str, FrozenSet[str]]:
        body = self.query("listlangs.php", {"id": build_id})
        info = body.get("updateInfo") or {}
        languages = frozenset(body.get("langFancyNames") or {})
        return str(info.get("build", "")), str(info.get("ring", "")), languages

    def list_editions(self, build_id: str, language: str) -> FrozenSet[str]:
        body = self.query("listeditions.php", {"id": build_id, "lang": language})
        return frozenset(body.get("editionFancyNames") or {})
