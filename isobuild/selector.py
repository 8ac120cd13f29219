"""Deterministic selection of a single catalog build for a target.

The filters run in a fixed order. The cheap title check runs before any
per-candidate catalog call, and the edition listing is only fetched when the
language is available. Candidates are evaluated lazily, so no call is made
for builds after the first match.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Iterable, Iterator, Optional

from .catalog import CatalogClient, InconsistentCatalogResponse
from .config import API_URL_TEMPLATE, DOWNLOAD_URL_TEMPLATE, PACKAGE_URL_TEMPLATE, Settings
from .models import CandidateBuild, SelectedBuild, TargetSpec

log = logging.getLogger(__name__)

PREVIEW_MARKER = "preview"
RETAIL_RING = "RETAIL"
BUILD_VERSION_PATTERN = re.compile(r"^\d+\.\d+$")


class NoMatchingBuild(RuntimeError):
    """Raised when no catalog candidate survives the selection filters."""

    def __init__(self, target: str, search: str) -> None:
        self.target = target
        self.search = search
        super().__init__(f"No build matches target {target} (search: {search!r})")


class UnexpectedBuildFormat(RuntimeError):
    """Raised when a build version is not of the form <major>.<minor>."""


def is_preview(text: str) -> bool:
    return PREVIEW_MARKER in text.lower()


def drop_previews(candidates: Iterable[CandidateBuild], search: str) -> Iterator[CandidateBuild]:
    allow_previews = is_preview(search)
    for candidate in candidates:
        if not allow_previews and is_preview(candidate.title):
            log.info("Skipping %s (%s): preview build", candidate.id, candidate.title)
            continue
        yield candidate


def with_languages(candidate: CandidateBuild, client: CatalogClient) -> CandidateBuild:
    build, ring, languages = client.list_languages(candidate.id)
    if build != candidate.build:
        raise InconsistentCatalogResponse(
            f"Build {candidate.id} reported as {candidate.build!r} by the build list "
            f"but as {build!r} by the language list"
        )
    return replace(candidate, ring=ring, languages=languages)


def _contains(values: Iterable[str], wanted: str) -> bool:
    # Catalog codes vary in case (PROFESSIONAL vs Professional).
    return wanted.casefold() in {value.casefold() for value in values}


def with_editions(candidate: CandidateBuild, client: CatalogClient, language: str) -> CandidateBuild:
    if not _contains(candidate.languages, language):
        return replace(candidate, editions=frozenset())
    return replace(candidate, editions=client.list_editions(candidate.id, language))


def rejection_reason(candidate: CandidateBuild, target: TargetSpec, language: str) -> Optional[str]:
    """Return why *candidate* cannot serve *target*, or None when it can."""
    if (candidate.ring or "").casefold() != RETAIL_RING.casefold():
        return f"ring is {candidate.ring!r}, not {RETAIL_RING}"
    if not _contains(candidate.languages, language):
        return f"language {language} is not available"
    if not _contains(candidate.editions, target.edition):
        return f"edition {target.edition} is not available"
    return None


def validate_build_version(build: str) -> str:
    if not BUILD_VERSION_PATTERN.fullmatch(build):
        raise UnexpectedBuildFormat(f"Unexpected build version format: {build!r}")
    return build


def build_selected(candidate: CandidateBuild, target: TargetSpec, settings: Settings) -> SelectedBuild:
    params = {
        "api_base_url": settings.api_base_url,
        "site_base_url": settings.site_base_url,
        "id": candidate.id,
        "lang": settings.language,
        "edition": target.edition,
    }
    return SelectedBuild(
        name=target.name,
        title=candidate.title,
        build=candidate.build,
        id=candidate.id,
        edition=target.edition,
        virtual_edition=target.virtual_edition,
        api_url=API_URL_TEMPLATE.format(**params),
        download_url=DOWNLOAD_URL_TEMPLATE.format(**params),
        download_package_url=PACKAGE_URL_TEMPLATE.format(**params),
    )


class BuildSelector:
    def __init__(self, client: CatalogClient) -> None:
        self.client = client

    @property
    def language(self) -> str:
        return self.client.settings.language

    def _enriched(self, candidates: Iterable[CandidateBuild]) -> Iterator[CandidateBuild]:
        for candidate in candidates:
            candidate = with_languages(candidate, self.client)
            yield with_editions(candidate, self.client, self.language)

    def select(self, target: TargetSpec) -> SelectedBuild:
        log.info("Searching catalog for %s: %r", target.name, target.search)
        candidates = self.client.list_builds(target.search)
        log.debug("Catalog returned %d candidates", len(candidates))

        chosen: Optional[CandidateBuild] = None
        for candidate in self._enriched(drop_previews(candidates, target.search)):
            reason = rejection_reason(candidate, target, self.language)
            if reason is None:
                chosen = candidate
                break
            log.info("Skipping %s (%s): %s", candidate.id, candidate.title, reason)

        if chosen is None:
            raise NoMatchingBuild(target.name, target.search)

        selected = build_selected(chosen, target, self.client.settings)
        validate_build_version(selected.build)
        log.info("Selected %s build %s (%s)", selected.title, selected.build, selected.id)
        return selected
