from __future__ import annotations

from dataclasses import replace

import pytest

from isobuild.catalog import CatalogClient, InconsistentCatalogResponse
from isobuild.config import Settings, TargetTable
from isobuild.models import CandidateBuild, TargetSpec
from isobuild.selector import (
    BuildSelector,
    NoMatchingBuild,
    UnexpectedBuildFormat,
    build_selected,
    drop_previews,
    is_preview,
    rejection_reason,
    validate_build_version,
)

from fakes import FakeTransport, RecordingSleep, build_entry

TARGET = TargetSpec(
    name="windows-11",
    search="windows 11 22631 amd64",
    edition="Professional",
    virtual_edition="Enterprise",
)


def _selector(builds) -> tuple:
    transport = FakeTransport(builds)
    return BuildSelector(CatalogClient(transport, Settings(), sleep=RecordingSleep())), transport


def test_is_preview_is_case_insensitive() -> None:
    assert is_preview("Windows 11 Insider Preview 26100.1 (ge_release) amd64")
    assert is_preview("PREVIEW build")
    assert not is_preview("Windows 11, version 23H2 (22631.4317) amd64")


def test_drop_previews_unless_search_requests_them() -> None:
    candidates = [
        CandidateBuild(id="p", title="Windows 11 Insider Preview", build="26100.1"),
        CandidateBuild(id="r", title="Windows 11, version 23H2", build="22631.4317"),
    ]

    assert [c.id for c in drop_previews(candidates, "windows 11 amd64")] == ["r"]
    assert [c.id for c in drop_previews(candidates, "windows 11 preview amd64")] == ["p", "r"]


def test_rejection_reason_checks_ring_language_and_edition() -> None:
    base = CandidateBuild(
        id="a",
        title="t",
        build="22631.1",
        ring="RETAIL",
        languages=frozenset({"en-us"}),
        editions=frozenset({"Professional"}),
    )
    assert rejection_reason(base, TARGET, "en-us") is None

    assert "ring" in rejection_reason(replace(base, ring="CANARY"), TARGET, "en-us")
    assert "language" in rejection_reason(replace(base, languages=frozenset({"de-de"})), TARGET, "en-us")
    assert "edition" in rejection_reason(replace(base, editions=frozenset({"Core"})), TARGET, "en-us")


@pytest.mark.parametrize("build", ["22631.1", "22631.4317", "0.0"])
def test_validate_build_version_accepts_numeric_pairs(build: str) -> None:
    assert validate_build_version(build) == build


@pytest.mark.parametrize("build", ["22631", "22631.1.2", "22631.x", "", " 22631.1"])
def test_validate_build_version_rejects_other_formats(build: str) -> None:
    with pytest.raises(UnexpectedBuildFormat):
        validate_build_version(build)


def test_build_selected_derives_urls() -> None:
    candidate = CandidateBuild(id="abc-123", title="Windows 11", build="22631.4317")

    selected = build_selected(candidate, TARGET, Settings())

    assert selected.api_url == "https://api.uupdump.net/get.php?id=abc-123&lang=en-us&edition=Professional"
    assert selected.download_url == "https://uupdump.net/download.php?id=abc-123&pack=en-us&edition=Professional"
    assert selected.download_package_url == "https://uupdump.net/get.php?id=abc-123&pack=en-us&edition=Professional"
    assert selected.virtual_edition == "Enterprise"


def test_select_picks_first_qualifying_build_in_catalog_order() -> None:
    selector, transport = _selector(
        [
            build_entry("preview", "Windows 11 Insider Preview (26100.1) amd64", build="26100.1"),
            build_entry("beta", "Windows 11 (22631.5000) amd64", build="22631.5000", ring="BETA"),
            build_entry("first", "Windows 11, version 23H2 (22631.4317) amd64", build="22631.4317"),
            build_entry("second", "Windows 11, version 23H2 (22631.4391) amd64", build="22631.4391"),
        ]
    )

    selected = selector.select(TARGET)

    assert selected.id == "first"
    assert selected.build == "22631.4317"
    assert selected.name == "windows-11"
    queried_ids = [params.get("id") for _, params in transport.calls]
    assert "preview" not in queried_ids
    assert "second" not in queried_ids


def test_select_skips_candidates_without_language_without_fetching_editions() -> None:
    selector, transport = _selector(
        [
            build_entry("german", "Windows 11 (22631.1) amd64", build="22631.1", languages=("de-de",)),
            build_entry("english", "Windows 11 (22631.2) amd64", build="22631.2"),
        ]
    )

    selected = selector.select(TARGET)

    assert selected.id == "english"
    assert ("listeditions.php", {"id": "german", "lang": "en-us"}) not in transport.calls


def test_select_raises_when_nothing_matches() -> None:
    selector, _ = _selector(
        [build_entry("core-only", "Windows 11 (22631.1) amd64", build="22631.1", editions=("Core",))]
    )

    with pytest.raises(NoMatchingBuild) as excinfo:
        selector.select(TARGET)

    assert excinfo.value.target == "windows-11"


def test_select_raises_on_inconsistent_build_versions() -> None:
    selector, _ = _selector([build_entry("a", "Windows 11 amd64", build="22631.1", langs_build="22631.2")])

    with pytest.raises(InconsistentCatalogResponse):
        selector.select(TARGET)


def test_select_validates_build_format() -> None:
    selector, _ = _selector([build_entry("a", "Windows 11 amd64", build="22631")])

    with pytest.raises(UnexpectedBuildFormat):
        selector.select(TARGET)


def test_select_matches_upper_case_catalog_codes() -> None:
    selector, _ = _selector(
        [
            build_entry(
                "a",
                "Windows 11, version 23H2 (22631.4317) amd64",
                ring="Retail",
                editions=("PROFESSIONAL", "CORE"),
            )
        ]
    )

    selected = selector.select(TargetTable.default().get("windows-11"))

    assert selected.id == "a"
    assert selected.edition == "Professional"


def test_rejection_reason_ignores_case() -> None:
    candidate = CandidateBuild(
        id="a",
        title="t",
        build="22631.1",
        ring="retail",
        languages=frozenset({"EN-US"}),
        editions=frozenset({"SERVERSTANDARD"}),
    )
    server = TargetSpec(name="windows-2022", search="server 20348", edition="ServerStandard")

    assert rejection_reason(candidate, server, "en-us") is None
