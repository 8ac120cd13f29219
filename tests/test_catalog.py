from __future__ import annotations

import pytest
import requests

from isobuild.catalog import CatalogClient, CatalogUnavailable
from isobuild.config import Settings

from fakes import FakeTransport, RecordingSleep, build_entry


class FlakyTransport(FakeTransport):
    def __init__(self, failures: int, **kwargs) -> None:
        super().__init__(**kwargs)
        self.remaining_failures = failures

    def get_json(self, url, params):
        if self.remaining_failures:
            self.remaining_failures -= 1
            self.calls.append(("failed", dict(params)))
            raise requests.ConnectionError("connection reset")
        return super().get_json(url, params)


def test_query_returns_first_success_without_sleeping() -> None:
    sleep = RecordingSleep()
    transport = FakeTransport([build_entry("a", "Windows 11, version 23H2 (22631.4317) amd64")])
    client = CatalogClient(transport, Settings(), sleep=sleep)

    body = client.query("listid.php", {"search": "windows 11"})

    assert list(body["builds"].values())[0]["uuid"] == "a"
    assert len(transport.calls) == 1
    assert sleep.delays == []


def test_query_retries_with_fixed_delay_until_success() -> None:
    sleep = RecordingSleep()
    transport = FlakyTransport(3, builds=[build_entry("a", "Windows 11")])
    client = CatalogClient(transport, Settings(), sleep=sleep)

    client.query("listid.php", {"search": "windows 11"})

    assert len(transport.calls) == 4
    assert sleep.delays == [10.0, 10.0, 10.0]


def test_query_gives_up_after_fifteen_attempts() -> None:
    sleep = RecordingSleep()
    transport = FakeTransport()
    transport.failure = requests.Timeout("timed out")
    client = CatalogClient(transport, Settings(), sleep=sleep)

    with pytest.raises(CatalogUnavailable) as excinfo:
        client.query("listid.php", {"search": "windows 11"})

    assert len(transport.calls) == 15
    assert sleep.delays == [10.0] * 14
    assert excinfo.value.attempts == 15
    assert isinstance(excinfo.value.last_error, requests.Timeout)


@pytest.mark.parametrize(
    "payload",
    [
        {"response": {"error": "UNSUPPORTED_API"}},
        {"unexpected": True},
        ["not", "an", "object"],
    ],
)
def test_non_success_payloads_are_retried(payload) -> None:
    class StaticTransport(FakeTransport):
        def get_json(self, url, params):
            self.calls.append(("static", dict(params)))
            return payload

    sleep = RecordingSleep()
    transport = StaticTransport()
    client = CatalogClient(transport, Settings(attempts=3, retry_delay=1.5), sleep=sleep)

    with pytest.raises(CatalogUnavailable):
        client.query("listid.php", {"search": "x"})

    assert len(transport.calls) == 3
    assert sleep.delays == [1.5, 1.5]


def test_list_builds_keeps_catalog_order() -> None:
    transport = FakeTransport(
        [
            build_entry("b", "second listed first", build="22631.2"),
            build_entry("a", "first listed second", build="22631.1"),
        ]
    )
    client = CatalogClient(transport, Settings(), sleep=RecordingSleep())

    builds = client.list_builds("windows 11")

    assert [build.id for build in builds] == ["b", "a"]
    assert builds[0].build == "22631.2"
    assert builds[0].ring is None


def test_list_languages_and_editions() -> None:
    transport = FakeTransport([build_entry("a", "Windows 11", ring="RETAIL", editions=("Professional",))])
    client = CatalogClient(transport, Settings(), sleep=RecordingSleep())

    build, ring, languages = client.list_languages("a")
    editions = client.list_editions("a", "en-us")

    assert (build, ring) == ("22631.4317", "RETAIL")
    assert languages == frozenset({"en-us", "de-de"})
    assert editions == frozenset({"Professional"})
    assert transport.calls[-1] == ("listeditions.php", {"id": "a", "lang": "en-us"})
