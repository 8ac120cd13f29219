from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence

import yaml

from .models import TargetSpec

LANGUAGE = "en-us"

API_URL_TEMPLATE = "{api_base_url}/get.php?id={id}&lang={lang}&edition={edition}"
DOWNLOAD_URL_TEMPLATE = "{site_base_url}/download.php?id={id}&pack={lang}&edition={edition}"
PACKAGE_URL_TEMPLATE = "{site_base_url}/get.php?id={id}&pack={lang}&edition={edition}"


@dataclass(frozen=True)
class Settings:
    """Process-wide knobs for talking to the build catalog."""

    api_base_url: str = "https://api.uupdump.net"
    site_base_url: str = "https://uupdump.net"
    language: str = LANGUAGE
    attempts: int = 15
    retry_delay: float = 10.0
    request_timeout: float = 60.0
    user_agent: str = "isobuild"


DEFAULT_TARGETS: Sequence[TargetSpec] = (
    TargetSpec(
        name="windows-10",
        search="windows 10 19045 amd64",
        edition="Professional",
        virtual_edition="Enterprise",
    ),
    TargetSpec(
        name="windows-11",
        search="windows 11 22631 amd64",
        edition="Professional",
        virtual_edition="Enterprise",
    ),
    TargetSpec(
        name="windows-2022",
        search="feature update server operating system 20348 amd64",
        edition="ServerStandard",
    ),
    TargetSpec(
        name="windows-2025",
        search="windows server 26100 amd64",
        edition="ServerStandard",
    ),
)


class TargetError(RuntimeError):
    """Raised when the target table cannot be parsed or a target is unknown."""


class TargetTable:
    """Immutable name -> TargetSpec mapping handed to the pipeline."""

    def __init__(self, targets: Iterable[TargetSpec]) -> None:
        self._targets: Dict[str, TargetSpec] = {}
        for target in targets:
            if target.name in self._targets:
                raise TargetError(f"Duplicate target name: {target.name}")
            self._targets[target.name] = target

    @classmethod
    def default(cls) -> "TargetTable":
        return cls(DEFAULT_TARGETS)

    @classmethod
    def from_file(cls, path: str | Path) -> "TargetTable":
        raw_text = Path(path).read_text(encoding="utf-8")
        try:
            raw_data = json.loads(raw_text)
        except json.JSONDecodeError:
            try:
                raw_data = yaml.safe_load(raw_text)
            except yaml.YAMLError as exc:
                raise TargetError(f"Cannot parse target file {path}: {exc}") from exc

        if not isinstance(raw_data, dict) or not isinstance(raw_data.get("targets"), list):
            raise TargetError("Target file must contain a top-level 'targets' list")

        try:
            return cls(TargetSpec.from_dict(entry) for entry in raw_data["targets"])
        except (KeyError, TypeError) as exc:
            raise TargetError(f"Malformed target entry in {path}: {exc}") from exc

    @classmethod
    def load(cls, path: Optional[str | Path]) -> "TargetTable":
        return cls.from_file(path) if path else cls.default()

    def names(self) -> Sequence[str]:
        return list(self._targets)

    def __iter__(self):
        return iter(self._targets.values())

    def get(self, name: str) -> TargetSpec:
        try:
            return self._targets[name]
        except KeyError as exc:
            known = ", ".join(self.names())
            raise TargetError(f"Unknown target: {name} (known: {known})") from exc

    def __len__(self) -> int:
        return len(self._targets)

    def __contains__(self, name: str) -> bool:
        return name in self._targets
