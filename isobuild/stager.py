from __future__ import annotations

import logging
import re
import zipfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import requests

from .catalog import CatalogTransport
from .models import SelectedBuild
from .utils import reset_directory

log = logging.getLogger(__name__)

CONVERT_CONFIG_NAME = "ConvertConfig.ini"


class PackageFetchFailed(RuntimeError):
    """Raised when the conversion package cannot be downloaded or extracted."""


class ConfigPatchFailed(RuntimeError):
    """Raised when the converter configuration cannot be patched."""


def package_request_body(virtual_edition: Optional[str]) -> Dict[str, Any]:
    if virtual_edition:
        return {"autodl": 3, "updates": 1, "cleanup": 1, "virtualEditions[]": [virtual_edition]}
    return {"autodl": 2, "updates": 1, "cleanup": 1}


def config_overrides(virtual_edition: Optional[str]) -> List[Tuple[str, str]]:
    overrides = [("AutoExit", "1"), ("ResetBase", "1"), ("SkipWinRE", "1")]
    if virtual_edition:
        overrides += [("StartVirtual", "1"), ("vDeleteSource", "1"), ("vAutoEditions", virtual_edition)]
    return overrides


def patch_convert_config(text: str, virtual_edition: Optional[str]) -> str:
    """Set the unattended-conversion keys in ConvertConfig.ini content.

    Only the value after ``=`` changes; key spacing, other lines and each
    line's terminator are kept as they are.
    """
    lines = text.splitlines(keepends=True)
    for key, value in config_overrides(virtual_edition):
        pattern = re.compile(rf"^({re.escape(key)}\s*)=.*$")
        found = False
        for position, line in enumerate(lines):
            body = line.rstrip("\r\n")
            ending = line[len(body):]
            patched, count = pattern.subn(lambda match: f"{match.group(1)}={value}", body)
            if count:
                lines[position] = patched + ending
                found = True
        if not found:
            raise ConfigPatchFailed(f"{CONVERT_CONFIG_NAME} has no {key} setting")
    return "".join(lines)


class PackageStager:
    """Fetches a build's conversion package into a clean working directory."""

    def __init__(self, transport: CatalogTransport) -> None:
        self.transport = transport

    def stage(self, selected: SelectedBuild, work_dir: Path) -> None:
        work_dir = reset_directory(work_dir)
        archive_path = work_dir.with_name(work_dir.name + ".zip")

        log.info("Downloading conversion package from %s", selected.download_package_url)
        try:
            try:
                self.transport.download(
                    selected.download_package_url,
                    package_request_body(selected.virtual_edition),
                    archive_path,
                )
            except requests.RequestException as exc:
                raise PackageFetchFailed(f"Cannot download {selected.download_package_url}: {exc}") from exc

            try:
                with zipfile.ZipFile(archive_path) as archive:
                    archive.extractall(work_dir)
            except (zipfile.BadZipFile, OSError) as exc:
                raise PackageFetchFailed(f"Cannot extract conversion package {archive_path}: {exc}") from exc
        finally:
            archive_path.unlink(missing_ok=True)
        log.info("Extracted conversion package into %s", work_dir)

        self.patch_config(work_dir / CONVERT_CONFIG_NAME, selected.virtual_edition)

    @staticmethod
    def patch_config(config_path: Path, virtual_edition: Optional[str]) -> None:
        try:
            text = config_path.read_bytes().decode("ascii")
        except FileNotFoundError as exc:
            raise ConfigPatchFailed(f"{config_path} not found in conversion package") from exc
        except UnicodeDecodeError as exc:
            raise ConfigPatchFailed(f"{config_path} is not ASCII: {exc}") from exc

        patched = patch_convert_config(text, virtual_edition)
        try:
            config_path.write_bytes(patched.encode("ascii"))
        except UnicodeEncodeError as exc:
            raise ConfigPatchFailed(f"Virtual edition {virtual_edition!r} is not ASCII") from exc
        log.debug("Patched %s", config_path)
