"""Turns a converter output file into a verified artifact set.

For each target the finalizer writes three files next to each other:

* ``<name>.iso`` - the disc image, moved from the working directory
* ``<name>.iso.sha256.txt`` - lowercase hex SHA-256 of the image, no newline
* ``<name>.iso.json`` - build metadata including the embedded Windows images

Embedded images are read from ``sources/install.wim`` (or ``install.esd``)
inside the disc with pycdlib, then listed with ``wimlib-imagex info``.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import pycdlib
from pycdlib.pycdlibexception import PyCdlibException

from .models import BuildArtifact, SelectedBuild, WindowsImage
from .utils import CommandError, dump_json, ensure_directory, run_command, sha256_file, write_text_exact

log = logging.getLogger(__name__)

INSTALL_IMAGE_NAMES = ("install.wim", "install.esd")


class ImageInspectionFailed(RuntimeError):
    """Raised when the Windows images inside a disc cannot be enumerated."""


@contextmanager
def mounted_disc_image(iso_path: Path) -> Iterator[pycdlib.PyCdlib]:
    """Open *iso_path* read-only; the handle is closed on every exit path."""
    iso = pycdlib.PyCdlib()
    try:
        iso.open(str(iso_path))
    except PyCdlibException as exc:
        raise ImageInspectionFailed(f"Cannot open disc image {iso_path}: {exc}") from exc
    log.debug("Opened disc image %s", iso_path)
    try:
        yield iso
    finally:
        iso.close()
        log.debug("Closed disc image %s", iso_path)


def _strip_iso_version(name: str) -> str:
    idx = name.rfind(";")
    if idx != -1:
        return name[:idx]
    return name


def _sources_listing(iso: pycdlib.PyCdlib):
    # Prefer UDF, then Joliet, then plain ISO9660 for long file names.
    if iso.has_udf():
        return "udf", "/sources/", iso.list_children(udf_path="/sources")
    if iso.has_joliet():
        return "joliet", "/sources/", iso.list_children(joliet_path="/sources")
    return "iso", "/SOURCES/", iso.list_children(iso_path="/SOURCES")


def _child_name(facade: str, child) -> str:
    raw = child.file_identifier()
    if facade == "udf":
        return raw.decode("utf-8", errors="replace")
    if facade == "joliet":
        return _strip_iso_version(raw.decode("utf-16-be", errors="replace")).rstrip("\x00")
    return _strip_iso_version(raw.decode("ascii", errors="replace"))


def extract_install_image(iso: pycdlib.PyCdlib, dest_dir: Path) -> Path:
    """Copy the install image container out of an opened disc into *dest_dir*."""
    try:
        facade, prefix, children = _sources_listing(iso)
        names: Dict[str, str] = {}
        for child in children:
            if child is None:
                continue
            name = _child_name(facade, child)
            names.setdefault(name.lower(), name)
    except PyCdlibException as exc:
        raise ImageInspectionFailed(f"Cannot list sources directory: {exc}") from exc

    wim_name = next((names[candidate] for candidate in INSTALL_IMAGE_NAMES if candidate in names), None)
    if wim_name is None:
        raise ImageInspectionFailed("Disc image has no sources/install.wim or sources/install.esd")

    dest_path = Path(dest_dir) / wim_name
    log.info("Extracting %s from disc image (this may take a while) ...", wim_name)
    try:
        if facade == "udf":
            iso.get_file_from_iso(str(dest_path), udf_path=prefix + wim_name)
        elif facade == "joliet":
            iso.get_file_from_iso(str(dest_path), joliet_path=prefix + wim_name)
        else:
            # ISO 9660 paths need the version suffix for pycdlib lookups
            iso_name = wim_name.upper()
            if ";" not in iso_name:
                iso_name += ";1"
            iso.get_file_from_iso(str(dest_path), iso_path=prefix + iso_name)
    except PyCdlibException as exc:
        raise ImageInspectionFailed(f"Cannot extract {wim_name}: {exc}") from exc
    return dest_path


def _image_version(fields: Dict[str, str]) -> str:
    parts = [
        fields.get(key, "")
        for key in ("Major Version", "Minor Version", "Build", "Service Pack Build")
    ]
    return ".".join(part for part in parts if part)


def parse_wim_info(output: str) -> List[WindowsImage]:
    """Parse ``wimlib-imagex info`` output into images ordered by index."""
    records: List[Dict[str, str]] = []
    current: Optional[Dict[str, str]] = None
    for line in output.splitlines():
        key, sep, value = line.strip().partition(":")
        if not sep:
            continue
        key, value = key.strip(), value.strip()
        if key == "Index":
            current = {"Index": value}
            records.append(current)
        elif current is not None:
            current.setdefault(key, value)

    images = [
        WindowsImage(index=int(record["Index"]), name=record.get("Name", ""), version=_image_version(record))
        for record in records
    ]
    return sorted(images, key=lambda image: image.index)


class ImageInspector:
    """Lists the Windows images embedded in a disc image."""

    def list_images(self, iso_path: Path) -> List[WindowsImage]:
        raise NotImplementedError


class WimImageInspector(ImageInspector):
    def __init__(self, wimlib: str = "wimlib-imagex") -> None:
        self.wimlib = wimlib

    def list_images(self, iso_path: Path) -> List[WindowsImage]:
        if shutil.which(self.wimlib) is None:
            raise ImageInspectionFailed(
                f"{self.wimlib} not found. Install wimtools (Debian/Ubuntu) or wimlib-utils (Fedora)."
            )
        with tempfile.TemporaryDirectory(prefix="isobuild_") as tmpdir:
            with mounted_disc_image(iso_path) as iso:
                wim_path = extract_install_image(iso, Path(tmpdir))
                try:
                    result = run_command([self.wimlib, "info", str(wim_path)])
                except CommandError as exc:
                    raise ImageInspectionFailed(f"{self.wimlib} info failed:\n{exc.stderr}") from exc
                images = parse_wim_info(result.stdout)
        if not images:
            raise ImageInspectionFailed(f"No Windows images found in {iso_path}")
        return images


def _move_replacing(source: Path, destination: Path) -> None:
    try:
        os.replace(source, destination)
    except OSError as exc:
        if exc.errno != errno.EXDEV:
            raise
        if destination.exists():
            destination.unlink()
        shutil.move(str(source), str(destination))


class ArtifactFinalizer:
    def __init__(self, inspector: Optional[ImageInspector] = None) -> None:
        self.inspector = inspector or WimImageInspector()

    @staticmethod
    def metadata(selected: SelectedBuild, checksum: str, images: List[WindowsImage]) -> Dict[str, object]:
        return {
            "name": selected.name,
            "title": selected.title,
            "build": selected.build,
            "checksum": checksum,
            "images": [image.to_dict() for image in images],
            "uupDump": selected.catalog_refs(),
        }

    def finalize(self, iso_path: Path, selected: SelectedBuild, destination_base: Path) -> BuildArtifact:
        iso_path = Path(iso_path)
        final_path = Path(f"{destination_base}.iso")

        log.info("Computing SHA-256 of %s", iso_path.name)
        checksum = sha256_file(iso_path)
        images = self.inspector.list_images(iso_path)
        for image in images:
            log.info("  Image %d: %s (%s)", image.index, image.name, image.version)

        ensure_directory(final_path.parent)
        artifact = BuildArtifact(
            iso_path=final_path,
            checksum=checksum,
            images=images,
            catalog_refs=selected.catalog_refs(),
        )
        # Sidecars only ever describe an image that is already in place.
        _move_replacing(iso_path, final_path)
        write_text_exact(artifact.checksum_path, checksum)
        dump_json(
            artifact.metadata_path,
            self.metadata(selected, checksum, images),
            sort_keys=False,
            literal_ampersands=True,
        )
        log.info("Wrote %s", final_path)
        return artifact
