from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional


@dataclass(frozen=True)
class TargetSpec:
    """A supported platform and the catalog criteria used to pick its build."""

    name: str
    search: str
    edition: str
    virtual_edition: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TargetSpec":
        return cls(
            name=data["name"],
            search=data["search"],
            edition=data["edition"],
            virtual_edition=data.get("virtualEdition") or None,
        )


@dataclass(frozen=True)
class CandidateBuild:
    """One build reported by the catalog while selection is running."""

    id: str
    title: str
    build: str
    ring: Optional[str] = None
    languages: FrozenSet[str] = frozenset()
    editions: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class SelectedBuild:
    name: str
    title: str
    build: str
    id: str
    edition: str
    virtual_edition: Optional[str]
    api_url: str
    download_url: str
    download_package_url: str

    def catalog_refs(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "apiUrl": self.api_url,
            "downloadUrl": self.download_url,
            "downloadPackageUrl": self.download_package_url,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "title": self.title,
            "build": self.build,
            "edition": self.edition,
            "virtualEdition": self.virtual_edition,
            **self.catalog_refs(),
        }


@dataclass(frozen=True)
class WindowsImage:
    """An OS image embedded in the install image of a disc."""

    index: int
    name: str
    version: str

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "name": self.name, "version": self.version}


@dataclass
class BuildArtifact:
    """The verified artifact set written for one target."""

    iso_path: Path
    checksum: str
    images: List[WindowsImage] = field(default_factory=list)
    catalog_refs: Dict[str, str] = field(default_factory=dict)

    @property
    def metadata_path(self) -> Path:
        return self.iso_path.with_name(self.iso_path.name + ".json")

    @property
    def checksum_path(self) -> Path:
        return self.iso_path.with_name(self.iso_path.name + ".sha256.txt")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iso": str(self.iso_path),
            "checksum": self.checksum,
            "images": [image.to_dict() for image in self.images],
            "uupDump": dict(self.catalog_refs),
        }


@dataclass
class StageResult:
    """Summary emitted by a pipeline stage."""

    name: str
    status: str
    details: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"stage": self.name, "status": self.status, "details": self.details}
