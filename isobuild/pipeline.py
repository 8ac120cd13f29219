from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import Iterable, Optional

from .catalog import CatalogClient
from .converter import ConversionRunner, convert
from .finalizer import ArtifactFinalizer
from .models import BuildArtifact, SelectedBuild, StageResult, TargetSpec
from .selector import BuildSelector
from .stager import PackageStager

log = logging.getLogger(__name__)


class Stage(Enum):
    SELECT = auto()
    STAGE = auto()
    CONVERT = auto()
    FINALIZE = auto()

    @classmethod
    def ordered(cls) -> Iterable["Stage"]:
        return (
            cls.SELECT,
            cls.STAGE,
            cls.CONVERT,
            cls.FINALIZE,
        )


@dataclass
class PipelineContext:
    target: TargetSpec
    work_root: Path
    destination: Path
    keep_work_dir: bool = True

    def __post_init__(self) -> None:
        self.work_root = Path(self.work_root)
        self.destination = Path(self.destination)

    @property
    def work_dir(self) -> Path:
        return self.work_root / self.target.name

    @property
    def destination_base(self) -> Path:
        return self.destination / self.target.name


class IsoPipeline:
    """Runs one target from catalog search to verified artifact, in order.

    There is no resume: every run starts from a fresh working directory and
    any exception aborts the run for this target.
    """

    def __init__(
        self,
        context: PipelineContext,
        client: CatalogClient,
        stager: PackageStager,
        runner: ConversionRunner,
        finalizer: ArtifactFinalizer,
    ) -> None:
        self.context = context
        self.selector = BuildSelector(client)
        self.stager = stager
        self.runner = runner
        self.finalizer = finalizer
        self.selected: Optional[SelectedBuild] = None
        self.iso_path: Optional[Path] = None
        self.artifact: Optional[BuildArtifact] = None

    def _select(self) -> StageResult:
        self.selected = self.selector.select(self.context.target)
        return StageResult("select", "completed", self.selected.to_dict())

    def _stage(self) -> StageResult:
        assert self.selected is not None
        self.stager.stage(self.selected, self.context.work_dir)
        return StageResult("stage", "completed", {"work_dir": str(self.context.work_dir)})

    def _convert(self) -> StageResult:
        self.iso_path = convert(self.context.work_dir, self.runner)
        return StageResult("convert", "completed", {"iso": str(self.iso_path)})

    def _finalize(self) -> StageResult:
        assert self.selected is not None and self.iso_path is not None
        self.artifact = self.finalizer.finalize(self.iso_path, self.selected, self.context.destination_base)
        if not self.context.keep_work_dir:
            shutil.rmtree(self.context.work_dir)
        return StageResult("finalize", "completed", self.artifact.to_dict())

    def run_stage(self, stage: Stage) -> StageResult:
        handler = {
            Stage.SELECT: self._select,
            Stage.STAGE: self._stage,
            Stage.CONVERT: self._convert,
            Stage.FINALIZE: self._finalize,
        }[stage]
        log.info("[%s] %s", self.context.target.name, stage.name.lower())
        result = handler()
        log.debug("[%s] %s", self.context.target.name, result.to_dict())
        return result

    def run(self) -> BuildArtifact:
        for stage in Stage.ordered():
            self.run_stage(stage)
        assert self.artifact is not None
        return self.artifact
