from __future__ import annotations

import logging
import os
import shlex
import sys
from pathlib import Path
from typing import List, Optional, Sequence, TextIO

from .utils import stream_command

log = logging.getLogger(__name__)


class ConversionFailed(RuntimeError):
    """Raised when the conversion utility exits with a non-zero status."""

    def __init__(self, exit_code: int) -> None:
        self.exit_code = exit_code
        super().__init__(f"Conversion utility failed with exit code {exit_code}")


class DiscImageNotFound(RuntimeError):
    """Raised when the working directory does not hold exactly one disc image."""


def default_conversion_command() -> List[str]:
    if os.name == "nt":
        return ["cmd", "/c", "uup_download_windows.cmd"]
    return ["bash", "uup_download_linux.sh"]


class ConversionRunner:
    """Runs the conversion utility in a staged working directory."""

    def run(self, work_dir: Path) -> int:
        raise NotImplementedError


class SubprocessConversionRunner(ConversionRunner):
    def __init__(self, command: Optional[Sequence[str]] = None, output: Optional[TextIO] = None) -> None:
        self.command = list(command) if command else default_conversion_command()
        self.output = output

    @classmethod
    def from_command_line(cls, command_line: Optional[str]) -> "SubprocessConversionRunner":
        return cls(shlex.split(command_line) if command_line else None)

    def run(self, work_dir: Path) -> int:
        log.info("Running %s in %s", " ".join(self.command), work_dir)
        return stream_command(self.command, self.output or sys.stdout, cwd=work_dir)


def find_disc_image(work_dir: Path) -> Path:
    matches = sorted(path for path in Path(work_dir).iterdir() if path.is_file() and path.suffix.lower() == ".iso")
    if len(matches) != 1:
        names = ", ".join(path.name for path in matches) or "none"
        raise DiscImageNotFound(f"Expected exactly one .iso in {work_dir}, found {len(matches)}: {names}")
    return matches[0]


def convert(work_dir: Path, runner: ConversionRunner) -> Path:
    exit_code = runner.run(work_dir)
    if exit_code != 0:
        raise ConversionFailed(exit_code)
    iso_path = find_disc_image(work_dir)
    log.info("Conversion produced %s", iso_path.name)
    return iso_path
