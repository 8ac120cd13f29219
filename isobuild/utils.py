from __future__ import annotations

import hashlib
import json
import os
import re
import shutil
import subprocess
from pathlib import Path
from typing import Mapping, Sequence, TextIO


class CommandError(RuntimeError):
    """Raised when a subprocess exits with a non-zero status code."""

    def __init__(self, command: Sequence[str], returncode: int, stdout: str, stderr: str) -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(
            f"Command {' '.join(command)} failed with exit code {returncode}\nSTDOUT:{stdout}\nSTDERR:{stderr}"
        )


def _merged_env(env: Mapping[str, str] | None) -> dict:
    process_env = os.environ.copy()
    if env:
        process_env.update(env)
    return process_env


def run_command(
    command: Sequence[str],
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    """Execute a subprocess command and return the completed process."""

    result = subprocess.run(
        list(command),
        cwd=str(cwd) if cwd else None,
        env=_merged_env(env),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )
    if check and result.returncode != 0:
        raise CommandError(command, result.returncode, result.stdout, result.stderr)
    return result


def stream_command(
    command: Sequence[str],
    output: TextIO,
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> int:
    """Run a command, copying its combined output to *output* line by line.

    Blocks until the process exits and returns its exit code. There is no
    timeout.
    """

    process = subprocess.Popen(
        list(command),
        cwd=str(cwd) if cwd else None,
        env=_merged_env(env),
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        errors="replace",
        bufsize=1,
    )
    assert process.stdout is not None
    with process.stdout:
        for line in process.stdout:
            output.write(line)
            output.flush()
    return process.wait()


def ensure_directory(path: str | Path) -> Path:
    """Create a directory and return its Path object."""

    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def reset_directory(path: str | Path) -> Path:
    """Remove *path* recursively if it exists and recreate it empty."""

    path = Path(path)
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True)
    return path


def sha256_file(path: str | Path) -> str:
    """Compute the SHA256 hash of the provided file."""

    digest = hashlib.sha256()
    with open(path, "rb") as file_handle:
        for chunk in iter(lambda: file_handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


# An escape preceded by an even run of backslashes, i.e. not itself escaped.
_ESCAPED_AMPERSAND = re.compile(r"(?<!\\)((?:\\\\)*)\\u0026")


def dump_json(
    path: str | Path,
    payload: Mapping[str, object],
    *,
    indent: int = 2,
    sort_keys: bool = True,
    literal_ampersands: bool = False,
) -> None:
    """Write structured JSON to disk with a trailing newline for readability.

    With *literal_ampersands* any ``\\u0026`` escape is written back as ``&``
    since consumers of the metadata read URLs verbatim.
    """

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(payload, indent=indent, sort_keys=sort_keys)
    if literal_ampersands:
        text = _ESCAPED_AMPERSAND.sub(r"\1&", text)
    path.write_text(text + "\n", encoding="utf-8")


def write_text_exact(path: str | Path, text: str) -> None:
    """Write *text* without adding a trailing newline."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="ascii", newline="") as handle:
        handle.write(text)
