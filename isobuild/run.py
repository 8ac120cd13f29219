from __future__ import annotations

import argparse
import json
import logging
import sys
import traceback
from pathlib import Path

from .catalog import CatalogClient, RequestsTransport
from .config import Settings, TargetTable
from .converter import SubprocessConversionRunner
from .finalizer import ArtifactFinalizer
from .pipeline import IsoPipeline, PipelineContext
from .selector import BuildSelector
from .stager import PackageStager

log = logging.getLogger(__name__)


def _report_failure(label: str, exc: BaseException) -> None:
    print(f"ERROR: {label}: {exc}")
    traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stdout)
    print(repr(exc))
    sys.stdout.flush()


def cmd_list(args: argparse.Namespace) -> int:
    for target in TargetTable.load(args.targets):
        print(f"{target.name}\t{target.search}\t{target.edition}\t{target.virtual_edition or ''}")
    return 0


def cmd_select(args: argparse.Namespace) -> int:
    target = TargetTable.load(args.targets).get(args.target)
    settings = Settings()
    client = CatalogClient(RequestsTransport(settings), settings)
    selected = BuildSelector(client).select(target)
    print(json.dumps(selected.to_dict(), indent=2))
    return 0


def cmd_build(args: argparse.Namespace) -> int:
    table = TargetTable.load(args.targets)
    targets = [table.get(name) for name in args.target] if args.target else list(table)
    settings = Settings()
    transport = RequestsTransport(settings)
    client = CatalogClient(transport, settings)
    runner = SubprocessConversionRunner.from_command_line(args.converter_command)
    finalizer = ArtifactFinalizer()

    failures = 0
    for target in targets:
        context = PipelineContext(
            target=target,
            work_root=Path(args.work_root).resolve(),
            destination=Path(args.destination).resolve(),
            keep_work_dir=args.keep_work_dir,
        )
        pipeline = IsoPipeline(context, client, PackageStager(transport), runner, finalizer)
        try:
            artifact = pipeline.run()
        except Exception as exc:
            failures += 1
            _report_failure(target.name, exc)
            continue
        log.info("%s: %s (sha256 %s)", target.name, artifact.iso_path, artifact.checksum)
    return 1 if failures else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Build verified Windows installation ISOs from UUP dump")
    parser.add_argument(
        "--targets",
        default=None,
        help="Path to a JSON or YAML target table (defaults to the built-in targets).",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose (DEBUG) logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List the known targets")
    list_parser.set_defaults(func=cmd_list)

    select_parser = subparsers.add_parser("select", help="Show the catalog build chosen for a target")
    select_parser.add_argument("--target", required=True)
    select_parser.set_defaults(func=cmd_select)

    build_parser_ = subparsers.add_parser("build", help="Build ISO artifacts for one or more targets")
    build_parser_.add_argument(
        "--target",
        action="append",
        default=[],
        help="Target to build; repeat for several (default: every target).",
    )
    build_parser_.add_argument("--destination", default="output", help="Directory receiving the artifacts.")
    build_parser_.add_argument("--work-root", default=".", help="Directory holding per-target working directories.")
    build_parser_.add_argument(
        "--clean-work-dir",
        dest="keep_work_dir",
        action="store_false",
        help="Delete the working directory after a successful build.",
    )
    build_parser_.add_argument(
        "--converter-command",
        default=None,
        help="Command line that runs the converter inside the working directory.",
    )
    build_parser_.set_defaults(func=cmd_build)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    try:
        return args.func(args)
    except Exception as exc:
        _report_failure(args.command, exc)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
