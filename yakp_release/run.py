from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Callable

from .config import ReleaseConfig
from .errors import EX_INTERRUPTED, ReleaseError
from .pipeline import PipelineRun, ReleasePipeline
from .workspace import Workspace

logger = logging.getLogger("yakp_release")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: int = logging.INFO) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.handlers[:] = [handler]
    logger.setLevel(level)
    logger.propagate = False


def _load_pipeline() -> ReleasePipeline:
    config = ReleaseConfig.load()
    workspace = Workspace(Path.cwd())
    return ReleasePipeline(workspace, config)


def cmd_build(args: argparse.Namespace) -> PipelineRun:
    return _load_pipeline().run_build()


def cmd_package_only(args: argparse.Namespace) -> PipelineRun:
    return _load_pipeline().run_package_only()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="yakp-release",
        description="Compile yakp in a hermetic container and package it into a runtime image",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser_ = subparsers.add_parser("build", help="Clean, compile and package")
    build_parser_.set_defaults(func=cmd_build)

    package_parser = subparsers.add_parser(
        "package-only", help="Package the existing artifact without recompiling"
    )
    package_parser.set_defaults(func=cmd_package_only)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging()
    command: Callable[[argparse.Namespace], PipelineRun] = args.func
    try:
        run = command(args)
    except ReleaseError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return exc.exit_code
    except KeyboardInterrupt:
        logger.error("%s interrupted", args.command)
        return EX_INTERRUPTED
    print(json.dumps(run.to_dict(), indent=2))
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
