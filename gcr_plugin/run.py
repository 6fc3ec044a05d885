from __future__ import annotations

import argparse
import json
import sys
from typing import Mapping, Optional

import structlog

from . import __version__
from .config import load_environment, parse_config, prepare_config
from .logging import setup_logging
from .models import PluginConfig
from .pipeline import BuildPipeline, describe_plan
from .utils import PluginError

logger = structlog.stdlib.get_logger(__name__)


def cmd_plan(config: PluginConfig) -> int:
    payload = {"config": config.to_dict(), "steps": describe_plan(config)}
    print(json.dumps(payload, indent=2))
    return 0


def cmd_exec(config: PluginConfig) -> int:
    result = BuildPipeline(config).run()
    if not result.ok:
        logger.error("failed to execute plugin", **result.to_dict())
        return 1
    logger.info("plugin finished", repo=config.repo, dry_run=config.dry_run, **result.to_dict())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gcr-plugin",
        description="Build a docker image and publish it to a container registry.",
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help="Env file read before the parameters are parsed (default: $PLUGIN_ENV_FILE).",
    )
    parser.add_argument(
        "--plan",
        action="store_true",
        help="Print the resolved configuration and docker commands without running them.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None, environ: Optional[Mapping[str, str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging()

    try:
        raw = parse_config(load_environment(environ, env_file=args.env_file))
    except PluginError as exc:
        logger.error("failed to parse parameters", error=str(exc))
        return 1

    setup_logging(debug=raw.debug, log_format=raw.log_format)
    try:
        config = prepare_config(raw)
    except PluginError as exc:
        logger.error("failed to prepare plugin", error=str(exc))
        return 1

    if args.plan:
        return cmd_plan(config)
    return cmd_exec(config)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
