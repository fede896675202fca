#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from pathlib import Path

from bootstrap import bootstrap_base_env, bootstrap_run_context


def _dispatch_help(parser: argparse.ArgumentParser, argv: list[str]) -> int:
    # Support:
    #   secgate help
    #   secgate help run
    if argv and argv[0] == "help":
        argv = argv[1:]

    if not argv:
        parser.print_help()
        return 0

    try:
        build_parser().parse_args(argv + ["--help"])
    except SystemExit:
        pass
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="secgate",
        description="Run DevSecOps security stages in order with pass/fail gating.",
    )

    sub = p.add_subparsers(dest="command", required=True)

    help_cmd = sub.add_parser("help", help="Show help")
    help_cmd.add_argument("path", nargs="*", help="Command path to show help for")
    help_cmd.set_defaults(_help=True)

    # Keep imports inside builder to avoid early side effects.
    from cli.cli_env import build_env_parser
    from cli.cli_run import build_run_parser
    from cli.cli_pipelines import build_pipelines_parser
    from cli.cli_runs import build_runs_parser
    from cli.cli_logs import build_logs_parser

    build_run_parser(sub)
    build_pipelines_parser(sub)
    build_runs_parser(sub)
    build_logs_parser(sub)
    build_env_parser(sub)

    return p


def _pipeline_context(args: argparse.Namespace) -> str | None:
    name = getattr(args, "pipeline", None)
    if args.command != "run" or not name:
        return None
    return Path(name).stem


def main(argv: list[str] | None = None) -> int:
    # Load config/.env and base environment early
    bootstrap_base_env()

    argv = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "_help", False):
        return _dispatch_help(parser, argv)

    # Stamp run context early (so tool subprocesses inherit it)
    bootstrap_run_context(
        command=args.command,
        pipeline=_pipeline_context(args),
        verbose=bool(getattr(args, "verbose", False)),
        quiet=bool(getattr(args, "quiet", False)),
    )

    # Dispatch
    if args.command == "run":
        from cli.cli_run import handle_run

        return handle_run(args)

    if args.command == "pipelines":
        from cli.cli_pipelines import handle_pipelines

        return handle_pipelines(args)

    if args.command == "runs":
        from cli.cli_runs import handle_runs

        return handle_runs(args)

    if args.command == "logs":
        from cli.cli_logs import handle_logs

        return handle_logs(args)

    if args.command == "env":
        from cli.cli_env import handle_env

        return handle_env(args)

    raise RuntimeError(f"Unknown command: {args.command}")


if __name__ == "__main__":
    raise SystemExit(main())
