from __future__ import annotations

import argparse
import os
from dataclasses import replace
from pathlib import Path

from branding import SECGATE_BANNER, SECGATE_HEADER
from env import ConfigError, get_env, reset_env_caches
from errors import PipelineDefinitionError

EXIT_OK = 0
EXIT_CONFIG = 2
EXIT_COMPLIANCE = 10
EXIT_ABORTED = 20

ABORT_TAIL_LINES = 10


# ------------------------------------------------------------
# Parser
# ------------------------------------------------------------


def _parse_var(raw: str) -> tuple[str, str]:
    if "=" not in raw:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {raw!r}")
    k, v = raw.split("=", 1)
    k = k.strip()
    if not k:
        raise argparse.ArgumentTypeError(f"empty variable name in {raw!r}")
    return k, v


def build_run_parser(subparsers: argparse._SubParsersAction) -> None:
    run = subparsers.add_parser("run", help="Run a pipeline definition")

    run.add_argument("pipeline", help="Pipeline name (pipelines/<name>.yaml) or YAML path")
    run.add_argument("--image", help="Container image name (IMAGE_NAME)")
    run.add_argument("--tag", help="Container image tag (IMAGE_TAG)")
    run.add_argument("--target-url", help="DAST target URL (TARGET_URL)")
    run.add_argument("--webhook", help="Notification webhook URL (WEBHOOK_URL)")
    run.add_argument(
        "--var",
        action="append",
        default=[],
        type=_parse_var,
        metavar="KEY=VALUE",
        help="Extra template variable (repeatable)",
    )
    run.add_argument("--marker", help="Compliance marker text")
    run.add_argument(
        "--strict-compliance",
        action="store_true",
        help="Parse the compliance artifact as XML instead of substring matching",
    )
    run.add_argument("--timeout", type=float, help="Default per-stage timeout in seconds")
    run.add_argument("--notify-retries", type=int, help="Webhook retries after the first attempt")
    run.add_argument("--workdir", help="Working directory for stages and relative artifacts")
    run.add_argument("--dry-run", action="store_true", help="Print rendered commands only")
    run.add_argument("--no-report", action="store_true", help="Do not write a JSON run report")
    run.add_argument("--verbose", action="store_true")
    run.add_argument("--quiet", action="store_true")


# ------------------------------------------------------------
# Handler
# ------------------------------------------------------------


def _stamp_environment(args: argparse.Namespace) -> None:
    # Environment is the configuration boundary for the run
    overrides = {
        "IMAGE_NAME": args.image,
        "IMAGE_TAG": args.tag,
        "TARGET_URL": args.target_url,
        "WEBHOOK_URL": args.webhook,
        "SECGATE_COMPLIANCE_MARKER": args.marker,
        "SECGATE_COMPLIANCE_MODE": "strict" if args.strict_compliance else None,
        "SECGATE_STAGE_TIMEOUT": str(args.timeout) if args.timeout else None,
        "SECGATE_NOTIFY_RETRIES": (
            str(args.notify_retries) if args.notify_retries is not None else None
        ),
    }
    for key, value in overrides.items():
        if value is not None:
            os.environ[key] = value

    for key, value in args.var:
        os.environ[f"SECGATE_VAR_{key.upper()}"] = value

    os.environ["SECGATE_VERBOSE"] = "1" if args.verbose else "0"
    os.environ["SECGATE_QUIET"] = "1" if args.quiet else "0"
    reset_env_caches()


def handle_run(args: argparse.Namespace) -> int:
    _stamp_environment(args)

    from cli.cli_pipelines import resolve_pipeline_path
    from env.paths import run_report_file
    from logger import current_log_file, get_logger, init_logging
    from notify import LogNotifier, WebhookNotifier
    from pipeline.definition import load_pipeline
    from pipeline.report import write_report
    from runner import Orchestrator

    init_logging()
    log = get_logger("secgate")

    log.info(SECGATE_BANNER)
    log.info("secgate starting")
    log.info("Command: run")
    log.info(f"Log file: {current_log_file()}")

    path = resolve_pipeline_path(args.pipeline)
    try:
        definition = load_pipeline(path)
        env = get_env()
        config = env.to_config()
    except (FileNotFoundError, PipelineDefinitionError, ConfigError) as e:
        log.error(str(e))
        return EXIT_CONFIG

    if args.workdir:
        config = replace(config, workdir=Path(args.workdir).expanduser().resolve())

    log.info(SECGATE_HEADER(f"Pipeline: {definition.name}"))
    log.info(f"Definition: {path}")
    log.info(f"Stages: {len(definition.stages)}")
    if definition.compliance_stage:
        log.info(f"Compliance stage: {definition.compliance_stage} ({config.compliance_mode})")

    if env.webhook_url:
        notifier = WebhookNotifier(
            env.webhook_url,
            timeout=env.notify_timeout,
            retries=env.notify_retries,
        )
    else:
        notifier = LogNotifier()

    orchestrator = Orchestrator(config, notifier=notifier)

    if args.dry_run:
        try:
            planned = orchestrator.plan(
                definition.stages, compliance_stage=definition.compliance_stage
            )
        except PipelineDefinitionError as e:
            log.error(str(e))
            return EXIT_CONFIG
        for i, step in enumerate(planned, start=1):
            policy = "continue" if step.stage.continue_on_failure else "abort"
            log.info(f"  {i}. {step.stage.name} [{policy}]: {step.command.display()}")
            if step.artifact:
                log.info(f"     artifact: {step.artifact}")
        log.info("Dry run: nothing executed")
        return EXIT_OK

    try:
        run = orchestrator.run_definition(definition, run_id=env.run_id or None)
    except PipelineDefinitionError as e:
        log.error(str(e))
        return EXIT_CONFIG

    if not args.no_report:
        report = write_report(run, run_report_file(run.run_id))
        log.info(f"Report: {report}")

    # --------------------------------------------------
    # Run summary (explicit, non-interactive safe)
    # --------------------------------------------------

    log.info("")
    log.info("Run summary:")
    for r in run.results:
        log.info(f"  - {r.name}: {r.state.value} (exit {r.exit_code})")
    if run.compliance is not None:
        log.info(f"  Compliance: {run.compliance.value}")
    log.info("")

    # -----------------------------
    # Terminal state handling
    # -----------------------------

    failure = run.failure()
    if failure is not None:
        log.error(f"Done: aborted. {failure}")
        for line in failure.output.splitlines()[-ABORT_TAIL_LINES:]:
            log.error(f"  | {line}")
        return EXIT_ABORTED

    if run.compliance is not None and not run.compliance.passed:
        log.warning(f"Done: completed, compliance {run.compliance.value}")
        return EXIT_COMPLIANCE

    log.info("Done: completed")
    return EXIT_OK
