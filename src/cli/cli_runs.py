from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional

from rich.markup import escape

from cli.common import dispatch_subparser_help, print_table
from cli.render import RENDER
from errors import ReportError
from logger import get_logger
from pipeline.report import list_reports, load_report
from pipeline.run_state import PipelineRun, StageState

log = get_logger("secgate.runs")


# ============================================================================
# Formatting
# ============================================================================


_STATUS_STYLE = {
    "completed": "green",
    "aborted": "red",
    "running": "yellow",
}


def _status_cell(run: PipelineRun) -> str:
    if run.aborted:
        return f"aborted at {run.abort_stage}"
    return run.status.value


def _summary_row(run: PipelineRun) -> list[str]:
    return [
        run.run_id,
        run.pipeline,
        _status_cell(run),
        run.compliance.value if run.compliance else "-",
        run.started_at.strftime("%Y-%m-%d %H:%M:%S"),
        f"{run.runtime_seconds}s",
    ]


def _print_run(run: PipelineRun, path: Path, tail: int) -> None:
    style = _STATUS_STYLE.get(run.status.value, "white")
    RENDER.print(f"Run:        {run.run_id}", markup=False)
    RENDER.print(f"Pipeline:   {run.pipeline}", markup=False)
    RENDER.print(f"Report:     {path}", markup=False)
    RENDER.print(f"Status:     [{style}]{_status_cell(run)}[/{style}]")
    RENDER.print(f"Compliance: {run.compliance.value if run.compliance else '-'}")
    RENDER.print(f"Runtime:    {run.runtime_seconds}s")
    RENDER.print()

    rows = [
        [
            str(i),
            r.name,
            r.state.value,
            str(r.exit_code),
            f"{r.duration_seconds}s",
            r.reason or "",
        ]
        for i, r in enumerate(run.results, start=1)
    ]
    print_table(["#", "stage", "state", "exit", "duration", "reason"], rows)

    if tail > 0:
        for r in run.results:
            if r.state is StageState.FAILED and r.output:
                RENDER.print(f"\n[bold]{r.name}[/bold] (last {tail} lines):")
                for line in r.output.splitlines()[-tail:]:
                    RENDER.print(f"  {line}", markup=False)


# ============================================================================
# CLI wiring
# ============================================================================


def build_runs_parser(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser("runs", help="Inspect past runs (report-driven)")
    sp = p.add_subparsers(dest="runs_cmd", required=True)

    help_p = sp.add_parser("help", help="Show help for runs")
    help_p.add_argument("path", nargs="*", help="Subcommand path")
    help_p.set_defaults(_help_parser=p)

    list_p = sp.add_parser("list", help="List runs")
    list_p.add_argument("--pipeline", help="Only runs of this pipeline")
    list_p.add_argument("--dir", help="Explicit report directory")

    latest_p = sp.add_parser("latest", help="Show latest run")
    latest_p.add_argument("--pipeline", help="Only runs of this pipeline")
    latest_p.add_argument("--dir", help="Explicit report directory")
    latest_p.add_argument("--tail", type=int, default=20, help="Output lines per failed stage")

    show_p = sp.add_parser("show", help="Show a specific run")
    show_p.add_argument("run_id", help="Run id (report filename stem)")
    show_p.add_argument("--dir", help="Explicit report directory")
    show_p.add_argument("--tail", type=int, default=20, help="Output lines per failed stage")


def _load_runs(report_dir: Path, pipeline: Optional[str]) -> list[tuple[Path, PipelineRun]]:
    out = []
    for path in list_reports(report_dir):
        try:
            run = load_report(path)
        except (OSError, ReportError) as e:
            log.warning(f"Skipping run report: {e}")
            continue
        if pipeline and run.pipeline != pipeline:
            continue
        out.append((path, run))
    return out


def handle_runs(args: argparse.Namespace) -> int:
    if args.runs_cmd == "help":
        return dispatch_subparser_help(args._help_parser, list(args.path or []))

    from env.paths import runs_dir

    report_dir = Path(args.dir).expanduser().resolve() if args.dir else runs_dir()

    if args.runs_cmd == "list":
        runs = _load_runs(report_dir, args.pipeline)
        print_table(
            ["run_id", "pipeline", "status", "compliance", "started", "runtime"],
            [_summary_row(run) for _, run in runs],
        )
        return 0

    if args.runs_cmd == "latest":
        runs = _load_runs(report_dir, args.pipeline)
        if not runs:
            RENDER.print("No runs found")
            return 1
        path, run = runs[0]
        _print_run(run, path, args.tail)
        return 0

    if args.runs_cmd == "show":
        path = report_dir / f"{args.run_id}.json"
        if not path.is_file():
            RENDER.print(f"Run not found: {args.run_id}")
            return 1
        try:
            run = load_report(path)
        except (OSError, ReportError) as e:
            RENDER.print(f"[red]{escape(str(e))}[/red]")
            return 1
        _print_run(run, path, args.tail)
        return 0

    return 1
