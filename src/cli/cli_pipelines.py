from __future__ import annotations

import argparse
from pathlib import Path

from rich.markup import escape

from cli.common import dispatch_subparser_help, print_table
from cli.render import RENDER
from env import PIPELINES_DIR
from env.paths import pipeline_file
from errors import PipelineDefinitionError
from pipeline.definition import PipelineDefinition, load_pipeline


def resolve_pipeline_path(name_or_path: str) -> Path:
    """Accept a pipeline name (pipelines/<name>.yaml) or an explicit file path."""
    p = Path(name_or_path).expanduser()
    if p.suffix in (".yaml", ".yml", ".json") or p.is_file():
        return p.resolve()

    for suffix in (".yaml", ".yml", ".json"):
        candidate = PIPELINES_DIR / f"{name_or_path}{suffix}"
        if candidate.exists():
            return candidate
    return pipeline_file(name_or_path)


def _iter_pipeline_files() -> list[Path]:
    files: list[Path] = []
    for pattern in ("*.yaml", "*.yml", "*.json"):
        files.extend(PIPELINES_DIR.glob(pattern))
    return sorted(files)


def build_pipelines_parser(subparsers: argparse._SubParsersAction) -> None:
    pipelines = subparsers.add_parser("pipelines", help="Inspect pipeline definitions")
    psub = pipelines.add_subparsers(dest="pipelines_cmd", required=True)

    help_p = psub.add_parser("help", help="Show help for pipelines")
    help_p.add_argument("path", nargs="*", help="Subcommand path (e.g. show)")
    help_p.set_defaults(action="help", _help_parser=pipelines)

    list_p = psub.add_parser("list", help="List pipeline definitions")
    list_p.set_defaults(action="list")

    show = psub.add_parser("show", help="Show the stages of a pipeline")
    show.add_argument("name", help="Pipeline name or YAML path")
    show.set_defaults(action="show")

    validate = psub.add_parser("validate", help="Validate pipeline definitions")
    validate.add_argument("name", nargs="?", help="Pipeline name (omit to validate all)")
    validate.set_defaults(action="validate")


def _print_pipeline(defn: PipelineDefinition, path: Path) -> None:
    RENDER.print(f"[bold]{defn.name}[/bold]  ({path})")
    if defn.compliance_stage:
        RENDER.print(f"Compliance stage: {defn.compliance_stage}", markup=False)
    placeholders = sorted(defn.placeholders())
    if placeholders:
        RENDER.print(f"Variables: {', '.join(placeholders)}", markup=False)
    RENDER.print()

    rows = []
    for i, s in enumerate(defn.stages, start=1):
        rows.append(
            [
                str(i),
                s.name,
                " ".join([s.command.executable, *s.command.args]),
                "continue" if s.continue_on_failure else "abort",
                s.artifact or "",
            ]
        )
    print_table(["#", "stage", "command", "on failure", "artifact"], rows)


def handle_pipelines(args: argparse.Namespace) -> int:
    if args.action == "help":
        return dispatch_subparser_help(
            args._help_parser, list(getattr(args, "path", []) or [])
        )

    if args.action == "list":
        rows = []
        for p in _iter_pipeline_files():
            try:
                defn = load_pipeline(p)
            except PipelineDefinitionError as e:
                rows.append([p.stem, "-", f"invalid: {e}"])
                continue
            rows.append([p.stem, str(len(defn.stages)), defn.compliance_stage or "-"])
        print_table(["pipeline", "stages", "compliance stage"], rows)
        return 0

    if args.action == "show":
        path = resolve_pipeline_path(args.name)
        try:
            defn = load_pipeline(path)
        except (FileNotFoundError, PipelineDefinitionError) as e:
            RENDER.print(f"[red]{escape(str(e))}[/red]")
            return 1
        _print_pipeline(defn, path)
        return 0

    if args.action == "validate":
        paths = [resolve_pipeline_path(args.name)] if args.name else _iter_pipeline_files()
        if not paths:
            RENDER.print("No pipeline definitions found")
            return 0

        failures = 0
        for p in paths:
            try:
                load_pipeline(p)
            except (FileNotFoundError, PipelineDefinitionError) as e:
                failures += 1
                RENDER.print(f"[red]FAIL[/red] {escape(str(e))}")
            else:
                RENDER.print(f"[green]OK[/green]   {p.name}")
        return 1 if failures else 0

    raise RuntimeError(f"Unknown pipelines action: {args.action}")
