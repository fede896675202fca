from __future__ import annotations

import argparse

from rich.markup import escape

from cli.common import dispatch_subparser_help, print_table
from cli.render import RENDER
from env import ConfigError, get_env


def build_env_parser(subparsers: argparse._SubParsersAction) -> None:
    env = subparsers.add_parser("env", help="Inspect the resolved configuration")
    sub = env.add_subparsers(dest="env_cmd", required=True)

    help_p = sub.add_parser("help", help="Show help for env")
    help_p.add_argument("path", nargs="*", help="Subcommand path")
    help_p.set_defaults(action="help", _help_parser=env)

    dump_p = sub.add_parser("dump", help="Show resolved settings by section")
    dump_p.set_defaults(action="dump")

    vars_p = sub.add_parser("vars", help="Show the {placeholders} available to stage commands")
    vars_p.set_defaults(action="vars")


def handle_env(args: argparse.Namespace) -> int:
    if args.action == "help":
        return dispatch_subparser_help(
            args._help_parser, list(getattr(args, "path", []) or [])
        )

    if args.action == "dump":
        return handle_env_dump()

    if args.action == "vars":
        return handle_env_vars()

    raise RuntimeError(f"Unknown env action: {args.action}")


def handle_env_dump() -> int:
    env = get_env()

    RENDER.print("\n[bold]secgate configuration[/bold]")
    RENDER.print("─" * 50)

    for section, values in env.as_dict().items():
        RENDER.print(f"\n[bold cyan]{section}[/bold cyan]")
        for key, value in values.items():
            RENDER.print(f"  {key:<20} = {value}", markup=False)

    try:
        env.to_config()
    except ConfigError as e:
        RENDER.print(f"\n[red]Invalid:[/red] {escape(str(e))}")
        return 2

    RENDER.print()
    return 0


def handle_env_vars() -> int:
    variables = get_env().template_variables()
    rows = [[f"{{{name}}}", escape(value) or "(empty)"] for name, value in sorted(variables.items())]
    print_table(["placeholder", "value"], rows)
    return 0
