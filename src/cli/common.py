from __future__ import annotations

import argparse
from pathlib import Path
from typing import Iterable

from rich.table import Table

from cli.render import RENDER


# ----------------------------
# Help dispatch (subparser-local)
# ----------------------------


def dispatch_subparser_help(
    parser: argparse.ArgumentParser, path: list[str] | None
) -> int:
    """
    Implements consistent `X help [subcmd ...]` behavior for a subtree parser.
    """
    if not path:
        parser.print_help()
        return 0

    try:
        parser.parse_args(path + ["--help"])
    except SystemExit:
        pass
    return 0


# ----------------------------
# Logs filesystem helpers
# ----------------------------


def resolve_log_dir(
    *, command: str = "run", pipeline: str | None, explicit: str | None
) -> Path:
    if explicit:
        return Path(explicit).expanduser().resolve()

    from env import LOGS_DIR

    base = LOGS_DIR / command
    return (base / pipeline).resolve() if pipeline else base.resolve()


def iter_log_files(log_dir: Path) -> Iterable[Path]:
    if not log_dir.exists():
        return []
    return (p for p in log_dir.iterdir() if p.is_file() and p.suffix == ".log")


def find_log_file(log_dir: Path, name: str) -> Path | None:
    if not log_dir.exists():
        return None

    for p in (log_dir / name, log_dir / f"{name}.log"):
        if p.is_file():
            return p

    for p in log_dir.glob("*.log"):
        if p.stem == name:
            return p

    return None


def print_tail(path: Path, lines: int) -> None:
    try:
        data = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError as e:
        RENDER.print(f"[red][error reading log][/red] {e}")
        return

    tail = data[-lines:] if lines > 0 else data
    for line in tail:
        RENDER.print(line, markup=False)


# ----------------------------
# CLI output helpers
# ----------------------------


def print_table(headers: list[str], rows: list[list[str]], *, title: str | None = None) -> None:
    if not rows:
        RENDER.print("(no results)")
        return

    table = Table(title=title)
    for h in headers:
        table.add_column(h)
    for row in rows:
        table.add_row(*(str(c) for c in row))

    RENDER.print(table)
