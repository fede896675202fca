"""pipeline.report

Persist finished runs as JSON so ``secgate runs`` can inspect them later.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import List

from errors import ReportError
from pipeline.run_state import PipelineRun


def write_report(run: PipelineRun, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)

    # Write to a temp file first; readers never see a partial report
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(run.to_dict(), f, indent=2, ensure_ascii=False)
    tmp.replace(path)
    return path


def load_report(path: Path) -> PipelineRun:
    try:
        with path.open("r", encoding="utf-8") as f:
            raw = json.load(f)
        if not isinstance(raw, dict):
            raise ValueError("top level is not an object")
        return PipelineRun.from_dict(raw)
    except (KeyError, TypeError, ValueError) as e:
        raise ReportError(f"{path.name}: unreadable run report ({e!r})") from e


def list_reports(runs_dir: Path) -> List[Path]:
    """Report files, newest first."""
    if not runs_dir.exists():
        return []
    return sorted(
        runs_dir.glob("*.json"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )
