"""
Pipeline model: stage definitions, run state, and run reports.

The orchestrator itself lives in ``runner``.
"""
from __future__ import annotations

__all__ = [
    "config",
    "definition",
    "report",
    "run_state",
]
