from __future__ import annotations

import os
from pathlib import Path

# ---------------------------------------------------------------------
# Project root
# ---------------------------------------------------------------------

# This file lives in src/env/, so project root is two levels up
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


# ---------------------------------------------------------------------
# Base directories (override-friendly)
# ---------------------------------------------------------------------


def _resolve_dir(env_var: str, default: Path) -> Path:
    """
    Resolve a directory path from an environment variable or default.
    Ensures the directory exists.
    """
    raw = os.environ.get(env_var)
    path = Path(raw).expanduser().resolve() if raw else default
    path.mkdir(parents=True, exist_ok=True)
    return path


# ---------------------------------------------------------------------
# Public paths
# ---------------------------------------------------------------------

# Logs
LOGS_DIR = _resolve_dir(
    "SECGATE_LOGS_DIR",
    PROJECT_ROOT / "logs",
)

# Pipeline definitions (YAML)
PIPELINES_DIR = _resolve_dir(
    "SECGATE_PIPELINES_DIR",
    PROJECT_ROOT / "pipelines",
)

# Output (run reports)
OUT_DIR = _resolve_dir(
    "SECGATE_OUT_DIR",
    PROJECT_ROOT / "out",
)

# Tool artifacts (scan reports written by stages)
ARTIFACTS_DIR = _resolve_dir(
    "SECGATE_ARTIFACTS_DIR",
    PROJECT_ROOT / "artifacts",
)


# ---------------------------------------------------------------------
# Utility paths
# ---------------------------------------------------------------------


def pipeline_file(name: str) -> Path:
    """
    Path to a named pipeline definition inside PIPELINES_DIR.
    """
    return PIPELINES_DIR / f"{name}.yaml"


def runs_dir() -> Path:
    path = OUT_DIR / "runs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def run_report_file(run_id: str) -> Path:
    return runs_dir() / f"{run_id}.json"
