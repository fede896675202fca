from __future__ import annotations

"""bootstrap.py

Process bootstrap for secgate.

This module is intentionally tiny and side-effectful.

Rules:
1) Only bootstrap is allowed to *mutate* os.environ for shared run context.
2) Call bootstrap_base_env() exactly once at the true entrypoint.
3) Call bootstrap_run_context() after argparse parsing, before init_logging().

Everything else should treat environment variables as the source of truth.
"""

import os
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

from env import PROJECT_ROOT, reset_env_caches


_BOOTSTRAPPED = False


def bootstrap_base_env(dotenv_path: Path | None = None) -> None:
    global _BOOTSTRAPPED
    if _BOOTSTRAPPED:
        return

    path = dotenv_path or PROJECT_ROOT / "config" / ".env"

    # Optional: CI injects everything through the real environment.
    if path.exists():
        load_dotenv(path, override=False)

    os.environ.setdefault(
        "SECGATE_RUN_ID",
        datetime.now().strftime("%Y-%m-%d_%H-%M-%S"),
    )

    reset_env_caches()
    _BOOTSTRAPPED = True


def bootstrap_run_context(
    *,
    command: str,
    pipeline: str | None = None,
    verbose: bool | None = None,
    quiet: bool | None = None,
) -> None:
    """Establish run-scoped context used by logging + the orchestrator."""

    os.environ["SECGATE_COMMAND"] = command

    if pipeline:
        os.environ["SECGATE_PIPELINE"] = pipeline
    else:
        os.environ.pop("SECGATE_PIPELINE", None)

    if verbose is not None:
        os.environ["SECGATE_VERBOSE"] = "1" if verbose else "0"
    if quiet is not None:
        os.environ["SECGATE_QUIET"] = "1" if quiet else "0"

    # Context changes must invalidate cached env views.
    reset_env_caches()
