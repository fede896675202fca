"""Process-wide logging state. Written by ``init_logging`` only."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

INITIALIZED: bool = False

# Identity of the current secgate invocation
RUN_ID: Optional[str] = None
COMMAND: Optional[str] = None
PIPELINE: Optional[str] = None

# Where this run's log is being written
LOG_DIR: Optional[Path] = None
LOG_FILE_PATH: Optional[Path] = None


def reset() -> None:
    global INITIALIZED, RUN_ID, COMMAND, PIPELINE, LOG_DIR, LOG_FILE_PATH
    INITIALIZED = False
    RUN_ID = None
    COMMAND = None
    PIPELINE = None
    LOG_DIR = None
    LOG_FILE_PATH = None
