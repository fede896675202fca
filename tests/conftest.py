import logging
import os
import sys
from pathlib import Path

import pytest

SRC_DIR = Path(__file__).resolve().parent.parent / "src"

_MODULES = [
    "env",
    "env.env",
    "env.paths",
    "logger",
    "logger.state",
    "logger.log_paths",
    "logger.file",
    "logger.console",
    "logger.retention",
]


@pytest.fixture(autouse=True)
def clean_env_and_modules(tmp_path, monkeypatch):
    """
    Ensure tests don't leak env, logger state, or cached path resolution.
    """
    saved_environ = dict(os.environ)

    for k in list(os.environ):
        if k.startswith("SECGATE_") or k in (
            "IMAGE_NAME",
            "IMAGE_TAG",
            "TARGET_URL",
            "WEBHOOK_URL",
            "LOG_LEVEL",
            "LOG_RETENTION",
        ):
            monkeypatch.delenv(k, raising=False)

    # Keep every resolved directory inside the test sandbox
    monkeypatch.setenv("SECGATE_LOGS_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("SECGATE_OUT_DIR", str(tmp_path / "out"))
    monkeypatch.setenv("SECGATE_ARTIFACTS_DIR", str(tmp_path / "artifacts"))
    monkeypatch.setenv("SECGATE_RUN_ID", "test-run")

    # Reset logger global state
    import logger.state

    logger.state.reset()

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    # Force re-import of path + logger modules
    for mod in _MODULES:
        sys.modules.pop(mod, None)

    yield

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    os.environ.clear()
    os.environ.update(saved_environ)

    from env import reset_env_caches

    reset_env_caches()
