from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from env.paths import ARTIFACTS_DIR
from pipeline.config import (
    DEFAULT_COMPLIANCE_MARKER,
    DEFAULT_OUTPUT_TAIL,
    OrchestratorConfig,
)

# ------------------------------------------------------------
# Errors / helpers
# ------------------------------------------------------------

_VAR_PREFIX = "SECGATE_VAR_"


class ConfigError(RuntimeError):
    pass


def _as_bool(v: str) -> bool:
    return v.strip().lower() in {"1", "true", "yes", "on"}


def _as_int(v: str, default: int) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def _as_float(v: str, default: float) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return default


# ------------------------------------------------------------
# Logging environment (SAFE ANYWHERE)
# ------------------------------------------------------------


@dataclass(frozen=True)
class LoggingEnvironment:
    log_level: str
    log_retention: int
    verbose: bool
    quiet: bool


def get_logging_env() -> LoggingEnvironment:
    log_level = os.environ.get("LOG_LEVEL", "INFO")
    log_retention = _as_int(os.environ.get("LOG_RETENTION", "30"), 30)

    verbose = _as_bool(os.environ.get("SECGATE_VERBOSE", "0"))
    quiet = _as_bool(os.environ.get("SECGATE_QUIET", "0"))

    return LoggingEnvironment(
        log_level=log_level,
        log_retention=log_retention,
        verbose=verbose,
        quiet=quiet,
    )


# ------------------------------------------------------------
# Full runtime environment (RUN COMMAND ONLY)
# ------------------------------------------------------------


class Environment:
    def __init__(self):
        # Logging snapshot (immutable)
        self._logging = get_logging_env()

        # ---- RUN CONTEXT ----
        self.command = os.environ.get("SECGATE_COMMAND", "bootstrap")
        self.pipeline_name = os.environ.get("SECGATE_PIPELINE", "")
        self.run_id = os.environ.get("SECGATE_RUN_ID", "")

        # ---- TOOL INPUTS ----
        self.image_name = os.environ.get("IMAGE_NAME", "")
        self.image_tag = os.environ.get("IMAGE_TAG", "latest")
        self.target_url = os.environ.get("TARGET_URL", "")
        self.extra_vars = {
            k[len(_VAR_PREFIX):].lower(): v
            for k, v in os.environ.items()
            if k.startswith(_VAR_PREFIX) and len(k) > len(_VAR_PREFIX)
        }

        # ---- COMPLIANCE ----
        self.compliance_marker = (
            os.environ.get("SECGATE_COMPLIANCE_MARKER") or DEFAULT_COMPLIANCE_MARKER
        )
        self.compliance_mode = (
            os.environ.get("SECGATE_COMPLIANCE_MODE", "substring").strip().lower()
        )

        # ---- EXECUTION ----
        timeout = _as_float(os.environ.get("SECGATE_STAGE_TIMEOUT", "0"), 0.0)
        self.stage_timeout: Optional[float] = timeout if timeout > 0 else None
        self.output_tail = _as_int(
            os.environ.get("SECGATE_OUTPUT_TAIL", str(DEFAULT_OUTPUT_TAIL)),
            DEFAULT_OUTPUT_TAIL,
        )

        # ---- NOTIFICATION ----
        self.webhook_url = os.environ.get("WEBHOOK_URL", "")
        self.notify_retries = _as_int(os.environ.get("SECGATE_NOTIFY_RETRIES", "0"), 0)
        self.notify_timeout = _as_float(
            os.environ.get("SECGATE_NOTIFY_TIMEOUT", "10"), 10.0
        )

    def template_variables(self) -> dict[str, str]:
        variables = {
            "image_name": self.image_name,
            "image_tag": self.image_tag,
            "image": f"{self.image_name}:{self.image_tag}" if self.image_name else "",
            "target_url": self.target_url,
            "run_id": self.run_id,
            "artifacts_dir": str(ARTIFACTS_DIR),
        }
        variables.update(self.extra_vars)
        return variables

    def to_config(self) -> OrchestratorConfig:
        """Snapshot this environment into the orchestrator's config struct."""
        if self.compliance_mode not in ("substring", "strict"):
            raise ConfigError(
                f"SECGATE_COMPLIANCE_MODE must be 'substring' or 'strict', "
                f"got {self.compliance_mode!r}"
            )

        return OrchestratorConfig(
            variables=self.template_variables(),
            compliance_marker=self.compliance_marker,
            compliance_mode=self.compliance_mode,
            stage_timeout=self.stage_timeout,
            output_tail=self.output_tail,
        )

    def as_dict(self) -> dict:
        return {
            "Logging": {
                "log_level": self.log_level,
                "log_retention": self.log_retention,
                "verbose": self.verbose,
                "quiet": self.quiet,
            },
            "Run": {
                "command": self.command,
                "pipeline": self.pipeline_name,
                "run_id": self.run_id,
            },
            "Tools": {
                "image_name": self.image_name,
                "image_tag": self.image_tag,
                "target_url": self.target_url,
                "extra_vars": ", ".join(sorted(self.extra_vars)) or "(none)",
            },
            "Compliance": {
                "marker": self.compliance_marker,
                "mode": self.compliance_mode,
            },
            "Execution": {
                "stage_timeout": self.stage_timeout or "none",
                "output_tail": self.output_tail,
            },
            "Notification": {
                "webhook_url": "configured" if self.webhook_url else "(log only)",
                "retries": self.notify_retries,
                "timeout": self.notify_timeout,
            },
        }

    # ---- logging passthrough ----
    @property
    def log_level(self) -> str:
        return self._logging.log_level

    @property
    def log_retention(self) -> int:
        return self._logging.log_retention

    @property
    def verbose(self) -> bool:
        return self._logging.verbose

    @property
    def quiet(self) -> bool:
        return self._logging.quiet


_ENV: Optional[Environment] = None


def reset_env_caches() -> None:
    """Invalidate cached views of environment variables."""
    global _ENV
    _ENV = None


def get_env() -> Environment:
    global _ENV
    if _ENV is None:
        _ENV = Environment()
    return _ENV
