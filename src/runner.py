from __future__ import annotations

import logging
import os
import re
import signal
import subprocess
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Mapping, Optional, Sequence

from branding import SECGATE_HEADER, SECGATE_SECTION_END, SYMBOLS
from compliance import classify_artifact
from errors import NotificationDeliveryFailure, PipelineDefinitionError
from logger import get_logger
from notify import LogNotifier, Notifier, summarize_run
from pipeline.config import OrchestratorConfig
from pipeline.definition import (
    CommandSpec,
    PipelineDefinition,
    Stage,
    render_command,
    render_text,
    validate_stage_names,
)
from pipeline.run_state import (
    ComplianceResult,
    PipelineRun,
    StageResult,
    StageState,
    utc_now,
)

log = get_logger("secgate.runner")

EXIT_TIMEOUT = 124
EXIT_NOT_EXECUTABLE = 127


# ------------------------------------------------------------
# Child output forwarding
# ------------------------------------------------------------


_CHILD_LEVEL_RE = re.compile(
    r"""
    ^\s*
    (?:
        \[\s*(DEBUG|INFO|WARN|WARNING|ERROR|CRITICAL|FATAL)\s*\]
        |
        (DEBUG|INFO|WARN|WARNING|ERROR|CRITICAL|FATAL)
    )
    [\s:]+
    (.*\S)?\s*$
    """,
    re.VERBOSE | re.IGNORECASE,
)

_LEVEL_MAP: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
    "FATAL": logging.CRITICAL,
}


def _parse_child_level(line: str) -> tuple[int | None, str]:
    m = _CHILD_LEVEL_RE.match(line)
    if not m:
        return None, line.rstrip()

    lvl = (m.group(1) or m.group(2) or "").upper()
    rest = (m.group(3) or "").rstrip()
    return _LEVEL_MAP.get(lvl), rest


# ------------------------------------------------------------
# Command execution
# ------------------------------------------------------------


_HAS_PROCESS_GROUPS = hasattr(os, "killpg")


def _kill_process_tree(proc: subprocess.Popen) -> None:
    if _HAS_PROCESS_GROUPS:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except ProcessLookupError:
            return
        except OSError as e:
            log.warning(f"Could not kill process group {proc.pid}: {e}")
    proc.kill()


@dataclass(frozen=True)
class CommandOutcome:
    exit_code: int
    output: str
    timed_out: bool = False


class CommandExecutor(ABC):
    """Runs one external command to completion."""

    @abstractmethod
    def execute(
        self,
        command: CommandSpec,
        *,
        timeout: Optional[float] = None,
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        tail_lines: int = 200,
    ) -> CommandOutcome:
        raise NotImplementedError


class SubprocessExecutor(CommandExecutor):
    """
    Run commands with ``subprocess.Popen`` (never ``shell=True``).

    stdout and stderr are merged and streamed line by line into the log;
    only the last ``tail_lines`` lines are kept as the result excerpt.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, forward: bool = True):
        self.log = logger or get_logger("secgate.tool")
        self.forward = forward

    def execute(
        self,
        command: CommandSpec,
        *,
        timeout: Optional[float] = None,
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        tail_lines: int = 200,
    ) -> CommandOutcome:
        # Merge overrides onto the current process environment.
        env2 = None
        if env:
            env2 = os.environ.copy()
            env2.update(env)

        try:
            # Own session, so a timeout can take down wrapper scripts and their children
            proc = subprocess.Popen(
                command.argv,
                cwd=str(cwd) if cwd else None,
                env=env2,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                bufsize=1,
                start_new_session=_HAS_PROCESS_GROUPS,
            )
        except OSError as e:
            # Missing binary, not executable, bad cwd
            return CommandOutcome(exit_code=EXIT_NOT_EXECUTABLE, output=str(e))

        timed_out = threading.Event()
        timer: Optional[threading.Timer] = None
        if timeout and timeout > 0:

            def _kill() -> None:
                timed_out.set()
                _kill_process_tree(proc)

            timer = threading.Timer(timeout, _kill)
            timer.daemon = True
            timer.start()

        tail: deque[str] = deque(maxlen=max(1, tail_lines))
        try:
            assert proc.stdout is not None
            for raw in proc.stdout:
                line = raw.rstrip("\n")
                if not line:
                    continue

                tail.append(line)

                if self.forward:
                    level, msg = _parse_child_level(line)
                    self.log.log(level if level is not None else logging.INFO, msg)

            exit_code = proc.wait()
        finally:
            if timer is not None:
                timer.cancel()

        if timed_out.is_set():
            tail.append(f"timed out after {timeout}s")
            return CommandOutcome(exit_code=EXIT_TIMEOUT, output="\n".join(tail), timed_out=True)

        return CommandOutcome(exit_code=exit_code, output="\n".join(tail))


# ------------------------------------------------------------
# Orchestrator
# ------------------------------------------------------------


@dataclass(frozen=True)
class PlannedStage:
    """A stage with its command and artifact path already rendered."""

    stage: Stage
    command: CommandSpec
    artifact: Optional[Path] = None


def new_run_id() -> str:
    return datetime.now().strftime("%Y-%m-%d_%H-%M-%S")


def _log_header(title: str) -> None:
    log.info(SECGATE_HEADER(title).rstrip("\n"))


def _log_footer() -> None:
    log.info(SECGATE_SECTION_END())


class Orchestrator:
    """
    Run declared stages strictly in order, one at a time.

    A non-zero exit aborts the run unless the stage continues on failure.
    Once the compliance stage has executed its artifact is classified.
    Every run, completed or aborted, produces exactly one notification.
    """

    def __init__(
        self,
        config: Optional[OrchestratorConfig] = None,
        *,
        executor: Optional[CommandExecutor] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.config = config or OrchestratorConfig()
        self.executor = executor or SubprocessExecutor()
        self.notifier = notifier or LogNotifier()

    # --------------------------------------------------------
    # Planning
    # --------------------------------------------------------

    def plan(
        self,
        stages: Sequence[Stage],
        *,
        compliance_stage: Optional[str] = None,
    ) -> list[PlannedStage]:
        """Validate stages and render every command and artifact before anything runs."""
        validate_stage_names(stages)

        if compliance_stage and compliance_stage not in {s.name for s in stages}:
            raise PipelineDefinitionError(
                f"compliance_stage '{compliance_stage}' is not a declared stage"
            )

        out = []
        for stage in stages:
            try:
                command = render_command(stage.command, self.config.variables)
                artifact = self._artifact_path(stage)
            except PipelineDefinitionError as e:
                raise PipelineDefinitionError(f"stage '{stage.name}': {e}") from e
            out.append(PlannedStage(stage=stage, command=command, artifact=artifact))
        return out

    def _artifact_path(self, stage: Stage) -> Optional[Path]:
        if not stage.artifact:
            return None
        p = Path(render_text(stage.artifact, self.config.variables)).expanduser()
        if not p.is_absolute() and self.config.workdir:
            p = self.config.workdir / p
        return p

    def _clear_artifact(self, path: Optional[Path]) -> bool:
        """Remove an artifact left by an earlier run. False if it could not be removed."""
        if path is None or not path.exists():
            return True
        try:
            path.unlink()
        except OSError as e:
            log.warning(f"Could not remove stale artifact {path}: {e}")
            return False
        log.info(f"Removed stale artifact {path}")
        return True

    # --------------------------------------------------------
    # Execution
    # --------------------------------------------------------

    def _run_stage(self, index: int, total: int, stage: Stage, command: CommandSpec) -> StageResult:
        _log_header(f"Stage {index}/{total}: {stage.name}")
        log.debug(f"{SYMBOLS.RUNNING} {command.display()}")

        timeout = stage.timeout_seconds or self.config.stage_timeout

        started = utc_now()
        outcome = self.executor.execute(
            command,
            timeout=timeout,
            cwd=self.config.workdir,
            env=self.config.env,
            tail_lines=self.config.output_tail,
        )
        finished = utc_now()

        if outcome.exit_code == 0:
            state, reason = StageState.OK, None
        elif outcome.timed_out:
            state, reason = StageState.FAILED, "timeout"
        elif outcome.exit_code == EXIT_NOT_EXECUTABLE:
            state, reason = StageState.FAILED, "not_executable"
        else:
            state, reason = StageState.FAILED, "exit_nonzero"

        symbol = SYMBOLS.OK if state is StageState.OK else SYMBOLS.FAIL
        log.info(f"{symbol} Stage {index} END: {stage.name} ({state.value}, exit {outcome.exit_code})")
        _log_footer()

        return StageResult(
            name=stage.name,
            state=state,
            exit_code=outcome.exit_code,
            output=outcome.output,
            started_at=started,
            finished_at=finished,
            reason=reason,
        )

    def run(
        self,
        stages: Sequence[Stage],
        *,
        name: str = "pipeline",
        compliance_stage: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> PipelineRun:
        stages = list(stages)
        planned = self.plan(stages, compliance_stage=compliance_stage)

        run = PipelineRun(run_id=run_id or new_run_id(), pipeline=name)
        total = len(planned)

        for i, step in enumerate(planned, start=1):
            stage = step.stage
            is_compliance = stage.name == compliance_stage

            # Only an artifact written by this run may be classified
            fresh = self._clear_artifact(step.artifact) if is_compliance else True

            result = self._run_stage(i, total, stage, step.command)
            run.record(result)

            if is_compliance:
                if fresh:
                    compliance = classify_artifact(
                        step.artifact,
                        self.config.compliance_marker,
                        self.config.compliance_mode,
                    )
                else:
                    compliance = ComplianceResult.INDETERMINATE
                run.set_compliance(compliance)
                log.info(f"Compliance classification: {compliance.value}")

            if result.ok:
                continue

            if stage.continue_on_failure:
                log.warning(
                    f"{SYMBOLS.WARN} {stage.name} failed (exit {result.exit_code}); "
                    "continuing (continue_on_failure)"
                )
                continue

            log.error(f"{SYMBOLS.BLOCKED} {stage.name} failed (exit {result.exit_code}); aborting run")
            run.finish_aborted(stage.name)
            break
        else:
            run.finish_completed()

        self._notify(run)
        log.info(f"RUN_STATUS={run.status.value}")
        return run

    def run_definition(self, definition: PipelineDefinition, *, run_id: Optional[str] = None) -> PipelineRun:
        return self.run(
            definition.stages,
            name=definition.name,
            compliance_stage=definition.compliance_stage,
            run_id=run_id,
        )

    def _notify(self, run: PipelineRun) -> None:
        event = summarize_run(run)
        try:
            self.notifier.notify(event)
        except NotificationDeliveryFailure as e:
            # Never masks the run result.
            log.error(f"Notification not delivered: {e}")
