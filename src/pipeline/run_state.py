from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from errors import RunFinalizedError, ToolInvocationFailure


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StageState(str, Enum):
    OK = "ok"
    FAILED = "failed"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class ComplianceResult(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    INDETERMINATE = "indeterminate"

    @property
    def passed(self) -> bool:
        return self is ComplianceResult.SUCCESS


@dataclass(frozen=True)
class StageResult:
    name: str
    state: StageState
    exit_code: int
    output: str = ""
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime = field(default_factory=utc_now)
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state is StageState.OK

    @property
    def duration_seconds(self) -> float:
        return round((self.finished_at - self.started_at).total_seconds(), 3)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "exit_code": self.exit_code,
            "output": self.output,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "StageResult":
        return cls(
            name=raw["name"],
            state=StageState(raw["state"]),
            exit_code=int(raw["exit_code"]),
            output=raw.get("output") or "",
            started_at=datetime.fromisoformat(raw["started_at"]),
            finished_at=datetime.fromisoformat(raw["finished_at"]),
            reason=raw.get("reason"),
        )


@dataclass
class PipelineRun:
    """
    Runtime record of one pipeline execution.

    Mutated by the orchestrator only, and only while running: results are
    appended in execution order, then ``finish_completed`` or
    ``finish_aborted`` freezes the record. Everything else must treat it as
    read-only.
    """

    run_id: str
    pipeline: str
    status: RunStatus = RunStatus.RUNNING
    abort_stage: Optional[str] = None
    compliance: Optional[ComplianceResult] = None
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    _results: List[StageResult] = field(default_factory=list, repr=False)

    # ------------------------------------------------------------------
    # Mutation (running only)
    # ------------------------------------------------------------------

    def _check_running(self) -> None:
        if self.status is not RunStatus.RUNNING:
            raise RunFinalizedError(f"Run {self.run_id} is already {self.status.value}")

    def record(self, result: StageResult) -> None:
        self._check_running()
        self._results.append(result)

    def set_compliance(self, result: ComplianceResult) -> None:
        self._check_running()
        self.compliance = result

    def finish_completed(self) -> None:
        self._check_running()
        self.status = RunStatus.COMPLETED
        self.finished_at = utc_now()

    def finish_aborted(self, stage: str) -> None:
        self._check_running()
        self.status = RunStatus.ABORTED
        self.abort_stage = stage
        self.finished_at = utc_now()

    # ------------------------------------------------------------------
    # Derived helpers (read-only)
    # ------------------------------------------------------------------

    @property
    def results(self) -> Tuple[StageResult, ...]:
        return tuple(self._results)

    @property
    def aborted(self) -> bool:
        return self.status is RunStatus.ABORTED

    @property
    def finalized(self) -> bool:
        return self.status is not RunStatus.RUNNING

    @property
    def failed_stages(self) -> List[str]:
        return [r.name for r in self._results if not r.ok]

    @property
    def runtime_seconds(self) -> float:
        end = self.finished_at or utc_now()
        return round((end - self.started_at).total_seconds(), 2)

    def failure(self) -> Optional[ToolInvocationFailure]:
        """The failure that aborted this run, if any."""
        if not self.aborted:
            return None
        for r in reversed(self._results):
            if r.name == self.abort_stage:
                return ToolInvocationFailure(r.name, r.exit_code, r.output)
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "pipeline": self.pipeline,
            "status": self.status.value,
            "abort_stage": self.abort_stage,
            "compliance": self.compliance.value if self.compliance else None,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "stages": [r.to_dict() for r in self._results],
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "PipelineRun":
        finished = raw.get("finished_at")
        compliance = raw.get("compliance")
        return cls(
            run_id=raw["run_id"],
            pipeline=raw["pipeline"],
            status=RunStatus(raw["status"]),
            abort_stage=raw.get("abort_stage"),
            compliance=ComplianceResult(compliance) if compliance else None,
            started_at=datetime.fromisoformat(raw["started_at"]),
            finished_at=datetime.fromisoformat(finished) if finished else None,
            _results=[StageResult.from_dict(s) for s in raw.get("stages") or []],
        )
