import pytest

from errors import NotificationDeliveryFailure, PipelineDefinitionError
from notify import Notifier
from pipeline.config import OrchestratorConfig
from pipeline.definition import CommandTemplate, PipelineDefinition, Stage
from pipeline.run_state import ComplianceResult, RunStatus, StageState
from runner import (
    EXIT_NOT_EXECUTABLE,
    EXIT_TIMEOUT,
    CommandExecutor,
    CommandOutcome,
    Orchestrator,
)


class FakeExecutor(CommandExecutor):
    """Exit codes keyed by executable; records every command it is asked to run."""

    def __init__(self, exit_codes=None, timeouts=(), side_effects=None):
        self.exit_codes = exit_codes or {}
        self.timeouts = set(timeouts)
        self.side_effects = side_effects or {}
        self.calls = []

    def execute(self, command, *, timeout=None, cwd=None, env=None, tail_lines=200):
        self.calls.append((command, timeout))
        effect = self.side_effects.get(command.executable)
        if effect:
            effect()
        if command.executable in self.timeouts:
            return CommandOutcome(exit_code=EXIT_TIMEOUT, output="timed out", timed_out=True)
        code = self.exit_codes.get(command.executable, 0)
        return CommandOutcome(exit_code=code, output=f"{command.executable} exit {code}")

    @property
    def executed(self):
        return [c.executable for c, _ in self.calls]


class RecordingNotifier(Notifier):
    def __init__(self, fail=False):
        self.events = []
        self.fail = fail

    def notify(self, event):
        self.events.append(event)
        if self.fail:
            raise NotificationDeliveryFailure("webhook down")


def _stage(name, continue_on_failure=False, **kw):
    return Stage(name=name, command=CommandTemplate(name), continue_on_failure=continue_on_failure, **kw)


def _orchestrator(executor, notifier=None, **config):
    return Orchestrator(
        OrchestratorConfig(**config),
        executor=executor,
        notifier=notifier or RecordingNotifier(),
    )


# ------------------------------------------------------------
# Ordering and gating
# ------------------------------------------------------------


@pytest.mark.parametrize("count", [1, 3, 9])
def test_all_ok_completes_every_stage(count):
    stages = [_stage(f"s{i}") for i in range(count)]
    executor = FakeExecutor()
    notifier = RecordingNotifier()

    run = _orchestrator(executor, notifier).run(stages)

    assert not run.aborted
    assert run.status == RunStatus.COMPLETED
    assert len(run.results) == count
    assert [r.name for r in run.results] == [s.name for s in stages]
    assert executor.executed == [s.name for s in stages]


@pytest.mark.parametrize("k", [1, 2, 4])
def test_non_continuable_failure_aborts_at_k(k):
    stages = [_stage(f"s{i}") for i in range(1, 5)]
    executor = FakeExecutor({f"s{k}": 1})

    run = _orchestrator(executor).run(stages)

    assert run.aborted
    assert len(run.results) == k
    assert run.abort_stage == f"s{k}"
    assert run.results[-1].state == StageState.FAILED
    assert executor.executed == [f"s{i}" for i in range(1, k + 1)]


def test_continuable_failure_proceeds():
    stages = [_stage("a"), _stage("b", continue_on_failure=True), _stage("c")]
    executor = FakeExecutor({"b": 7})

    run = _orchestrator(executor).run(stages)

    assert not run.aborted
    assert executor.executed == ["a", "b", "c"]
    assert run.results[1].exit_code == 7
    assert run.results[1].state == StageState.FAILED
    assert run.failed_stages == ["b"]


def test_scenario_abort_at_c():
    stages = [_stage("A"), _stage("B"), _stage("C"), _stage("D")]
    executor = FakeExecutor({"C": 1})
    notifier = RecordingNotifier()

    run = _orchestrator(executor, notifier).run(stages, name="demo")

    assert [(r.name, r.state) for r in run.results] == [
        ("A", StageState.OK),
        ("B", StageState.OK),
        ("C", StageState.FAILED),
    ]
    assert run.aborted
    assert "D" not in executor.executed
    assert len(notifier.events) == 1
    assert "aborted at C" in notifier.events[0].text


def test_timeout_is_a_stage_failure():
    stages = [_stage("slow", timeout_seconds=5), _stage("next")]
    executor = FakeExecutor(timeouts={"slow"})

    run = _orchestrator(executor, stage_timeout=60).run(stages)

    assert run.aborted
    assert run.results[0].exit_code == EXIT_TIMEOUT
    assert run.results[0].reason == "timeout"
    # Stage timeout wins over the configured default
    assert executor.calls[0][1] == 5


def test_default_timeout_from_config():
    executor = FakeExecutor()

    _orchestrator(executor, stage_timeout=30).run([_stage("a")])

    assert executor.calls[0][1] == 30


def test_run_is_finalized():
    run = _orchestrator(FakeExecutor()).run([_stage("a")])

    assert run.finalized
    assert run.finished_at is not None


# ------------------------------------------------------------
# Notification
# ------------------------------------------------------------


@pytest.mark.parametrize(
    "exit_codes,status",
    [
        ({}, RunStatus.COMPLETED),
        ({"b": 1}, RunStatus.ABORTED),
    ],
)
def test_exactly_one_notification_matching_status(exit_codes, status):
    notifier = RecordingNotifier()

    run = _orchestrator(FakeExecutor(exit_codes), notifier).run([_stage("a"), _stage("b"), _stage("c")])

    assert len(notifier.events) == 1
    assert notifier.events[0].status == status == run.status
    assert notifier.events[0].run_id == run.run_id


def test_notification_failure_does_not_mask_result():
    notifier = RecordingNotifier(fail=True)

    run = _orchestrator(FakeExecutor({"b": 1}), notifier).run([_stage("a"), _stage("b")])

    assert run.aborted
    assert run.abort_stage == "b"
    assert len(notifier.events) == 1


# ------------------------------------------------------------
# Compliance classification
# ------------------------------------------------------------


def _compliance_stages(artifact):
    return [
        _stage("build"),
        _stage("qualys", artifact=str(artifact)),
        _stage("after"),
    ]


def _writer(path, text):
    return lambda: path.write_text(text, encoding="utf-8")


def test_compliance_self_closing_marker_is_failure(tmp_path):
    artifact = tmp_path / "report.xml"
    executor = FakeExecutor(side_effects={"qualys": _writer(artifact, "<r><complianceScan/>broken")})
    notifier = RecordingNotifier()

    run = _orchestrator(executor, notifier).run(_compliance_stages(artifact), compliance_stage="qualys")

    assert run.compliance == ComplianceResult.FAILURE  # literal "<complianceScan>" absent


def test_compliance_marker_literal_match(tmp_path):
    artifact = tmp_path / "report.xml"
    executor = FakeExecutor(side_effects={"qualys": _writer(artifact, "<complianceScan> not closed")})
    notifier = RecordingNotifier()

    run = _orchestrator(executor, notifier).run(_compliance_stages(artifact), compliance_stage="qualys")

    assert run.compliance == ComplianceResult.SUCCESS
    assert notifier.events[0].text.endswith("compliance: success")


def test_compliance_missing_artifact_is_not_fatal(tmp_path):
    run = _orchestrator(FakeExecutor()).run(
        _compliance_stages(tmp_path / "never-written.xml"), compliance_stage="qualys"
    )

    assert run.status == RunStatus.COMPLETED
    assert run.compliance == ComplianceResult.INDETERMINATE


def test_compliance_classified_even_when_stage_aborts(tmp_path):
    artifact = tmp_path / "report.xml"
    executor = FakeExecutor({"qualys": 2}, side_effects={"qualys": _writer(artifact, "<complianceScan>")})

    run = _orchestrator(executor).run(_compliance_stages(artifact), compliance_stage="qualys")

    assert run.aborted
    assert run.compliance == ComplianceResult.SUCCESS


@pytest.mark.parametrize("exit_code", [1, EXIT_NOT_EXECUTABLE])
def test_stale_artifact_from_earlier_run_is_not_classified(tmp_path, exit_code):
    artifact = tmp_path / "report.xml"
    artifact.write_text("<complianceScan>", encoding="utf-8")
    stages = [_stage("qualys", continue_on_failure=True, artifact=str(artifact))]
    notifier = RecordingNotifier()

    run = _orchestrator(FakeExecutor({"qualys": exit_code}), notifier).run(
        stages, compliance_stage="qualys"
    )

    assert run.compliance == ComplianceResult.INDETERMINATE
    assert not artifact.exists()
    assert notifier.events[0].text.endswith("compliance: indeterminate")


def test_stale_artifact_replaced_by_this_run(tmp_path):
    artifact = tmp_path / "report.xml"
    artifact.write_text("<complianceScan>", encoding="utf-8")
    executor = FakeExecutor(side_effects={"qualys": _writer(artifact, "<error/>")})

    run = _orchestrator(executor).run(
        [_stage("qualys", artifact=str(artifact))], compliance_stage="qualys"
    )

    assert run.compliance == ComplianceResult.FAILURE


def test_only_compliance_artifact_is_cleared(tmp_path):
    other = tmp_path / "sast.json"
    other.write_text("{}", encoding="utf-8")
    stages = [_stage("sast", artifact=str(other)), _stage("qualys", artifact=str(tmp_path / "r.xml"))]

    _orchestrator(FakeExecutor()).run(stages, compliance_stage="qualys")

    assert other.exists()


def test_compliance_unset_when_stage_never_runs(tmp_path):
    notifier = RecordingNotifier()

    run = _orchestrator(FakeExecutor({"build": 1}), notifier).run(
        _compliance_stages(tmp_path / "r.xml"), compliance_stage="qualys"
    )

    assert run.compliance is None
    assert "compliance" not in notifier.events[0].text


def test_relative_artifact_resolves_against_workdir(tmp_path):
    (tmp_path / "out").mkdir()
    write = _writer(tmp_path / "out" / "report.xml", "<complianceScan>")
    stages = [_stage("qualys", artifact="out/report.xml")]

    run = _orchestrator(FakeExecutor(side_effects={"qualys": write}), workdir=tmp_path).run(
        stages, compliance_stage="qualys"
    )

    assert run.compliance == ComplianceResult.SUCCESS


def test_strict_mode_from_config(tmp_path):
    artifact = tmp_path / "report.xml"
    write = _writer(artifact, "<complianceScan> not closed")
    stages = [_stage("qualys", artifact=str(artifact))]

    run = _orchestrator(FakeExecutor(side_effects={"qualys": write}), compliance_mode="strict").run(
        stages, compliance_stage="qualys"
    )

    assert run.compliance == ComplianceResult.INDETERMINATE


# ------------------------------------------------------------
# Validation before execution
# ------------------------------------------------------------


def test_duplicate_names_rejected_before_running():
    executor = FakeExecutor()
    notifier = RecordingNotifier()

    with pytest.raises(PipelineDefinitionError):
        _orchestrator(executor, notifier).run([_stage("a"), _stage("a")])

    assert executor.calls == []
    assert notifier.events == []


def test_missing_variable_rejected_before_running():
    stages = [
        _stage("a"),
        Stage(name="zap", command=CommandTemplate("zap", ("-t", "{target_url}"))),
    ]
    executor = FakeExecutor()

    with pytest.raises(PipelineDefinitionError, match="zap"):
        _orchestrator(executor).run(stages)

    assert executor.calls == []


def test_missing_artifact_variable_rejected_before_running():
    stages = [
        _stage("a"),
        _stage("qualys", artifact="{artifacts_dir}/r.xml"),
        _stage("after"),
    ]
    executor = FakeExecutor()
    notifier = RecordingNotifier()

    with pytest.raises(PipelineDefinitionError, match="qualys"):
        _orchestrator(executor, notifier).run(stages, compliance_stage="qualys")

    assert executor.calls == []
    assert notifier.events == []


def test_plan_renders_artifact_paths(tmp_path):
    stages = [_stage("qualys", artifact="{artifacts_dir}/r.xml"), _stage("build")]

    planned = _orchestrator(FakeExecutor(), variables={"artifacts_dir": str(tmp_path)}).plan(stages)

    assert planned[0].artifact == tmp_path / "r.xml"
    assert planned[1].artifact is None
    assert planned[1].command.argv == ["build"]


def test_unknown_compliance_stage_rejected():
    with pytest.raises(PipelineDefinitionError):
        _orchestrator(FakeExecutor()).run([_stage("a")], compliance_stage="qualys")


def test_variables_are_rendered_per_argument():
    stages = [Stage(name="trivy", command=CommandTemplate("trivy", ("image", "{image}")))]
    executor = FakeExecutor()

    _orchestrator(executor, variables={"image": "shop/web:1.0"}).run(stages)

    assert executor.calls[0][0].argv == ["trivy", "image", "shop/web:1.0"]


def test_run_definition_uses_name_and_compliance(tmp_path):
    artifact = tmp_path / "r.xml"
    defn = PipelineDefinition(
        name="devsecops",
        stages=(_stage("qualys", artifact=str(artifact)),),
        compliance_stage="qualys",
    )
    executor = FakeExecutor(side_effects={"qualys": _writer(artifact, "<complianceScan>")})

    run = _orchestrator(executor).run_definition(defn, run_id="fixed")

    assert run.pipeline == "devsecops"
    assert run.run_id == "fixed"
    assert run.compliance == ComplianceResult.SUCCESS
