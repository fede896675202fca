"""pipeline.definition

Pipeline definitions: ordered, uniquely named stages, each wrapping one
external tool invocation.

A stage command is a typed descriptor (executable + argument list), never a
shell string. Arguments may contain ``{name}`` placeholders that are filled
per-argument from the orchestrator's configured variables; no shell ever sees
the rendered values. Placeholders are bare names only; literal braces, as in
Go templates or jq filters, are written doubled (``{{ range . }}`` is
written ``{{{{ range . }}}}``).
"""

from __future__ import annotations

import string
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from errors import PipelineDefinitionError

_FORMATTER = string.Formatter()


# ----------------------------
# Commands
# ----------------------------


@dataclass(frozen=True)
class CommandSpec:
    """A concrete command ready to execute."""

    executable: str
    args: Tuple[str, ...] = ()

    @property
    def argv(self) -> List[str]:
        return [self.executable, *self.args]

    def display(self) -> str:
        return " ".join(self.argv)


@dataclass(frozen=True)
class CommandTemplate:
    """A command whose arguments may reference ``{variables}``."""

    executable: str
    args: Tuple[str, ...] = ()

    @classmethod
    def from_list(cls, parts: Sequence[Any]) -> "CommandTemplate":
        items = [str(p) for p in parts]
        if not items or not items[0].strip():
            raise PipelineDefinitionError("command must name an executable")
        return cls(executable=items[0], args=tuple(items[1:]))

    def placeholders(self) -> set[str]:
        names: set[str] = set()
        for part in (self.executable, *self.args):
            for _, field_name, _, _ in _FORMATTER.parse(part):
                if field_name:
                    names.add(field_name)
        return names


def render_text(part: str, variables: Mapping[str, str]) -> str:
    """
    Fill ``{name}`` placeholders in one argument.

    Only bare names are allowed: no attribute or index access, no format
    spec. Literal braces are written doubled (``{{`` renders as ``{``).
    """
    try:
        parsed = list(_FORMATTER.parse(part))
    except ValueError as e:
        raise PipelineDefinitionError(f"Invalid template {part!r}: {e}") from e

    for _, field_name, format_spec, conversion in parsed:
        if field_name is None:
            continue
        if not field_name.isidentifier() or format_spec or conversion:
            raise PipelineDefinitionError(
                f"Invalid placeholder in {part!r}: only {{name}} is allowed"
            )

    try:
        return part.format_map(variables)
    except KeyError as e:
        raise PipelineDefinitionError(
            f"Unknown template variable {e.args[0]!r} in {part!r}"
        ) from e
    except (ValueError, IndexError) as e:
        raise PipelineDefinitionError(f"Invalid template {part!r}: {e}") from e


def render_command(template: CommandTemplate, variables: Mapping[str, str]) -> CommandSpec:
    """Fill ``{name}`` placeholders in every argument of ``template``."""
    return CommandSpec(
        executable=render_text(template.executable, variables),
        args=tuple(render_text(a, variables) for a in template.args),
    )


# ----------------------------
# Stages
# ----------------------------


@dataclass(frozen=True)
class Stage:
    name: str
    command: CommandTemplate
    continue_on_failure: bool = False
    artifact: Optional[str] = None
    timeout_seconds: Optional[float] = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Stage":
        name = str(raw.get("name") or "").strip()
        if not name:
            raise PipelineDefinitionError("stage is missing a name")

        command = raw.get("command")
        if isinstance(command, str) or not isinstance(command, (list, tuple)):
            raise PipelineDefinitionError(
                f"stage '{name}': command must be a list (executable, then args)"
            )

        timeout = raw.get("timeout_seconds")
        if timeout is not None:
            try:
                timeout = float(timeout)
            except (TypeError, ValueError) as e:
                raise PipelineDefinitionError(
                    f"stage '{name}': timeout_seconds must be a number"
                ) from e
            if timeout <= 0:
                timeout = None

        artifact = raw.get("artifact")

        try:
            template = CommandTemplate.from_list(command)
        except PipelineDefinitionError as e:
            raise PipelineDefinitionError(f"stage '{name}': {e}") from e

        return cls(
            name=name,
            command=template,
            continue_on_failure=bool(raw.get("continue_on_failure", False)),
            artifact=str(artifact) if artifact else None,
            timeout_seconds=timeout,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "name": self.name,
            "command": [self.command.executable, *self.command.args],
            "continue_on_failure": self.continue_on_failure,
        }
        if self.artifact:
            out["artifact"] = self.artifact
        if self.timeout_seconds:
            out["timeout_seconds"] = self.timeout_seconds
        return out


def validate_stage_names(stages: Iterable[Stage]) -> None:
    """Reject duplicate stage names; the first repeat is reported."""
    seen: set[str] = set()
    for stage in stages:
        if stage.name in seen:
            raise PipelineDefinitionError(f"Duplicate stage name: '{stage.name}'")
        seen.add(stage.name)


# ----------------------------
# Pipelines
# ----------------------------


@dataclass(frozen=True)
class PipelineDefinition:
    name: str
    stages: Tuple[Stage, ...] = field(default_factory=tuple)
    compliance_stage: Optional[str] = None

    def __post_init__(self) -> None:
        validate_stage_names(self.stages)
        if self.compliance_stage and self.compliance_stage not in self.stage_names:
            raise PipelineDefinitionError(
                f"compliance_stage '{self.compliance_stage}' is not a declared stage"
            )

    @property
    def stage_names(self) -> List[str]:
        return [s.name for s in self.stages]

    def placeholders(self) -> set[str]:
        names: set[str] = set()
        for s in self.stages:
            names |= s.command.placeholders()
        return names

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], *, default_name: str = "pipeline") -> "PipelineDefinition":
        stages_raw = raw.get("stages")
        if not isinstance(stages_raw, list) or not stages_raw:
            raise PipelineDefinitionError("pipeline must declare a non-empty 'stages' list")

        stages = []
        for i, s in enumerate(stages_raw, start=1):
            if not isinstance(s, dict):
                raise PipelineDefinitionError(f"stage #{i} must be a mapping")
            stages.append(Stage.from_dict(s))

        compliance = raw.get("compliance_stage")
        return cls(
            name=str(raw.get("name") or default_name),
            stages=tuple(stages),
            compliance_stage=str(compliance) if compliance else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"name": self.name}
        if self.compliance_stage:
            out["compliance_stage"] = self.compliance_stage
        out["stages"] = [s.to_dict() for s in self.stages]
        return out


# ----------------------------
# YAML IO
# ----------------------------


def load_pipeline(path: str | Path) -> PipelineDefinition:
    """Load a pipeline definition from YAML (JSON is accepted too)."""
    import yaml

    p = Path(path).expanduser().resolve()
    if not p.exists():
        raise FileNotFoundError(f"Pipeline definition not found: {p}")

    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise PipelineDefinitionError(f"{p.name}: invalid YAML ({e})") from e

    if not isinstance(raw, dict):
        raise PipelineDefinitionError(f"Pipeline YAML must be a mapping at top level: {p}")

    try:
        return PipelineDefinition.from_dict(raw, default_name=p.stem)
    except PipelineDefinitionError as e:
        raise PipelineDefinitionError(f"{p.name}: {e}") from e
