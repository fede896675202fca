from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_COMPLIANCE_MARKER = "<complianceScan>"
DEFAULT_OUTPUT_TAIL = 200


@dataclass(frozen=True)
class OrchestratorConfig:
    """
    Explicit run configuration handed to the orchestrator at construction.

    ``variables`` fills ``{name}`` placeholders in stage command templates.
    ``stage_timeout`` is the default per-stage timeout in seconds; ``None``
    means stages may run indefinitely.
    """

    variables: Mapping[str, str] = field(default_factory=dict)
    compliance_marker: str = DEFAULT_COMPLIANCE_MARKER
    compliance_mode: str = "substring"
    stage_timeout: Optional[float] = None
    output_tail: int = DEFAULT_OUTPUT_TAIL
    workdir: Optional[Path] = None
    env: Mapping[str, str] = field(default_factory=dict)
