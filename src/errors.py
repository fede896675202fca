from __future__ import annotations


class SecgateError(RuntimeError):
    """Base error for secgate."""


class PipelineDefinitionError(SecgateError):
    """A pipeline definition is malformed, ambiguous, or cannot be rendered."""


class ToolInvocationFailure(SecgateError):
    """An external tool exited non-zero."""

    def __init__(self, stage: str, exit_code: int, output: str = ""):
        super().__init__(f"Stage '{stage}' failed with exit code {exit_code}")
        self.stage = stage
        self.exit_code = exit_code
        self.output = output


class NotificationDeliveryFailure(SecgateError):
    """The run summary could not be delivered."""


class RunFinalizedError(SecgateError):
    """A finished run was mutated."""


class ReportError(SecgateError):
    """A stored run report cannot be read back."""
