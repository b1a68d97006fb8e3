from __future__ import annotations


class ToteError(RuntimeError):
    """Base class for task-completion loop failures."""


class PlanningError(ToteError):
    """Raised when the model's planning response cannot be turned into a plan."""


class AdaptationError(ToteError):
    """Raised when a remediation response cannot be applied to the plan."""


class InvalidTransitionError(ToteError):
    """Raised when a subtask is asked to leave a terminal status."""
