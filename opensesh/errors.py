"""Typed errors for the skill graph, plan lifecycle and execution engine."""


class OrchestrationError(Exception):
    """Base class for orchestration engine errors."""


class UnknownSkillError(OrchestrationError):
    """Raised when a skill id is not present in the skill graph."""

    def __init__(self, skill_id: str):
        self.skill_id = skill_id
        super().__init__(f"Unknown skill: {skill_id}")


class CyclicDependencyError(OrchestrationError):
    """Raised at catalog load time when skill dependencies form a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Cyclic skill dependency: {' -> '.join(cycle)}")


class InvalidTransitionError(OrchestrationError):
    """Raised when a state transition is not legal from the current state."""

    def __init__(self, entity: str, entity_id: str, current: str, target: str):
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move {entity} {entity_id} from '{current}' to '{target}'"
        )


class PlanNotFoundError(OrchestrationError):
    """Raised when a plan or plan step cannot be found."""


class ActionNotFoundError(OrchestrationError):
    """Raised when an execution action cannot be found."""


class BatchLimitExceededError(OrchestrationError):
    """Raised when a submission exceeds the configured batch size."""


class ExecutionFailedError(OrchestrationError):
    """Raised by tool executors when an action fails. Recorded, never retried."""


class ActionCancelledError(OrchestrationError):
    """Raised when a queued or in-flight action is aborted."""


class FatalContextLostError(OrchestrationError):
    """Raised when the execution context disappears mid-batch.

    This is the only failure that moves a plan to ``error`` instead of
    ``partial``, and it aborts the batch regardless of ``stop_on_error``.
    """


class ExecutorRegistrationError(OrchestrationError):
    """Raised when a tool handler cannot be registered."""


class HandlerNotFoundError(OrchestrationError):
    """Raised when no tool handler supports an action type."""
