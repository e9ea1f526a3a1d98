"""Plans Module - AI-proposed step sequences and their lifecycle."""

from .models import (
    Plan,
    PlanSchema,
    PlanStatus,
    PlanStep,
    PlanStepSchema,
    PlanStepStatus,
    PlanStepType,
    SkipReason,
    plan_from_payload,
)
from .lifecycle import PlanLifecycle, execution_order

__all__ = [
    "Plan",
    "PlanSchema",
    "PlanStatus",
    "PlanStep",
    "PlanStepSchema",
    "PlanStepStatus",
    "PlanStepType",
    "SkipReason",
    "plan_from_payload",
    "PlanLifecycle",
    "execution_order",
]
