"""
Activity status lifecycle.

DRAFT -> PENDING_VALIDATION -> PLANNED -> IN_PROGRESS -> COMPLETED -> REPORT_COMPLETE
Any non-terminal status may be CANCELLED. CANCELLED and REPORT_COMPLETE are terminal.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Tuple

from ..errors import StateTransitionError, ValidationError


class ActivityStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING_VALIDATION = "PENDING_VALIDATION"
    PLANNED = "PLANNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    REPORT_COMPLETE = "REPORT_COMPLETE"
    CANCELLED = "CANCELLED"


class LifecycleAction(str, Enum):
    SUBMIT = "submit"
    VALIDATE = "validate"
    START = "start"
    COMPLETE = "complete"
    REPORT = "report"
    CANCEL = "cancel"


TERMINAL_STATUSES: FrozenSet[ActivityStatus] = frozenset(
    {ActivityStatus.CANCELLED, ActivityStatus.REPORT_COMPLETE}
)

# Statuses an activity may be created in
INITIAL_STATUSES: FrozenSet[ActivityStatus] = frozenset({ActivityStatus.DRAFT, ActivityStatus.PLANNED})

# action -> (allowed source status, target status)
_FORWARD: Dict[LifecycleAction, Tuple[ActivityStatus, ActivityStatus]] = {
    LifecycleAction.SUBMIT: (ActivityStatus.DRAFT, ActivityStatus.PENDING_VALIDATION),
    LifecycleAction.VALIDATE: (ActivityStatus.PENDING_VALIDATION, ActivityStatus.PLANNED),
    LifecycleAction.START: (ActivityStatus.PLANNED, ActivityStatus.IN_PROGRESS),
    LifecycleAction.COMPLETE: (ActivityStatus.IN_PROGRESS, ActivityStatus.COMPLETED),
    LifecycleAction.REPORT: (ActivityStatus.COMPLETED, ActivityStatus.REPORT_COMPLETE),
}


@dataclass(frozen=True)
class Transition:
    prior: ActivityStatus
    target: ActivityStatus

    @property
    def changed(self) -> bool:
        return self.prior is not self.target


def parse_status(value) -> ActivityStatus:
    if isinstance(value, ActivityStatus):
        return value
    try:
        return ActivityStatus(str(value).strip().upper())
    except ValueError:
        raise ValidationError(f"Unknown activity status: {value}", details={"status": str(value)})


def parse_action(value) -> LifecycleAction:
    if isinstance(value, LifecycleAction):
        return value
    try:
        return LifecycleAction(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown lifecycle action: {value}", details={"action": str(value)})


def target_of(action: LifecycleAction) -> ActivityStatus:
    if action is LifecycleAction.CANCEL:
        return ActivityStatus.CANCELLED
    return _FORWARD[action][1]


def is_terminal(status) -> bool:
    return parse_status(status) in TERMINAL_STATUSES


def plan_transition(current, action) -> Transition:
    """
    Work out the transition ``action`` causes from ``current``.

    Re-submitting a PENDING_VALIDATION activity is a no-op transition.
    Anything else not allowed raises StateTransitionError; nothing is coerced.
    """
    current = parse_status(current)
    action = parse_action(action)
    target = target_of(action)

    if action is LifecycleAction.CANCEL:
        if current in TERMINAL_STATUSES:
            raise StateTransitionError(current.value, target.value)
        return Transition(current, target)

    source, target = _FORWARD[action]
    if current is source:
        return Transition(current, target)
    if action is LifecycleAction.SUBMIT and current is ActivityStatus.PENDING_VALIDATION:
        return Transition(current, current)
    raise StateTransitionError(current.value, target.value)


def apply_transition(current, action) -> ActivityStatus:
    return plan_transition(current, action).target
