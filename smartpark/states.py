"""Статусы сущностей и допустимые переходы между ними"""
import enum
from typing import Dict, FrozenSet, Type

from .errors import InvalidState


class UserTier(str, enum.Enum):
    BASE = "Base"
    PREMIUM = "Premium"


class SessionStatus(str, enum.Enum):
    OPEN = "Open"
    CLOSED = "Closed"


class ChargeRequestStatus(str, enum.Enum):
    PROPOSED = "Proposed"
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class ChargeJobStatus(str, enum.Enum):
    QUEUED = "Queued"
    RUNNING = "Running"
    FINISHED = "Finished"
    ABORTED = "Aborted"


# Незавершенные запросы: на сессию допускается не больше одного
ACTIVE_REQUEST_STATUSES = frozenset({
    ChargeRequestStatus.PROPOSED,
    ChargeRequestStatus.PENDING,
    ChargeRequestStatus.IN_PROGRESS,
})

OPEN_JOB_STATUSES = frozenset({ChargeJobStatus.QUEUED, ChargeJobStatus.RUNNING})

TRANSITIONS: Dict[Type[enum.Enum], Dict[enum.Enum, FrozenSet[enum.Enum]]] = {
    SessionStatus: {
        SessionStatus.OPEN: frozenset({SessionStatus.CLOSED}),
        SessionStatus.CLOSED: frozenset(),
    },
    ChargeRequestStatus: {
        ChargeRequestStatus.PROPOSED: frozenset({ChargeRequestStatus.PENDING, ChargeRequestStatus.CANCELLED}),
        ChargeRequestStatus.PENDING: frozenset({ChargeRequestStatus.IN_PROGRESS, ChargeRequestStatus.CANCELLED}),
        ChargeRequestStatus.IN_PROGRESS: frozenset({ChargeRequestStatus.COMPLETED, ChargeRequestStatus.CANCELLED}),
        ChargeRequestStatus.COMPLETED: frozenset(),
        ChargeRequestStatus.CANCELLED: frozenset(),
    },
    ChargeJobStatus: {
        ChargeJobStatus.QUEUED: frozenset({ChargeJobStatus.RUNNING, ChargeJobStatus.ABORTED}),
        ChargeJobStatus.RUNNING: frozenset({ChargeJobStatus.FINISHED, ChargeJobStatus.ABORTED}),
        ChargeJobStatus.FINISHED: frozenset(),
        ChargeJobStatus.ABORTED: frozenset(),
    },
}


def can_transition(current: enum.Enum, target: enum.Enum) -> bool:
    table = TRANSITIONS.get(type(current))
    if table is None or type(target) is not type(current):
        return False
    return target in table[current]


def ensure_transition(current: enum.Enum, target: enum.Enum, error=InvalidState) -> None:
    """Проверить переход статуса, иначе поднять ошибку указанного типа"""
    if not can_transition(current, target):
        raise error(f"Недопустимый переход {current.value} -> {target.value}")


def is_terminal(status: enum.Enum) -> bool:
    return not TRANSITIONS[type(status)][status]
