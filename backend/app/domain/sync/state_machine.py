from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


class EntityKind(str, enum.Enum):
    PROJECT = "project"
    OPINION = "opinion"
    TASK = "task"


class SyncOperation(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncPhase(str, enum.Enum):
    PENDING_PRIMARY = "pending_primary"
    PRIMARY_COMMITTED = "primary_committed"
    REPLICA_COMMITTED = "replica_committed"
    COMPENSATING = "compensating"
    COMPENSATED = "compensated"
    FAILED = "failed"


# Deletes run replica-first, so REPLICA_COMMITTED may precede PRIMARY_COMMITTED.
PHASE_TRANSITIONS: dict[SyncPhase, set[SyncPhase]] = {
    SyncPhase.PENDING_PRIMARY: {
        SyncPhase.PRIMARY_COMMITTED,
        SyncPhase.REPLICA_COMMITTED,
        SyncPhase.FAILED,
    },
    SyncPhase.PRIMARY_COMMITTED: {SyncPhase.REPLICA_COMMITTED, SyncPhase.COMPENSATING},
    SyncPhase.REPLICA_COMMITTED: {SyncPhase.PRIMARY_COMMITTED, SyncPhase.COMPENSATING},
    SyncPhase.COMPENSATING: {SyncPhase.COMPENSATED, SyncPhase.FAILED},
    SyncPhase.COMPENSATED: set(),
    SyncPhase.FAILED: set(),
}

TERMINAL_PHASES = frozenset({SyncPhase.COMPENSATED, SyncPhase.FAILED})


class InvalidPhaseTransition(RuntimeError):
    pass


def allowed_targets(from_phase: SyncPhase) -> set[SyncPhase]:
    return set(PHASE_TRANSITIONS.get(from_phase, set()))


def can_transition(from_phase: SyncPhase, to_phase: SyncPhase) -> bool:
    return to_phase in allowed_targets(from_phase)


def validate_path(phases: Iterable[SyncPhase]) -> bool:
    sequence = list(phases)
    if len(sequence) <= 1:
        return True
    return all(can_transition(sequence[idx], sequence[idx + 1]) for idx in range(0, len(sequence) - 1))


@dataclass(slots=True)
class SyncState:
    """Progress of one coordinated write. Lives only for the duration of the call."""

    kind: EntityKind
    operation: SyncOperation
    entity_id: str | None = None
    phase: SyncPhase = SyncPhase.PENDING_PRIMARY
    history: list[tuple[SyncPhase, datetime]] = field(default_factory=list)
    error: str | None = None

    def advance(self, target: SyncPhase) -> None:
        if not can_transition(self.phase, target):
            raise InvalidPhaseTransition(f"{self.phase.value} -> {target.value}")
        self.history.append((self.phase, datetime.utcnow()))
        self.phase = target

    @property
    def finished(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def as_log_fields(self) -> dict[str, Any]:
        return {
            "entity_kind": self.kind.value,
            "operation": self.operation.value,
            "entity_id": self.entity_id,
            "phase": self.phase.value,
            "previous_phases": [phase.value for phase, _ in self.history],
        }
