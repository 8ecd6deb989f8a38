import pytest

from app.domain.sync.state_machine import (
    EntityKind,
    InvalidPhaseTransition,
    SyncOperation,
    SyncPhase,
    SyncState,
    can_transition,
    validate_path,
)


def test_create_path_with_compensation_is_valid() -> None:
    assert validate_path(
        [SyncPhase.PENDING_PRIMARY, SyncPhase.PRIMARY_COMMITTED, SyncPhase.COMPENSATING, SyncPhase.COMPENSATED]
    )


def test_delete_runs_replica_first() -> None:
    assert can_transition(SyncPhase.PENDING_PRIMARY, SyncPhase.REPLICA_COMMITTED)
    assert can_transition(SyncPhase.REPLICA_COMMITTED, SyncPhase.PRIMARY_COMMITTED)


def test_terminal_phases_have_no_exits() -> None:
    assert not can_transition(SyncPhase.COMPENSATED, SyncPhase.PRIMARY_COMMITTED)
    assert not can_transition(SyncPhase.FAILED, SyncPhase.COMPENSATING)
    assert not validate_path([SyncPhase.PENDING_PRIMARY, SyncPhase.COMPENSATED])


def test_sync_state_records_history() -> None:
    state = SyncState(kind=EntityKind.OPINION, operation=SyncOperation.UPDATE, entity_id="o1")
    state.advance(SyncPhase.PRIMARY_COMMITTED)
    state.advance(SyncPhase.COMPENSATING)
    state.advance(SyncPhase.FAILED)

    fields = state.as_log_fields()
    assert state.finished is True
    assert fields["phase"] == "failed"
    assert fields["previous_phases"] == ["pending_primary", "primary_committed", "compensating"]

    with pytest.raises(InvalidPhaseTransition):
        state.advance(SyncPhase.COMPENSATED)
