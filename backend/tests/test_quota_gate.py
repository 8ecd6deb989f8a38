from __future__ import annotations

from datetime import datetime

import pytest
from structlog.testing import capture_logs

from app.core.config import Settings
from app.core.errors import QuotaExceeded
from app.services.quota_gate import QuotaGate

NOW = datetime(2026, 10, 19, 12, 0)


def _gate(primary, **overrides) -> QuotaGate:
    return QuotaGate(primary, settings=Settings(**overrides), clock=lambda: NOW)


async def _user(primary, user_id, plan, created_at=datetime(2025, 9, 1), trial_end_date=None):
    return await primary.create_user(
        {"id": user_id, "plan": plan, "created_at": created_at, "trial_end_date": trial_end_date}
    )


async def _usage(gate, user_id, count):
    for _ in range(count):
        await gate.record_usage(user_id, "project-1", opinions_processed=5)


class _BrokenPrimary:
    async def get_user(self, user_id):
        raise RuntimeError("connection refused")

    async def add_usage(self, values):
        raise RuntimeError("connection refused")


@pytest.mark.asyncio
async def test_pro_user_gets_period_limits(primary) -> None:
    await _user(primary, "pro", "pro")
    gate = _gate(primary)

    result = await gate.check_limit("pro", "project-1")

    assert result.allowed is True
    assert result.remaining == {"daily": 10, "monthly": 100}
    assert result.reset_date == {"daily": datetime(2026, 10, 20), "monthly": datetime(2026, 11, 1)}
    assert result.plan == "pro"


@pytest.mark.asyncio
async def test_free_user_gets_a_single_analysis(primary) -> None:
    await _user(primary, "free", "free")
    gate = _gate(primary)
    assert (await gate.check_limit("free", "project-1")).allowed is True

    await _usage(gate, "free", 1)
    result = await gate.check_limit("free", "project-1")

    assert result.allowed is False
    assert result.limit_kind == "plan_total"
    assert result.current_usage == 1
    assert result.limit == 1
    assert result.plan == "free"


@pytest.mark.asyncio
async def test_users_from_before_launch_skip_the_plan_gate(primary) -> None:
    await _user(primary, "legacy", "free", created_at=datetime(2025, 1, 1))
    gate = _gate(primary)
    await _usage(gate, "legacy", 3)

    result = await gate.check_limit("legacy", "project-1")

    assert result.allowed is True
    assert result.remaining == {"daily": 7, "monthly": 97}


@pytest.mark.asyncio
async def test_daily_limit_is_enforced(primary) -> None:
    await _user(primary, "pro", "pro")
    gate = _gate(primary, analysis_limit_total_daily=2)
    await _usage(gate, "pro", 2)

    with pytest.raises(QuotaExceeded) as exc_info:
        await gate.require_analysis_allowed("pro", "project-1")

    details = exc_info.value.details
    assert exc_info.value.limit_kind == "daily"
    assert details["action"] == "upgrade_plan"
    assert details["limit"] == 2
    assert details["remaining"] == {"daily": 0, "monthly": 98}
    assert details["project_id"] == "project-1"
    assert "Daily analysis limit (2)" in exc_info.value.message


@pytest.mark.asyncio
async def test_monthly_limit_counts_earlier_days(primary) -> None:
    await _user(primary, "pro", "pro")
    early = QuotaGate(primary, settings=Settings(analysis_limit_total_monthly=3), clock=lambda: datetime(2026, 10, 2, 9, 0))
    await _usage(early, "pro", 3)
    gate = _gate(primary, analysis_limit_total_monthly=3)

    result = await gate.check_limit("pro", "project-1")

    assert result.allowed is False
    assert result.limit_kind == "monthly"
    assert result.remaining == {"daily": 10, "monthly": 0}


@pytest.mark.asyncio
async def test_active_trial_uses_trial_period_limits(primary) -> None:
    await _user(primary, "trial", "trial", created_at=datetime(2026, 10, 10))
    gate = _gate(primary)

    result = await gate.check_limit("trial", "project-1")

    assert gate.is_active_trial(await primary.get_user("trial")) is True
    assert result.remaining == {"daily": 7, "monthly": 50}


@pytest.mark.asyncio
async def test_expired_trial_falls_back_to_free_limits(primary) -> None:
    user = await _user(primary, "lapsed", "trial", created_at=datetime(2026, 9, 1), trial_end_date=datetime(2026, 9, 15))
    gate = _gate(primary)
    await _usage(gate, "lapsed", 1)

    result = await gate.check_limit("lapsed", "project-1")

    assert gate.effective_plan(user) == "expired"
    assert result.allowed is False
    assert result.limit_kind == "plan_total"
    assert result.plan == "expired"


@pytest.mark.asyncio
async def test_store_errors_fail_open() -> None:
    gate = QuotaGate(_BrokenPrimary(), clock=lambda: NOW)

    with capture_logs() as logs:
        result = await gate.check_limit("anyone", "project-1")
        await gate.record_usage("anyone", "project-1", 3)

    assert result.allowed is True
    events = {entry["event"]: entry for entry in logs}
    assert events["quota_check_failed"]["log_level"] == "warning"
    assert events["usage_record_failed"]["log_level"] == "error"


@pytest.mark.asyncio
async def test_remaining_analyses_reports_limits(primary) -> None:
    await _user(primary, "pro", "pro")
    gate = _gate(primary)
    await _usage(gate, "pro", 4)

    remaining = await gate.remaining_analyses("pro")

    assert remaining["daily"] == 6
    assert remaining["monthly"] == 96
    assert remaining["limits"] == {"daily": 10, "monthly": 100}


@pytest.mark.asyncio
async def test_project_creation_limit_ignores_archived_projects(primary, replica) -> None:
    from app.services.sync_coordinator import SyncCoordinator

    await _user(primary, "free", "free")
    gate = _gate(primary)
    coordinator = SyncCoordinator(primary, replica, quota_gate=gate)
    first = await coordinator.write("project", "create", {"name": "First"}, actor_id="free")
    assert (await gate.check_project_creation_limit("free")).allowed is False

    await coordinator.write("project", "update", {"id": first.id, "is_archived": True}, actor_id="free")

    assert (await gate.check_project_creation_limit("free")).allowed is True


@pytest.mark.asyncio
async def test_unknown_user_is_not_plan_limited(primary) -> None:
    gate = _gate(primary)

    assert (await gate.check_project_creation_limit("ghost")).allowed is True
    assert (await gate.check_limit("ghost", "project-1")).allowed is True
