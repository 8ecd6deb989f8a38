"""
Quota gate: plan-tiered analysis, opinion and project limits.

Two gates apply to analyses. The plan gate caps the lifetime number of
analyses for users on the freemium terms (free, expired trial, cancelled);
the period gate caps daily and monthly usage for everyone. A store error
while checking lets the operation through with a warning.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from app.core.config import Settings, get_settings
from app.core.errors import QuotaExceeded
from app.core.logging import get_logger
from app.models import PlanType
from app.schemas.entities import LimitCheckResult
from app.utils.clock import next_day, next_month, start_of_day, start_of_month, utcnow

logger = get_logger("quota_gate")

UNLIMITED = -1


@dataclass(slots=True)
class PlanLimits:
    max_projects: int
    max_analyses_total: int
    max_opinions_per_project: int


@dataclass(slots=True)
class PeriodLimits:
    daily: int
    monthly: int


class QuotaGate:
    def __init__(
        self,
        primary,
        *,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._primary = primary
        self._settings = settings or get_settings()
        self._clock = clock

    # ── Plan resolution ──

    def plan_limits(self, plan: str | None) -> PlanLimits:
        s = self._settings
        if plan == PlanType.TRIAL.value:
            return PlanLimits(s.trial_plan_max_projects, s.trial_plan_max_analyses_total, s.trial_plan_max_opinions_per_project)
        if plan in (PlanType.FREE.value, PlanType.CANCELLED.value, PlanType.EXPIRED.value):
            return PlanLimits(s.free_plan_max_projects, s.free_plan_max_analyses_total, s.free_plan_max_opinions_per_project)
        return PlanLimits(s.pro_plan_max_projects, s.pro_plan_max_analyses_total, s.pro_plan_max_opinions_per_project)

    def is_trial_expired(self, user) -> bool:
        end = user.trial_end_date
        if end is None:
            end = (user.created_at or self._clock()) + timedelta(days=self._settings.trial_duration_days)
        return self._clock() > end

    def is_active_trial(self, user) -> bool:
        return user.plan == PlanType.TRIAL.value and not self.is_trial_expired(user)

    def effective_plan(self, user) -> str:
        if user.plan == PlanType.TRIAL.value and self.is_trial_expired(user):
            return PlanType.EXPIRED.value
        return user.plan or PlanType.FREE.value

    def is_subject_to_plan_limits(self, user) -> bool:
        if user.created_at and user.created_at < self._settings.freemium_launch_date:
            return False
        return self.effective_plan(user) in (
            PlanType.FREE.value,
            PlanType.EXPIRED.value,
            PlanType.CANCELLED.value,
        )

    def period_limits(self, user) -> PeriodLimits:
        s = self._settings
        if user is not None and self.is_active_trial(user):
            return PeriodLimits(s.trial_analysis_limit_total_daily, s.trial_analysis_limit_total_monthly)
        return PeriodLimits(s.analysis_limit_total_daily, s.analysis_limit_total_monthly)

    # ── Analysis limits ──

    async def check_limit(self, user_id: str, project_id: str) -> LimitCheckResult:
        now = self._clock()
        try:
            user = await self._primary.get_user(user_id)
            if user is not None and self.is_subject_to_plan_limits(user):
                limits = self.plan_limits(self.effective_plan(user))
                if limits.max_analyses_total != UNLIMITED:
                    total = await self._primary.count_usage(user_id)
                    if total >= limits.max_analyses_total:
                        return self._denied(
                            user_id,
                            project_id,
                            LimitCheckResult(
                                allowed=False,
                                message="The free plan includes a single analysis. Start a trial to continue.",
                                remaining={"daily": 0, "monthly": 0},
                                reset_date={"daily": now, "monthly": now},
                                current_usage=total,
                                limit=limits.max_analyses_total,
                                plan=self.effective_plan(user),
                            ),
                            limit_kind="plan_total",
                        )

            period = self.period_limits(user)
            daily_usage = await self._primary.count_usage(user_id, since=start_of_day(now))
            monthly_usage = await self._primary.count_usage(user_id, since=start_of_month(now))
        except Exception as exc:  # noqa: BLE001
            logger.warning("quota_check_failed", user_id=user_id, project_id=project_id, error=str(exc))
            fallback = self.period_limits(None)
            return LimitCheckResult(
                allowed=True,
                remaining={"daily": fallback.daily, "monthly": fallback.monthly},
                reset_date={"daily": now, "monthly": now},
            )

        remaining = {
            "daily": max(0, period.daily - daily_usage),
            "monthly": max(0, period.monthly - monthly_usage),
        }
        reset_date = {"daily": next_day(now), "monthly": next_month(now)}
        plan = self.effective_plan(user) if user is not None else None
        if remaining["daily"] <= 0:
            return self._denied(
                user_id,
                project_id,
                LimitCheckResult(
                    allowed=False,
                    message=f"Daily analysis limit ({period.daily}) reached",
                    remaining=remaining,
                    reset_date=reset_date,
                    current_usage=daily_usage,
                    limit=period.daily,
                    plan=plan,
                ),
                limit_kind="daily",
            )
        if remaining["monthly"] <= 0:
            return self._denied(
                user_id,
                project_id,
                LimitCheckResult(
                    allowed=False,
                    message=f"Monthly analysis limit ({period.monthly}) reached",
                    remaining=remaining,
                    reset_date=reset_date,
                    current_usage=monthly_usage,
                    limit=period.monthly,
                    plan=plan,
                ),
                limit_kind="monthly",
            )
        return LimitCheckResult(allowed=True, remaining=remaining, reset_date=reset_date, plan=plan)

    def _denied(self, user_id: str, project_id: str | None, result: LimitCheckResult, *, limit_kind: str) -> LimitCheckResult:
        logger.info(
            "quota_denied",
            user_id=user_id,
            project_id=project_id,
            limit_kind=limit_kind,
            current_usage=result.current_usage,
            limit=result.limit,
        )
        result.limit_kind = limit_kind
        return result

    async def require_analysis_allowed(self, user_id: str, project_id: str) -> LimitCheckResult:
        result = await self.check_limit(user_id, project_id)
        if not result.allowed:
            raise self._exceeded(result, project_id=project_id)
        return result

    @staticmethod
    def _exceeded(result: LimitCheckResult, **details) -> QuotaExceeded:
        payload = result.model_dump(mode="json", exclude={"allowed", "message", "limit_kind"}, exclude_none=True)
        payload.update({key: value for key, value in details.items() if value is not None})
        return QuotaExceeded(result.message or "Limit reached", limit_kind=result.limit_kind or "unknown", **payload)

    async def remaining_analyses(self, user_id: str) -> dict:
        now = self._clock()
        user = await self._primary.get_user(user_id)
        period = self.period_limits(user)
        daily_usage = await self._primary.count_usage(user_id, since=start_of_day(now))
        monthly_usage = await self._primary.count_usage(user_id, since=start_of_month(now))
        return {
            "daily": max(0, period.daily - daily_usage),
            "monthly": max(0, period.monthly - monthly_usage),
            "limits": {"daily": period.daily, "monthly": period.monthly},
            "reset_date": {"daily": next_day(now), "monthly": next_month(now)},
        }

    async def record_usage(
        self,
        user_id: str,
        project_id: str,
        opinions_processed: int,
        execution_time_ms: int | None = None,
        analysis_type: str = "incremental",
    ) -> None:
        try:
            await self._primary.add_usage(
                {
                    "user_id": user_id,
                    "project_id": project_id,
                    "analysis_type": analysis_type,
                    "opinions_processed": opinions_processed,
                    "execution_time_ms": execution_time_ms,
                    "executed_at": self._clock(),
                }
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("usage_record_failed", user_id=user_id, project_id=project_id, error=str(exc))

    # ── Write limits ──

    async def check_project_creation_limit(self, user_id: str) -> LimitCheckResult:
        try:
            user = await self._primary.get_user(user_id)
            if user is None or not self.is_subject_to_plan_limits(user):
                return LimitCheckResult(allowed=True)
            limits = self.plan_limits(self.effective_plan(user))
            if limits.max_projects == UNLIMITED:
                return LimitCheckResult(allowed=True)
            current = await self._primary.count_projects(user_id, exclude_archived=True)
        except Exception as exc:  # noqa: BLE001
            logger.warning("quota_check_failed", user_id=user_id, limit_kind="projects", error=str(exc))
            return LimitCheckResult(allowed=True)

        result = LimitCheckResult(
            allowed=current < limits.max_projects,
            current_usage=current,
            limit=limits.max_projects,
            plan=self.effective_plan(user),
        )
        if not result.allowed:
            result.message = f"The free plan allows {limits.max_projects} active project(s). Start a trial to add more."
            return self._denied(user_id, None, result, limit_kind="projects")
        return result

    async def check_opinion_submission_limit(self, project) -> LimitCheckResult:
        try:
            user = await self._primary.get_user(project.owner_id)
            if user is None or not self.is_subject_to_plan_limits(user):
                return LimitCheckResult(allowed=True)
            limits = self.plan_limits(self.effective_plan(user))
            if limits.max_opinions_per_project == UNLIMITED:
                return LimitCheckResult(allowed=True)
            current = await self._primary.count_opinions(project.id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("quota_check_failed", project_id=project.id, limit_kind="opinions", error=str(exc))
            return LimitCheckResult(allowed=True)

        result = LimitCheckResult(
            allowed=current < limits.max_opinions_per_project,
            current_usage=current,
            limit=limits.max_opinions_per_project,
            plan=self.effective_plan(user),
        )
        if not result.allowed:
            result.message = f"Opinion collection limit ({limits.max_opinions_per_project}) reached."
            return self._denied(project.owner_id, project.id, result, limit_kind="opinions")
        return result

    async def require_project_creation_allowed(self, user_id: str) -> None:
        result = await self.check_project_creation_limit(user_id)
        if not result.allowed:
            raise self._exceeded(result, user_id=user_id)

    async def require_opinion_submission_allowed(self, project) -> None:
        result = await self.check_opinion_submission_limit(project)
        if not result.allowed:
            raise self._exceeded(result, project_id=project.id)
