"""
Production wiring. Every service takes its collaborators in ``__init__``;
this module builds the default graph once per process.
"""

from __future__ import annotations

from dataclasses import dataclass

from app.repositories.primary_store import SqlPrimaryStore
from app.repositories.replica_store import RedisReplicaStore
from app.services.analysis_runner import AnalysisEngine, AnalysisRunner
from app.services.archive_guard import ArchiveGuard
from app.services.bulk_ingestion_service import BulkIngestionPipeline
from app.services.derived_count_service import DerivedCountService
from app.services.protection_classifier import ProtectionClassifier
from app.services.quota_gate import QuotaGate
from app.services.realtime_notifier import RealtimeNotifier
from app.services.reconciliation_service import ReconciliationService
from app.services.sentiment_service import SentimentProvider, SentimentService
from app.services.sync_coordinator import SyncCoordinator


@dataclass
class ServiceRegistry:
    primary: SqlPrimaryStore
    replica: RedisReplicaStore
    notifier: RealtimeNotifier
    archive_guard: ArchiveGuard
    derived_counts: DerivedCountService
    protection: ProtectionClassifier
    quota_gate: QuotaGate
    sentiment: SentimentService
    sync_coordinator: SyncCoordinator
    bulk_ingestion: BulkIngestionPipeline
    reconciliation: ReconciliationService

    def analysis_runner(self, engine: AnalysisEngine) -> AnalysisRunner:
        return AnalysisRunner(
            self.primary,
            self.sync_coordinator,
            self.quota_gate,
            self.protection,
            engine,
            archive_guard=self.archive_guard,
            notifier=self.notifier,
        )

    async def close(self) -> None:
        await self.replica.close()
        await self.notifier.close()


def build_registry(
    primary=None,
    replica=None,
    notifier=None,
    *,
    sentiment_provider: SentimentProvider | None = None,
) -> ServiceRegistry:
    primary = primary or SqlPrimaryStore()
    replica = replica or RedisReplicaStore()
    notifier = notifier or RealtimeNotifier()

    archive_guard = ArchiveGuard(primary)
    protection = ProtectionClassifier(primary)
    quota_gate = QuotaGate(primary)
    sentiment = SentimentService(sentiment_provider)
    coordinator = SyncCoordinator(
        primary,
        replica,
        archive_guard=archive_guard,
        quota_gate=quota_gate,
        notifier=notifier,
        sentiment=sentiment,
        protection=protection,
    )
    return ServiceRegistry(
        primary=primary,
        replica=replica,
        notifier=notifier,
        archive_guard=archive_guard,
        derived_counts=DerivedCountService(primary),
        protection=protection,
        quota_gate=quota_gate,
        sentiment=sentiment,
        sync_coordinator=coordinator,
        bulk_ingestion=BulkIngestionPipeline(
            primary,
            replica,
            coordinator,
            archive_guard=archive_guard,
            quota_gate=quota_gate,
            notifier=notifier,
        ),
        reconciliation=ReconciliationService(primary, replica),
    )


_registry: ServiceRegistry | None = None


def get_registry() -> ServiceRegistry:
    global _registry
    if _registry is None:
        _registry = build_registry()
    return _registry


def reset_registry() -> None:
    global _registry
    _registry = None
