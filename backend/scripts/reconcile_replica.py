"""
Rewrite a project's replica documents from the primary store.

Usage:
    python backend/scripts/reconcile_replica.py <project-id> [--dry-run] [--clear-operation OPERATION_ID]
"""

import argparse
import asyncio

from app.core.logging import setup_logging
from app.repositories.primary_store import SqlPrimaryStore
from app.repositories.replica_store import RedisReplicaStore
from app.services.reconciliation_service import ReconciliationService


async def run(project_id: str, *, dry_run: bool, clear_operation: str | None) -> None:
    replica = RedisReplicaStore()
    service = ReconciliationService(SqlPrimaryStore(), replica)
    try:
        report = await service.reconcile(project_id, dry_run=dry_run)
        print(
            f"project={report.project_id} missing={len(report.missing)} stale={len(report.stale)} "
            f"orphaned={len(report.orphaned)} applied={report.applied}"
        )
        if clear_operation and (report.applied or report.in_sync) and not dry_run:
            cleared = await service.clear_operation(clear_operation)
            print(f"operation {clear_operation} cleared={cleared}")
    finally:
        await replica.close()


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("project_id")
    parser.add_argument("--dry-run", action="store_true")
    parser.add_argument("--clear-operation", default=None)
    args = parser.parse_args()
    setup_logging()
    asyncio.run(run(args.project_id, dry_run=args.dry_run, clear_operation=args.clear_operation))


if __name__ == "__main__":
    main()
