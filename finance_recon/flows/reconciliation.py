"""Prefect flows for scheduled reconciliation and conduit cleanup"""
from typing import Any, Dict, Optional
from prefect import flow, get_run_logger, task
from finance_recon.config import settings
from finance_recon.db.client import db
from finance_recon.db.ledger import LedgerStore
from finance_recon.integrations.fec_client import FECClient
from finance_recon.services.batch import BatchOptions, BatchScheduler
from finance_recon.services.conduits import ConduitDeduplicator
from finance_recon.services.reconciliation import ReconciliationCalculator

# Each task is one full pass; retries happen at the next scheduled run
RECON_TASK_TIMEOUT = 3600


@task(name="conduit-cleanup", timeout_seconds=RECON_TASK_TIMEOUT)
async def cleanup_task(cycle: str, dry_run: bool) -> Dict[str, Any]:
    ledger = LedgerStore(db.supabase)
    async with FECClient() as client:
        report = ConduitDeduplicator(ledger, ReconciliationCalculator(ledger, client)).deduplicate_conduits(
            dry_run=dry_run, cycle=cycle
        )
    return report.model_dump(mode="json", by_alias=True)


@task(name="batch-reconciliation", timeout_seconds=RECON_TASK_TIMEOUT)
async def batch_task(options: BatchOptions) -> Dict[str, Any]:
    ledger = LedgerStore(db.supabase)
    async with FECClient() as client:
        report = await BatchScheduler(ledger, ReconciliationCalculator(ledger, client)).run_batch(options)
    return report.model_dump(mode="json", by_alias=True)


@flow(
    name="nightly-finance-reconciliation",
    description="Reconcile the stalest candidates against FEC committee totals",
    log_prints=True,
)
async def nightly_reconciliation_flow(
    cycle: Optional[str] = None,
    limit: Optional[int] = None,
    only_stale: bool = True,
    only_with_data: bool = True,
    variance_threshold: Optional[float] = None,
) -> Dict[str, Any]:
    logger = get_run_logger()
    options = BatchOptions(
        cycle=cycle or settings.default_cycle,
        limit=limit or settings.batch_limit,
        only_stale=only_stale,
        only_with_data=only_with_data,
        variance_threshold=settings.variance_warning_pct if variance_threshold is None else variance_threshold,
    )
    logger.info(f"Starting reconciliation for cycle {options.cycle}, limit {options.limit}")

    report = await batch_task(options)

    logger.info(
        f"Checked {report['checked']}: {report['okCount']} ok, {report['warningCount']} warning, "
        f"{report['errorCount']} error, {report['skippedCount']} skipped"
    )
    return report


@flow(
    name="conduit-cleanup",
    description="Zero out conduit organisation rows and refresh affected reconciliations",
    log_prints=True,
)
async def conduit_cleanup_flow(cycle: Optional[str] = None, dry_run: bool = False) -> Dict[str, Any]:
    logger = get_run_logger()
    cycle = cycle or settings.default_cycle

    report = await cleanup_task(cycle, dry_run)

    logger.info(
        f"Conduit cleanup ({'dry run' if dry_run else 'applied'}): "
        f"{report['conduitDonorsFound']} found, {report['conduitDonorsUpdated']} updated, "
        f"{report['candidatesAffected']} candidates"
    )
    return report
