"""CLI entry point"""
import click
import asyncio
import json
from finance_recon.config import settings
from finance_recon.db.client import db
from finance_recon.db.ledger import LedgerStore
from finance_recon.db.migrate import run_migrations
from finance_recon.integrations.fec_client import FECClient
from finance_recon.services.batch import BatchOptions, BatchScheduler
from finance_recon.services.committees import CommitteeLinker
from finance_recon.services.conduits import ConduitDeduplicator
from finance_recon.services.contributions import ContributionSync
from finance_recon.services.pipeline import refresh_candidate
from finance_recon.services.reconciliation import ReconciliationCalculator
from finance_recon.utils.logging import setup_logging

setup_logging()


def _echo(model):
    click.echo(json.dumps(model.model_dump(mode="json", by_alias=True), indent=2))


@click.group()
def cli():
    """Campaign finance reconciliation CLI"""
    pass


@cli.command()
def migrate():
    """Apply schema.sql to DATABASE_URL"""
    asyncio.run(run_migrations())


@cli.command("link-committees")
@click.argument("candidate_id")
@click.option("--fec-id", help="Link only this FEC candidate id")
def link_committees(candidate_id, fec_id):
    """Discover principal and authorized committees"""
    asyncio.run(_link(candidate_id, fec_id))


@cli.command("sync-candidate")
@click.argument("candidate_id")
@click.option("--cycle", default=settings.default_cycle, show_default=True)
@click.option("--page-budget", type=int, help="Maximum pages per committee this run")
@click.option("--force-full", is_flag=True, help="Restart every committee from the first page")
def sync_candidate(candidate_id, cycle, page_budget, force_full):
    """Import itemized receipts for a candidate's active committees"""
    asyncio.run(_sync(candidate_id, cycle, page_budget, force_full))


@cli.command("dedupe-conduits")
@click.option("--candidate-id", help="Limit to one candidate")
@click.option("--cycle", default=settings.default_cycle, show_default=True)
@click.option("--dry-run", is_flag=True, help="Report matches without updating")
def dedupe_conduits(candidate_id, cycle, dry_run):
    """Zero out conduit organisation rows"""
    asyncio.run(_dedupe(candidate_id, cycle, dry_run))


@cli.command()
@click.argument("candidate_id")
@click.option("--cycle", default=settings.default_cycle, show_default=True)
def reconcile(candidate_id, cycle):
    """Reconcile one candidate against FEC totals"""
    asyncio.run(_reconcile(candidate_id, cycle))


@cli.command("run-batch")
@click.option("--candidate-id", help="Reconcile only this candidate")
@click.option("--cycle", default=settings.default_cycle, show_default=True)
@click.option("--limit", type=int, default=settings.batch_limit, show_default=True)
@click.option("--only-stale/--all", default=True, show_default=True)
@click.option("--only-with-data/--include-unsynced", default=True, show_default=True)
@click.option("--variance-threshold", type=float, default=settings.variance_warning_pct, show_default=True)
def run_batch(candidate_id, cycle, limit, only_stale, only_with_data, variance_threshold):
    """Run batch reconciliation"""
    options = BatchOptions(
        candidate_id=candidate_id,
        cycle=cycle,
        limit=limit,
        only_stale=only_stale,
        only_with_data=only_with_data,
        variance_threshold=variance_threshold,
    )
    asyncio.run(_run_batch(options))


@cli.command("refresh-candidate")
@click.argument("candidate_id")
@click.option("--cycle", default=settings.default_cycle, show_default=True)
@click.option("--page-budget", type=int)
def refresh(candidate_id, cycle, page_budget):
    """Link, sync, dedupe and reconcile one candidate"""
    asyncio.run(_refresh(candidate_id, cycle, page_budget))


async def _link(candidate_id, fec_id):
    async with FECClient() as client:
        result = await CommitteeLinker(LedgerStore(db.supabase), client).link_committees(candidate_id, fec_id)
    _echo(result)


async def _sync(candidate_id, cycle, page_budget, force_full):
    async with FECClient() as client:
        result = await ContributionSync(LedgerStore(db.supabase), client).sync_candidate(
            candidate_id, cycle, page_budget=page_budget, force_full=force_full
        )
    _echo(result)


async def _dedupe(candidate_id, cycle, dry_run):
    ledger = LedgerStore(db.supabase)
    async with FECClient() as client:
        report = ConduitDeduplicator(ledger, ReconciliationCalculator(ledger, client)).deduplicate_conduits(
            candidate_id, dry_run=dry_run, cycle=cycle
        )
    _echo(report)


async def _reconcile(candidate_id, cycle):
    async with FECClient() as client:
        outcome = await ReconciliationCalculator(LedgerStore(db.supabase), client).reconcile(candidate_id, cycle)
    _echo(outcome)


async def _run_batch(options):
    ledger = LedgerStore(db.supabase)
    async with FECClient() as client:
        report = await BatchScheduler(ledger, ReconciliationCalculator(ledger, client)).run_batch(options)
    _echo(report)


async def _refresh(candidate_id, cycle, page_budget):
    async with FECClient() as client:
        result = await refresh_candidate(LedgerStore(db.supabase), client, candidate_id, cycle, page_budget)
    _echo(result)

if __name__ == "__main__":
    cli()
