"""Ad hoc per-candidate refresh: link, sync, dedupe, reconcile"""
from typing import Optional
from pydantic import BaseModel
from finance_recon.config import settings
from finance_recon.db.ledger import LedgerStore
from finance_recon.integrations.fec_client import FECClient
from finance_recon.services.committees import CommitteeLinker, LinkResult
from finance_recon.services.conduits import CleanupReport, ConduitDeduplicator
from finance_recon.services.contributions import CandidateSyncResult, ContributionSync
from finance_recon.services.reconciliation import ReconcileOutcome, ReconciliationCalculator
from finance_recon.utils.logging import get_logger

logger = get_logger(__name__)


class RefreshResult(BaseModel):
    candidate_id: str
    cycle: str
    link: LinkResult
    sync: CandidateSyncResult
    cleanup: CleanupReport
    reconcile: ReconcileOutcome


async def refresh_candidate(ledger: LedgerStore, client: FECClient, candidate_id: str,
                            cycle: Optional[str] = None, page_budget: Optional[int] = None) -> RefreshResult:
    cycle = cycle or settings.default_cycle
    calculator = ReconciliationCalculator(ledger, client)

    link = await CommitteeLinker(ledger, client).link_committees(candidate_id)
    sync = await ContributionSync(ledger, client).sync_candidate(candidate_id, cycle, page_budget)
    cleanup = ConduitDeduplicator(ledger, calculator).deduplicate_conduits(candidate_id, cycle=cycle)
    outcome = await calculator.reconcile(candidate_id, cycle)

    logger.info("Refreshed candidate", candidate_id=candidate_id, cycle=cycle,
                committees=len(link.committees), imported=sync.imported,
                conduits_zeroed=cleanup.conduit_donors_updated, status=outcome.status)
    return RefreshResult(candidate_id=candidate_id, cycle=cycle, link=link, sync=sync,
                         cleanup=cleanup, reconcile=outcome)
