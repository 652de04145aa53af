"""FastAPI routes for reconciliation, cleanup and committee management"""
from datetime import datetime, timezone
from typing import AsyncIterator, Optional
from fastapi import APIRouter, Depends, HTTPException
from finance_recon.config import settings
from finance_recon.db.client import db
from finance_recon.db.ledger import LedgerStore
from finance_recon.exceptions import LedgerStoreError
from finance_recon.integrations.fec_client import FECClient
from finance_recon.models.common import CamelModel, MatchMethod
from finance_recon.services.batch import BatchOptions, BatchReport, BatchScheduler
from finance_recon.services.committees import (
    CommitteeLinker,
    add_external_id,
    remove_external_id,
    set_committee_active,
    set_primary_external_id,
)
from finance_recon.services.conduits import CleanupReport, ConduitDeduplicator
from finance_recon.services.contributions import ContributionSync
from finance_recon.services.reconciliation import ReconciliationCalculator
from finance_recon.services.status import FinanceStatus, finance_badge

router = APIRouter()


def get_ledger() -> LedgerStore:
    return LedgerStore(db.supabase)


async def get_fec_client() -> AsyncIterator[FECClient]:
    client = FECClient()
    try:
        yield client
    finally:
        await client.aclose()


class CleanupOptions(CamelModel):
    candidate_id: Optional[str] = None
    dry_run: bool = False
    cycle: Optional[str] = None


class LinkRequest(CamelModel):
    fec_candidate_id: Optional[str] = None


class SyncRequest(CamelModel):
    cycle: Optional[str] = None
    page_budget: Optional[int] = None
    force_full: bool = False


class CommitteeUpdate(CamelModel):
    active: bool


class ExternalIdRequest(CamelModel):
    fec_candidate_id: str
    office: Optional[str] = None
    state: Optional[str] = None
    district: Optional[str] = None
    cycle: Optional[str] = None
    is_primary: bool = False
    match_method: MatchMethod = MatchMethod.MANUAL
    match_score: Optional[float] = None


@router.get("/healthz")
async def health_check(ledger: LedgerStore = Depends(get_ledger)):
    """Health check endpoint"""
    try:
        candidate_count = ledger.count_candidates()
        db_status = "connected"
    except LedgerStoreError as e:
        candidate_count = 0
        db_status = f"error: {e}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": {
            "status": db_status,
            "candidate_count": candidate_count
        },
        "fec_api_key_configured": bool(settings.fec_api_key),
    }


@router.post("/reconciliation/batch", response_model=BatchReport)
async def run_batch(
    options: Optional[BatchOptions] = None,
    ledger: LedgerStore = Depends(get_ledger),
    client: FECClient = Depends(get_fec_client),
):
    """Reconcile a single candidate or a filtered, oldest-synced-first set"""
    scheduler = BatchScheduler(ledger, ReconciliationCalculator(ledger, client))
    return await scheduler.run_batch(options or BatchOptions())


@router.post("/reconciliation/cleanup", response_model=CleanupReport)
async def cleanup_conduits(
    options: Optional[CleanupOptions] = None,
    ledger: LedgerStore = Depends(get_ledger),
    client: FECClient = Depends(get_fec_client),
):
    """Zero out conduit organisation rows (or report them, with dryRun)"""
    options = options or CleanupOptions()
    deduplicator = ConduitDeduplicator(ledger, ReconciliationCalculator(ledger, client))
    return deduplicator.deduplicate_conduits(options.candidate_id, options.dry_run, options.cycle)


@router.post("/candidates/{candidate_id}/reconcile")
async def reconcile_candidate(
    candidate_id: str,
    cycle: Optional[str] = None,
    ledger: LedgerStore = Depends(get_ledger),
    client: FECClient = Depends(get_fec_client),
):
    outcome = await ReconciliationCalculator(ledger, client).reconcile(
        candidate_id, cycle or settings.default_cycle
    )
    return {
        "success": True,
        "candidateId": candidate_id,
        "cycle": outcome.cycle,
        "status": outcome.status,
        "skipped": outcome.skipped,
        "reason": outcome.reason,
        "committeesChecked": outcome.committees_checked,
        "reconciliation": outcome.reconciliation.model_dump(mode="json") if outcome.reconciliation else None,
    }


@router.get("/candidates/{candidate_id}/finance-status", response_model=FinanceStatus)
async def finance_status(candidate_id: str, cycle: Optional[str] = None,
                         ledger: LedgerStore = Depends(get_ledger)):
    cycle = cycle or settings.default_cycle
    return finance_badge(
        candidate_id,
        cycle,
        ledger.get_reconciliation(candidate_id, cycle),
        ledger.list_committees(candidate_id),
    )


@router.post("/candidates/{candidate_id}/committees/link")
async def link_committees(
    candidate_id: str,
    request: Optional[LinkRequest] = None,
    ledger: LedgerStore = Depends(get_ledger),
    client: FECClient = Depends(get_fec_client),
):
    fec_candidate_id = request.fec_candidate_id if request else None
    result = await CommitteeLinker(ledger, client).link_committees(candidate_id, fec_candidate_id)
    return {
        "success": True,
        "candidateId": candidate_id,
        "primaryCommitteeId": result.primary_committee_id,
        "fecIdsProcessed": result.fec_ids_processed,
        "committees": [c.model_dump() for c in result.committees],
    }


@router.post("/candidates/{candidate_id}/sync")
async def sync_candidate(
    candidate_id: str,
    request: Optional[SyncRequest] = None,
    ledger: LedgerStore = Depends(get_ledger),
    client: FECClient = Depends(get_fec_client),
):
    request = request or SyncRequest()
    result = await ContributionSync(ledger, client).sync_candidate(
        candidate_id,
        request.cycle or settings.default_cycle,
        page_budget=request.page_budget,
        force_full=request.force_full,
    )
    return {
        "success": True,
        "candidateId": candidate_id,
        "imported": result.imported,
        "hasMore": result.has_more,
        "committeesSynced": result.committees_synced,
        "committeesRemaining": result.committees_remaining,
    }


@router.patch("/committees/{committee_id}")
async def update_committee(committee_id: str, update: CommitteeUpdate,
                           ledger: LedgerStore = Depends(get_ledger)):
    committee = set_committee_active(ledger, committee_id, update.active)
    if committee is None:
        raise HTTPException(status_code=404, detail=f"Committee {committee_id} not found")
    return committee.model_dump(mode="json")


@router.get("/candidates/{candidate_id}/fec-ids")
async def list_fec_ids(candidate_id: str, ledger: LedgerStore = Depends(get_ledger)):
    return [record.model_dump(mode="json") for record in ledger.list_external_ids(candidate_id)]


@router.post("/candidates/{candidate_id}/fec-ids", status_code=201)
async def create_fec_id(candidate_id: str, request: ExternalIdRequest,
                        ledger: LedgerStore = Depends(get_ledger)):
    record = add_external_id(
        ledger,
        candidate_id,
        request.fec_candidate_id,
        office=request.office,
        state=request.state,
        district=request.district,
        cycle=request.cycle,
        is_primary=request.is_primary,
        match_method=request.match_method,
        match_score=request.match_score,
    )
    return record.model_dump(mode="json")


@router.post("/candidates/{candidate_id}/fec-ids/{external_id}/primary")
async def make_fec_id_primary(candidate_id: str, external_id: str,
                              ledger: LedgerStore = Depends(get_ledger)):
    record = ledger.get_external_id(external_id)
    if record is None or record.candidate_id != candidate_id:
        raise HTTPException(status_code=404, detail=f"FEC id {external_id} not found")
    return set_primary_external_id(ledger, external_id).model_dump(mode="json")


@router.delete("/candidates/{candidate_id}/fec-ids/{external_id}")
async def delete_fec_id(candidate_id: str, external_id: str,
                        ledger: LedgerStore = Depends(get_ledger)):
    record = ledger.get_external_id(external_id)
    if record is None or record.candidate_id != candidate_id:
        raise HTTPException(status_code=404, detail=f"FEC id {external_id} not found")
    remove_external_id(ledger, external_id)
    return {"success": True, "deleted": external_id}
