"""Resumable Schedule A ingestion into the contribution ledger"""
from typing import Iterable, List, Optional
from pydantic import BaseModel, Field
from finance_recon.config import settings
from finance_recon.db.ledger import LedgerStore, utcnow
from finance_recon.exceptions import FinanceAPITransportError
from finance_recon.integrations.fec_client import FECClient
from finance_recon.models.common import DonorType
from finance_recon.models.ledger import Committee, ContributionRecord, ItemizedContribution
from finance_recon.utils.logging import get_logger

logger = get_logger(__name__)

LINE_DONOR_TYPES = {
    "11AI": DonorType.INDIVIDUAL,
    "11B": DonorType.PARTY,
    "11C": DonorType.PAC,
}

ENTITY_DONOR_TYPES = {
    "IND": DonorType.INDIVIDUAL,
    "PAC": DonorType.PAC,
    "COM": DonorType.PAC,
    "PTY": DonorType.PARTY,
    "ORG": DonorType.ORGANIZATION,
    "CCM": DonorType.ORGANIZATION,
    "CAN": DonorType.ORGANIZATION,
}

TRANSFER_RECEIPT_TYPES = {"18G"}


def classify_donor(entity_type: Optional[str], line_number: Optional[str]) -> DonorType:
    line = (line_number or "").upper()
    if line in LINE_DONOR_TYPES:
        return LINE_DONOR_TYPES[line]
    return ENTITY_DONOR_TYPES.get((entity_type or "").upper(), DonorType.UNKNOWN)


def matches_any(text: Optional[str], patterns: Iterable[str]) -> bool:
    """Case-insensitive substring match against any pattern"""
    if not text:
        return False
    upper = text.upper()
    return any(pattern in upper for pattern in patterns)


def to_record(
    item: ItemizedContribution,
    committee: Committee,
    cycle: str,
    conduits: List[str],
    earmark_patterns: List[str],
) -> ContributionRecord:
    line = (item.line_number or "").upper()
    is_transfer = line.startswith("12") or (item.receipt_type or "").upper() in TRANSFER_RECEIPT_TYPES
    return ContributionRecord(
        fec_record_id=item.fec_record_id,
        candidate_id=committee.candidate_id,
        committee_id=committee.id,
        cycle=cycle,
        amount=round(item.amount, 2),
        donor_name=item.donor_name,
        donor_type=classify_donor(item.entity_type, item.line_number),
        is_contribution=not is_transfer and (line.startswith("11") or not line),
        is_transfer=is_transfer,
        is_conduit_org=matches_any(item.donor_name, conduits),
        is_earmarked=matches_any(item.memo_text, earmark_patterns),
        memo_text=item.memo_text,
        line_number=item.line_number,
        receipt_date=item.receipt_date,
    )


class SyncResult(BaseModel):
    committee_id: str
    fec_committee_id: str
    imported: int = 0
    pages: int = 0
    has_more: bool = False
    next_cursor: Optional[str] = None
    failed: bool = False


class CandidateSyncResult(BaseModel):
    candidate_id: str
    imported: int = 0
    committees_synced: int = 0
    committees_remaining: int = 0
    has_more: bool = False
    committees: List[SyncResult] = Field(default_factory=list)


class ContributionSync:
    def __init__(
        self,
        ledger: LedgerStore,
        client: FECClient,
        conduits: Optional[List[str]] = None,
        earmark_patterns: Optional[List[str]] = None,
    ):
        self.ledger = ledger
        self.client = client
        self.conduits = [c.upper() for c in conduits] if conduits is not None else settings.conduit_allow_list
        self.earmark_patterns = (
            [p.upper() for p in earmark_patterns] if earmark_patterns is not None else settings.earmark_patterns
        )

    async def sync_committee(
        self,
        committee: Committee,
        cycle: str,
        page_budget: Optional[int] = None,
        force_full: bool = False,
    ) -> SyncResult:
        """Import pages from the committee's stored cursor until done or out of budget.

        The cursor and ``has_more`` flag are written after every imported
        page, so an interrupted run resumes from the last page that made it
        into the ledger. Records dedupe on their FEC record id.
        """
        committee = self.ledger.get_committee(committee.id) or committee
        budget = page_budget or settings.sync_page_budget
        cursor = None if force_full else committee.last_index
        local_total = committee.local_itemized_total or 0.0

        self.ledger.update_committee(committee.id, {
            "last_sync_started_at": utcnow().isoformat(),
            "last_index": cursor,
            "has_more": True,
        })
        result = SyncResult(
            committee_id=committee.id,
            fec_committee_id=committee.fec_committee_id,
            has_more=True,
            next_cursor=cursor,
        )
        logger.info("Starting committee sync", committee_id=committee.id,
                    fec_committee_id=committee.fec_committee_id, resume=cursor is not None)

        while result.pages < budget:
            try:
                page = await self.client.fetch_itemized_contributions_page(
                    committee.fec_committee_id, cycle, cursor
                )
            except FinanceAPITransportError as e:
                logger.error("Page fetch failed", committee_id=committee.id, error=str(e))
                page = None
            if page is None:
                result.failed = True
                break

            records = [
                to_record(item, committee, cycle, self.conduits, self.earmark_patterns)
                for item in page.records
            ]
            inserted = self.ledger.insert_contributions(records)
            local_total += sum(r.amount for r in inserted if r.is_contribution and not r.is_conduit_org)

            cursor = page.next_cursor
            values = {
                "last_index": cursor,
                "has_more": page.has_more,
                "local_itemized_total": round(local_total, 2),
            }
            if not page.has_more:
                values["last_sync_completed_at"] = utcnow().isoformat()
            self.ledger.update_committee(committee.id, values)

            result.pages += 1
            result.imported += len(inserted)
            result.has_more = page.has_more
            result.next_cursor = cursor
            if not page.has_more:
                break

        if not result.has_more:
            await self._cache_external_itemized(committee, cycle)

        logger.info("Committee sync finished", committee_id=committee.id, imported=result.imported,
                    pages=result.pages, has_more=result.has_more, failed=result.failed)
        return result

    async def sync_committee_fully(self, committee: Committee, cycle: str, max_rounds: int = 50) -> SyncResult:
        """Apply sync_committee until the committee reports no more pages"""
        total = None
        for _ in range(max_rounds):
            result = await self.sync_committee(committee, cycle)
            if total is None:
                total = result
            else:
                total = result.model_copy(update={
                    "imported": total.imported + result.imported,
                    "pages": total.pages + result.pages,
                })
            if not result.has_more or result.failed:
                break
        return total

    async def sync_candidate(self, candidate_id: str, cycle: str, page_budget: Optional[int] = None,
                             force_full: bool = False) -> CandidateSyncResult:
        """Sync every active committee of a candidate and stamp last_donor_sync"""
        summary = CandidateSyncResult(candidate_id=candidate_id)
        for committee in self.ledger.list_committees(candidate_id, active_only=True):
            result = await self.sync_committee(committee, cycle, page_budget=page_budget, force_full=force_full)
            summary.committees.append(result)
            summary.imported += result.imported
            if result.has_more:
                summary.committees_remaining += 1
            else:
                summary.committees_synced += 1

        summary.has_more = summary.committees_remaining > 0
        self.ledger.update_candidate(candidate_id, {"last_donor_sync": utcnow().isoformat()})
        return summary

    async def _cache_external_itemized(self, committee: Committee, cycle: str):
        try:
            totals = await self.client.fetch_committee_totals(committee.fec_committee_id, cycle)
        except FinanceAPITransportError as e:
            logger.warning("Could not refresh external itemized total", committee_id=committee.id, error=str(e))
            return
        if totals is not None:
            self.ledger.update_committee(committee.id, {"fec_itemized_total": totals.itemized})
