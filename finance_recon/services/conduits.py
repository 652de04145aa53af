"""Conduit organisation deduplication"""
from collections import defaultdict
from typing import List, Optional
from pydantic import Field
from finance_recon.config import settings
from finance_recon.db.ledger import LedgerStore
from finance_recon.models.common import CamelModel
from finance_recon.models.ledger import ContributionRecord
from finance_recon.services.contributions import matches_any
from finance_recon.services.reconciliation import ReconciliationCalculator
from finance_recon.utils.logging import get_logger

logger = get_logger(__name__)


class ConduitBreakdown(CamelModel):
    candidate_id: str
    conduit_donor_count: int = 0
    total_amount_zeroed: float = 0.0


class CleanupReport(CamelModel):
    success: bool = True
    dry_run: bool = False
    cycle: str
    candidate_id: Optional[str] = None
    candidates_affected: int = 0
    conduit_donors_found: int = 0
    conduit_donors_updated: int = 0
    breakdown: List[ConduitBreakdown] = Field(default_factory=list)
    message: Optional[str] = None


def is_conduit_record(record: ContributionRecord, conduits: List[str]) -> bool:
    return record.is_conduit_org or matches_any(record.donor_name, conduits)


class ConduitDeduplicator:
    def __init__(self, ledger: LedgerStore, calculator: ReconciliationCalculator,
                 conduits: Optional[List[str]] = None):
        self.ledger = ledger
        self.calculator = calculator
        self.conduits = [c.upper() for c in conduits] if conduits is not None else settings.conduit_allow_list

    def deduplicate_conduits(self, candidate_id: Optional[str] = None, dry_run: bool = False,
                             cycle: Optional[str] = None) -> CleanupReport:
        """Zero out nonzero conduit rows and refresh affected reconciliations.

        Conduit rows aggregate donations whose individual donors are itemized
        separately, so their amounts would be counted twice. In dry-run mode
        the same report is produced and nothing is written.
        """
        cycle = cycle or settings.default_cycle
        matches = [
            record for record in self.ledger.list_nonzero_contributions(cycle, candidate_id)
            if is_conduit_record(record, self.conduits)
        ]

        grouped = defaultdict(list)
        for record in matches:
            grouped[record.candidate_id].append(record)

        report = CleanupReport(
            dry_run=dry_run,
            cycle=cycle,
            candidate_id=candidate_id,
            candidates_affected=len(grouped),
            conduit_donors_found=len(matches),
            breakdown=[
                ConduitBreakdown(
                    candidate_id=affected,
                    conduit_donor_count=len(records),
                    total_amount_zeroed=round(sum(r.amount for r in records), 2),
                )
                for affected, records in sorted(grouped.items())
            ],
        )

        if dry_run or not matches:
            report.message = (
                f"Dry run: {len(matches)} conduit rows across {len(grouped)} candidates"
                if dry_run else "No conduit rows found"
            )
            logger.info("Conduit scan complete", dry_run=dry_run, found=len(matches),
                        candidates=len(grouped))
            return report

        report.conduit_donors_updated = self.ledger.zero_out_contributions(
            [record.id for record in matches], settings.dedupe_batch_size
        )

        for affected, records in sorted(grouped.items()):
            zeroed = round(sum(r.amount for r in records), 2)
            self.calculator.refresh_from_ledger(
                affected, cycle,
                notes=f"Conduit cleanup zeroed {len(records)} rows totalling ${zeroed:,.2f}",
            )

        report.message = (
            f"Zeroed {report.conduit_donors_updated} conduit rows across {len(grouped)} candidates"
        )
        logger.info("Conduit cleanup complete", found=len(matches),
                    updated=report.conduit_donors_updated, candidates=len(grouped))
        return report
