"""Batch reconciliation scheduler"""
import asyncio
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from uuid import uuid4
from pydantic import BaseModel, Field
from finance_recon.config import settings
from finance_recon.db.ledger import LedgerStore, utcnow
from finance_recon.exceptions import LedgerStoreError
from finance_recon.models.common import CamelModel
from finance_recon.models.ledger import CandidateRef
from finance_recon.services.reconciliation import ReconciliationCalculator
from finance_recon.utils.logging import get_logger

logger = get_logger(__name__)

SKIPPED = "skipped"


class BatchOptions(CamelModel):
    candidate_id: Optional[str] = None
    cycle: str = Field(default_factory=lambda: settings.default_cycle)
    limit: int = Field(default_factory=lambda: settings.batch_limit, ge=1)
    only_stale: bool = True
    only_with_data: bool = True
    variance_threshold: float = Field(default_factory=lambda: settings.variance_warning_pct, ge=0)


class BatchDetail(CamelModel):
    candidate_id: str
    name: Optional[str] = None
    status: str
    delta_pct: Optional[float] = None
    individual_delta_pct: Optional[float] = None
    pac_delta_pct: Optional[float] = None
    error: Optional[str] = None


class BatchReport(CamelModel):
    success: bool = True
    checked: int = 0
    ok_count: int = 0
    warning_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    cancelled: bool = False
    details: List[BatchDetail] = Field(default_factory=list)
    message: Optional[str] = None


class BatchJobState(BaseModel):
    """Attempt bookkeeping for one batch job, safe to persist between runs"""
    job_id: str = Field(default_factory=lambda: str(uuid4()))
    attempts: Dict[str, int] = Field(default_factory=dict)
    completed: List[str] = Field(default_factory=list)
    cancelled: bool = False
    max_attempts: int = Field(default_factory=lambda: settings.batch_max_attempts)

    def is_completed(self, candidate_id: str) -> bool:
        return candidate_id in self.completed

    def attempts_exhausted(self, candidate_id: str) -> bool:
        return self.attempts.get(candidate_id, 0) >= self.max_attempts

    def record_attempt(self, candidate_id: str):
        self.attempts[candidate_id] = self.attempts.get(candidate_id, 0) + 1

    def mark_completed(self, candidate_id: str):
        if candidate_id not in self.completed:
            self.completed.append(candidate_id)


def is_stale(candidate: CandidateRef, checked_at: Optional[datetime], stale_before: datetime) -> bool:
    """A candidate is stale until a reconciliation or a skipped attempt falls inside the window"""
    recent = [t for t in (checked_at, candidate.last_finance_check) if t is not None]
    return not recent or max(recent) < stale_before


class BatchScheduler:
    PAGE_SIZE = 100

    def __init__(self, ledger: LedgerStore, calculator: ReconciliationCalculator):
        self.ledger = ledger
        self.calculator = calculator

    def select_candidates(self, options: BatchOptions) -> List[CandidateRef]:
        """Candidates for this run, oldest-synced first, at most ``options.limit``"""
        if options.candidate_id:
            candidate = self.ledger.get_candidate(options.candidate_id)
            return [candidate] if candidate else []

        stale_before = utcnow() - timedelta(days=settings.stale_after_days)
        selected = []
        offset = 0
        while len(selected) < options.limit:
            page = self.ledger.list_batch_candidates(offset, self.PAGE_SIZE, options.only_with_data)
            if not page:
                break
            eligible = page
            if options.only_stale:
                checked = self.ledger.last_checked(options.cycle, [c.id for c in page])
                eligible = [c for c in page if is_stale(c, checked.get(c.id), stale_before)]
            selected.extend(eligible)
            if len(page) < self.PAGE_SIZE:
                break
            offset += self.PAGE_SIZE
        return selected[:options.limit]

    async def run_batch(
        self,
        options: Optional[BatchOptions] = None,
        state: Optional[BatchJobState] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchReport:
        """Reconcile the selected candidates one at a time.

        A failing candidate is recorded as skipped and the batch moves on;
        only ledger store failures abort the run. Cancellation is honoured
        between candidates, never in the middle of one.
        """
        options = options or BatchOptions()
        state = state or BatchJobState()
        report = BatchReport()

        candidates = self.select_candidates(options)
        logger.info("Starting batch reconciliation", job_id=state.job_id, candidates=len(candidates),
                    cycle=options.cycle, only_stale=options.only_stale, only_with_data=options.only_with_data)

        for candidate in candidates:
            if cancel_event is not None and cancel_event.is_set():
                state.cancelled = True
                report.cancelled = True
                logger.warning("Batch cancelled", job_id=state.job_id, checked=report.checked)
                break
            if state.is_completed(candidate.id):
                continue
            if state.attempts_exhausted(candidate.id):
                report.skipped_count += 1
                report.details.append(BatchDetail(
                    candidate_id=candidate.id, name=candidate.name, status=SKIPPED,
                    error=f"Gave up after {state.max_attempts} attempts",
                ))
                continue

            state.record_attempt(candidate.id)
            try:
                outcome = await self.calculator.reconcile(
                    candidate.id, options.cycle, warning_pct=options.variance_threshold
                )
            except LedgerStoreError:
                raise
            except Exception as e:
                logger.error("Candidate reconciliation failed", job_id=state.job_id,
                             candidate_id=candidate.id, error=str(e))
                report.skipped_count += 1
                report.details.append(BatchDetail(
                    candidate_id=candidate.id, name=candidate.name, status=SKIPPED, error=str(e),
                ))
                continue

            state.mark_completed(candidate.id)
            self.ledger.update_candidate(candidate.id, {"last_finance_check": utcnow().isoformat()})
            detail = BatchDetail(candidate_id=candidate.id, name=candidate.name, status=outcome.status)
            if outcome.reconciliation is not None:
                report.checked += 1
                detail.delta_pct = outcome.reconciliation.delta_pct
                detail.individual_delta_pct = outcome.reconciliation.individual_delta_pct
                detail.pac_delta_pct = outcome.reconciliation.pac_delta_pct
            report.details.append(detail)

            if outcome.status == "ok":
                report.ok_count += 1
            elif outcome.status == "warning":
                report.warning_count += 1
            elif outcome.status == "error":
                report.error_count += 1
            else:
                report.skipped_count += 1

        if options.candidate_id and not candidates:
            report.message = f"Candidate {options.candidate_id} not found"
        else:
            report.message = (
                f"Checked {report.checked} candidates: {report.ok_count} ok, "
                f"{report.warning_count} warning, {report.error_count} error, {report.skipped_count} skipped"
            )
        logger.info("Batch reconciliation finished", job_id=state.job_id, checked=report.checked,
                    ok=report.ok_count, warning=report.warning_count, error=report.error_count,
                    skipped=report.skipped_count, cancelled=report.cancelled)
        return report
