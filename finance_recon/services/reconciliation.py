"""Reconciliation of local ledger sums against FEC-reported committee totals"""
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Tuple
from pydantic import BaseModel
from finance_recon.config import settings
from finance_recon.db.ledger import LedgerStore, utcnow
from finance_recon.exceptions import FinanceAPITransportError
from finance_recon.integrations.fec_client import FECClient
from finance_recon.models.common import DonorType, ReconciliationStatus
from finance_recon.models.ledger import (
    Committee,
    CommitteeTotals,
    ContributionRecord,
    FinanceReconciliation,
    LocalTotals,
)
from finance_recon.utils.logging import get_logger

logger = get_logger(__name__)


class ReconcileOutcome(BaseModel):
    candidate_id: str
    cycle: str
    skipped: bool = False
    reason: Optional[str] = None
    committees_checked: int = 0
    reconciliation: Optional[FinanceReconciliation] = None

    @property
    def status(self) -> str:
        if self.skipped or self.reconciliation is None:
            return "skipped"
        return self.reconciliation.status


def summarize_ledger(records: Iterable[ContributionRecord]) -> LocalTotals:
    """Sum ledger rows into local totals.

    Transfers count only toward ``transfers``. Conduit rows never count as
    itemized. Earmarked rows count toward ``itemized`` and ``earmarked`` but
    are left out of the net figure and of the category sums.
    """
    totals = defaultdict(float)
    count = 0
    for record in records:
        amount = record.amount or 0.0
        if record.is_transfer:
            totals["transfers"] += amount
            continue
        if record.is_earmarked:
            totals["earmarked"] += amount
        if not record.is_contribution or record.is_conduit_org:
            continue
        count += 1
        totals["itemized"] += amount
        if record.is_earmarked:
            continue
        totals["itemized_net"] += amount
        if record.donor_type == DonorType.INDIVIDUAL.value:
            totals["individual_itemized"] += amount
        elif record.donor_type == DonorType.PAC.value:
            totals["pac_contributions"] += amount
        elif record.donor_type == DonorType.PARTY.value:
            totals["party_contributions"] += amount

    return LocalTotals(
        contribution_count=count,
        **{key: round(value, 2) for key, value in totals.items()},
    )


def check_balance(itemized: float, unitemized: float, total_receipts: float,
                  tolerance: Optional[float] = None) -> Tuple[float, bool]:
    """Return (other_receipts, balanced) for the receipts identity.

    ``other_receipts`` is the residual of total receipts. A residual more
    negative than the tolerance means the components exceed the total,
    which is reported as unbalanced.
    """
    tolerance = settings.balance_tolerance if tolerance is None else tolerance
    other = round(total_receipts - itemized - unitemized, 2)
    balanced = abs(itemized + unitemized + other - total_receipts) <= tolerance and other >= -tolerance
    return other, balanced


def compute_delta(local: float, external: float) -> Tuple[float, float]:
    delta = round(local - external, 2)
    if not external:
        return delta, 0.0
    return delta, round(delta / external * 100, 2)


def classify_status(balanced: bool, delta_pct: float,
                    warning_pct: Optional[float] = None,
                    error_pct: Optional[float] = None) -> ReconciliationStatus:
    warning_pct = settings.variance_warning_pct if warning_pct is None else warning_pct
    error_pct = settings.variance_error_pct if error_pct is None else error_pct
    if not balanced or abs(delta_pct) > error_pct:
        return ReconciliationStatus.ERROR
    if abs(delta_pct) > warning_pct:
        return ReconciliationStatus.WARNING
    return ReconciliationStatus.OK


def build_reconciliation(
    candidate_id: str,
    cycle: str,
    local: LocalTotals,
    external: CommitteeTotals,
    warning_pct: Optional[float] = None,
    notes: Optional[str] = None,
) -> FinanceReconciliation:
    other, balanced = check_balance(external.itemized, external.unitemized, external.total_receipts)
    individual_delta, individual_pct = compute_delta(local.individual_itemized, external.itemized)
    pac_delta, pac_pct = compute_delta(local.pac_contributions, external.pac_contributions)

    return FinanceReconciliation(
        candidate_id=candidate_id,
        cycle=cycle,
        local_itemized=local.itemized,
        local_itemized_net=local.itemized_net,
        local_transfers=local.transfers,
        local_earmarked=local.earmarked,
        local_individual_itemized=local.individual_itemized,
        local_pac_contributions=local.pac_contributions,
        local_party_contributions=local.party_contributions,
        fec_itemized=external.itemized,
        fec_unitemized=external.unitemized,
        fec_total_receipts=external.total_receipts,
        fec_pac_contributions=external.pac_contributions,
        fec_party_contributions=external.party_contributions,
        other_receipts=other,
        external_balanced=balanced,
        delta_amount=individual_delta,
        delta_pct=individual_pct,
        individual_delta=individual_delta,
        individual_delta_pct=individual_pct,
        pac_delta=pac_delta,
        pac_delta_pct=pac_pct,
        # PAC variance is recorded but does not drive status
        status=classify_status(balanced, individual_pct, warning_pct),
        notes=notes,
        checked_at=utcnow(),
    )


def _local_rollup_columns(local: LocalTotals) -> Dict[str, float]:
    return {
        "local_itemized": local.itemized,
        "local_itemized_net": local.itemized_net,
        "local_transfers": local.transfers,
        "local_earmarked": local.earmarked,
        "local_individual_itemized": local.individual_itemized,
        "local_pac_contributions": local.pac_contributions,
        "local_party_contributions": local.party_contributions,
        "contribution_count": local.contribution_count,
    }


def _add_totals(a: CommitteeTotals, b: CommitteeTotals) -> CommitteeTotals:
    return CommitteeTotals(**{
        field: round(getattr(a, field) + getattr(b, field), 2)
        for field in CommitteeTotals.model_fields
    })


class ReconciliationCalculator:
    def __init__(self, ledger: LedgerStore, client: FECClient):
        self.ledger = ledger
        self.client = client

    def _local_by_committee(self, candidate_id: str, cycle: str) -> Dict[str, List[ContributionRecord]]:
        grouped = defaultdict(list)
        for record in self.ledger.list_contributions(candidate_id, cycle):
            grouped[record.committee_id].append(record)
        return grouped

    def _store_local(self, committee: Committee, candidate_id: str, cycle: str, local: LocalTotals,
                     fec_columns: Optional[Dict[str, object]] = None):
        """Write the committee rollup and keep the committee itemized total in step with the ledger"""
        self.ledger.upsert_rollup({
            "committee_id": committee.id,
            "candidate_id": candidate_id,
            "cycle": cycle,
            **_local_rollup_columns(local),
            **(fec_columns or {}),
        })
        if committee.local_itemized_total != local.itemized:
            self.ledger.update_committee(committee.id, {"local_itemized_total": local.itemized})

    async def reconcile(self, candidate_id: str, cycle: str, warning_pct: Optional[float] = None) -> ReconcileOutcome:
        """Fetch fresh totals for every active committee and upsert the comparison.

        Rollups are upserted per (committee, cycle) and the reconciliation per
        (candidate, cycle), so re-running replaces rather than accumulates.
        A committee whose totals cannot be fetched contributes zero to the
        external sums for this run.
        """
        committees = self.ledger.list_committees(candidate_id, active_only=True)
        if not committees:
            logger.info("Skipping reconciliation, no active committees", candidate_id=candidate_id)
            return ReconcileOutcome(candidate_id=candidate_id, cycle=cycle, skipped=True,
                                    reason="No active committees")

        by_committee = self._local_by_committee(candidate_id, cycle)
        local = LocalTotals()
        external = CommitteeTotals()
        reported = 0
        checked_at = utcnow().isoformat()

        for committee in sorted(committees, key=lambda c: c.fec_committee_id):
            totals = await self._fetch_totals(committee, cycle)
            committee_local = summarize_ledger(by_committee.get(committee.id, []))
            local = local + committee_local

            fec_columns = {}
            if totals is not None:
                reported += 1
                external = _add_totals(external, totals)
                fec_columns.update({
                    "fec_itemized": totals.itemized,
                    "fec_unitemized": totals.unitemized,
                    "fec_total_receipts": totals.total_receipts,
                    "fec_pac_contributions": totals.pac_contributions,
                    "fec_party_contributions": totals.party_contributions,
                    "last_fec_check": checked_at,
                })
            self._store_local(committee, candidate_id, cycle, committee_local, fec_columns)

        if reported == 0:
            logger.info("Skipping reconciliation, no FEC totals on record", candidate_id=candidate_id)
            return ReconcileOutcome(candidate_id=candidate_id, cycle=cycle, skipped=True,
                                    reason="No FEC totals available", committees_checked=len(committees))

        reconciliation = self.ledger.upsert_reconciliation(
            build_reconciliation(candidate_id, cycle, local, external, warning_pct)
        )
        logger.info("Reconciled candidate", candidate_id=candidate_id, cycle=cycle,
                    status=reconciliation.status, delta_pct=reconciliation.delta_pct,
                    balanced=reconciliation.external_balanced)
        return ReconcileOutcome(
            candidate_id=candidate_id,
            cycle=cycle,
            committees_checked=len(committees),
            reconciliation=reconciliation,
        )

    async def _fetch_totals(self, committee: Committee, cycle: str) -> Optional[CommitteeTotals]:
        try:
            return await self.client.fetch_committee_totals(committee.fec_committee_id, cycle)
        except FinanceAPITransportError as e:
            logger.error("Committee totals unavailable", committee_id=committee.id,
                         fec_committee_id=committee.fec_committee_id, error=str(e))
            return None

    def refresh_from_ledger(self, candidate_id: str, cycle: str, notes: Optional[str] = None) -> Optional[FinanceReconciliation]:
        """Recompute local sums and deltas against the FEC totals already on record.

        Makes no FEC requests. Returns None when the candidate has never been
        reconciled for the cycle.
        """
        by_committee = self._local_by_committee(candidate_id, cycle)
        local = LocalTotals()
        for committee in self.ledger.list_committees(candidate_id, active_only=True):
            committee_local = summarize_ledger(by_committee.get(committee.id, []))
            local = local + committee_local
            self._store_local(committee, candidate_id, cycle, committee_local)

        existing = self.ledger.get_reconciliation(candidate_id, cycle)
        if existing is None:
            return None

        external = CommitteeTotals(
            itemized=existing.fec_itemized,
            unitemized=existing.fec_unitemized,
            total_receipts=existing.fec_total_receipts,
            pac_contributions=existing.fec_pac_contributions,
            party_contributions=existing.fec_party_contributions,
        )
        return self.ledger.upsert_reconciliation(
            build_reconciliation(candidate_id, cycle, local, external, notes=notes)
        )
