"""Finance status badge for operator views"""
from datetime import datetime
from typing import List, Optional
from pydantic import Field
from finance_recon.models.common import CamelModel, FinanceBadge, ReconciliationStatus
from finance_recon.models.ledger import Committee, FinanceReconciliation


class CommitteeSyncState(CamelModel):
    committee_id: Optional[str] = None
    fec_committee_id: str
    name: Optional[str] = None
    active: bool = True
    has_more: bool = False
    last_sync_completed_at: Optional[datetime] = None
    local_itemized_total: float = 0.0
    fec_itemized_total: Optional[float] = None


class FinanceStatus(CamelModel):
    candidate_id: str
    cycle: str
    badge: FinanceBadge
    label: str
    status: Optional[ReconciliationStatus] = None
    delta_pct: Optional[float] = None
    individual_delta_pct: Optional[float] = None
    pac_delta_pct: Optional[float] = None
    external_balanced: Optional[bool] = None
    local_individual_itemized: Optional[float] = None
    fec_itemized: Optional[float] = None
    fec_unitemized: Optional[float] = None
    fec_total_receipts: Optional[float] = None
    other_receipts: Optional[float] = None
    notes: Optional[str] = None
    checked_at: Optional[datetime] = None
    committees: List[CommitteeSyncState] = Field(default_factory=list)


DETAIL_FIELDS = {
    "status",
    "delta_pct",
    "individual_delta_pct",
    "pac_delta_pct",
    "external_balanced",
    "local_individual_itemized",
    "fec_itemized",
    "fec_unitemized",
    "fec_total_receipts",
    "other_receipts",
    "notes",
    "checked_at",
}


def badge_label(badge: FinanceBadge, delta_pct: Optional[float]) -> str:
    if badge == FinanceBadge.NO_DATA:
        return "No Data"
    if badge == FinanceBadge.PARTIAL:
        return "Partial"
    if badge == FinanceBadge.BALANCED:
        return "Balanced"
    return f"{abs(delta_pct or 0):.1f}% off"


def finance_badge(candidate_id: str, cycle: str,
                  reconciliation: Optional[FinanceReconciliation],
                  committees: List[Committee]) -> FinanceStatus:
    """Pick the badge for a candidate.

    A partial sync outranks any stored status: the numbers cannot be trusted
    until every active committee has finished paging.
    """
    active = [c for c in committees if c.active]
    never_synced = all(
        c.last_sync_started_at is None and c.last_sync_completed_at is None for c in active
    )

    if not active or never_synced:
        badge = FinanceBadge.NO_DATA
    elif any(c.has_more for c in active):
        badge = FinanceBadge.PARTIAL
    elif reconciliation is None:
        badge = FinanceBadge.NO_DATA
    elif reconciliation.status == ReconciliationStatus.ERROR.value:
        badge = FinanceBadge.ERROR
    elif reconciliation.status == ReconciliationStatus.WARNING.value:
        badge = FinanceBadge.WARNING
    else:
        badge = FinanceBadge.BALANCED

    details = {}
    if reconciliation is not None:
        details = reconciliation.model_dump(include=DETAIL_FIELDS)

    return FinanceStatus(
        candidate_id=candidate_id,
        cycle=cycle,
        badge=badge,
        label=badge_label(badge, reconciliation.delta_pct if reconciliation else None),
        committees=[
            CommitteeSyncState(
                committee_id=c.id,
                fec_committee_id=c.fec_committee_id,
                name=c.name,
                active=c.active,
                has_more=c.has_more,
                last_sync_completed_at=c.last_sync_completed_at,
                local_itemized_total=c.local_itemized_total,
                fec_itemized_total=c.fec_itemized_total,
            )
            for c in committees
        ],
        **details,
    )
