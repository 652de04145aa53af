"""Ledger store row models"""
from datetime import date, datetime
from typing import List, Optional
from pydantic import BaseModel, Field
from finance_recon.models.common import (
    BaseEntity,
    Designation,
    DonorType,
    MatchMethod,
    ReconciliationStatus,
)


class CandidateExternalId(BaseEntity):
    id: Optional[str] = None
    candidate_id: str
    fec_candidate_id: str
    office: Optional[str] = None
    state: Optional[str] = None
    district: Optional[str] = None
    cycle: Optional[str] = None
    is_primary: bool = False
    match_method: MatchMethod = MatchMethod.MANUAL
    match_score: Optional[float] = None


class Committee(BaseEntity):
    id: Optional[str] = None
    candidate_id: str
    fec_committee_id: str
    name: Optional[str] = None
    designation: Optional[Designation] = None
    designation_full: Optional[str] = None
    source_fec_candidate_id: Optional[str] = None
    active: bool = True
    # Opaque continuation token; stored and echoed back, never parsed here.
    last_index: Optional[str] = None
    has_more: bool = False
    last_sync_started_at: Optional[datetime] = None
    last_sync_completed_at: Optional[datetime] = None
    local_itemized_total: float = 0.0
    fec_itemized_total: Optional[float] = None

    @property
    def is_authoritative(self) -> bool:
        """True once a sync has run to completion and nothing is pending"""
        return not self.has_more and self.last_sync_completed_at is not None


class ContributionRecord(BaseEntity):
    id: Optional[str] = None
    fec_record_id: str
    candidate_id: str
    committee_id: str
    cycle: str
    amount: float = 0.0
    donor_name: Optional[str] = None
    donor_type: DonorType = DonorType.UNKNOWN
    is_contribution: bool = True
    is_transfer: bool = False
    is_conduit_org: bool = False
    is_earmarked: bool = False
    memo_text: Optional[str] = None
    line_number: Optional[str] = None
    receipt_date: Optional[date] = None


class LocalTotals(BaseModel):
    """Sums computed from the contribution ledger"""
    itemized: float = 0.0
    itemized_net: float = 0.0
    transfers: float = 0.0
    earmarked: float = 0.0
    individual_itemized: float = 0.0
    pac_contributions: float = 0.0
    party_contributions: float = 0.0
    contribution_count: int = 0

    def __add__(self, other: "LocalTotals") -> "LocalTotals":
        return LocalTotals(
            itemized=round(self.itemized + other.itemized, 2),
            itemized_net=round(self.itemized_net + other.itemized_net, 2),
            transfers=round(self.transfers + other.transfers, 2),
            earmarked=round(self.earmarked + other.earmarked, 2),
            individual_itemized=round(self.individual_itemized + other.individual_itemized, 2),
            pac_contributions=round(self.pac_contributions + other.pac_contributions, 2),
            party_contributions=round(self.party_contributions + other.party_contributions, 2),
            contribution_count=self.contribution_count + other.contribution_count,
        )


class CommitteeFinanceRollup(BaseEntity):
    id: Optional[str] = None
    committee_id: str
    candidate_id: str
    cycle: str
    local_itemized: float = 0.0
    local_itemized_net: float = 0.0
    local_transfers: float = 0.0
    local_earmarked: float = 0.0
    local_individual_itemized: float = 0.0
    local_pac_contributions: float = 0.0
    local_party_contributions: float = 0.0
    contribution_count: int = 0
    fec_itemized: Optional[float] = None
    fec_unitemized: Optional[float] = None
    fec_total_receipts: Optional[float] = None
    fec_pac_contributions: Optional[float] = None
    fec_party_contributions: Optional[float] = None
    last_fec_check: Optional[datetime] = None


class FinanceReconciliation(BaseEntity):
    id: Optional[str] = None
    candidate_id: str
    cycle: str
    local_itemized: float = 0.0
    local_itemized_net: float = 0.0
    local_transfers: float = 0.0
    local_earmarked: float = 0.0
    local_individual_itemized: float = 0.0
    local_pac_contributions: float = 0.0
    local_party_contributions: float = 0.0
    fec_itemized: float = 0.0
    fec_unitemized: float = 0.0
    fec_total_receipts: float = 0.0
    fec_pac_contributions: float = 0.0
    fec_party_contributions: float = 0.0
    other_receipts: float = 0.0
    external_balanced: bool = True
    delta_amount: float = 0.0
    delta_pct: float = 0.0
    individual_delta: float = 0.0
    individual_delta_pct: float = 0.0
    pac_delta: float = 0.0
    pac_delta_pct: float = 0.0
    status: ReconciliationStatus = ReconciliationStatus.OK
    notes: Optional[str] = None
    checked_at: Optional[datetime] = None


class CandidateRef(BaseModel):
    """The slice of the externally-owned candidates table this engine reads"""
    id: str
    name: Optional[str] = None
    office: Optional[str] = None
    state: Optional[str] = None
    fec_candidate_id: Optional[str] = None
    fec_committee_id: Optional[str] = None
    last_donor_sync: Optional[datetime] = None
    last_finance_check: Optional[datetime] = None


class CommitteeTotals(BaseModel):
    """Aggregate totals reported by the FEC for one committee and cycle"""
    itemized: float = 0.0
    unitemized: float = 0.0
    total_receipts: float = 0.0
    pac_contributions: float = 0.0
    party_contributions: float = 0.0
    loans: float = 0.0
    transfers: float = 0.0
    candidate_contribution: float = 0.0
    other_receipts: float = 0.0


class CommitteeSummary(BaseModel):
    fec_committee_id: str
    name: Optional[str] = None
    designation: Optional[str] = None
    designation_full: Optional[str] = None
    committee_type: Optional[str] = None


class ItemizedContribution(BaseModel):
    """One Schedule A receipt, already validated at the client boundary"""
    fec_record_id: str
    fec_committee_id: Optional[str] = None
    donor_name: Optional[str] = None
    entity_type: Optional[str] = None
    amount: float = 0.0
    receipt_date: Optional[date] = None
    memo_text: Optional[str] = None
    line_number: Optional[str] = None
    receipt_type: Optional[str] = None


class ContributionPage(BaseModel):
    records: List[ItemizedContribution] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False
