"""Candidate FEC ids and committee linking"""
from typing import List, Optional
from pydantic import BaseModel, Field
from finance_recon.db.ledger import LedgerStore
from finance_recon.exceptions import CommitteeLinkError, FinanceAPITransportError
from finance_recon.integrations.fec_client import FECClient
from finance_recon.models.common import Designation, MatchMethod
from finance_recon.models.ledger import CandidateExternalId, Committee, CommitteeSummary
from finance_recon.utils.logging import get_logger

logger = get_logger(__name__)

LINKABLE_DESIGNATIONS = {Designation.PRINCIPAL.value, Designation.AUTHORIZED.value}


class LinkedCommittee(BaseModel):
    fec_committee_id: str
    name: Optional[str] = None
    designation: Optional[str] = None
    designation_full: Optional[str] = None
    is_primary: bool = False
    source_fec_candidate_id: str


class LinkResult(BaseModel):
    candidate_id: str
    primary_committee_id: Optional[str] = None
    committees: List[LinkedCommittee] = Field(default_factory=list)
    fec_ids_processed: int = 0


def add_external_id(
    ledger: LedgerStore,
    candidate_id: str,
    fec_candidate_id: str,
    office: Optional[str] = None,
    state: Optional[str] = None,
    district: Optional[str] = None,
    cycle: Optional[str] = None,
    is_primary: bool = False,
    match_method: MatchMethod = MatchMethod.MANUAL,
    match_score: Optional[float] = None,
) -> CandidateExternalId:
    """Record an FEC candidate id; a candidate's first id is always primary"""
    existing = ledger.list_external_ids(candidate_id)
    others = [e for e in existing if e.fec_candidate_id != fec_candidate_id]
    if not others:
        is_primary = True
    if is_primary:
        ledger.demote_primary_external_ids(candidate_id)

    record = ledger.upsert_external_id(CandidateExternalId(
        candidate_id=candidate_id,
        fec_candidate_id=fec_candidate_id,
        office=office,
        state=state,
        district=district,
        cycle=cycle,
        is_primary=is_primary,
        match_method=match_method,
        match_score=match_score,
    ))
    if is_primary:
        ledger.update_candidate(candidate_id, {"fec_candidate_id": fec_candidate_id})

    logger.info("Stored FEC candidate id", candidate_id=candidate_id,
                fec_candidate_id=fec_candidate_id, is_primary=is_primary)
    return record


def set_primary_external_id(ledger: LedgerStore, external_id: str) -> CandidateExternalId:
    record = ledger.get_external_id(external_id)
    if record is None:
        raise CommitteeLinkError(f"Unknown FEC id record {external_id}")
    ledger.demote_primary_external_ids(record.candidate_id)
    ledger.mark_external_id_primary(external_id)
    ledger.update_candidate(record.candidate_id, {"fec_candidate_id": record.fec_candidate_id})
    return record.model_copy(update={"is_primary": True})


def remove_external_id(ledger: LedgerStore, external_id: str):
    """Delete an FEC id. Committees linked through it are kept."""
    record = ledger.get_external_id(external_id)
    if record is None:
        return
    ledger.delete_external_id(external_id)

    if record.is_primary:
        remaining = ledger.list_external_ids(record.candidate_id)
        if remaining:
            oldest = min(remaining, key=lambda r: (r.created_at is None, r.created_at))
            ledger.mark_external_id_primary(oldest.id)
            ledger.update_candidate(record.candidate_id, {"fec_candidate_id": oldest.fec_candidate_id})
        else:
            ledger.update_candidate(record.candidate_id, {"fec_candidate_id": None})

    logger.info("Removed FEC candidate id", candidate_id=record.candidate_id,
                fec_candidate_id=record.fec_candidate_id)


def select_primary(committees: List[CommitteeSummary]) -> Optional[CommitteeSummary]:
    """The principal committee, else the first one returned"""
    for committee in committees:
        if committee.designation == Designation.PRINCIPAL.value:
            return committee
    return committees[0] if committees else None


class CommitteeLinker:
    def __init__(self, ledger: LedgerStore, client: FECClient):
        self.ledger = ledger
        self.client = client

    async def link_committees(self, candidate_id: str, fec_candidate_id: Optional[str] = None) -> LinkResult:
        """Discover and persist a candidate's principal and authorized committees.

        With no explicit ``fec_candidate_id`` every stored FEC id for the
        candidate is linked. New committees are inserted active; committees
        already on file keep their ``active`` flag.
        """
        if fec_candidate_id:
            sources = [(fec_candidate_id, True)]
        else:
            stored = self.ledger.list_external_ids(candidate_id)
            sources = [(record.fec_candidate_id, record.is_primary) for record in stored]
            if not sources:
                candidate = self.ledger.get_candidate(candidate_id)
                if candidate and candidate.fec_candidate_id:
                    sources = [(candidate.fec_candidate_id, True)]
        if not sources:
            raise CommitteeLinkError(f"Candidate {candidate_id} has no FEC candidate id")

        result = LinkResult(candidate_id=candidate_id)
        existing = {c.fec_committee_id for c in self.ledger.list_committees(candidate_id)}

        for source_id, source_is_primary in sources:
            try:
                fetched = await self.client.fetch_committees_for_candidate(source_id)
            except FinanceAPITransportError as e:
                logger.error("Committee lookup failed", candidate_id=candidate_id,
                             fec_candidate_id=source_id, error=str(e))
                continue
            result.fec_ids_processed += 1

            committees = [c for c in fetched if c.designation in LINKABLE_DESIGNATIONS]
            primary = select_primary(committees)
            if source_is_primary and primary and result.primary_committee_id is None:
                result.primary_committee_id = primary.fec_committee_id

            self._store(candidate_id, source_id, committees, existing)

            for committee in committees:
                result.committees.append(LinkedCommittee(
                    fec_committee_id=committee.fec_committee_id,
                    name=committee.name,
                    designation=committee.designation,
                    designation_full=committee.designation_full,
                    is_primary=source_is_primary and primary is not None
                    and committee.fec_committee_id == primary.fec_committee_id,
                    source_fec_candidate_id=source_id,
                ))

        if result.fec_ids_processed == 0:
            raise CommitteeLinkError(f"Committee lookup failed for every FEC id of candidate {candidate_id}")

        if result.primary_committee_id:
            self.ledger.update_candidate(candidate_id, {"fec_committee_id": result.primary_committee_id})

        logger.info("Linked committees", candidate_id=candidate_id,
                    count=len(result.committees), primary=result.primary_committee_id)
        return result

    def _store(self, candidate_id: str, source_id: str, committees: List[CommitteeSummary], existing: set):
        new_rows = []
        for committee in committees:
            if committee.fec_committee_id in existing:
                self.ledger.update_committee_metadata(candidate_id, committee.fec_committee_id, {
                    "name": committee.name,
                    "designation": committee.designation,
                    "designation_full": committee.designation_full,
                })
                continue
            existing.add(committee.fec_committee_id)
            new_rows.append(Committee(
                candidate_id=candidate_id,
                fec_committee_id=committee.fec_committee_id,
                name=committee.name,
                designation=committee.designation,
                designation_full=committee.designation_full,
                source_fec_candidate_id=source_id,
                active=True,
            ))
        self.ledger.insert_committees_if_absent(new_rows)


def set_committee_active(ledger: LedgerStore, committee_id: str, active: bool) -> Optional[Committee]:
    """Operator toggle for including a committee in aggregation"""
    committee = ledger.update_committee(committee_id, {"active": active})
    if committee is not None:
        logger.info("Committee aggregation toggled", committee_id=committee_id, active=active)
    return committee
