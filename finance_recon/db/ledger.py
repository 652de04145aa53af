"""Ledger store: the tables this engine owns, read and written via Supabase.

All writes are upserts against the natural keys declared in schema.sql, so
repeating an operation (or running two writers at once) converges on the
latest full recomputation instead of accumulating.
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional
import httpx
from postgrest.exceptions import APIError
from pydantic import BaseModel, TypeAdapter
from supabase import Client
from finance_recon.exceptions import LedgerStoreError
from finance_recon.models.ledger import (
    CandidateExternalId,
    CandidateRef,
    Committee,
    CommitteeFinanceRollup,
    ContributionRecord,
    FinanceReconciliation,
)
from finance_recon.utils.logging import get_logger

logger = get_logger(__name__)

CANDIDATES = "candidates"
EXTERNAL_IDS = "candidate_fec_ids"
COMMITTEES = "candidate_committees"
CONTRIBUTIONS = "contributions"
ROLLUPS = "committee_finance_rollups"
RECONCILIATION = "finance_reconciliation"

CANDIDATE_COLUMNS = (
    "id, name, office, state, fec_candidate_id, fec_committee_id, last_donor_sync, last_finance_check"
)

_TIMESTAMP = TypeAdapter(datetime)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_row(model: BaseModel, **overrides: Any) -> Dict[str, Any]:
    """JSON-safe row for a write; server-managed columns are left out"""
    row = model.model_dump(mode="json", exclude={"created_at", "updated_at"})
    if row.get("id") is None:
        row.pop("id", None)
    row.update(overrides)
    row["updated_at"] = utcnow().isoformat()
    return row


class LedgerStore:
    PAGE_SIZE = 1000

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def _execute(self, query, action: str):
        try:
            return query.execute()
        except (APIError, httpx.HTTPError) as e:
            logger.error("Ledger store query failed", action=action, error=str(e))
            raise LedgerStoreError(f"{action}: {e}") from e

    def _fetch_all(self, build_query: Callable[[], Any], action: str) -> List[Dict[str, Any]]:
        rows = []
        offset = 0
        while True:
            result = self._execute(
                build_query().range(offset, offset + self.PAGE_SIZE - 1), action
            )
            if not result.data:
                break
            rows.extend(result.data)
            if len(result.data) < self.PAGE_SIZE:
                break
            offset += self.PAGE_SIZE
        return rows

    def _first(self, query, action: str) -> Optional[Dict[str, Any]]:
        result = self._execute(query.limit(1), action)
        return result.data[0] if result.data else None

    # Candidates (externally owned; only the finance columns are written)

    def count_candidates(self) -> int:
        result = self._execute(
            self.supabase.table(CANDIDATES).select("id", count="exact"), "count_candidates"
        )
        return result.count or 0

    def get_candidate(self, candidate_id: str) -> Optional[CandidateRef]:
        row = self._first(
            self.supabase.table(CANDIDATES).select(CANDIDATE_COLUMNS).eq("id", candidate_id),
            "get_candidate",
        )
        return CandidateRef.model_validate(row) if row else None

    def list_batch_candidates(self, offset: int, page_size: int, only_with_data: bool) -> List[CandidateRef]:
        """Candidates with an FEC id, oldest-synced first"""
        query = (
            self.supabase.table(CANDIDATES)
            .select(CANDIDATE_COLUMNS)
            .not_.is_("fec_candidate_id", "null")
        )
        if only_with_data:
            query = query.not_.is_("last_donor_sync", "null")
        query = (
            query.order("last_donor_sync", desc=False, nullsfirst=True)
            .order("id")
            .range(offset, offset + page_size - 1)
        )
        result = self._execute(query, "list_batch_candidates")
        return [CandidateRef.model_validate(row) for row in result.data or []]

    def update_candidate(self, candidate_id: str, values: Dict[str, Any]):
        self._execute(
            self.supabase.table(CANDIDATES).update(values).eq("id", candidate_id),
            "update_candidate",
        )

    # External candidate ids

    def list_external_ids(self, candidate_id: str) -> List[CandidateExternalId]:
        result = self._execute(
            self.supabase.table(EXTERNAL_IDS)
            .select("*")
            .eq("candidate_id", candidate_id)
            .order("is_primary", desc=True)
            .order("created_at"),
            "list_external_ids",
        )
        return [CandidateExternalId.model_validate(row) for row in result.data or []]

    def get_external_id(self, external_id: str) -> Optional[CandidateExternalId]:
        row = self._first(
            self.supabase.table(EXTERNAL_IDS).select("*").eq("id", external_id), "get_external_id"
        )
        return CandidateExternalId.model_validate(row) if row else None

    def demote_primary_external_ids(self, candidate_id: str):
        self._execute(
            self.supabase.table(EXTERNAL_IDS)
            .update({"is_primary": False, "updated_at": utcnow().isoformat()})
            .eq("candidate_id", candidate_id)
            .eq("is_primary", True),
            "demote_primary_external_ids",
        )

    def upsert_external_id(self, record: CandidateExternalId) -> CandidateExternalId:
        result = self._execute(
            self.supabase.table(EXTERNAL_IDS).upsert(
                to_row(record), on_conflict="candidate_id,fec_candidate_id"
            ),
            "upsert_external_id",
        )
        return CandidateExternalId.model_validate(result.data[0])

    def mark_external_id_primary(self, external_id: str):
        self._execute(
            self.supabase.table(EXTERNAL_IDS)
            .update({"is_primary": True, "updated_at": utcnow().isoformat()})
            .eq("id", external_id),
            "mark_external_id_primary",
        )

    def delete_external_id(self, external_id: str):
        self._execute(
            self.supabase.table(EXTERNAL_IDS).delete().eq("id", external_id), "delete_external_id"
        )

    # Committees

    def list_committees(self, candidate_id: str, active_only: bool = False) -> List[Committee]:
        query = self.supabase.table(COMMITTEES).select("*").eq("candidate_id", candidate_id)
        if active_only:
            query = query.eq("active", True)
        result = self._execute(query.order("fec_committee_id"), "list_committees")
        return [Committee.model_validate(row) for row in result.data or []]

    def get_committee(self, committee_id: str) -> Optional[Committee]:
        row = self._first(
            self.supabase.table(COMMITTEES).select("*").eq("id", committee_id), "get_committee"
        )
        return Committee.model_validate(row) if row else None

    def insert_committees_if_absent(self, committees: List[Committee]):
        """Insert new committee rows; existing rows (and their active flag) are untouched"""
        if not committees:
            return
        self._execute(
            self.supabase.table(COMMITTEES).upsert(
                [to_row(c) for c in committees],
                on_conflict="candidate_id,fec_committee_id",
                ignore_duplicates=True,
            ),
            "insert_committees_if_absent",
        )

    def update_committee_metadata(self, candidate_id: str, fec_committee_id: str, values: Dict[str, Any]):
        values = {**values, "updated_at": utcnow().isoformat()}
        self._execute(
            self.supabase.table(COMMITTEES)
            .update(values)
            .eq("candidate_id", candidate_id)
            .eq("fec_committee_id", fec_committee_id),
            "update_committee_metadata",
        )

    def update_committee(self, committee_id: str, values: Dict[str, Any]) -> Optional[Committee]:
        values = {**values, "updated_at": utcnow().isoformat()}
        result = self._execute(
            self.supabase.table(COMMITTEES).update(values).eq("id", committee_id),
            "update_committee",
        )
        return Committee.model_validate(result.data[0]) if result.data else None

    # Contributions

    def insert_contributions(self, records: List[ContributionRecord]) -> List[ContributionRecord]:
        """Insert records not yet seen; returns only the rows actually inserted"""
        if not records:
            return []
        result = self._execute(
            self.supabase.table(CONTRIBUTIONS).upsert(
                [to_row(r) for r in records],
                on_conflict="fec_record_id",
                ignore_duplicates=True,
            ),
            "insert_contributions",
        )
        return [ContributionRecord.model_validate(row) for row in result.data or []]

    def list_contributions(self, candidate_id: str, cycle: str) -> List[ContributionRecord]:
        rows = self._fetch_all(
            lambda: self.supabase.table(CONTRIBUTIONS)
            .select("*")
            .eq("candidate_id", candidate_id)
            .eq("cycle", cycle)
            .order("fec_record_id"),
            "list_contributions",
        )
        return [ContributionRecord.model_validate(row) for row in rows]

    def list_nonzero_contributions(self, cycle: str, candidate_id: Optional[str] = None) -> List[ContributionRecord]:
        def build():
            query = self.supabase.table(CONTRIBUTIONS).select("*").eq("cycle", cycle).neq("amount", 0)
            if candidate_id:
                query = query.eq("candidate_id", candidate_id)
            return query.order("fec_record_id")

        return [ContributionRecord.model_validate(row) for row in self._fetch_all(build, "list_nonzero_contributions")]

    def zero_out_contributions(self, record_ids: List[str], batch_size: int) -> int:
        """Set amount to 0 and flag as conduit, at most ``batch_size`` rows per statement"""
        updated = 0
        for start in range(0, len(record_ids), batch_size):
            batch = record_ids[start:start + batch_size]
            result = self._execute(
                self.supabase.table(CONTRIBUTIONS)
                .update({"amount": 0, "is_conduit_org": True, "updated_at": utcnow().isoformat()})
                .in_("id", batch),
                "zero_out_contributions",
            )
            updated += len(result.data) if result.data is not None else len(batch)
        return updated

    # Rollups

    def upsert_rollup(self, values: Dict[str, Any]):
        """Upsert the given columns of one (committee, cycle) rollup"""
        values = {**values, "updated_at": utcnow().isoformat()}
        self._execute(
            self.supabase.table(ROLLUPS).upsert(values, on_conflict="committee_id,cycle"),
            "upsert_rollup",
        )

    def list_rollups(self, candidate_id: str, cycle: str) -> List[CommitteeFinanceRollup]:
        result = self._execute(
            self.supabase.table(ROLLUPS)
            .select("*")
            .eq("candidate_id", candidate_id)
            .eq("cycle", cycle)
            .order("committee_id"),
            "list_rollups",
        )
        return [CommitteeFinanceRollup.model_validate(row) for row in result.data or []]

    # Reconciliation

    def get_reconciliation(self, candidate_id: str, cycle: str) -> Optional[FinanceReconciliation]:
        row = self._first(
            self.supabase.table(RECONCILIATION)
            .select("*")
            .eq("candidate_id", candidate_id)
            .eq("cycle", cycle),
            "get_reconciliation",
        )
        return FinanceReconciliation.model_validate(row) if row else None

    def upsert_reconciliation(self, reconciliation: FinanceReconciliation) -> FinanceReconciliation:
        result = self._execute(
            self.supabase.table(RECONCILIATION).upsert(
                to_row(reconciliation),
                on_conflict="candidate_id,cycle",
            ),
            "upsert_reconciliation",
        )
        return FinanceReconciliation.model_validate(result.data[0]) if result.data else reconciliation

    def last_checked(self, cycle: str, candidate_ids: Iterable[str]) -> Dict[str, datetime]:
        ids = list(candidate_ids)
        if not ids:
            return {}
        result = self._execute(
            self.supabase.table(RECONCILIATION)
            .select("candidate_id, checked_at")
            .eq("cycle", cycle)
            .in_("candidate_id", ids),
            "last_checked",
        )
        return {
            row["candidate_id"]: _TIMESTAMP.validate_python(row["checked_at"])
            for row in result.data or []
            if row.get("checked_at")
        }
