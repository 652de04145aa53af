"""Raw OpenFEC payload models.

Everything the FEC returns passes through these models before reaching the
rest of the engine. Unknown fields are ignored and missing or null numeric
fields default to zero, so downstream code only ever sees typed values.
"""
from datetime import date
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


def _zero_if_missing(value: Any) -> Any:
    return 0.0 if value is None or value == "" else value


class FECModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Pagination(FECModel):
    page: Optional[int] = None
    pages: Optional[int] = None
    per_page: Optional[int] = None
    count: Optional[int] = None
    last_indexes: Optional[Dict[str, Any]] = None


class APIEnvelope(FECModel):
    results: List[Dict[str, Any]] = Field(default_factory=list)
    pagination: Optional[Pagination] = None

    @field_validator("results", mode="before")
    @classmethod
    def _results_list(cls, value):
        return value or []


class CandidateCommitteePayload(FECModel):
    committee_id: str
    name: Optional[str] = None
    designation: Optional[str] = None
    designation_full: Optional[str] = None
    committee_type: Optional[str] = None


class CommitteeTotalsPayload(FECModel):
    individual_itemized_contributions: float = 0.0
    individual_unitemized_contributions: float = 0.0
    receipts: float = 0.0
    other_political_committee_contributions: float = 0.0
    political_party_committee_contributions: float = 0.0
    loans: float = 0.0
    transfers_from_other_authorized_committee: float = 0.0
    candidate_contribution: float = 0.0
    other_receipts: float = 0.0

    @field_validator("*", mode="before")
    @classmethod
    def _zero_missing(cls, value):
        return _zero_if_missing(value)


class ScheduleAItem(FECModel):
    sub_id: str
    committee_id: Optional[str] = None
    contributor_name: Optional[str] = None
    entity_type: Optional[str] = None
    contribution_receipt_amount: float = 0.0
    contribution_receipt_date: Optional[date] = None
    memo_text: Optional[str] = None
    line_number: Optional[str] = None
    receipt_type: Optional[str] = None

    @field_validator("sub_id", mode="before")
    @classmethod
    def _sub_id_text(cls, value):
        if value is None or value == "":
            raise ValueError("sub_id is required")
        return str(value)

    @field_validator("contribution_receipt_amount", mode="before")
    @classmethod
    def _amount(cls, value):
        return _zero_if_missing(value)

    @field_validator("contribution_receipt_date", mode="before")
    @classmethod
    def _receipt_date(cls, value):
        # The API returns either a date or a full timestamp.
        if isinstance(value, str) and "T" in value:
            return date.fromisoformat(value[:10])
        return value or None
