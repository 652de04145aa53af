"""Shared test fixtures: in-memory Supabase tables and a scripted FEC client."""
import copy
import os
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

# Settings are read at import time
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")
os.environ.setdefault("FEC_API_KEY", "test-fec-key")
os.environ.setdefault("LOG_JSON", "false")

from finance_recon.db.ledger import LedgerStore  # noqa: E402
from finance_recon.models.ledger import (  # noqa: E402
    CommitteeSummary,
    CommitteeTotals,
    ContributionPage,
    ItemizedContribution,
)

_CLOCK_START = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeResult:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    """Chainable stand-in for the postgrest request builder"""

    def __init__(self, backend, table):
        self.backend = backend
        self.rows = backend.tables.setdefault(table, [])
        self.action = "select"
        self.payload = None
        self.on_conflict = None
        self.ignore_duplicates = False
        self.count = None
        self.filters = []
        self.orders = []
        self.bounds = None
        self.max_rows = None
        self._negate = False

    # Actions

    def select(self, columns="*", count=None):
        self.action = "select"
        self.count = count
        return self

    def insert(self, rows):
        self.action = "insert"
        self.payload = rows if isinstance(rows, list) else [rows]
        return self

    def upsert(self, rows, on_conflict="", ignore_duplicates=False):
        self.action = "upsert"
        self.payload = rows if isinstance(rows, list) else [rows]
        self.on_conflict = [key.strip() for key in on_conflict.split(",") if key.strip()] or ["id"]
        self.ignore_duplicates = ignore_duplicates
        return self

    def update(self, values):
        self.action = "update"
        self.payload = values
        return self

    def delete(self):
        self.action = "delete"
        return self

    # Filters

    @property
    def not_(self):
        self._negate = True
        return self

    def _filter(self, predicate):
        negate, self._negate = self._negate, False
        self.filters.append((lambda row: not predicate(row)) if negate else predicate)
        return self

    def eq(self, column, value):
        return self._filter(lambda row: row.get(column) == value)

    def neq(self, column, value):
        return self._filter(lambda row: row.get(column) != value)

    def gt(self, column, value):
        return self._filter(lambda row: row.get(column) is not None and row.get(column) > value)

    def lt(self, column, value):
        return self._filter(lambda row: row.get(column) is not None and row.get(column) < value)

    def in_(self, column, values):
        values = list(values)
        return self._filter(lambda row: row.get(column) in values)

    def is_(self, column, value):
        if value == "null":
            return self._filter(lambda row: row.get(column) is None)
        return self._filter(lambda row: row.get(column) is value)

    # Modifiers

    def order(self, column, desc=False, nullsfirst=False):
        self.orders.append((column, desc, nullsfirst))
        return self

    def limit(self, count):
        self.max_rows = count
        return self

    def range(self, start, end):
        self.bounds = (start, end)
        return self

    # Execution

    def _matching(self):
        return [row for row in self.rows if all(f(row) for f in self.filters)]

    def _sorted(self, rows):
        for column, desc, nullsfirst in reversed(self.orders):
            present = sorted((r for r in rows if r.get(column) is not None),
                             key=lambda r: r[column], reverse=desc)
            missing = [r for r in rows if r.get(column) is None]
            rows = missing + present if nullsfirst else present + missing
        return rows

    def execute(self):
        self.backend.executed.append(self.action)
        if self.backend.fail_with is not None:
            raise self.backend.fail_with

        if self.action == "select":
            rows = self._sorted(self._matching())
            total = len(rows)
            if self.bounds is not None:
                rows = rows[self.bounds[0]:self.bounds[1] + 1]
            if self.max_rows is not None:
                rows = rows[:self.max_rows]
            return FakeResult(copy.deepcopy(rows), total if self.count else None)

        if self.action == "insert":
            return FakeResult([copy.deepcopy(self.backend.add_row(self.rows, row)) for row in self.payload])

        if self.action == "upsert":
            written = []
            for row in self.payload:
                existing = next(
                    (r for r in self.rows if all(r.get(key) == row.get(key) for key in self.on_conflict)),
                    None,
                )
                if existing is None:
                    written.append(copy.deepcopy(self.backend.add_row(self.rows, row)))
                elif not self.ignore_duplicates:
                    existing.update(copy.deepcopy(row))
                    written.append(copy.deepcopy(existing))
            return FakeResult(written)

        if self.action == "update":
            updated = []
            for row in self._matching():
                row.update(copy.deepcopy(self.payload))
                updated.append(copy.deepcopy(row))
            return FakeResult(updated)

        if self.action == "delete":
            removed = self._matching()
            for row in removed:
                self.rows.remove(row)
            return FakeResult(copy.deepcopy(removed))

        raise AssertionError(f"Unsupported action {self.action}")


class FakeSupabase:
    """In-memory tables behind the supabase ``table()`` API"""

    def __init__(self):
        self.tables = {}
        self.executed = []
        self.fail_with = None
        self._ticks = 0

    def table(self, name):
        return FakeQuery(self, name)

    def now(self):
        self._ticks += 1
        return (_CLOCK_START + timedelta(seconds=self._ticks)).isoformat()

    def add_row(self, rows, row):
        row = copy.deepcopy(row)
        row.setdefault("id", str(uuid4()))
        row.setdefault("created_at", self.now())
        rows.append(row)
        return row

    def rows(self, name):
        return self.tables.get(name, [])


class FakeFinanceClient:
    """Scripted FEC client.

    ``pages`` maps a committee id to a list of pages (lists of
    ItemizedContribution). The cursor is the index of the next page as text.
    Entries in ``committees`` or ``totals`` that are exceptions are raised.
    """

    def __init__(self, committees=None, totals=None, pages=None, failing_pages=None):
        self.committees = committees or {}
        self.totals = totals or {}
        self.pages = pages or {}
        self.failing_pages = set(failing_pages or [])
        self.committee_calls = []
        self.totals_calls = []
        self.page_calls = []

    async def fetch_committees_for_candidate(self, fec_candidate_id):
        self.committee_calls.append(fec_candidate_id)
        value = self.committees.get(fec_candidate_id, [])
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch_committee_totals(self, fec_committee_id, cycle):
        self.totals_calls.append((fec_committee_id, cycle))
        value = self.totals.get(fec_committee_id)
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch_itemized_contributions_page(self, fec_committee_id, cycle, cursor=None):
        index = int(cursor) if cursor else 0
        self.page_calls.append((fec_committee_id, index))
        if (fec_committee_id, index) in self.failing_pages:
            return None
        pages = self.pages.get(fec_committee_id, [])
        records = pages[index] if index < len(pages) else []
        has_more = index + 1 < len(pages)
        return ContributionPage(
            records=records,
            next_cursor=str(index + 1) if has_more else None,
            has_more=has_more,
        )


@pytest.fixture
def supabase():
    return FakeSupabase()


@pytest.fixture
def ledger(supabase):
    return LedgerStore(supabase)


@pytest.fixture
def fake_client():
    return FakeFinanceClient()


@pytest.fixture
def add_candidate(supabase):
    """Insert a row into the externally-owned candidates table"""
    def _add(name="Jane Doe", fec_candidate_id="H4CA12345", last_donor_sync=None, **extra):
        row = {
            "id": str(uuid4()),
            "name": name,
            "office": "H",
            "state": "CA",
            "fec_candidate_id": fec_candidate_id,
            "fec_committee_id": None,
            "last_donor_sync": last_donor_sync,
            **extra,
        }
        supabase.tables.setdefault("candidates", []).append(row)
        return row
    return _add


@pytest.fixture
def add_committee(supabase):
    def _add(candidate_id, fec_committee_id="C00111111", active=True, **extra):
        row = {
            "id": str(uuid4()),
            "candidate_id": candidate_id,
            "fec_committee_id": fec_committee_id,
            "name": f"Committee {fec_committee_id}",
            "designation": "P",
            "active": active,
            "last_index": None,
            "has_more": False,
            "local_itemized_total": 0.0,
            "created_at": supabase.now(),
            **extra,
        }
        supabase.tables.setdefault("candidate_committees", []).append(row)
        return row
    return _add


@pytest.fixture
def add_contribution(supabase):
    def _add(candidate_id, committee_id, amount, cycle="2024", donor_type="Individual", **extra):
        row = {
            "id": str(uuid4()),
            "fec_record_id": extra.pop("fec_record_id", str(uuid4())),
            "candidate_id": candidate_id,
            "committee_id": committee_id,
            "cycle": cycle,
            "amount": amount,
            "donor_name": "DONOR",
            "donor_type": donor_type,
            "is_contribution": True,
            "is_transfer": False,
            "is_conduit_org": False,
            "is_earmarked": False,
            "created_at": supabase.now(),
            **extra,
        }
        supabase.tables.setdefault("contributions", []).append(row)
        return row
    return _add


def make_item(sub_id, amount=100.0, donor_name="SMITH, JOHN", entity_type="IND",
              line_number="11AI", memo_text=None, receipt_type=None):
    return ItemizedContribution(
        fec_record_id=str(sub_id),
        donor_name=donor_name,
        entity_type=entity_type,
        amount=amount,
        line_number=line_number,
        memo_text=memo_text,
        receipt_type=receipt_type,
    )


def make_totals(itemized=0.0, unitemized=0.0, total_receipts=0.0, pac=0.0, party=0.0):
    return CommitteeTotals(
        itemized=itemized,
        unitemized=unitemized,
        total_receipts=total_receipts,
        pac_contributions=pac,
        party_contributions=party,
    )


def make_summary(fec_committee_id, designation="P", name=None):
    return CommitteeSummary(
        fec_committee_id=fec_committee_id,
        name=name or f"Committee {fec_committee_id}",
        designation=designation,
        designation_full={"P": "Principal campaign committee", "A": "Authorized by a candidate"}.get(designation),
    )


@pytest.fixture
def item():
    return make_item


@pytest.fixture
def totals():
    return make_totals


@pytest.fixture
def summary():
    return make_summary
