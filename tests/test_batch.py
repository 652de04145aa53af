"""Tests for batch selection, sequencing, failure isolation and cancellation."""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from postgrest.exceptions import APIError

from finance_recon.exceptions import LedgerStoreError
from finance_recon.services.batch import BatchJobState, BatchOptions, BatchScheduler
from finance_recon.services.reconciliation import ReconcileOutcome


class ScriptedCalculator:
    """Records reconcile calls and replays scripted outcomes"""

    def __init__(self, outcomes=None):
        self.outcomes = outcomes or {}
        self.calls = []

    async def reconcile(self, candidate_id, cycle, warning_pct=None):
        self.calls.append((candidate_id, cycle, warning_pct))
        outcome = self.outcomes.get(candidate_id)
        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            return outcome(candidate_id, cycle)
        return outcome or ReconcileOutcome(candidate_id=candidate_id, cycle=cycle, skipped=True)


def iso(days_ago):
    return (datetime.now(timezone.utc) - timedelta(days=days_ago)).isoformat()


@pytest.fixture
def stale_candidates(add_candidate):
    return [
        add_candidate(name="Recent sync", fec_candidate_id="H1", last_donor_sync=iso(1)),
        add_candidate(name="Old sync", fec_candidate_id="H2", last_donor_sync=iso(30)),
        add_candidate(name="No FEC id", fec_candidate_id=None, last_donor_sync=iso(40)),
        add_candidate(name="Never synced", fec_candidate_id="H3", last_donor_sync=None),
    ]


class TestSelection:
    def test_oldest_synced_first_with_data_only(self, ledger, stale_candidates):
        scheduler = BatchScheduler(ledger, ScriptedCalculator())

        selected = scheduler.select_candidates(BatchOptions(only_stale=False, only_with_data=True))

        assert [c.name for c in selected] == ["Old sync", "Recent sync"]

    def test_include_unsynced_puts_never_synced_first(self, ledger, stale_candidates):
        scheduler = BatchScheduler(ledger, ScriptedCalculator())

        selected = scheduler.select_candidates(BatchOptions(only_stale=False, only_with_data=False))

        assert [c.name for c in selected] == ["Never synced", "Old sync", "Recent sync"]

    def test_only_stale_skips_recently_checked(self, ledger, supabase, stale_candidates):
        supabase.tables["finance_reconciliation"] = [
            {"candidate_id": stale_candidates[0]["id"], "cycle": "2024", "checked_at": iso(2)},
            {"candidate_id": stale_candidates[1]["id"], "cycle": "2024", "checked_at": iso(8)},
        ]
        scheduler = BatchScheduler(ledger, ScriptedCalculator())

        selected = scheduler.select_candidates(BatchOptions(only_stale=True, only_with_data=False))

        assert [c.name for c in selected] == ["Never synced", "Old sync"]

    def test_only_stale_skips_recent_skipped_attempts(self, ledger, stale_candidates):
        stale_candidates[3]["last_finance_check"] = iso(1)
        stale_candidates[1]["last_finance_check"] = iso(9)
        scheduler = BatchScheduler(ledger, ScriptedCalculator())

        selected = scheduler.select_candidates(BatchOptions(only_stale=True, only_with_data=False))

        assert [c.name for c in selected] == ["Old sync", "Recent sync"]

    def test_limit(self, ledger, stale_candidates):
        scheduler = BatchScheduler(ledger, ScriptedCalculator())

        selected = scheduler.select_candidates(BatchOptions(only_stale=False, only_with_data=False, limit=1))

        assert [c.name for c in selected] == ["Never synced"]

    def test_explicit_candidate(self, ledger, stale_candidates):
        scheduler = BatchScheduler(ledger, ScriptedCalculator())

        selected = scheduler.select_candidates(BatchOptions(candidate_id=stale_candidates[2]["id"]))

        assert [c.name for c in selected] == ["No FEC id"]


class TestRunBatch:
    async def test_counts_and_failure_isolation(self, ledger, stale_candidates):
        from finance_recon.models.ledger import FinanceReconciliation

        def reconciled(status, pct):
            def build(candidate_id, cycle):
                return ReconcileOutcome(
                    candidate_id=candidate_id, cycle=cycle,
                    reconciliation=FinanceReconciliation(
                        candidate_id=candidate_id, cycle=cycle, status=status,
                        delta_pct=pct, individual_delta_pct=pct, pac_delta_pct=1.5,
                    ),
                )
            return build

        calculator = ScriptedCalculator({
            stale_candidates[3]["id"]: RuntimeError("boom"),
            stale_candidates[1]["id"]: reconciled("warning", -6.0),
            stale_candidates[0]["id"]: reconciled("ok", 0.5),
        })
        scheduler = BatchScheduler(ledger, calculator)

        report = await scheduler.run_batch(BatchOptions(only_stale=False, only_with_data=False,
                                                        variance_threshold=7))

        assert report.checked == 2
        assert report.ok_count == 1
        assert report.warning_count == 1
        assert report.skipped_count == 1
        assert report.error_count == 0
        assert [call[0] for call in calculator.calls] == [
            stale_candidates[3]["id"], stale_candidates[1]["id"], stale_candidates[0]["id"]
        ]
        assert all(call[2] == 7 for call in calculator.calls)
        warning = next(d for d in report.details if d.status == "warning")
        assert warning.individual_delta_pct == -6.0
        assert warning.pac_delta_pct == 1.5

    async def test_ledger_failure_aborts_run(self, ledger, stale_candidates):
        calculator = ScriptedCalculator({
            stale_candidates[1]["id"]: LedgerStoreError("connection refused"),
        })
        scheduler = BatchScheduler(ledger, calculator)

        with pytest.raises(LedgerStoreError):
            await scheduler.run_batch(BatchOptions(only_stale=False))

    async def test_store_unreachable_during_selection(self, ledger, supabase):
        supabase.fail_with = APIError({"message": "service unavailable", "code": "503"})
        scheduler = BatchScheduler(ledger, ScriptedCalculator())

        with pytest.raises(LedgerStoreError):
            await scheduler.run_batch(BatchOptions(only_stale=False))

    async def test_cancellation_between_candidates(self, ledger, stale_candidates):
        cancel = asyncio.Event()
        calculator = ScriptedCalculator()

        def cancel_after_first(candidate_id, cycle):
            cancel.set()
            return ReconcileOutcome(candidate_id=candidate_id, cycle=cycle, skipped=True)

        calculator.outcomes[stale_candidates[3]["id"]] = cancel_after_first
        state = BatchJobState()

        report = await BatchScheduler(ledger, calculator).run_batch(
            BatchOptions(only_stale=False, only_with_data=False), state, cancel
        )

        assert len(calculator.calls) == 1
        assert report.cancelled is True
        assert state.cancelled is True
        assert state.completed == [stale_candidates[3]["id"]]

    async def test_job_state_resumes_and_caps_attempts(self, ledger, stale_candidates):
        calculator = ScriptedCalculator({stale_candidates[1]["id"]: RuntimeError("flaky")})
        scheduler = BatchScheduler(ledger, calculator)
        options = BatchOptions(only_stale=False, only_with_data=True)
        state = BatchJobState(max_attempts=2)

        await scheduler.run_batch(options, state)
        await scheduler.run_batch(options, state)
        third = await scheduler.run_batch(options, state)

        assert state.attempts[stale_candidates[1]["id"]] == 2
        assert state.completed == [stale_candidates[0]["id"]]
        called = [call[0] for call in calculator.calls]
        assert called.count(stale_candidates[0]["id"]) == 1
        assert called.count(stale_candidates[1]["id"]) == 2
        assert third.checked == 0
        assert third.skipped_count == 1

    async def test_failed_candidate_is_not_counted_as_checked(self, ledger, stale_candidates):
        calculator = ScriptedCalculator({stale_candidates[0]["id"]: RuntimeError("boom")})

        report = await BatchScheduler(ledger, calculator).run_batch(
            BatchOptions(candidate_id=stale_candidates[0]["id"])
        )

        assert report.checked == 0
        assert report.skipped_count == 1
        assert report.details[0].error == "boom"

    async def test_skipped_candidates_do_not_crowd_out_the_next_run(self, ledger, supabase, stale_candidates):
        """A no-data outcome leaves no reconciliation row, so the attempt itself is stamped."""
        options = BatchOptions(only_stale=True, only_with_data=False, limit=1)
        scheduler = BatchScheduler(ledger, ScriptedCalculator())

        first = await scheduler.run_batch(options)
        second = await scheduler.run_batch(options)

        assert first.details[0].candidate_id == stale_candidates[3]["id"]
        assert second.details[0].candidate_id == stale_candidates[1]["id"]
        never_synced = next(r for r in supabase.rows("candidates") if r["id"] == stale_candidates[3]["id"])
        assert never_synced["last_finance_check"] is not None

    async def test_failed_attempt_stays_eligible(self, ledger, supabase, stale_candidates):
        calculator = ScriptedCalculator({stale_candidates[3]["id"]: RuntimeError("timeout")})

        await BatchScheduler(ledger, calculator).run_batch(
            BatchOptions(only_stale=True, only_with_data=False, limit=1)
        )

        row = next(r for r in supabase.rows("candidates") if r["id"] == stale_candidates[3]["id"])
        assert row.get("last_finance_check") is None

    async def test_report_uses_camel_case(self, ledger, stale_candidates):
        report = await BatchScheduler(ledger, ScriptedCalculator()).run_batch(
            BatchOptions(candidate_id=stale_candidates[0]["id"])
        )

        payload = report.model_dump(by_alias=True)
        assert payload["checked"] == 0
        assert payload["skippedCount"] == 1
        assert payload["details"][0]["candidateId"] == stale_candidates[0]["id"]
        assert payload["success"] is True
