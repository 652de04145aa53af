"""Tests for external id management and committee linking."""
import pytest

from finance_recon.exceptions import CommitteeLinkError, FinanceAPITransportError
from finance_recon.services.committees import (
    CommitteeLinker,
    add_external_id,
    remove_external_id,
    set_committee_active,
    set_primary_external_id,
)


class TestExternalIds:
    def test_first_id_becomes_primary(self, ledger, supabase, add_candidate):
        candidate = add_candidate(fec_candidate_id=None)

        record = add_external_id(ledger, candidate["id"], "H4CA12345", office="H", state="CA")

        assert record.is_primary is True
        assert supabase.rows("candidates")[0]["fec_candidate_id"] == "H4CA12345"

    def test_new_primary_demotes_previous(self, ledger, add_candidate):
        candidate = add_candidate()
        add_external_id(ledger, candidate["id"], "H4CA12345")
        add_external_id(ledger, candidate["id"], "S6CA00001", is_primary=True)

        records = ledger.list_external_ids(candidate["id"])

        assert [r.fec_candidate_id for r in records if r.is_primary] == ["S6CA00001"]
        assert len(records) == 2

    def test_secondary_id_is_not_primary(self, ledger, add_candidate):
        candidate = add_candidate()
        add_external_id(ledger, candidate["id"], "H4CA12345")

        record = add_external_id(ledger, candidate["id"], "S6CA00001")

        assert record.is_primary is False

    def test_set_primary(self, ledger, supabase, add_candidate):
        candidate = add_candidate()
        add_external_id(ledger, candidate["id"], "H4CA12345")
        second = add_external_id(ledger, candidate["id"], "S6CA00001")

        set_primary_external_id(ledger, second.id)

        primaries = [r.fec_candidate_id for r in ledger.list_external_ids(candidate["id"]) if r.is_primary]
        assert primaries == ["S6CA00001"]
        assert supabase.rows("candidates")[0]["fec_candidate_id"] == "S6CA00001"

    def test_removing_primary_promotes_oldest(self, ledger, add_candidate):
        candidate = add_candidate()
        first = add_external_id(ledger, candidate["id"], "H4CA12345")
        add_external_id(ledger, candidate["id"], "S6CA00001")
        add_external_id(ledger, candidate["id"], "P8000001")

        remove_external_id(ledger, first.id)

        remaining = ledger.list_external_ids(candidate["id"])
        assert [r.fec_candidate_id for r in remaining if r.is_primary] == ["S6CA00001"]

    def test_removing_last_id_clears_candidate(self, ledger, supabase, add_candidate):
        candidate = add_candidate()
        only = add_external_id(ledger, candidate["id"], "H4CA12345")

        remove_external_id(ledger, only.id)

        assert ledger.list_external_ids(candidate["id"]) == []
        assert supabase.rows("candidates")[0]["fec_candidate_id"] is None


class TestCommitteeLinker:
    async def test_links_principal_and_authorized_only(self, ledger, supabase, fake_client, add_candidate, summary):
        candidate = add_candidate()
        fake_client.committees["H4CA12345"] = [
            summary("C00222222", "A"),
            summary("C00111111", "P"),
            summary("C00999999", "J"),
        ]

        result = await CommitteeLinker(ledger, fake_client).link_committees(candidate["id"])

        stored = sorted(row["fec_committee_id"] for row in supabase.rows("candidate_committees"))
        assert stored == ["C00111111", "C00222222"]
        assert result.primary_committee_id == "C00111111"
        assert supabase.rows("candidates")[0]["fec_committee_id"] == "C00111111"
        assert all(row["source_fec_candidate_id"] == "H4CA12345" for row in supabase.rows("candidate_committees"))

    async def test_relinking_keeps_operator_deactivation(self, ledger, supabase, fake_client, add_candidate, summary):
        """Linking twice neither duplicates committees nor re-activates one an operator switched off."""
        candidate = add_candidate()
        fake_client.committees["H4CA12345"] = [summary("C00111111", "P"), summary("C00222222", "A")]
        linker = CommitteeLinker(ledger, fake_client)
        await linker.link_committees(candidate["id"])

        authorized = next(c for c in ledger.list_committees(candidate["id"]) if c.fec_committee_id == "C00222222")
        set_committee_active(ledger, authorized.id, False)

        await linker.link_committees(candidate["id"])

        rows = supabase.rows("candidate_committees")
        assert len(rows) == 2
        assert next(r for r in rows if r["fec_committee_id"] == "C00222222")["active"] is False

    async def test_links_every_stored_id(self, ledger, supabase, fake_client, add_candidate, summary):
        candidate = add_candidate()
        add_external_id(ledger, candidate["id"], "H4CA12345")
        add_external_id(ledger, candidate["id"], "S6CA00001")
        fake_client.committees = {
            "H4CA12345": [summary("C00111111", "P")],
            "S6CA00001": [summary("C00333333", "P")],
        }

        result = await CommitteeLinker(ledger, fake_client).link_committees(candidate["id"])

        sources = {r["fec_committee_id"]: r["source_fec_candidate_id"] for r in supabase.rows("candidate_committees")}
        assert sources == {"C00111111": "H4CA12345", "C00333333": "S6CA00001"}
        assert result.primary_committee_id == "C00111111"
        assert result.fec_ids_processed == 2

    async def test_failed_id_is_skipped(self, ledger, fake_client, add_candidate, summary):
        candidate = add_candidate()
        add_external_id(ledger, candidate["id"], "H4CA12345")
        add_external_id(ledger, candidate["id"], "S6CA00001")
        fake_client.committees = {
            "H4CA12345": FinanceAPITransportError("timeout"),
            "S6CA00001": [summary("C00333333", "P")],
        }

        result = await CommitteeLinker(ledger, fake_client).link_committees(candidate["id"])

        assert result.fec_ids_processed == 1
        assert [c.fec_committee_id for c in ledger.list_committees(candidate["id"])] == ["C00333333"]

    async def test_candidate_without_fec_id(self, ledger, fake_client, add_candidate):
        candidate = add_candidate(fec_candidate_id=None)

        with pytest.raises(CommitteeLinkError):
            await CommitteeLinker(ledger, fake_client).link_committees(candidate["id"])

    def test_toggle_unknown_committee(self, ledger):
        assert set_committee_active(ledger, "missing", False) is None
