"""Tests for rework_advisor.data.remote — SupabaseStore."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from rework_advisor.core.models import ReworkFeedback
from rework_advisor.data.base import StoreUnavailableError
from rework_advisor.data.remote import SupabaseStore
from rework_advisor.data.store import DataStore


# ── Helpers ───────────────────────────────────────────────────────────


def _pl_row(pl_id, code="VOLT-HIGH", mpi="mpi-1", **extra):
    row = {
        "id": pl_id,
        "pl_number": pl_id.upper(),
        "failure_code": code,
        "failure_description": "desc",
        "symptoms": ["voltage spike"],
        "root_cause": "cause",
        "corrective_mpi_id": mpi,
        "occurrence_count": 3,
        "success_rate": 75,
        "created_at": "2026-01-01T00:00:00Z",
        "updated_at": "2026-10-01T00:00:00Z",
    }
    row.update(extra)
    return row


def _mpi_row(mpi_id, title, step):
    return {
        "id": mpi_id,
        "title": title,
        "instruction_type": "rework",
        "step_number": step,
        "instruction_text": f"step {step}",
        "parent_mpi_id": None,
    }


def _mock_supabase_client(tables=None, execute_side_effect=None):
    """Build a MagicMock that mimics the supabase query builder chain.

    Every .table(name).select(...).in_()/or_()/order()...execute() chain
    returns a response whose `data` is tables[name].
    """
    tables = tables or {}
    client = MagicMock()
    chains = {}

    def _table(name):
        if name not in chains:
            table_mock = MagicMock()
            chain = MagicMock()
            chain.in_.return_value = chain
            chain.or_.return_value = chain
            chain.order.return_value = chain
            if execute_side_effect:
                chain.execute.side_effect = execute_side_effect
            else:
                resp = MagicMock()
                resp.data = tables.get(name, [])
                chain.execute.return_value = resp
            table_mock.select.return_value = chain
            chains[name] = table_mock
        return chains[name]

    client.table.side_effect = _table
    client.chains = chains
    return client


def _store_with(client) -> SupabaseStore:
    store = SupabaseStore(supabase_url="https://x.supabase.co", supabase_key="k")
    store._client = client
    return store


# ── Credentials ───────────────────────────────────────────────────────


class TestCredentials:
    """Credential resolution: constructor → env var → config DB."""

    def test_not_configured_by_default(self, temp_db: DataStore, monkeypatch):
        monkeypatch.delenv("REWORK_ADVISOR_SUPABASE_URL", raising=False)
        monkeypatch.delenv("REWORK_ADVISOR_SUPABASE_KEY", raising=False)
        store = SupabaseStore(config=temp_db)
        assert store.is_configured is False

    def test_configured_via_constructor(self):
        store = SupabaseStore(supabase_url="https://x.supabase.co", supabase_key="k")
        assert store.is_configured is True

    def test_configured_via_config_db(self, temp_db: DataStore, monkeypatch):
        monkeypatch.delenv("REWORK_ADVISOR_SUPABASE_URL", raising=False)
        monkeypatch.delenv("REWORK_ADVISOR_SUPABASE_KEY", raising=False)
        temp_db.set_config("supabase-url", "https://db.supabase.co")
        temp_db.set_config("supabase-key", "db-key")
        store = SupabaseStore(config=temp_db)
        assert store.supabase_url == "https://db.supabase.co"
        assert store.supabase_key == "db-key"

    @patch.dict(
        "os.environ",
        {
            "REWORK_ADVISOR_SUPABASE_URL": "https://env.supabase.co",
            "REWORK_ADVISOR_SUPABASE_KEY": "env-key",
        },
    )
    def test_env_vars_take_priority(self, temp_db: DataStore):
        temp_db.set_config("supabase-url", "https://db.supabase.co")
        temp_db.set_config("supabase-key", "db-key")
        store = SupabaseStore(config=temp_db)
        assert store.supabase_url == "https://env.supabase.co"
        assert store.supabase_key == "env-key"

    def test_unconfigured_lookup_raises(self, monkeypatch):
        monkeypatch.delenv("REWORK_ADVISOR_SUPABASE_URL", raising=False)
        monkeypatch.delenv("REWORK_ADVISOR_SUPABASE_KEY", raising=False)
        store = SupabaseStore()
        with pytest.raises(StoreUnavailableError, match="not configured"):
            store.fetch_records(["VOLT-HIGH"])

    @patch("supabase.create_client", side_effect=Exception("bad url"))
    def test_client_creation_failure_raises(self, _create):
        store = SupabaseStore(supabase_url="https://x.supabase.co", supabase_key="k")
        with pytest.raises(StoreUnavailableError, match="bad url"):
            store.fetch_records(["VOLT-HIGH"])


# ── Lookups ───────────────────────────────────────────────────────────


class TestFetchRecords:
    def test_single_in_query_and_conversion(self):
        client = _mock_supabase_client({
            "process_logs_database": [
                _pl_row("pl-1", total_feedback_count=0, average_feedback_rating=None),
            ],
        })
        store = _store_with(client)

        [record] = store.fetch_records(["VOLT-HIGH", "PRESS-LOW"])

        chain = client.chains["process_logs_database"].select.return_value
        chain.in_.assert_called_once_with("failure_code", ["VOLT-HIGH", "PRESS-LOW"])
        assert [c.args for c in chain.order.call_args_list] == [
            ("created_at",),
            ("id",),
        ]
        assert record.pl_number == "PL-1"
        assert record.last_occurrence_date.year == 2026
        assert record.last_occurrence_date.month == 10
        assert record.total_feedback_count == 0
        assert "rework_feedback" not in client.chains

    def test_feedback_stats_aggregated_when_missing(self):
        client = _mock_supabase_client({
            "process_logs_database": [_pl_row("pl-1"), _pl_row("pl-2")],
            "rework_feedback": [
                {"process_log_database_id": "pl-1", "rating": 3},
                {"process_log_database_id": "pl-1", "rating": 2},
            ],
        })
        store = _store_with(client)

        first, second = store.fetch_records(["VOLT-HIGH"])

        assert first.total_feedback_count == 2
        assert first.average_feedback_rating == pytest.approx(2.5)
        assert second.total_feedback_count == 0
        assert second.average_feedback_rating is None
        fb_chain = client.chains["rework_feedback"].select.return_value
        fb_chain.in_.assert_called_once_with(
            "process_log_database_id", ["pl-1", "pl-2"]
        )

    def test_empty_codes_skip_query(self):
        client = _mock_supabase_client()
        assert _store_with(client).fetch_records([]) == []
        client.table.assert_not_called()

    def test_postgrest_trimmed_fraction_parses(self):
        client = _mock_supabase_client({
            "process_logs_database": [
                _pl_row(
                    "pl-1",
                    last_occurrence_date="2026-10-16T08:15:42.12345+00:00",
                    total_feedback_count=0,
                ),
            ],
        })
        [record] = _store_with(client).fetch_records(["VOLT-HIGH"])
        assert record.last_occurrence_date.microsecond == 123450

    def test_malformed_row_raises_store_unavailable(self):
        client = _mock_supabase_client({
            "process_logs_database": [
                _pl_row("pl-1", last_occurrence_date="soon", total_feedback_count=0),
            ],
        })
        with pytest.raises(StoreUnavailableError, match="Malformed row"):
            _store_with(client).fetch_records(["VOLT-HIGH"])

    def test_query_failure_raises(self):
        client = _mock_supabase_client(execute_side_effect=Exception("timeout"))
        with pytest.raises(StoreUnavailableError, match="timeout"):
            _store_with(client).fetch_records(["VOLT-HIGH"])


class TestFetchInstructions:
    def test_in_query_by_id(self):
        client = _mock_supabase_client({
            "manufacturing_process_instructions": [
                _mpi_row("mpi-1", "Reflow - Preheat", 1),
            ],
        })
        found = _store_with(client).fetch_instructions(["mpi-1", "mpi-9"])
        assert set(found) == {"mpi-1"}
        assert found["mpi-1"].group_key == "Reflow"


class TestFetchInstructionGroups:
    def test_groups_by_title_prefix(self):
        client = _mock_supabase_client({
            "manufacturing_process_instructions": [
                _mpi_row("r1", "Reflow - Preheat", 1),
                _mpi_row("s1", "Seal", 1),
                _mpi_row("r2", "Reflow - Solder", 2),
                _mpi_row("x1", "Reflow Oven - Clean", 1),
            ],
        })
        store = _store_with(client)

        groups = store.fetch_instruction_groups(["Reflow", "Seal"])

        assert [s.id for s in groups["Reflow"]] == ["r1", "r2"]
        assert [s.id for s in groups["Seal"]] == ["s1"]
        chain = client.chains["manufacturing_process_instructions"].select.return_value
        filters = chain.or_.call_args[0][0]
        assert 'title.eq."Reflow"' in filters
        assert 'title.like."Reflow - *"' in filters
        chain.order.assert_called_once_with("step_number", desc=False)


# ── Feedback ──────────────────────────────────────────────────────────


class TestRecordFeedback:
    def test_inserts_row(self):
        client = MagicMock()
        store = _store_with(client)
        store.record_feedback(
            ReworkFeedback(process_log_id="pl-1", rating=3, was_successful=True)
        )
        client.table.assert_called_once_with("rework_feedback")
        payload = client.table.return_value.insert.call_args[0][0]
        assert payload["process_log_database_id"] == "pl-1"
        assert payload["rating"] == 3
        assert payload["was_successful"] is True

    def test_insert_failure_raises(self):
        client = MagicMock()
        client.table.return_value.insert.return_value.execute.side_effect = (
            Exception("network down")
        )
        with pytest.raises(StoreUnavailableError):
            _store_with(client).record_feedback(
                ReworkFeedback(process_log_id="pl-1", rating=1, was_successful=False)
            )
