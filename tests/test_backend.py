import json
import sys
from concurrent.futures import ThreadPoolExecutor
from datetime import date

import pandas as pd
import pytest
from postgrest.exceptions import APIError

import crm_backend as cb
import crm_records as rec
from crm_backend import CLIENT_TABLE, FNA_TABLE, PROSPECT_TABLE, BackendError, MockBackend


# ── CRUD ─────────────────────────────────────────────────────────────────────

def test_insert_assigns_id_and_timestamps():
    mb  = MockBackend()
    row = mb.insert(PROSPECT_TABLE, {"first_name": "A"})
    assert row["id"] == 1
    assert row["created_at"] and row["updated_at"]
    assert mb.insert(PROSPECT_TABLE, {"first_name": "B"})["id"] == 2


def test_concurrent_inserts_get_unique_ids(tmp_path):
    mb = MockBackend(tmp_path / "mock.json")
    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = list(pool.map(lambda n: mb.insert(PROSPECT_TABLE, {"first_name": f"P{n}"})["id"], range(40)))
    assert sorted(ids) == list(range(1, 41))
    saved = json.loads((tmp_path / "mock.json").read_text())
    assert saved["seq"][PROSPECT_TABLE] == 40
    assert len(saved["tables"][PROSPECT_TABLE]) == 40


def test_select_orders_and_filters(backend):
    rows = backend.select(PROSPECT_TABLE)
    assert [r["first_name"] for r in rows] == ["James", "Maria", "Anil"]
    asc = backend.select(PROSPECT_TABLE, desc=False)
    assert asc[0]["first_name"] == "Anil"
    hits = backend.select(PROSPECT_TABLE, eq={"result": "Business"})
    assert {r["first_name"] for r in hits} == {"Anil", "James"}


def test_select_returns_copies(backend):
    backend.select(PROSPECT_TABLE)[0]["first_name"] = "Changed"
    assert backend.select(PROSPECT_TABLE)[0]["first_name"] == "James"


def test_update_and_delete(backend):
    row = backend.update(PROSPECT_TABLE, 2, {"city": "Plano"})
    assert row["city"] == "Plano"
    backend.delete(PROSPECT_TABLE, 2)
    assert [r["id"] for r in backend.select(PROSPECT_TABLE)] == [3, 1]


def test_unknown_row_raises(backend):
    with pytest.raises(BackendError):
        backend.update(PROSPECT_TABLE, 999, {"city": "x"})
    with pytest.raises(BackendError):
        backend.delete(PROSPECT_TABLE, 999)


def test_json_file_persists(tmp_path):
    path = tmp_path / "mock.json"
    mb   = MockBackend(path)
    mb.insert(PROSPECT_TABLE, {"first_name": "A"})
    assert json.loads(path.read_text())["seq"][PROSPECT_TABLE] == 1

    again = MockBackend(path)
    assert again.select(PROSPECT_TABLE)[0]["first_name"] == "A"
    assert again.insert(PROSPECT_TABLE, {"first_name": "B"})["id"] == 2


def test_corrupt_json_file_raises(tmp_path):
    path = tmp_path / "mock.json"
    path.write_text("{not json")
    with pytest.raises(BackendError):
        MockBackend(path)


# ── RPCs ─────────────────────────────────────────────────────────────────────

def test_rpc_top_stats(backend):
    assert backend.rpc(cb.RPC_TOP_STATS) == [
        {"new_clients": 1, "bop_today": 1, "followup_today": 1, "completed_today": 1}
    ]


def test_rpc_charts(backend):
    assert len(backend.rpc(cb.RPC_COMPLETION)) == 7
    labels = [r["status_label"] for r in backend.rpc(cb.RPC_CALL_STATUS)]
    assert labels == ["Completed", "New Client", "Unknown"]


def test_rpc_upcoming_meetings(backend):
    names = [r["client_name"] for r in backend.rpc(cb.RPC_UPCOMING, {"p_start_date": None, "p_end_date": None})]
    assert names == ["Robert Thornton", "Linda Park"]


def test_rpc_paged_views(backend):
    page = backend.rpc(cb.RPC_ALL_RECORDS, {
        "p_limit": 2, "p_offset": 0, "p_sort_column": "client_name", "p_sort_direction": "asc",
    })
    assert [r["client_name"] for r in page] == ["Kevin Brooks", "Linda Park"]
    assert page[0]["total_count"] == 3

    progress = backend.rpc(cb.RPC_PROGRESS, {"p_limit": 10, "p_offset": 0})
    kevin = next(r for r in progress if r["client_name"] == "Kevin Brooks")
    assert kevin["call_attempts"] == 1
    assert kevin["followup_attempts"] == 0


def test_rpc_update_client_field_maps_lowercase_params(backend):
    backend.rpc(cb.RPC_UPDATE_FIELD, {"p_id": 3, "p_bop_status": "Meeting", "p_client_status": "Closed"})
    row = next(r for r in backend.select(CLIENT_TABLE) if r["id"] == 3)
    assert row["BOP_Status"] == "Meeting"
    assert row["client_status"] == "Closed"


def test_rpc_unknown_name_raises(backend):
    with pytest.raises(BackendError):
        backend.rpc("get_nothing")


def test_call_rpc_swallows_failures(backend, capsys):
    assert cb.call_rpc(backend, "get_nothing") is None
    assert "[callRPC] get_nothing" in capsys.readouterr().out


# ── Loaders ──────────────────────────────────────────────────────────────────

class _NoRpc(MockBackend):
    def rpc(self, name, params=None):
        raise BackendError("rpc unavailable")


def test_dashboard_summary_falls_back_to_local_aggregation(backend):
    broken = _NoRpc()
    for row in backend.select(CLIENT_TABLE, desc=False):
        broken.insert(CLIENT_TABLE, {k: v for k, v in row.items() if k not in ("id", "created_at", "updated_at")})

    assert cb.load_dashboard_summary(broken) == cb.load_dashboard_summary(backend)
    summary = cb.load_dashboard_summary(broken)
    assert summary["new_clients"] == 1
    assert summary["completion"][-1]["date"] == date.today().strftime("%b %d")
    assert {"status": "Unknown", "count": 1} in summary["call_status"]


def test_paged_loaders(backend):
    rows, total = cb.load_all_records(backend, 1, rec.SortConfig("client_name", "desc"))
    assert total == 3
    assert rows[0]["client_name"] == "Robert Thornton"

    rows, total = cb.load_progress(_fallback(backend), 1, rec.SortConfig("client_name"))
    assert total == 3
    assert [r["client_name"] for r in rows] == ["Kevin Brooks", "Linda Park", "Robert Thornton"]

    rows, total = cb.load_progress(_fallback(backend), 2, rec.SortConfig())
    assert (rows, total) == ([], 0)


def _fallback(backend):
    broken = _NoRpc()
    broken._tables = backend._tables
    return broken


def test_save_drafts_reports_failures(backend):
    saved, failed = cb.save_drafts(backend, {
        "1:client_status": "Interested",
        "abc:client_status": "Closed",
        "99:city": "Dallas",
    })
    assert saved == ["1:client_status"]
    assert set(failed) == {"abc:client_status", "99:city"}
    row = next(r for r in backend.select(CLIENT_TABLE) if r["id"] == 1)
    assert row["client_status"] == "Interested"


def test_save_client_field_date_payload(backend):
    payload = cb.save_client_field(backend, 2, "date_of_birth", "1985-01-02")
    assert payload == {"p_id": 2, "p_date_of_birth": "1985-01-02"}


# ── FNA ──────────────────────────────────────────────────────────────────────

def test_load_or_create_fna_reuses_active_header(backend):
    client = backend.select(CLIENT_TABLE, desc=False)[0]
    header, created = cb.load_or_create_fna(backend, client)
    assert created
    assert header["client_id"] == client["id"]
    assert header["client_name"] == "Robert Thornton"
    assert header["is_active"] is True

    again, created = cb.load_or_create_fna(backend, client)
    assert not created
    assert again["id"] == header["id"]
    assert len(backend.select(FNA_TABLE)) == 1


def test_save_fna_section_round(backend):
    client    = backend.select(CLIENT_TABLE, desc=False)[0]
    header, _ = cb.load_or_create_fna(backend, client)
    section   = rec.FNA_SECTION_BY_KEY["goals"]

    n = cb.save_fna_section(backend, section, [{"fna_id": header["id"], "goal_type": "College", "target_amount": 5000.0}], [], [])
    assert n == 1
    loaded = cb.load_fna_sections(backend, header["id"])
    assert [r["goal_type"] for r in loaded["goals"]] == ["College"]
    assert loaded["assets"] == []

    goal_id = loaded["goals"][0]["id"]
    cb.save_fna_section(backend, section, [], [(goal_id, {"target_amount": 9000.0})], [])
    assert cb.load_fna_sections(backend, header["id"])["goals"][0]["target_amount"] == 9000.0
    cb.save_fna_section(backend, section, [], [], [goal_id])
    assert cb.load_fna_sections(backend, header["id"])["goals"] == []


def test_create_sample_data():
    mb = MockBackend()
    cb.create_sample_data(mb)
    assert len(mb.select(PROSPECT_TABLE)) == 7
    assert len(mb.select(CLIENT_TABLE)) == 7
    header = mb.select(FNA_TABLE)[0]
    sections = cb.load_fna_sections(mb, header["id"])
    assert len(sections["assets"]) == 1
    assert rec.fna_summary(header, sections)["net_worth"] == 245000.0 - 310000.0


# ── Supabase error handling ──────────────────────────────────────────────────

class _FakeQuery:
    def __init__(self, data=None, error=None):
        self.data  = data
        self.error = error

    def __getattr__(self, name):
        return lambda *a, **kw: self

    def execute(self):
        if self.error:
            raise self.error
        return self


class _FakeClient:
    def __init__(self, query):
        self.query = query

    def table(self, name):
        return self.query

    def rpc(self, name, params):
        return self.query


def _live_backend(monkeypatch, query):
    monkeypatch.setattr(cb, "create_client", lambda url, key: _FakeClient(query))
    return cb.SupabaseBackend("https://example.supabase.co", "anon")


def test_supabase_api_error_becomes_backend_error(monkeypatch):
    err = APIError({"message": "permission denied for table prospects", "code": "42501"})
    live = _live_backend(monkeypatch, _FakeQuery(error=err))
    with pytest.raises(BackendError) as exc_info:
        live.select(PROSPECT_TABLE)
    assert exc_info.value.message == "permission denied for table prospects"


def test_supabase_transport_error_becomes_backend_error(monkeypatch):
    live = _live_backend(monkeypatch, _FakeQuery(error=ConnectionError("connection timed out")))
    with pytest.raises(BackendError) as exc_info:
        live.rpc(cb.RPC_TOP_STATS)
    assert exc_info.value.message == "connection timed out"
    assert cb.call_rpc(live, cb.RPC_TOP_STATS) is None


def test_supabase_update_without_rows_fails(monkeypatch):
    live = _live_backend(monkeypatch, _FakeQuery(data=[]))
    with pytest.raises(BackendError, match="No prospects row with id 9"):
        live.update(PROSPECT_TABLE, 9, {"city": "Plano"})


# ── CLI ──────────────────────────────────────────────────────────────────────

def _run_cli(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["crm_backend.py", "--mock", *argv])
    cb.main()


@pytest.fixture
def cli_paths(tmp_path, monkeypatch):
    monkeypatch.setattr(cb, "HAS_BACKEND", False)
    monkeypatch.setattr(cb, "MOCK_DB_PATH", tmp_path / "mock_backend.json")
    monkeypatch.setattr(cb, "EXPORT_DIR", tmp_path / "exports")
    return tmp_path


def test_cli_setup_stats_and_export_csv(cli_paths, monkeypatch, capsys):
    _run_cli(monkeypatch, "setup")
    assert (cli_paths / "mock_backend.json").exists()

    _run_cli(monkeypatch, "stats")
    out = capsys.readouterr().out
    assert "New Clients:" in out
    assert "Completed Today:" in out

    _run_cli(monkeypatch, "export", "all", "--format", "csv")
    dest  = cli_paths / "exports" / "all_records.csv"
    frame = pd.read_csv(dest)
    assert list(frame.columns) == [rec.label_for(c) for c in rec.ALL_COLUMNS]
    assert frame.columns[0] == "ID"
    assert len(frame) == 7


def test_cli_export_prospects_to_explicit_path(cli_paths, monkeypatch):
    _run_cli(monkeypatch, "setup")
    out = cli_paths / "out" / "prospects.xlsx"
    _run_cli(monkeypatch, "export", "prospects", "--format", "xlsx", "--out", str(out))
    frame = pd.read_excel(out, sheet_name="Prospects")
    assert list(frame.columns)[-1] == "Comments"
    assert len(frame) == 7


def test_cli_without_command_prints_help(cli_paths, monkeypatch, capsys):
    _run_cli(monkeypatch)
    assert "usage:" in capsys.readouterr().out
