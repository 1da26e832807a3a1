#!/usr/bin/env python3
"""
CAN CRM backend access: Supabase tables and RPCs, with a local mock.

Commands:
    setup                                  Seed sample data into the mock backend
    stats                                  Print the dashboard counters
    export {prospects,upcoming,progress,all} [--out PATH] [--format xlsx|csv]

Quick start:
    pip install -e .
    export SUPABASE_URL=https://<project>.supabase.co
    export SUPABASE_ANON_KEY=...
    python crm_backend.py stats

Mock mode (no credentials required):
    python crm_backend.py --mock setup
    python crm_backend.py --mock export all --out data/exports/all_records.xlsx
"""

import os
import sys
import json
import argparse
import threading
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from pathlib import Path

from dotenv import load_dotenv
from postgrest.exceptions import APIError
from supabase import create_client

import crm_records as rec

load_dotenv()

# ─────────────────────────────────────────────────────────────────────────────
# Config
# ─────────────────────────────────────────────────────────────────────────────

DATA_DIR     = Path("data")
MOCK_DB_PATH = DATA_DIR / "mock_backend.json"
EXPORT_DIR   = DATA_DIR / "exports"

SUPABASE_URL      = os.getenv("SUPABASE_URL", "")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")
HAS_BACKEND       = bool(SUPABASE_URL and SUPABASE_ANON_KEY)

PROSPECT_TABLE = "prospects"
CLIENT_TABLE   = "client_registrations"
FNA_TABLE      = "fna_header"

RPC_TOP_STATS    = "get_top_stats"
RPC_COMPLETION   = "get_bop_followup_completion_chart"
RPC_CALL_STATUS  = "get_call_status_chart"
RPC_UPCOMING     = "get_upcoming_meetings"
RPC_PROGRESS     = "get_progress_monitoring"
RPC_ALL_RECORDS  = "get_all_records"
RPC_UPDATE_FIELD = "update_client_field"

ALL_PAGE_SIZE      = 10
PROGRESS_PAGE_SIZE = 10


class BackendError(Exception):
    """A failed backend call, carrying the message shown to the user."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


@contextmanager
def _translate_errors(action: str):
    try:
        yield
    except BackendError:
        raise
    except APIError as exc:
        raise BackendError(exc.message or str(exc)) from exc
    except Exception as exc:
        print(f"[backend] {action} failed: {exc}")
        raise BackendError(str(exc)) from exc


# ─────────────────────────────────────────────────────────────────────────────
# Supabase
# ─────────────────────────────────────────────────────────────────────────────

class SupabaseBackend:
    """Thin wrapper over the Supabase client; every call returns plain dicts."""

    mode = "live"

    def __init__(self, url: str, key: str):
        self.client = create_client(url, key)

    def select(self, table: str, order: str = "id", desc: bool = True, eq: dict = None) -> list:
        with _translate_errors(f"select {table}"):
            query = self.client.table(table).select("*")
            for col, val in (eq or {}).items():
                query = query.eq(col, val)
            resp = query.order(order, desc=desc).execute()
        return resp.data or []

    def insert(self, table: str, row: dict) -> dict:
        with _translate_errors(f"insert {table}"):
            resp = self.client.table(table).insert(row).execute()
        return (resp.data or [{}])[0]

    def update(self, table: str, row_id, fields: dict) -> dict:
        with _translate_errors(f"update {table}"):
            resp = self.client.table(table).update(fields).eq("id", row_id).execute()
        if not resp.data:
            raise BackendError(f"No {table} row with id {row_id}")
        return resp.data[0]

    def delete(self, table: str, row_id) -> None:
        with _translate_errors(f"delete {table}"):
            self.client.table(table).delete().eq("id", row_id).execute()

    def rpc(self, name: str, params: dict = None):
        with _translate_errors(f"rpc {name}"):
            resp = self.client.rpc(name, params or {}).execute()
        return resp.data


# ─────────────────────────────────────────────────────────────────────────────
# Mock backend
# Same interface as SupabaseBackend, kept in a JSON file under data/ so demo
# edits survive a Streamlit rerun.  path=None keeps everything in memory.
# ─────────────────────────────────────────────────────────────────────────────

class MockBackend:
    """In-process stand-in for the Supabase tables and RPC functions."""

    mode = "mock"

    def __init__(self, path=None):
        self._path   = Path(path) if path else None
        self._lock   = threading.RLock()
        self._tables = {}
        self._seq    = {}
        if self._path and self._path.exists():
            try:
                raw = json.loads(self._path.read_text())
            except (OSError, ValueError) as exc:
                raise BackendError(f"Mock backend file is unreadable: {exc}") from exc
            self._tables = raw.get("tables", {})
            self._seq    = raw.get("seq", {})
            print(f"[mock] loaded {sum(len(v) for v in self._tables.values())} rows from {self._path}")

    def _save(self) -> None:
        if not self._path:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps({"tables": self._tables, "seq": self._seq}, indent=2, default=str))

    @staticmethod
    def _now() -> str:
        return datetime.now().isoformat(timespec="seconds")

    def _find(self, table: str, row_id) -> dict:
        for row in self._tables.get(table, []):
            if str(row.get("id")) == str(row_id):
                return row
        raise BackendError(f"No {table} row with id {row_id}")

    def select(self, table: str, order: str = "id", desc: bool = True, eq: dict = None) -> list:
        with self._lock:
            rows = [dict(r) for r in self._tables.get(table, [])]
        for col, val in (eq or {}).items():
            rows = [r for r in rows if r.get(col) == val]
        return rec.sort_rows(rows, order, "desc" if desc else "asc")

    def insert(self, table: str, row: dict) -> dict:
        with self._lock:
            seq = self._seq.get(table, 0) + 1
            self._seq[table] = seq
            now    = self._now()
            record = {"id": seq, "created_at": now, "updated_at": now, **row}
            self._tables.setdefault(table, []).append(record)
            self._save()
            return dict(record)

    def update(self, table: str, row_id, fields: dict) -> dict:
        with self._lock:
            row = self._find(table, row_id)
            row.update(fields)
            row["updated_at"] = self._now()
            self._save()
            return dict(row)

    def delete(self, table: str, row_id) -> None:
        with self._lock:
            row = self._find(table, row_id)
            self._tables[table].remove(row)
            self._save()

    # ── RPC functions ────────────────────────────────────────────────────────

    def rpc(self, name: str, params: dict = None):
        params  = params or {}
        clients = self.select(CLIENT_TABLE)
        today   = date.today()

        if name == RPC_TOP_STATS:
            return [rec.top_stats(clients, today)]
        if name == RPC_COMPLETION:
            return rec.completion_chart(clients, today)
        if name == RPC_CALL_STATUS:
            return rec.call_status_chart(clients)
        if name == RPC_UPCOMING:
            return rec.upcoming_meetings(clients, params.get("p_start_date"), params.get("p_end_date"), today)
        if name in (RPC_PROGRESS, RPC_ALL_RECORDS):
            rows = rec.progress_monitoring(clients) if name == RPC_PROGRESS else clients
            return rec.page_with_total(
                rows,
                limit          = params.get("p_limit", ALL_PAGE_SIZE),
                offset         = params.get("p_offset", 0),
                sort_column    = params.get("p_sort_column"),
                sort_direction = params.get("p_sort_direction", "asc"),
            )
        if name == RPC_UPDATE_FIELD:
            return self._update_client_field(params)
        raise BackendError(f"Could not find the function public.{name}")

    def _update_client_field(self, params: dict) -> dict:
        if "p_id" not in params:
            raise BackendError("p_id is required")
        with self._lock:
            row    = self._find(CLIENT_TABLE, params["p_id"])
            by_low = {c.lower(): c for c in rec.ALL_COLUMNS}
            by_low.update({k.lower(): k for k in row})
            for param, val in params.items():
                if param == "p_id":
                    continue
                low = param[2:]
                row[by_low.get(low, low)] = val
            row["updated_at"] = self._now()
            self._save()
            return dict(row)


def get_backend(mock: bool = False):
    if HAS_BACKEND and not mock:
        return SupabaseBackend(SUPABASE_URL, SUPABASE_ANON_KEY)
    return MockBackend(MOCK_DB_PATH)


def call_rpc(backend, name: str, params: dict = None):
    """RPC call that reports failures as None instead of raising."""
    try:
        return backend.rpc(name, params or {})
    except BackendError as exc:
        print(f"[callRPC] {name}: {exc.message}")
        return None


# ─────────────────────────────────────────────────────────────────────────────
# Dashboard loaders
# Each tries the backend RPC first and falls back to aggregating the
# client_registrations rows locally when the RPC is missing or fails.
# ─────────────────────────────────────────────────────────────────────────────

def load_dashboard_summary(backend, today: date = None) -> dict:
    today   = today or date.today()
    clients = None

    def rows():
        nonlocal clients
        if clients is None:
            clients = backend.select(CLIENT_TABLE)
        return clients

    stats = call_rpc(backend, RPC_TOP_STATS)
    stats = stats[0] if stats else rec.top_stats(rows(), today)

    completion = call_rpc(backend, RPC_COMPLETION)
    if completion is None:
        completion = rec.completion_chart(rows(), today)

    call_status = call_rpc(backend, RPC_CALL_STATUS)
    if call_status is None:
        call_status = rec.call_status_chart(rows())

    return {
        "new_clients":     stats.get("new_clients") or 0,
        "bop_today":       stats.get("bop_today") or 0,
        "followup_today":  stats.get("followup_today") or 0,
        "completed_today": stats.get("completed_today") or 0,
        "completion": [
            {
                "date":            c.get("date_label") or "",
                "BOP Calls":       c.get("bop_count") or 0,
                "Follow-Up Calls": c.get("followup_count") or 0,
                "Completed":       c.get("completed_count") or 0,
            }
            for c in completion
        ],
        "call_status": [
            {"status": c.get("status_label") or "Unknown", "count": c.get("count") or 0}
            for c in call_status
        ],
    }


def load_upcoming(backend, start: str = "", end: str = "") -> list:
    data = call_rpc(backend, RPC_UPCOMING, {
        "p_start_date": start or None,
        "p_end_date":   end or None,
    })
    if data is None:
        data = rec.upcoming_meetings(backend.select(CLIENT_TABLE), start, end)
    return data


def _load_paged(backend, rpc_name: str, page: int, page_size: int, sort: rec.SortConfig) -> tuple:
    params = {
        "p_limit":          page_size,
        "p_offset":         (page - 1) * page_size,
        "p_sort_column":    sort.key,
        "p_sort_direction": sort.direction,
    }
    data = call_rpc(backend, rpc_name, params)
    if data is None:
        clients = backend.select(CLIENT_TABLE)
        source  = rec.progress_monitoring(clients) if rpc_name == RPC_PROGRESS else clients
        data    = rec.page_with_total(source, page_size, params["p_offset"], sort.key, sort.direction)
    total = data[0].get("total_count", 0) if data else 0
    return data, total


def load_progress(backend, page: int, sort: rec.SortConfig) -> tuple:
    return _load_paged(backend, RPC_PROGRESS, page, PROGRESS_PAGE_SIZE, sort)


def load_all_records(backend, page: int, sort: rec.SortConfig) -> tuple:
    return _load_paged(backend, RPC_ALL_RECORDS, page, ALL_PAGE_SIZE, sort)


def save_client_field(backend, row_id, key: str, value: str) -> dict:
    payload = rec.build_update_payload(row_id, key, value)
    if payload is None:
        raise BackendError(f"Invalid row id {row_id!r}")
    result = backend.rpc(RPC_UPDATE_FIELD, payload)
    if not result:
        raise BackendError("Update failed")
    return payload


def save_drafts(backend, drafts: dict) -> tuple:
    """Write every pending cell; returns (saved cell ids, {cell id: error})."""
    saved, failed = [], {}
    for cid, value in drafts.items():
        row_id, key = rec.split_cell_id(cid)
        try:
            save_client_field(backend, row_id, key, value)
        except BackendError as exc:
            failed[cid] = exc.message
            continue
        saved.append(cid)
    return saved, failed


# ─────────────────────────────────────────────────────────────────────────────
# FNA persistence
# ─────────────────────────────────────────────────────────────────────────────

def find_active_fna(backend, client_id):
    rows = backend.select(FNA_TABLE, eq={"client_id": client_id, "is_active": True})
    return rows[0] if rows else None


def load_or_create_fna(backend, client: dict) -> tuple:
    """Return (header, created) for the client's active FNA."""
    header = find_active_fna(backend, client.get("id"))
    if header:
        return header, False
    form = rec.empty_fna_form()
    for key in ("client_name", "spouse_name", "phone", "email", "city"):
        form[key] = client.get(key) or ""
    form["state"]         = rec.state_to_name(client.get("state"))
    form["date_of_birth"] = rec.cell_text(client.get("date_of_birth"), "date_of_birth")
    return backend.insert(FNA_TABLE, rec.fna_header_payload(client, form)), True


def load_fna_sections(backend, fna_id) -> dict:
    return {
        s.key: backend.select(s.table, order="id", desc=False, eq={"fna_id": fna_id})
        for s in rec.FNA_SECTIONS
    }


def save_fna_section(backend, section, inserts: list, updates: list, deletes: list) -> int:
    for row in inserts:
        backend.insert(section.table, row)
    for row_id, fields in updates:
        backend.update(section.table, row_id, fields)
    for row_id in deletes:
        backend.delete(section.table, row_id)
    return len(inserts) + len(updates) + len(deletes)


# ─────────────────────────────────────────────────────────────────────────────
# Sample Data Generator
# ─────────────────────────────────────────────────────────────────────────────

def create_sample_data(backend) -> None:
    """Seed demo prospects, client registrations and one FNA."""
    today = datetime.now().replace(second=0, microsecond=0)

    prospects = [
        ("Anil",   "Kumar",     "Priya",  "Friend",          "(469) 555-0110", "Frisco",      "TX", "Business"),
        ("Maria",  "Lopez",     "",       "Referral/Others", "(214) 555-0142", "Plano",       "tx", "In-Progress"),
        ("James",  "Okafor",    "Ada",    "Relative",        "(972) 555-0175", "Irving",      "TX - Texas", "Client Solution"),
        ("Wei",    "Zhang",     "Lin",    "Acquaintance",    "(408) 555-0133", "San Jose",    "CA", "Called"),
        ("Sarah",  "Thompson",  "",       "Friend",          "(312) 555-0188", "Naperville",  "IL", "Not Interested"),
        ("Ravi",   "Shah",      "Meera",  "Friend",          "(732) 555-0119", "Edison",      "NJ", "Both"),
        ("Daniel", "Reyes",     "",       "Acquaintance",    "(305) 555-0161", "Miami",       "Florida", "Others"),
    ]
    for first, last, spouse, rel, phone, city, state, result in prospects:
        backend.insert(PROSPECT_TABLE, {
            "first_name":    first,
            "last_name":     last,
            "spouse_name":   spouse or None,
            "relation_type": rel,
            "phone":         phone,
            "city":          city,
            "state":         state,
            "top25":         "Y",
            "age25plus":     "yes",
            "married":       "Y" if spouse else "N",
            "children":      "N",
            "homeowner":     "true",
            "good_career":   "Y",
            "income_60k":    "Y",
            "dissatisfied":  "N",
            "ambitious":     "Yes",
            "contact_date":  (today - timedelta(days=len(first))).strftime("%Y-%m-%d"),
            "result":        result,
            "next_steps":    "Schedule BOP" if result in ("Business", "Both") else None,
        })

    clients = [
        ("Robert Thornton", "r.thornton@email.com", "(630) 555-0192", "New Client",  0,  2, "Call",     None),
        ("Linda Park",      "l.park@email.com",     "(214) 555-0101", "Interested",  -1, 0, "Meeting",  5),
        ("Kevin Brooks",    "k.brooks@email.com",   "(469) 555-0156", "In-Progress", -3, 7, "Complete", 0),
        ("Asha Menon",      "asha.m@email.com",     "(972) 555-0127", "Completed",   -6, -2, "Complete", -1),
        ("Tom Alvarez",     "t.alvarez@email.com",  "(817) 555-0144", "On Hold",     -10, 21, "Call",   None),
        ("Grace Kim",       "g.kim@email.com",      "(408) 555-0170", "Closed",      -20, -15, "Closed", None),
        ("Omar Haddad",     "o.haddad@email.com",   "(713) 555-0139", "New Client",  None, 12, "",      3),
    ]
    for name, email, phone, status, called, bop, bop_status, follow in clients:
        backend.insert(CLIENT_TABLE, {
            "client_name":        name,
            "email":              email,
            "phone":              phone,
            "CalledOn":           (today + timedelta(days=called)).isoformat() if called is not None else None,
            "BOP_Date":           (today + timedelta(days=bop, hours=2)).isoformat(),
            "BOP_Status":         bop_status,
            "Followup_Date":      (today + timedelta(days=follow)).isoformat() if follow is not None else None,
            "FollowUp_Status":    "Call" if follow is not None else "",
            "client_status":      status,
            "spouse_name":        None,
            "date_of_birth":      "1980-05-14",
            "children":           "2",
            "city":               "Dallas",
            "state":              "TX",
            "immigration_status": "U.S. Citizen",
            "work_details":       "Software engineer",
            "referred_by":        "Anil Kumar",
            "interest_type":      "Insurance, Retirement",
        })

    first_client = backend.select(CLIENT_TABLE, order="id", desc=False)[0]
    header, _ = load_or_create_fna(backend, first_client)
    fna_id = header["id"]
    backend.insert("fna_assets", {"fna_id": fna_id, "asset_type": "401(k)/403(b)",
                                  "description": "Employer plan", "owner": "Client",
                                  "current_value": 245000.0, "monthly_contribution": 1500.0})
    backend.insert("fna_liabilities", {"fna_id": fna_id, "liability_type": "Mortgage",
                                       "lender": "First Bank", "balance": 310000.0,
                                       "interest_rate": 6.1, "monthly_payment": 2250.0})
    backend.insert("fna_insurance", {"fna_id": fna_id, "policy_type": "Term Life",
                                     "carrier": "Transamerica", "insured": "Client",
                                     "coverage_amount": 500000.0, "annual_premium": 620.0})
    backend.insert("fna_goals", {"fna_id": fna_id, "goal_type": "College",
                                 "description": "Two children", "target_amount": 180000.0,
                                 "current_savings": 25000.0, "target_year": today.year + 10})

    print("Sample data created:")
    print(f"  {len(prospects)} prospects, {len(clients)} client registrations, 1 FNA ({backend.mode} backend)")


# ─────────────────────────────────────────────────────────────────────────────
# CLI
# ─────────────────────────────────────────────────────────────────────────────

def _print_stats(backend) -> None:
    summary = load_dashboard_summary(backend)
    print("── Dashboard ────────────────────────────────────────────────")
    print(f"  New Clients:            {summary['new_clients']}")
    print(f"  BOP Calls Today:        {summary['bop_today']}")
    print(f"  Follow-Up Calls Today:  {summary['followup_today']}")
    print(f"  Completed Today:        {summary['completed_today']}")
    print("── BOP, Follow-Up & Completion (Last 7 Days) ────────────────")
    for day in summary["completion"]:
        print(f"  {day['date']}:  BOP {day['BOP Calls']}  Follow-Up {day['Follow-Up Calls']}  Completed {day['Completed']}")


def _export(backend, what: str, out: str, fmt: str) -> Path:
    import crm_export

    if what == "prospects":
        filename, data = crm_export.export_prospects(backend.select(PROSPECT_TABLE), fmt)
    elif what == "upcoming":
        filename, data = crm_export.export_upcoming(load_upcoming(backend), fmt)
    elif what == "progress":
        rows = rec.sort_rows(rec.progress_monitoring(backend.select(CLIENT_TABLE)), "client_name")
        filename, data = crm_export.export_progress(rows, fmt)
    else:
        filename, data = crm_export.export_all(backend.select(CLIENT_TABLE, order="created_at"), fmt)

    dest = Path(out) if out else EXPORT_DIR / filename
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_bytes(data)
    return dest


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="crm_backend.py",
        description="CAN CRM — backend utilities",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  python crm_backend.py --mock setup
  python crm_backend.py stats
  python crm_backend.py export upcoming --format csv
""",
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use the local mock backend even when Supabase credentials are set",
    )
    sub = parser.add_subparsers(dest="cmd")

    sub.add_parser("setup", help="Seed sample data")
    sub.add_parser("stats", help="Print dashboard counters")

    exp = sub.add_parser("export", help="Export a table to a spreadsheet")
    exp.add_argument("what", choices=["prospects", "upcoming", "progress", "all"])
    exp.add_argument("--out", default="", metavar="PATH", help="Output file (default: data/exports/<name>)")
    exp.add_argument("--format", dest="fmt", default="xlsx", choices=["xlsx", "csv"])

    args = parser.parse_args()

    if not args.cmd:
        parser.print_help()
        return

    backend = get_backend(mock=args.mock)
    try:
        if args.cmd == "setup":
            create_sample_data(backend)
        elif args.cmd == "stats":
            _print_stats(backend)
        elif args.cmd == "export":
            dest = _export(backend, args.what, args.out, args.fmt)
            print(f"Exported {args.what} → {dest}")
    except BackendError as exc:
        sys.exit(f"Error: {exc.message}")


if __name__ == "__main__":
    main()
