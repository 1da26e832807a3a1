from datetime import date, datetime, timedelta, timezone

import pytest

import crm_records as rec


# ── Normalization ────────────────────────────────────────────────────────────

@pytest.mark.parametrize("raw, expected", [
    ("TX", "Texas"),
    ("tx", "Texas"),
    ("TX - Texas", "Texas"),
    ("TX-Texas", "Texas"),
    ("Texas", "Texas"),
    ("dc", "District of Columbia"),
    ("", ""),
    (None, ""),
    ("Ontario", "Ontario"),
])
def test_state_to_name(raw, expected):
    assert rec.state_to_name(raw) == expected


@pytest.mark.parametrize("raw, expected", [
    ("Y", "Yes"), ("yes", "Yes"), ("TRUE", "Yes"),
    ("n", "No"), (" No ", "No"), ("false", "No"),
    ("", ""), (None, ""), (" maybe ", "maybe"),
])
def test_yes_no_normalize(raw, expected):
    assert rec.yes_no_normalize(raw) == expected


def test_norm_text_folds_unicode_dashes():
    assert rec.norm_text("  Jean–Paul ") == "jean-paul"
    assert rec.norm_text("A−B") == "a-b"
    assert rec.norm_text(None) == ""


def test_to_null():
    assert rec.to_null("  x ") == "x"
    assert rec.to_null("   ") is None
    assert rec.to_null(None) is None


def test_money_helpers():
    assert rec.safe_float("$1,234.50") == 1234.5
    assert rec.safe_float("abc") == 0.0
    assert rec.safe_float(float("nan")) == 0.0
    assert rec.fmt_money(1234567) == "$1,234,567"
    assert rec.fmt_money(-2500) == "-$2,500"


def test_label_for():
    assert rec.label_for("client_status") == "Status"
    assert rec.label_for("immigration_status") == "Immigration Status"
    assert rec.label_for("BOP_Date") == "BOP Date"
    assert rec.label_for("id") == "ID"
    assert rec.label_for("workDetails") == "Work Details"


# ── Sorting & paging ─────────────────────────────────────────────────────────

def test_sort_rows_default_is_newest_first():
    rows = [{"id": 1}, {"id": 3}, {"id": 2}]
    assert [r["id"] for r in rec.sort_rows(rows, None)] == [3, 2, 1]


def test_sort_rows_missing_values_placement():
    rows = [{"id": 1, "city": "plano"}, {"id": 2, "city": None}, {"id": 3, "city": "Austin"}]
    asc  = rec.sort_rows(rows, "city", "asc")
    desc = rec.sort_rows(rows, "city", "desc")
    assert [r["id"] for r in asc] == [3, 1, 2]
    assert [r["id"] for r in desc] == [2, 1, 3]


def test_sort_rows_numeric_and_stable():
    rows = [{"id": 1, "n": 10}, {"id": 2, "n": 9}, {"id": 3, "n": 10}]
    assert [r["id"] for r in rec.sort_rows(rows, "n")] == [2, 1, 3]


def test_toggle_sort():
    s = rec.toggle_sort(rec.SortConfig(), "city")
    assert s == rec.SortConfig("city", "asc")
    s = rec.toggle_sort(s, "city")
    assert s.direction == "desc"
    assert rec.toggle_sort(s, "state") == rec.SortConfig("state", "asc")


def test_paginate_clamps_page():
    rows = list(range(23))
    pg = rec.paginate(rows, 9)
    assert pg.page == 3
    assert pg.total_pages == 3
    assert pg.rows == [20, 21, 22]
    assert rec.paginate([], 5) == rec.Page([], 1, 1, 0)
    assert rec.paginate(rows, 0).page == 1


def test_page_count():
    assert rec.page_count(0) == 0
    assert rec.page_count(10) == 1
    assert rec.page_count(11) == 2


# ── Prospects ────────────────────────────────────────────────────────────────

def test_width_class():
    assert rec.width_class(80) == "small"
    assert rec.width_class(130) == "medium"
    assert rec.width_class(150) == "large"


def test_to_prospect_form_normalizes_legacy_values():
    form = rec.to_prospect_form({"first_name": "Ravi", "state": "NJ - New Jersey", "married": "y", "homeowner": None})
    assert form["state"] == "New Jersey"
    assert form["married"] == "Yes"
    assert form["homeowner"] == ""
    assert form["comments"] == ""
    assert set(form) == set(rec.PROSPECT_FIELDS)


def test_prospect_payload():
    form = dict(rec.empty_prospect_form(), first_name="  Wei ", last_name=" Zhang ", city="  ")
    payload = rec.prospect_payload(form)
    assert payload["first_name"] == "Wei"
    assert payload["last_name"] == "Zhang"
    assert payload["city"] is None


def test_required_and_dirty():
    row  = {"id": 1, "first_name": "A", "last_name": "B", "phone": "1", "married": "Y"}
    form = rec.to_prospect_form(row)
    assert rec.required_filled(form)
    assert not rec.is_dirty(form, row)
    form["phone"] = " "
    assert not rec.required_filled(form)
    assert rec.is_dirty(form, row)
    assert not rec.is_dirty(form, None)


def test_filter_prospects():
    rows = [
        {"first_name": "Jean–Paul", "last_name": "X", "phone": "214", "result": "Business "},
        {"first_name": "Maria", "last_name": "Lopez", "spouse_name": "Carlos", "phone": "972", "result": "Called"},
    ]
    assert len(rec.filter_prospects(rows, "jean-paul")) == 1
    assert rec.filter_prospects(rows, "carlos")[0]["first_name"] == "Maria"
    assert len(rec.filter_prospects(rows, "", "Business")) == 1
    assert rec.filter_prospects(rows, "", "ALL") == rows
    assert rec.filter_prospects(rows, "maria", "Business") == []


# ── Dashboard cells ──────────────────────────────────────────────────────────

def test_cell_input_value():
    row = {"BOP_Date": "2025-03-04T09:30:00", "date_of_birth": "1980-05-14T00:00:00", "children": 2, "city": None}
    assert rec.cell_input_value(row, "BOP_Date") == "2025-03-04T09:30"
    assert rec.cell_input_value(row, "date_of_birth") == "1980-05-14"
    assert rec.cell_input_value(row, "children") == "2"
    assert rec.cell_input_value(row, "city") == ""
    assert rec.cell_input_value({"CalledOn": "not a date"}, "CalledOn") == ""


@pytest.mark.parametrize("raw, expected_utc", [
    ("2025-06-10T14:30:00.12345+00:00", datetime(2025, 6, 10, 14, 30, 0, 123450)),
    ("2025-06-10T14:30:00.1+00:00",     datetime(2025, 6, 10, 14, 30, 0, 100000)),
    ("2025-06-10 14:30:00+00",          datetime(2025, 6, 10, 14, 30)),
    ("2025-06-10T14:30:00Z",            datetime(2025, 6, 10, 14, 30)),
])
def test_parse_when_accepts_postgrest_timestamps(raw, expected_utc):
    local = expected_utc.replace(tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
    assert rec.parse_when(raw) == local
    assert rec.cell_text(raw, "BOP_Date") == local.strftime("%Y-%m-%dT%H:%M")


def test_parse_when_plain_values():
    assert rec.parse_when("2025-06-10") == datetime(2025, 6, 10)
    assert rec.parse_when(date(2025, 6, 10)) == datetime(2025, 6, 10)
    assert rec.parse_when("not a date") is None
    assert rec.parse_when("") is None


def test_as_list_items():
    assert rec.as_list_items("Insurance, , Retirement") == ["Insurance", "Retirement"]
    assert rec.as_list_items(["a", "", None, "b"]) == ["a", "b"]
    assert rec.as_list_items(None) == []


def test_should_highlight_ignores_time_of_day():
    today = date(2025, 6, 10)
    assert rec.should_highlight("BOP_Date", {"BOP_Date": "2025-06-10T00:01:00"}, today)
    assert rec.should_highlight("Followup_Date", {"Followup_Date": "2025-07-01"}, today)
    assert not rec.should_highlight("BOP_Date", {"BOP_Date": "2025-06-09T23:59:00"}, today)
    assert not rec.should_highlight("CalledOn", {"CalledOn": "2025-07-01"}, today)


def test_build_update_payload():
    assert rec.build_update_payload("x1", "city", "Plano") is None
    assert rec.build_update_payload("7", "client_status", "Closed") == {"p_id": 7, "p_client_status": "Closed"}
    assert rec.build_update_payload(7, "date_of_birth", "1980-05-14") == {"p_id": 7, "p_date_of_birth": "1980-05-14"}
    assert rec.build_update_payload(7, "BOP_Date", "") == {"p_id": 7, "p_bop_date": None}

    payload = rec.build_update_payload(7, "BOP_Date", "2025-06-10T09:30")
    expected = datetime(2025, 6, 10, 9, 30).astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")
    assert payload == {"p_id": 7, "p_bop_date": expected}


def test_collect_drafts_and_split():
    original = [{"id": 1, "client_status": "New Client", "BOP_Date": "2025-06-10T09:30:00", "email": "a@b.c"}]
    edited   = [{"id": 1, "client_status": "Closed", "BOP_Date": datetime(2025, 6, 10, 9, 30), "email": "x@y.z"}]
    drafts = rec.collect_drafts(original, edited, ["client_status", "BOP_Date"])
    assert drafts == {"1:client_status": "Closed"}
    assert rec.split_cell_id("1:client_status") == ("1", "client_status")


def test_apply_saved_value():
    rows = [{"id": 1, "city": "A"}, {"id": 2, "city": "B"}]
    out  = rec.apply_saved_value(rows, "2", "city", "C")
    assert out[1]["city"] == "C"
    assert rows[1]["city"] == "B"


def test_overlay_drafts_follows_ids_after_resort():
    rows = [
        {"id": 1, "client_status": "New Client", "BOP_Date": "2025-06-12T09:00:00"},
        {"id": 2, "client_status": "New Client", "BOP_Date": "2025-06-11T09:00:00"},
    ]
    pending = {"2:client_status": "Closed", "1:BOP_Date": "2025-06-20T15:30"}
    shown   = rec.sort_rows(rec.overlay_drafts(rows, pending), "BOP_Date", "asc")
    assert [r["id"] for r in shown] == [2, 1]
    assert shown[0]["client_status"] == "Closed"
    assert rec.collect_drafts(rows, shown, ["client_status", "BOP_Date"]) == pending
    assert rows[1]["client_status"] == "New Client"


# ── Aggregations ─────────────────────────────────────────────────────────────

def _clients(today):
    return [
        {"id": 1, "client_name": "Ann", "client_status": "New Client",
         "BOP_Date": f"{today}T10:00:00", "CalledOn": f"{today - timedelta(days=2)}T09:00:00"},
        {"id": 2, "client_name": "ann ", "client_status": "Completed",
         "updated_at": f"{today}T11:00:00", "Followup_Date": f"{today}T15:00:00",
         "CalledOn": f"{today - timedelta(days=1)}T09:00:00"},
        {"id": 3, "client_name": "Bob", "client_status": None,
         "BOP_Date": f"{today + timedelta(days=45)}T10:00:00"},
    ]


def test_top_stats():
    today = date(2025, 6, 10)
    assert rec.top_stats(_clients(today), today) == {
        "new_clients": 1, "bop_today": 1, "followup_today": 1, "completed_today": 1,
    }


def test_completion_chart_covers_seven_days():
    today = date(2025, 6, 10)
    chart = rec.completion_chart(_clients(today), today)
    assert len(chart) == 7
    assert chart[-1] == {"date_label": "Jun 10", "bop_count": 1, "followup_count": 1, "completed_count": 1}
    assert chart[0]["date_label"] == "Jun 04"


def test_call_status_chart():
    out = rec.call_status_chart(_clients(date(2025, 6, 10)))
    assert {"status_label": "Unknown", "count": 1} in out
    assert sum(r["count"] for r in out) == 3


def test_upcoming_meetings_default_window():
    today = date(2025, 6, 10)
    hits  = rec.upcoming_meetings(_clients(today), today=today)
    assert [r["id"] for r in hits] == [1, 2]
    wide = rec.upcoming_meetings(_clients(today), "2025-06-01", "2025-08-01", today)
    assert [r["id"] for r in wide] == [1, 3, 2]


def test_progress_monitoring_groups_by_name():
    out = rec.progress_monitoring(_clients(date(2025, 6, 10)))
    ann = next(r for r in out if r["client_name"] == "Ann")
    assert ann["call_attempts"] == 2
    assert ann["bop_attempts"] == 1
    assert ann["followup_attempts"] == 1
    assert ann["last_call_date"].startswith("2025-06-09")
    assert [r["client_name"] for r in out] == ["Ann", "Bob"]


def test_page_with_total():
    rows = [{"id": i} for i in range(1, 26)]
    page = rec.page_with_total(rows, 10, 20, "id", "asc")
    assert [r["id"] for r in page] == [21, 22, 23, 24, 25]
    assert all(r["total_count"] == 25 for r in page)


# ── FNA ──────────────────────────────────────────────────────────────────────

def test_fna_header_payload_and_required():
    form = dict(rec.empty_fna_form(), client_name=" Robert ", annual_income="$120,000", dependents="")
    assert rec.fna_required_ok(form)
    payload = rec.fna_header_payload({"id": 9}, form)
    assert payload["client_id"] == 9
    assert payload["is_active"] is True
    assert payload["client_name"] == "Robert"
    assert payload["annual_income"] == 120000.0
    assert payload["dependents"] is None
    assert not rec.fna_required_ok(rec.empty_fna_form())


def test_match_clients():
    rows = [{"client_name": "Zed", "email": "z@x.com"}, {"client_name": "Amy", "phone": "214-555"}]
    assert [r["client_name"] for r in rec.match_clients(rows, "")] == ["Amy", "Zed"]
    assert rec.match_clients(rows, "214")[0]["client_name"] == "Amy"


def test_diff_section_rows():
    section  = rec.FNA_SECTION_BY_KEY["assets"]
    original = [
        {"id": 1, "asset_type": "IRA", "description": "Rollover", "owner": "Client", "current_value": 1000.0},
        {"id": 2, "asset_type": "Brokerage", "current_value": 500.0},
    ]
    edited = [
        {"id": 1.0, "asset_type": "IRA", "description": "Rollover", "owner": "Client", "current_value": 1500},
        {"id": None, "asset_type": "Roth IRA", "current_value": 200},
        {"id": float("nan"), "asset_type": None, "description": "", "current_value": float("nan")},
    ]
    inserts, updates, deletes = rec.diff_section_rows(original, edited, 42, section)
    assert updates == [(1, {"current_value": 1500.0})]
    assert deletes == [2]
    assert len(inserts) == 1
    assert inserts[0]["fna_id"] == 42
    assert inserts[0]["asset_type"] == "Roth IRA"


def test_fna_summary():
    sections = {
        "assets":        [{"current_value": 300000}, {"current_value": "50,000"}],
        "liabilities":   [{"balance": 200000, "monthly_payment": 1800}],
        "insurance":     [{"coverage_amount": 500000, "annual_premium": 600}],
        "goals":         [{"target_amount": 100000, "current_savings": 40000},
                          {"target_amount": 10, "current_savings": 50}],
        "income_estate": [{"item_type": "Income - Rental", "annual_amount": 12000},
                          {"item_type": "Estate - Will", "in_place": "Yes"},
                          {"item_type": "Estate - Trust", "in_place": "No"}],
    }
    out = rec.fna_summary({"annual_income": 90000, "spouse_income": None}, sections)
    assert out["total_assets"] == 350000
    assert out["net_worth"] == 150000
    assert out["monthly_debt"] == 1800
    assert out["total_coverage"] == 500000
    assert out["goal_gap"] == 60000
    assert out["household_income"] == 102000
    assert out["estate_documents"] == 1
