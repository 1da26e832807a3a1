"""
Record shaping for the CAN CRM: everything the pages do to rows in memory.

Normalization of legacy values, prospect search / sort / paging, dashboard
cell handling and RPC payloads, client-side aggregations, and the FNA
section definitions.  Nothing in here talks to the backend or to Streamlit.
"""

import math
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import NamedTuple, Optional

import pandas as pd

# ─────────────────────────────────────────────────────────────────────────────
# Option lists
# ─────────────────────────────────────────────────────────────────────────────

RELATION_OPTIONS = ["", "Friend", "Relative", "Acquaintance", "Referral/Others"]
RESULT_OPTIONS   = ["Business", "Both", "Client Solution", "In-Progress",
                    "Called", "Not Interested", "Others"]
YES_NO_OPTIONS   = ["", "Yes", "No"]

IMMIGRATION_STATUS_OPTIONS = [
    "",
    "U.S. Citizen",
    "U.S.Green Card",
    "H-1B",
    "H-1B/I-140 Approved",
    "L-1A",
    "L-1B",
    "F-1 Student",
    "F-1 OPT",
    "F-1 STEM OPT",
    "H-4 EAD",
    "E-3",
    "I-485 Pending",
    "I-485 EAD/AP",
    "Other Visa Status",
]

STATES = {
    "AL": "Alabama",        "AK": "Alaska",         "AZ": "Arizona",
    "AR": "Arkansas",       "CA": "California",     "CO": "Colorado",
    "CT": "Connecticut",    "DE": "Delaware",       "DC": "District of Columbia",
    "FL": "Florida",        "GA": "Georgia",        "HI": "Hawaii",
    "ID": "Idaho",          "IL": "Illinois",       "IN": "Indiana",
    "IA": "Iowa",           "KS": "Kansas",         "KY": "Kentucky",
    "LA": "Louisiana",      "ME": "Maine",          "MD": "Maryland",
    "MA": "Massachusetts",  "MI": "Michigan",       "MN": "Minnesota",
    "MS": "Mississippi",    "MO": "Missouri",       "MT": "Montana",
    "NE": "Nebraska",       "NV": "Nevada",         "NH": "New Hampshire",
    "NJ": "New Jersey",     "NM": "New Mexico",     "NY": "New York",
    "NC": "North Carolina", "ND": "North Dakota",   "OH": "Ohio",
    "OK": "Oklahoma",       "OR": "Oregon",         "PA": "Pennsylvania",
    "RI": "Rhode Island",   "SC": "South Carolina", "SD": "South Dakota",
    "TN": "Tennessee",      "TX": "Texas",          "UT": "Utah",
    "VT": "Vermont",        "VA": "Virginia",       "WA": "Washington",
    "WV": "West Virginia",  "WI": "Wisconsin",      "WY": "Wyoming",
}
STATE_NAME_OPTIONS = [""] + list(STATES.values())
US_STATE_ABBRS     = [""] + [abbr for abbr in STATES if abbr != "DC"]

STATUS_OPTIONS          = ["", "New Client", "Interested", "In-Progress", "Closed", "On Hold", "Completed"]
BOP_STATUS_OPTIONS      = ["", "Complete", "Call", "Meeting", "Closed"]
FOLLOWUP_STATUS_OPTIONS = ["", "Complete", "Call", "Closed"]

# Row tint per client status (dashboard grids)
STATUS_COLORS = {
    "New Client":  "#B1FB17",
    "Interested":  "#728FCE",
    "In-Progress": "#ADDFFF",
    "Closed":      "#E6BF83",
    "On Hold":     "#C9BE62",
    "Completed":   "#3CB371",
}


# ─────────────────────────────────────────────────────────────────────────────
# Normalization helpers
# ─────────────────────────────────────────────────────────────────────────────

_DASHES = re.compile(r"[\u2010-\u2015\u2212]")


def state_to_name(val) -> str:
    """Turn 'TX', 'tx', 'TX - Texas' or 'Texas' into 'Texas'."""
    raw = (val or "").strip()
    if not raw:
        return ""
    if "-" in raw:
        part = raw.split("-")[-1].strip()
        if part:
            return part
    return STATES.get(raw.upper(), raw)


def yes_no_normalize(val) -> str:
    raw = (val or "").strip()
    s   = raw.lower()
    if not s:
        return ""
    if s in ("y", "yes", "true"):
        return "Yes"
    if s in ("n", "no", "false"):
        return "No"
    return raw


def norm_text(s) -> str:
    return _DASHES.sub("-", (s or "").strip().lower())


def to_null(s) -> Optional[str]:
    v = (s or "").strip()
    return v if v else None


def safe_float(val) -> float:
    """Parse a value to float, stripping $, commas, and leading +."""
    try:
        n = float(str(val).replace(",", "").replace("$", "").replace("+", ""))
    except (ValueError, TypeError):
        return 0.0
    return 0.0 if math.isnan(n) else n


def fmt_money(val) -> str:
    """Format a number as $1,234,567 (negative → -$1,234,567)."""
    n = safe_float(val)
    return f"-${abs(n):,.0f}" if n < 0 else f"${n:,.0f}"


def is_blank(val) -> bool:
    if val is None:
        return True
    if isinstance(val, str):
        return not val.strip()
    if isinstance(val, (list, tuple, dict, set)):
        return False
    try:
        return bool(pd.isna(val))
    except (TypeError, ValueError):
        return False


LABEL_OVERRIDES = {
    "client_name":        "Client Name",
    "last_call_date":     "Last Call On",
    "call_attempts":      "No of Calls",
    "last_bop_date":      "Last/Next BOP Call On",
    "bop_attempts":       "No of BOP Calls",
    "last_followup_date": "Last/Next FollowUp On",
    "followup_attempts":  "No of FollowUp Calls",
    "created_at":         "Created Date",
    "referred_by":        "Referred By",
    "Product":            "Products Sold",
    "CalledOn":           "Called On",
    "BOP_Date":           "BOP Date",
    "BOP_Status":         "BOP Status",
    "Followup_Date":      "Follow-Up Date",
    "FollowUp_Status":    "Follow-Up Status",
    "client_status":      "Status",
    "date_of_birth":      "Date Of Birth",
}
_ACRONYMS = {"BOP", "ID", "API", "URL", "CAN"}


def label_for(key: str) -> str:
    if key in LABEL_OVERRIDES:
        return LABEL_OVERRIDES[key]
    s = re.sub(r"([a-z])([A-Z])", r"\1 \2", key.replace("_", " ")).strip()
    words = []
    for w in s.split():
        words.append(w.upper() if w.upper() in _ACRONYMS else w[:1].upper() + w[1:].lower())
    return " ".join(words)


# ─────────────────────────────────────────────────────────────────────────────
# Sorting & paging
# ─────────────────────────────────────────────────────────────────────────────

PAGE_SIZE = 10


class SortConfig(NamedTuple):
    key:       Optional[str] = None
    direction: str = "asc"


class Page(NamedTuple):
    rows:        list
    page:        int
    total_pages: int
    total:       int


def toggle_sort(current: SortConfig, key: str) -> SortConfig:
    if current.key == key:
        return SortConfig(key, "desc" if current.direction == "asc" else "asc")
    return SortConfig(key, "asc")


def sort_rows(rows: list, key: Optional[str], direction: str = "asc") -> list:
    """Sort dict rows by one column.

    Missing values go last ascending and first descending.  Text compares
    case-insensitively, numbers numerically, mixed columns as text.  With no
    key, rows come back newest first (id descending).
    """
    if not key:
        return sorted(rows, key=lambda r: r.get("id") or 0, reverse=True)

    present = [r for r in rows if r.get(key) is not None]
    missing = [r for r in rows if r.get(key) is None]
    numeric = all(
        isinstance(r[key], (int, float)) and not isinstance(r[key], bool) for r in present
    )
    if numeric:
        sort_key = lambda r: r[key]
    else:
        sort_key = lambda r: str(r[key]).casefold()

    if direction == "desc":
        return missing + sorted(present, key=sort_key, reverse=True)
    return sorted(present, key=sort_key) + missing


def paginate(rows: list, page: int, page_size: int = PAGE_SIZE) -> Page:
    total_pages = max(1, math.ceil(len(rows) / page_size))
    safe_page   = min(max(1, page), total_pages)
    start       = (safe_page - 1) * page_size
    return Page(rows[start:start + page_size], safe_page, total_pages, len(rows))


def page_count(total: int, page_size: int = PAGE_SIZE) -> int:
    return math.ceil(total / page_size) if total > 0 else 0


# ─────────────────────────────────────────────────────────────────────────────
# Prospects
# ─────────────────────────────────────────────────────────────────────────────

PROSPECT_FIELDS = [
    "first_name", "last_name", "spouse_name", "relation_type", "phone", "city",
    "state", "top25", "immigration", "age25plus", "married", "children",
    "homeowner", "good_career", "income_60k", "dissatisfied", "ambitious",
    "contact_date", "result", "next_steps", "comments",
]
YES_NO_FIELDS = [
    "top25", "age25plus", "married", "children", "homeowner",
    "good_career", "income_60k", "dissatisfied", "ambitious",
]

# (key, label, default width px)
PROSPECT_COLUMNS = [
    ("first_name",    "First Name",    120),
    ("last_name",     "Last Name",     120),
    ("spouse_name",   "Spouse Name",   120),
    ("relation_type", "Relation Type", 130),
    ("phone",         "Phone",         130),
    ("city",          "City",          100),
    ("state",         "State",         100),
    ("top25",         "Top 25",         80),
    ("immigration",   "Immigration",   150),
    ("age25plus",     "Age 25+",        80),
    ("married",       "Married",        80),
    ("children",      "Children",       80),
    ("homeowner",     "Homeowner",     100),
    ("good_career",   "Good Career",   110),
    ("income_60k",    "Income 60K",    100),
    ("dissatisfied",  "Dissatisfied",  100),
    ("ambitious",     "Ambitious",      90),
    ("contact_date",  "Contact Date",  120),
    ("result",        "Result",        130),
    ("next_steps",    "Next Steps",    150),
]

REQUIRED_MSG = "Missing required fields (First Name, Last Name, Phone)."


def width_class(px: int) -> str:
    if px <= 90:
        return "small"
    if px <= 140:
        return "medium"
    return "large"


def empty_prospect_form() -> dict:
    return {f: "" for f in PROSPECT_FIELDS}


def to_prospect_form(row: dict) -> dict:
    form = {f: row.get(f) or "" for f in PROSPECT_FIELDS}
    form["state"] = state_to_name(row.get("state"))
    for f in YES_NO_FIELDS:
        form[f] = yes_no_normalize(row.get(f))
    return form


def prospect_payload(form: dict) -> dict:
    payload = {f: to_null(form.get(f)) for f in PROSPECT_FIELDS}
    payload["first_name"] = (form.get("first_name") or "").strip()
    return payload


def required_filled(form: dict) -> bool:
    return all((form.get(f) or "").strip() for f in ("first_name", "last_name", "phone"))


def is_dirty(form: dict, original: Optional[dict]) -> bool:
    if not original:
        return False
    return form != to_prospect_form(original)


def filter_prospects(rows: list, search: str = "", result: str = "ALL") -> list:
    out = list(rows)
    if (search or "").strip():
        needle = norm_text(search)
        out = [
            p for p in out
            if any(needle in norm_text(p.get(f)) for f in ("first_name", "last_name", "spouse_name", "phone"))
        ]
    if result != "ALL":
        out = [p for p in out if (p.get("result") or "").strip() == result]
    return out


# ─────────────────────────────────────────────────────────────────────────────
# Dashboard: cells, payloads, drafts
# ─────────────────────────────────────────────────────────────────────────────

DATE_TIME_KEYS     = {"BOP_Date", "CalledOn", "Followup_Date", "FollowUp_Date", "Issued"}
DATE_ONLY_KEYS     = {"date_of_birth"}
HIGHLIGHT_KEYS     = {"BOP_Date", "Followup_Date", "FollowUp_Date"}
NON_EDITABLE_KEYS  = {"id", "client_name", "email", "phone", "created_at"}
READONLY_LIST_COLS = {"interest_type", "business_opportunities", "wealth_solutions", "preferred_days"}

UPCOMING_COLUMNS = [
    "client_name", "email", "phone", "CalledOn", "BOP_Date", "BOP_Status",
    "Followup_Date", "FollowUp_Status", "client_status", "spouse_name",
    "date_of_birth", "children", "city", "state", "immigration_status", "work_details",
]
PROGRESS_COLUMNS = [
    "client_name", "last_call_date", "call_attempts", "last_bop_date",
    "bop_attempts", "last_followup_date", "followup_attempts",
]
ALL_COLUMNS = (
    ["id"] + UPCOMING_COLUMNS[:9] + ["created_at"] + UPCOMING_COLUMNS[9:]
)
# Server-side sortable keys per view
UPCOMING_SORT_KEYS = UPCOMING_COLUMNS[:9]
ALL_SORT_KEYS      = ALL_COLUMNS[:11]


def options_for_key(key: str) -> Optional[list]:
    if key in ("client_status", "status"):
        return STATUS_OPTIONS
    if key == "BOP_Status":
        return BOP_STATUS_OPTIONS
    if key == "FollowUp_Status":
        return FOLLOWUP_STATUS_OPTIONS
    if key == "state":
        return US_STATE_ABBRS
    return None


def parse_when(val) -> Optional[datetime]:
    """Best-effort datetime from a date, datetime or ISO string (naive, local)."""
    if is_blank(val):
        return None
    if isinstance(val, datetime):
        return val.astimezone().replace(tzinfo=None) if val.tzinfo else val
    if isinstance(val, date):
        return datetime.combine(val, time())
    text = str(val).strip()
    try:
        stamp = pd.Timestamp(text)
    except (ValueError, OverflowError):
        return None
    if pd.isna(stamp):
        return None
    parsed = stamp.to_pydatetime()
    return parsed.astimezone().replace(tzinfo=None) if parsed.tzinfo else parsed


def _day(val) -> Optional[date]:
    when = parse_when(val)
    return when.date() if when else None


def cell_text(val, key: str) -> str:
    """Editor text for a cell: date-only → YYYY-MM-DD, date-time → YYYY-MM-DDTHH:MM."""
    if is_blank(val):
        return ""
    if key in DATE_TIME_KEYS or key in DATE_ONLY_KEYS:
        when = parse_when(val)
        if when is None:
            return ""
        return when.strftime("%Y-%m-%d") if key in DATE_ONLY_KEYS else when.strftime("%Y-%m-%dT%H:%M")
    return str(val)


def cell_input_value(row: dict, key: str) -> str:
    return cell_text(row.get(key), key)


def as_list_items(val) -> list:
    if not val:
        return []
    if isinstance(val, str):
        return [s.strip() for s in val.split(",") if s.strip()]
    if isinstance(val, (list, tuple)):
        return [str(v) for v in val if v]
    return []


def date_on_or_after_today(val, today: Optional[date] = None) -> bool:
    d = _day(val)
    if d is None:
        return False
    return d >= (today or date.today())


def should_highlight(key: str, row: dict, today: Optional[date] = None) -> bool:
    return key in HIGHLIGHT_KEYS and date_on_or_after_today(row.get(key), today)


def build_update_payload(row_id, key: str, value: str) -> Optional[dict]:
    """Params for the update_client_field RPC, or None for a non-numeric id."""
    try:
        num_id = int(str(row_id))
    except ValueError:
        return None

    param   = f"p_{key.lower()}"
    payload = {"p_id": num_id}
    if key in DATE_TIME_KEYS:
        parsed = parse_when(value)
        payload[param] = (
            parsed.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z") if parsed else None
        )
    elif key in DATE_ONLY_KEYS:
        parsed = parse_when(value)
        payload[param] = parsed.strftime("%Y-%m-%d") if parsed else None
    else:
        payload[param] = value
    return payload


def cell_id(row_id, key: str) -> str:
    return f"{row_id}:{key}"


def split_cell_id(cid: str) -> tuple:
    row_id, _, key = cid.partition(":")
    return row_id, key


def collect_drafts(original_rows: list, edited_rows: list, editable_keys) -> dict:
    """Changed editable cells as {"<id>:<key>": text}."""
    by_id  = {str(r.get("id")): r for r in original_rows}
    drafts = {}
    for edited in edited_rows:
        rid  = str(edited.get("id"))
        orig = by_id.get(rid)
        if orig is None:
            continue
        for key in editable_keys:
            if key not in edited:
                continue
            new_val = cell_text(edited.get(key), key)
            if new_val != cell_input_value(orig, key):
                drafts[cell_id(rid, key)] = new_val
    return drafts


def apply_saved_value(rows: list, row_id, key: str, value) -> list:
    return [dict(r, **{key: value}) if str(r.get("id")) == str(row_id) else r for r in rows]


def overlay_drafts(rows: list, drafts: dict) -> list:
    """Rows with unsaved cell drafts applied by id, so a rebuilt editor still shows them."""
    for cid, value in drafts.items():
        row_id, key = split_cell_id(cid)
        rows = apply_saved_value(rows, row_id, key, value)
    return rows


# ─────────────────────────────────────────────────────────────────────────────
# Dashboard: client-side aggregations
# ─────────────────────────────────────────────────────────────────────────────

UPCOMING_WINDOW_DAYS = 30


def _changed_on(row: dict) -> Optional[date]:
    return _day(row.get("updated_at")) or _day(row.get("created_at"))


def top_stats(rows: list, today: Optional[date] = None) -> dict:
    today = today or date.today()
    return {
        "new_clients":     sum(1 for r in rows if r.get("client_status") == "New Client"),
        "bop_today":       sum(1 for r in rows if _day(r.get("BOP_Date")) == today),
        "followup_today":  sum(1 for r in rows if _day(r.get("Followup_Date")) == today),
        "completed_today": sum(
            1 for r in rows if r.get("client_status") == "Completed" and _changed_on(r) == today
        ),
    }


def completion_chart(rows: list, today: Optional[date] = None, days: int = 7) -> list:
    today = today or date.today()
    out   = []
    for offset in range(days - 1, -1, -1):
        d = today - timedelta(days=offset)
        out.append({
            "date_label":      d.strftime("%b %d"),
            "bop_count":       sum(1 for r in rows if _day(r.get("BOP_Date")) == d),
            "followup_count":  sum(1 for r in rows if _day(r.get("Followup_Date")) == d),
            "completed_count": sum(
                1 for r in rows if r.get("client_status") == "Completed" and _changed_on(r) == d
            ),
        })
    return out


def call_status_chart(rows: list) -> list:
    counts = {}
    for r in rows:
        label = (r.get("client_status") or "").strip() or "Unknown"
        counts[label] = counts.get(label, 0) + 1
    ordered = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return [{"status_label": label, "count": n} for label, n in ordered]


def meeting_window(start=None, end=None, today: Optional[date] = None) -> tuple:
    """Resolve an optional start/end pair; both blank → today .. today+30."""
    today = today or date.today()
    start_d = _day(start) or today
    end_d   = _day(end) or (start_d + timedelta(days=UPCOMING_WINDOW_DAYS))
    return start_d, end_d


def upcoming_meetings(rows: list, start=None, end=None, today: Optional[date] = None) -> list:
    start_d, end_d = meeting_window(start, end, today)
    hits = []
    for r in rows:
        days = [_day(r.get("BOP_Date")), _day(r.get("Followup_Date"))]
        if any(d is not None and start_d <= d <= end_d for d in days):
            hits.append(r)
    return sort_rows(hits, "BOP_Date", "asc")


def _latest(values: list) -> Optional[str]:
    whens = [w for w in (parse_when(v) for v in values) if w is not None]
    return max(whens).isoformat() if whens else None


def progress_monitoring(rows: list) -> list:
    groups = {}
    for r in rows:
        name = (r.get("client_name") or "").strip()
        if not name:
            continue
        groups.setdefault(name.casefold(), []).append(r)

    out = []
    for members in groups.values():
        calls     = [m.get("CalledOn") for m in members if not is_blank(m.get("CalledOn"))]
        bops      = [m.get("BOP_Date") for m in members if not is_blank(m.get("BOP_Date"))]
        followups = [m.get("Followup_Date") for m in members if not is_blank(m.get("Followup_Date"))]
        out.append({
            "client_name":        members[0]["client_name"].strip(),
            "last_call_date":     _latest(calls),
            "call_attempts":      len(calls),
            "last_bop_date":      _latest(bops),
            "bop_attempts":       len(bops),
            "last_followup_date": _latest(followups),
            "followup_attempts":  len(followups),
        })
    return sort_rows(out, "client_name", "asc")


def page_with_total(rows: list, limit: int, offset: int,
                    sort_column: Optional[str] = None, sort_direction: str = "asc") -> list:
    ordered = sort_rows(rows, sort_column, sort_direction)
    total   = len(ordered)
    return [dict(r, total_count=total) for r in ordered[offset:offset + limit]]


# ─────────────────────────────────────────────────────────────────────────────
# Financial Needs Analysis
# ─────────────────────────────────────────────────────────────────────────────

class FnaField(NamedTuple):
    key:     str
    label:   str
    kind:    str = "text"        # text | number | select | year
    options: tuple = ()


class FnaSection(NamedTuple):
    key:    str
    table:  str
    title:  str
    fields: tuple


FNA_HEADER_FIELDS = (
    FnaField("client_name",       "Client Name"),
    FnaField("spouse_name",       "Spouse Name"),
    FnaField("date_of_birth",     "Date of Birth"),
    FnaField("spouse_dob",        "Spouse Date of Birth"),
    FnaField("phone",             "Phone"),
    FnaField("email",             "Email"),
    FnaField("city",              "City"),
    FnaField("state",             "State", "select", tuple(STATE_NAME_OPTIONS)),
    FnaField("marital_status",    "Marital Status", "select",
             ("", "Single", "Married", "Divorced", "Widowed")),
    FnaField("dependents",        "Dependents", "number"),
    FnaField("occupation",        "Occupation"),
    FnaField("spouse_occupation", "Spouse Occupation"),
    FnaField("annual_income",     "Annual Income", "number"),
    FnaField("spouse_income",     "Spouse Income", "number"),
    FnaField("monthly_expenses",  "Monthly Expenses", "number"),
    FnaField("risk_tolerance",    "Risk Tolerance", "select",
             ("", "Conservative", "Moderate", "Moderate-Aggressive", "Aggressive")),
    FnaField("notes",             "Notes"),
)

FNA_SECTIONS = (
    FnaSection("assets", "fna_assets", "Assets", (
        FnaField("asset_type", "Asset Type", "select",
                 ("Checking/Savings", "401(k)/403(b)", "IRA", "Roth IRA", "Brokerage",
                  "Real Estate", "Business", "Other")),
        FnaField("description",          "Description"),
        FnaField("owner",                "Owner"),
        FnaField("current_value",        "Current Value", "number"),
        FnaField("monthly_contribution", "Monthly Contribution", "number"),
    )),
    FnaSection("liabilities", "fna_liabilities", "Liabilities", (
        FnaField("liability_type", "Liability Type", "select",
                 ("Mortgage", "Auto Loan", "Student Loan", "Credit Card", "Personal Loan", "Other")),
        FnaField("lender",          "Lender"),
        FnaField("balance",         "Balance", "number"),
        FnaField("interest_rate",   "Interest Rate %", "number"),
        FnaField("monthly_payment", "Monthly Payment", "number"),
    )),
    FnaSection("insurance", "fna_insurance", "Insurance", (
        FnaField("policy_type", "Policy Type", "select",
                 ("Term Life", "Whole Life", "IUL", "Disability", "Long-Term Care", "Health", "Other")),
        FnaField("carrier",         "Carrier"),
        FnaField("insured",         "Insured"),
        FnaField("coverage_amount", "Coverage Amount", "number"),
        FnaField("annual_premium",  "Annual Premium", "number"),
    )),
    FnaSection("goals", "fna_goals", "Goals", (
        FnaField("goal_type", "Goal", "select",
                 ("Retirement", "College", "Home Purchase", "Emergency Fund", "Debt Free", "Legacy", "Other")),
        FnaField("description",     "Description"),
        FnaField("target_amount",   "Target Amount", "number"),
        FnaField("current_savings", "Current Savings", "number"),
        FnaField("target_year",     "Target Year", "year"),
    )),
    FnaSection("income_estate", "fna_income_estate", "Income & Estate", (
        FnaField("item_type", "Item", "select",
                 ("Income - Salary", "Income - Business", "Income - Rental", "Income - Other",
                  "Estate - Will", "Estate - Trust", "Estate - POA", "Estate - Beneficiary")),
        FnaField("description",   "Description"),
        FnaField("owner",         "Owner"),
        FnaField("annual_amount", "Annual Amount", "number"),
        FnaField("in_place",      "In Place", "select", ("", "Yes", "No")),
    )),
)

FNA_SECTION_BY_KEY = {s.key: s for s in FNA_SECTIONS}


def _coerce(val, kind: str):
    if is_blank(val):
        return None
    if kind == "number":
        return safe_float(val)
    if kind == "year":
        try:
            return int(safe_float(val))
        except (OverflowError, ValueError):
            return None
    return str(val).strip()


def empty_fna_form() -> dict:
    return {f.key: "" for f in FNA_HEADER_FIELDS}


def to_fna_form(header: Optional[dict]) -> dict:
    form = empty_fna_form()
    for f in FNA_HEADER_FIELDS:
        val = (header or {}).get(f.key)
        if f.key == "state":
            form[f.key] = state_to_name(val)
        else:
            form[f.key] = "" if is_blank(val) else val
    return form


def fna_required_ok(form: dict) -> bool:
    return bool(str(form.get("client_name") or "").strip())


def fna_header_payload(client: Optional[dict], form: dict) -> dict:
    payload = {f.key: _coerce(form.get(f.key), f.kind) for f in FNA_HEADER_FIELDS}
    if client:
        payload["client_id"] = client.get("id")
    payload["is_active"] = True
    return payload


def match_clients(rows: list, query: str) -> list:
    needle = norm_text(query)
    hits = [
        r for r in rows
        if not needle or any(needle in norm_text(str(r.get(f) or "")) for f in ("client_name", "email", "phone"))
    ]
    return sort_rows(hits, "client_name", "asc")


def diff_section_rows(original: list, edited: list, fna_id, section: FnaSection) -> tuple:
    """Compare a section grid against what was loaded.

    Returns (inserts, updates, deletes): row dicts to insert (stamped with
    fna_id), (id, changed-fields) pairs, and ids that disappeared.  Rows
    with every field blank are ignored.
    """
    kinds   = {f.key: f.kind for f in section.fields}
    by_id   = {int(r["id"]): r for r in original if r.get("id") is not None}
    seen    = set()
    inserts = []
    updates = []

    for row in edited:
        fields = {f.key: _coerce(row.get(f.key), f.kind) for f in section.fields}
        rid    = row.get("id")
        if is_blank(rid):
            if any(v is not None for v in fields.values()):
                inserts.append(dict(fields, fna_id=fna_id))
            continue
        rid = int(rid)
        seen.add(rid)
        orig = by_id.get(rid)
        if orig is None:
            continue
        changed = {k: v for k, v in fields.items() if v != _coerce(orig.get(k), kinds[k])}
        if changed:
            updates.append((rid, changed))

    deletes = [rid for rid in by_id if rid not in seen]
    return inserts, updates, deletes


def fna_summary(header: Optional[dict], sections: dict) -> dict:
    """Headline totals across the FNA sections (sections keyed by section key)."""
    header  = header or {}
    assets  = sections.get("assets", [])
    debts   = sections.get("liabilities", [])
    policies = sections.get("insurance", [])
    goals   = sections.get("goals", [])
    income_estate = sections.get("income_estate", [])

    total_assets      = sum(safe_float(r.get("current_value")) for r in assets)
    total_liabilities = sum(safe_float(r.get("balance")) for r in debts)
    other_income = sum(
        safe_float(r.get("annual_amount")) for r in income_estate
        if str(r.get("item_type") or "").startswith("Income")
    )
    goal_gap = sum(
        max(0.0, safe_float(r.get("target_amount")) - safe_float(r.get("current_savings"))) for r in goals
    )
    return {
        "total_assets":      total_assets,
        "total_liabilities": total_liabilities,
        "net_worth":         total_assets - total_liabilities,
        "monthly_debt":      sum(safe_float(r.get("monthly_payment")) for r in debts),
        "total_coverage":    sum(safe_float(r.get("coverage_amount")) for r in policies),
        "annual_premiums":   sum(safe_float(r.get("annual_premium")) for r in policies),
        "goal_gap":          goal_gap,
        "household_income":  safe_float(header.get("annual_income")) + safe_float(header.get("spouse_income")) + other_income,
        "estate_documents":  sum(
            1 for r in income_estate
            if str(r.get("item_type") or "").startswith("Estate") and r.get("in_place") == "Yes"
        ),
    }
