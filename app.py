#!/usr/bin/env python3
"""
CAN Financial Solutions — Client CRM
Streamlit UI  |  Run: streamlit run app.py
"""

import os
import sys
from pathlib import Path
from datetime import date, datetime, timedelta

import altair as alt
import pandas as pd
import streamlit as st
import streamlit.components.v1 as components

# ── Resolve paths regardless of CWD ──────────────────────────────────────────
HERE = Path(__file__).parent.resolve()
os.chdir(HERE)
sys.path.insert(0, str(HERE))

import crm_records as rec
import crm_session as sess
from crm_backend import (
    HAS_BACKEND, PROSPECT_TABLE, CLIENT_TABLE, FNA_TABLE,
    ALL_PAGE_SIZE, PROGRESS_PAGE_SIZE, BackendError,
    get_backend, create_sample_data, load_dashboard_summary, load_upcoming,
    load_progress, load_all_records, save_drafts,
    load_or_create_fna, load_fna_sections, save_fna_section,
)
from crm_export import (
    export_prospects, export_upcoming, export_progress, export_all, fna_summary_pdf,
)

# ── Brand constants ───────────────────────────────────────────────────────────
BRAND   = "CAN Financial Solutions"
PRODUCT = "Client CRM"

# ── Page config (MUST be first Streamlit call) ────────────────────────────────
st.set_page_config(
    page_title=f"{BRAND} · {PRODUCT}",
    page_icon="💼",
    layout="wide",
    initial_sidebar_state="expanded",
)

VIEW_UPCOMING = "Upcoming Meetings"
VIEW_PROGRESS = "Progress Monitoring"
VIEW_ALL      = "All Records"

PROSPECT_LABELS   = dict({key: label for key, label, _ in rec.PROSPECT_COLUMNS}, comments="Comments")
PROSPECT_REQUIRED = ("first_name", "last_name", "phone")
PROSPECT_SELECTS  = dict(
    {f: rec.YES_NO_OPTIONS for f in rec.YES_NO_FIELDS},
    relation_type=rec.RELATION_OPTIONS,
    state=rec.STATE_NAME_OPTIONS,
    immigration=rec.IMMIGRATION_STATUS_OPTIONS,
    result=[""] + rec.RESULT_OPTIONS,
)

# ─────────────────────────────────────────────────────────────────────────────
# CSS: light office theme
# ─────────────────────────────────────────────────────────────────────────────

st.markdown("""
<style>
@import url('https://fonts.googleapis.com/css2?family=Inter:wght@400;500;600;700;800&display=swap');

:root {
  --bg:      #F5F7FB;
  --card:    #FFFFFF;
  --border:  #E2E8F0;
  --blue:    #1D4ED8;
  --blue-lt: #DBEAFE;
  --txt:     #0F172A;
  --txt2:    #475569;
  --txt3:    #94A3B8;
}

html, body, [class*="css"] { font-family: 'Inter', sans-serif !important; }
.stApp { background: var(--bg) !important; }
.main .block-container { padding-top: 1.6rem !important; max-width: 1400px !important; }

[data-testid="stSidebar"] { background: var(--card) !important; border-right: 1px solid var(--border) !important; }

h1 { color: var(--txt) !important; font-weight: 800 !important; font-size: 1.7rem !important; letter-spacing: -0.02em !important; }
h2, h3 { color: var(--txt) !important; font-weight: 700 !important; }

.stButton > button, .stDownloadButton > button {
  border-radius: 8px !important;
  font-weight: 600 !important;
  font-size: 0.82rem !important;
}
.stButton > button[kind="primary"] { background: var(--blue) !important; border-color: var(--blue) !important; }

[data-testid="stDataFrame"], [data-testid="stDataEditor"] {
  border: 1px solid var(--border) !important;
  border-radius: 10px !important;
  background: var(--card) !important;
}

.stTabs [data-baseweb="tab"] { font-size: 0.82rem !important; font-weight: 600 !important; }
.stTabs [aria-selected="true"] { color: var(--blue) !important; }

.crm-chip { display:inline-block; padding:2px 10px; margin:0 6px 4px 0; border-radius:999px;
            font-size:0.7rem; font-weight:600; color:#0F172A; }
</style>
""", unsafe_allow_html=True)


# ─────────────────────────────────────────────────────────────────────────────
# HTML UI helpers
# ─────────────────────────────────────────────────────────────────────────────

def _html_page_header(title: str, subtitle: str = "", icon: str = "") -> None:
    icon_html = f'<span style="font-size:1.5rem;margin-right:0.45rem;">{icon}</span>' if icon else ""
    sub_html  = (
        f'<p style="color:#64748B;font-size:0.86rem;margin:0.3rem 0 0;">{subtitle}</p>'
        if subtitle else ""
    )
    st.markdown(f"""
<div style="margin-bottom:1.2rem;">
  <div style="display:flex;align-items:center;">
    {icon_html}
    <h1 style="margin:0;padding:0;">{title}</h1>
  </div>
  <div style="height:2px;background:linear-gradient(90deg,#1D4ED8 0%,#93C5FD 35%,transparent 100%);
       margin:0.5rem 0 0.3rem;"></div>
  {sub_html}
</div>
""", unsafe_allow_html=True)


def _html_section_header(title: str, icon: str = "") -> None:
    icon_html = f"{icon}&nbsp;" if icon else ""
    st.markdown(f"""
<div style="display:flex;align-items:center;gap:0.4rem;margin:1.4rem 0 0.6rem;
     padding-bottom:0.35rem;border-bottom:1px solid #E2E8F0;">
  <span style="font-size:0.95rem;">{icon_html}</span>
  <span style="color:#1D4ED8;font-size:0.74rem;font-weight:700;
        text-transform:uppercase;letter-spacing:0.08em;">{title}</span>
</div>
""", unsafe_allow_html=True)


def _html_callout(text: str, level: str = "info") -> None:
    cfg = {
        "info":    ("#EFF6FF", "#1E40AF", "#93C5FD", "ℹ"),
        "warning": ("#FFFBEB", "#92400E", "#FCD34D", "⚠"),
        "alert":   ("#FEF2F2", "#991B1B", "#FCA5A5", "⛔"),
        "success": ("#ECFDF5", "#065F46", "#6EE7B7", "✓"),
    }
    bg, tc, border, icon = cfg.get(level, cfg["info"])
    st.markdown(f"""
<div style="background:{bg};border-left:3px solid {border};border-radius:0 8px 8px 0;
     padding:0.6rem 1rem;margin:0.4rem 0;font-size:0.87rem;color:{tc};">
  {icon}&nbsp; {text}
</div>
""", unsafe_allow_html=True)


def _html_stat_row(stats: list) -> None:
    cards = ""
    for label, value in stats:
        cards += f"""
<div style="flex:1;background:#FFFFFF;border:1px solid #E2E8F0;border-radius:10px;
     padding:0.9rem 1.1rem;border-left:3px solid #1D4ED8;
     box-shadow:0 1px 2px rgba(15,23,42,0.05);">
  <div style="color:#64748B;font-size:0.64rem;font-weight:700;text-transform:uppercase;
       letter-spacing:0.08em;">{label}</div>
  <div style="color:#0F172A;font-size:1.45rem;font-weight:800;margin-top:3px;">{value}</div>
</div>"""
    st.markdown(
        f'<div style="display:flex;gap:0.75rem;margin:0.75rem 0;">{cards}</div>',
        unsafe_allow_html=True,
    )


def _html_status_legend() -> None:
    chips = "".join(
        f'<span class="crm-chip" style="background:{color};">{status}</span>'
        for status, color in rec.STATUS_COLORS.items()
    )
    st.markdown(f'<div style="margin:0.2rem 0 0.6rem;">{chips}</div>', unsafe_allow_html=True)


def _html_footer() -> None:
    year = datetime.now().year
    st.markdown(f"""
<div style="margin-top:3rem;padding:0.8rem 1.4rem;background:#FFFFFF;
     border:1px solid #E2E8F0;border-radius:10px;
     display:flex;justify-content:space-between;align-items:center;">
  <span style="color:#1D4ED8;font-size:0.7rem;font-weight:700;letter-spacing:0.08em;">
    💼 {BRAND.upper()}
  </span>
  <span style="color:#94A3B8;font-size:0.67rem;">
    {PRODUCT} &nbsp;·&nbsp; © {year}
  </span>
  <span style="color:#CBD5E1;font-size:0.67rem;">
    {datetime.now().strftime('%B %d, %Y')}
  </span>
</div>
""", unsafe_allow_html=True)


# ─────────────────────────────────────────────────────────────────────────────
# Session helpers
# ─────────────────────────────────────────────────────────────────────────────

@st.cache_resource
def _backend():
    return get_backend()


backend = _backend()

_DEFAULTS = {
    "page":              sess.PAGE_LOGIN,
    "toast":             None,
    "cookie_action":     None,
    # prospect list
    "pl_rows":           None,
    "pl_search":         "",
    "pl_result":         "ALL",
    "pl_page":           1,
    "pl_sort":           rec.SortConfig(),
    "pl_selected":       None,
    "pl_mode":           None,
    "pl_original":       None,
    "pl_confirm_delete": False,
    "pl_grid_nonce":     0,
    # dashboard
    "db_view":           VIEW_UPCOMING,
    "db_start":          date.today(),
    "db_end":            date.today() + timedelta(days=rec.UPCOMING_WINDOW_DAYS),
    "db_applied":        None,
    "db_upcoming":       None,
    "db_prog_page":      1,
    "db_all_page":       1,
    "db_nonce":          0,
    "db_pending":        {},
    # fna
    "fna_client":        None,
    "fna_header":        None,
    "fna_sections":      None,
    "fna_nonce":         0,
}
for _k, _v in _DEFAULTS.items():
    st.session_state.setdefault(_k, _v)


def _flash_error(verb: str, exc: BackendError) -> None:
    sess.push_toast(st.session_state, "error", sess.error_text(verb, exc.message))


def _flash_success(message: str) -> None:
    sess.push_toast(st.session_state, "success", message)


def _render_toast() -> None:
    toast = sess.active_toast(st.session_state)
    if toast is None:
        return
    if toast.kind == "error":
        st.error(toast.message)
    else:
        st.success(toast.message)


def _is_https() -> bool:
    headers = st.context.headers
    proto   = headers.get("X-Forwarded-Proto") or ""
    origin  = headers.get("Origin") or ""
    return proto == "https" or origin.startswith("https://")


def _inject_cookie_script() -> None:
    action = st.session_state.get("cookie_action")
    if not action:
        return
    script = (
        sess.auth_cookie_script(_is_https()) if action == "set"
        else sess.clear_cookie_script(_is_https())
    )
    components.html(f"<script>{script}</script>", height=0)
    st.session_state["cookie_action"] = None


def _clear_caches() -> None:
    st.session_state.update(
        pl_rows=None, pl_selected=None, pl_mode=None, pl_original=None,
        db_upcoming=None, fna_client=None, fna_header=None, fna_sections=None,
        db_pending={},
    )


def _logout() -> None:
    sess.logout(st.session_state)
    st.session_state["cookie_action"] = "clear"
    _clear_caches()


def _reset_page(page_key: str) -> None:
    st.session_state[page_key] = 1
    st.session_state["pl_grid_nonce"] += 1


def _step_page(page_key: str, delta: int) -> None:
    st.session_state[page_key] = max(1, st.session_state[page_key] + delta)
    st.session_state["pl_grid_nonce"] += 1


# ─────────────────────────────────────────────────────────────────────────────
# Grid helpers (dashboard)
# ─────────────────────────────────────────────────────────────────────────────

def _grid_value(val, key):
    if key in rec.DATE_TIME_KEYS:
        return rec.parse_when(val)
    if key in rec.DATE_ONLY_KEYS:
        when = rec.parse_when(val)
        return when.date() if when else None
    if key in rec.READONLY_LIST_COLS:
        return rec.as_list_items(val)
    if key == "created_at":
        when = rec.parse_when(val)
        return when.strftime("%Y-%m-%d %H:%M") if when else ""
    return None if rec.is_blank(val) else str(val)


def _grid_config(columns: list) -> dict:
    cfg = {
        "due": st.column_config.TextColumn(
            "⏰", width="small", help="BOP or follow-up scheduled today or later",
        ),
    }
    for key in columns:
        label = rec.label_for(key)
        opts  = rec.options_for_key(key)
        if key in rec.DATE_TIME_KEYS:
            cfg[key] = st.column_config.DatetimeColumn(label, format="YYYY-MM-DD HH:mm", step=60)
        elif key in rec.DATE_ONLY_KEYS:
            cfg[key] = st.column_config.DateColumn(label, format="YYYY-MM-DD")
        elif key in rec.READONLY_LIST_COLS:
            cfg[key] = st.column_config.ListColumn(label)
        elif opts is not None and key not in rec.NON_EDITABLE_KEYS:
            cfg[key] = st.column_config.SelectboxColumn(label, options=opts)
        else:
            cfg[key] = st.column_config.TextColumn(label)
    return cfg


def _editable_grid(rows: list, columns: list, key: str) -> dict:
    """Render rows in a data editor; returns the pending drafts."""
    today   = date.today()
    visible = [c for c in columns if c != "id"]
    records = []
    for r in rec.overlay_drafts(rows, st.session_state["db_pending"]):
        due = any(rec.should_highlight(k, r, today) for k in rec.HIGHLIGHT_KEYS)
        records.append(dict(
            {c: _grid_value(r.get(c), c) for c in visible},
            id=r.get("id"), due="⏰" if due else "",
        ))
    frame = pd.DataFrame(records, columns=["id", "due"] + visible).set_index("id")

    cfg = _grid_config(visible)
    if "id" in columns:
        cfg["_index"] = st.column_config.NumberColumn("ID", width="small")
    locked = ["due"] + [c for c in visible if c in rec.NON_EDITABLE_KEYS or c in rec.READONLY_LIST_COLS]

    edited = st.data_editor(
        frame,
        column_config=cfg,
        disabled=locked,
        hide_index="id" not in columns,
        use_container_width=True,
        key=key,
    )
    editable = [c for c in visible if c not in locked]
    return rec.collect_drafts(rows, edited.reset_index().to_dict("records"), editable)


def _save_grid(drafts: dict, cache_key: str = None) -> None:
    saved, failed = save_drafts(backend, drafts)
    st.session_state["db_pending"] = {cid: drafts[cid] for cid in failed}
    st.session_state["db_nonce"] += 1
    if cache_key and st.session_state.get(cache_key) is not None:
        rows = st.session_state[cache_key]
        for cid in saved:
            row_id, key = rec.split_cell_id(cid)
            rows = rec.apply_saved_value(rows, row_id, key, drafts[cid])
        st.session_state[cache_key] = rows
    if failed:
        for cid, message in failed.items():
            print(f"[dashboard] update {cid} failed: {message}")
        sess.push_toast(st.session_state, "error", "Failed to update. Please try again.")
    else:
        _flash_success(f"Saved {len(saved)} change{'s' if len(saved) != 1 else ''}.")
    st.rerun()


def _sort_picker(prefix: str, keys: list, page_key: str = None) -> rec.SortConfig:
    c1, c2 = st.columns([3, 1])
    with c1:
        key = st.selectbox(
            "Sort by",
            [""] + list(keys),
            format_func=lambda k: rec.label_for(k) if k else "Default order",
            key=f"{prefix}_sort_key",
            on_change=_reset_page if page_key else None,
            args=(page_key,) if page_key else None,
        )
    with c2:
        direction = st.selectbox(
            "Order",
            ["asc", "desc"],
            format_func=lambda d: "Ascending" if d == "asc" else "Descending",
            key=f"{prefix}_sort_dir",
            on_change=_reset_page if page_key else None,
            args=(page_key,) if page_key else None,
        )
    return rec.SortConfig(key or None, direction)


def _pager(page_key: str, total: int, page_size: int) -> None:
    pages = rec.page_count(total, page_size)
    cur   = st.session_state[page_key]
    c1, c2, c3 = st.columns([1, 3, 1])
    c1.button("◀ Prev", key=f"{page_key}_prev", disabled=cur <= 1,
              on_click=_step_page, args=(page_key, -1), use_container_width=True)
    c2.markdown(
        f'<div style="text-align:center;color:#64748B;font-size:0.8rem;padding-top:0.45rem;">'
        f'Page {cur} of {max(pages, 1)} &nbsp;·&nbsp; {total} records</div>',
        unsafe_allow_html=True,
    )
    c3.button("Next ▶", key=f"{page_key}_next", disabled=cur >= pages,
              on_click=_step_page, args=(page_key, 1), use_container_width=True)


# ─────────────────────────────────────────────────────────────────────────────
# Chart helpers
# ─────────────────────────────────────────────────────────────────────────────

def _completion_chart(data: list):
    frame = pd.DataFrame(data)
    if frame.empty:
        return None
    long = frame.melt(id_vars="date", var_name="series", value_name="count")
    return (
        alt.Chart(long)
        .mark_bar(cornerRadiusTopLeft=3, cornerRadiusTopRight=3)
        .encode(
            x=alt.X("date:N", sort=None, title=None),
            xOffset="series:N",
            y=alt.Y("count:Q", title="Calls", axis=alt.Axis(tickMinStep=1)),
            color=alt.Color(
                "series:N", title=None,
                scale=alt.Scale(range=["#1D4ED8", "#F59E0B", "#10B981"]),
                legend=alt.Legend(orient="bottom"),
            ),
            tooltip=[
                alt.Tooltip("date:N", title="Day"),
                alt.Tooltip("series:N", title="Type"),
                alt.Tooltip("count:Q", title="Count"),
            ],
        )
        .properties(height=270)
    )


def _call_status_chart(data: list):
    frame = pd.DataFrame(data)
    if frame.empty:
        return None
    domain = list(frame["status"])
    colors = [rec.STATUS_COLORS.get(s, "#CBD5E1") for s in domain]
    return (
        alt.Chart(frame)
        .mark_arc(innerRadius=55)
        .encode(
            theta=alt.Theta("count:Q"),
            color=alt.Color(
                "status:N", title=None,
                scale=alt.Scale(domain=domain, range=colors),
                legend=alt.Legend(orient="right"),
            ),
            tooltip=[alt.Tooltip("status:N", title="Status"), alt.Tooltip("count:Q", title="Clients")],
        )
        .properties(height=270)
    )


# ─────────────────────────────────────────────────────────────────────────────
# Routing
# ─────────────────────────────────────────────────────────────────────────────

authed = sess.is_authenticated(st.context.cookies, st.session_state)
if authed and st.session_state["page"] not in sess.PROTECTED_PAGES:
    st.session_state["page"] = sess.PAGE_DASHBOARD

_inject_cookie_script()

# ─────────────────────────────────────────────────────────────────────────────
# Sidebar
# ─────────────────────────────────────────────────────────────────────────────

if authed:
    with st.sidebar:
        st.markdown(f"""
<div style="padding:0.5rem 0 1.1rem;text-align:center;
     border-bottom:1px solid #E2E8F0;margin-bottom:1rem;">
  <div style="color:#1D4ED8;font-size:1rem;font-weight:800;letter-spacing:0.02em;">💼 {BRAND}</div>
  <div style="color:#94A3B8;font-size:0.6rem;letter-spacing:0.14em;
       margin-top:3px;text-transform:uppercase;">{PRODUCT}</div>
</div>
""", unsafe_allow_html=True)

        if HAS_BACKEND:
            st.markdown(
                '<div style="background:#ECFDF5;border:1px solid #6EE7B7;'
                'border-radius:6px;padding:5px 10px;font-size:0.73rem;color:#047857;'
                'text-align:center;margin-bottom:0.5rem;">🟢 Live Backend</div>',
                unsafe_allow_html=True,
            )
        else:
            st.markdown(
                '<div style="background:#FFFBEB;border:1px solid #FCD34D;'
                'border-radius:6px;padding:5px 10px;font-size:0.73rem;color:#B45309;'
                'text-align:center;margin-bottom:0.5rem;">🟡 Mock Mode — local data</div>',
                unsafe_allow_html=True,
            )
        st.divider()

        st.markdown(
            '<div style="color:#94A3B8;font-size:0.6rem;font-weight:700;'
            'text-transform:uppercase;letter-spacing:0.12em;margin-bottom:0.4rem;">Navigation</div>',
            unsafe_allow_html=True,
        )
        st.radio("nav", sess.PROTECTED_PAGES, key="page", label_visibility="collapsed")
        st.divider()

        if not HAS_BACKEND:
            if st.button("⚙  Generate Sample Data", use_container_width=True):
                with st.spinner("Creating sample records…"):
                    create_sample_data(backend)
                _clear_caches()
                _flash_success("Sample data created.")
                st.rerun()
            st.caption("Data file: `data/mock_backend.json`")
            st.divider()

        st.button("⎋  Log out", use_container_width=True, on_click=_logout)

page = st.session_state["page"] if authed else sess.PAGE_LOGIN


# ─────────────────────────────────────────────────────────────────────────────
# Page: Login
# ─────────────────────────────────────────────────────────────────────────────

if page == sess.PAGE_LOGIN:
    _, mid, _ = st.columns([1, 1.2, 1])
    with mid:
        st.markdown(f"""
<div style="text-align:center;margin:3rem 0 1.5rem;">
  <div style="font-size:2.2rem;">💼</div>
  <div style="color:#0F172A;font-size:1.35rem;font-weight:800;margin-top:0.3rem;">{BRAND}</div>
  <div style="color:#64748B;font-size:0.82rem;margin-top:0.2rem;">Sign in to the {PRODUCT}</div>
</div>
""", unsafe_allow_html=True)
        _render_toast()

        with st.form("login_form"):
            email    = st.text_input("Email", placeholder="you@canfs.com")
            password = st.text_input("Password", type="password")
            dest     = st.selectbox(
                "Go to",
                list(sess.DESTINATIONS),
                format_func=lambda k: sess.DESTINATIONS[k],
            )
            submitted = st.form_submit_button("Sign In", type="primary", use_container_width=True)

        if submitted:
            problem = sess.validate_login(email, password)
            if problem:
                st.error(problem)
            else:
                sess.login(st.session_state, dest)
                st.session_state["cookie_action"] = "set"
                st.rerun()

        if not HAS_BACKEND:
            _html_callout("Mock Mode — records are kept in <code>data/mock_backend.json</code>.", "warning")


# ─────────────────────────────────────────────────────────────────────────────
# Page: Dashboard
# ─────────────────────────────────────────────────────────────────────────────

elif page == sess.PAGE_DASHBOARD:
    _html_page_header(
        "Dashboard",
        f"Calls, meetings and follow-ups · {date.today().strftime('%A, %B %d, %Y')}",
        "📊",
    )

    try:
        summary = load_dashboard_summary(backend)
    except BackendError as exc:
        print(f"[dashboard] load failed: {exc.message}")
        _html_callout("Error loading data. Please try again.", "alert")
        if st.button("↻ Retry", type="primary"):
            st.rerun()
        st.stop()

    _render_toast()
    _html_stat_row([
        ("New Clients",           summary["new_clients"]),
        ("BOP Calls Today",       summary["bop_today"]),
        ("Follow-Up Calls Today", summary["followup_today"]),
        ("Completed Today",       summary["completed_today"]),
    ])

    ch1, ch2 = st.columns([3, 2])
    with ch1:
        _html_section_header("BOP, Follow-Up & Completion — Last 7 Days", "📈")
        chart = _completion_chart(summary["completion"])
        if chart is None:
            st.caption("No activity yet.")
        else:
            st.altair_chart(chart, use_container_width=True)
    with ch2:
        _html_section_header("Clients by Status", "🧩")
        chart = _call_status_chart(summary["call_status"])
        if chart is None:
            st.caption("No clients yet.")
        else:
            st.altair_chart(chart, use_container_width=True)

    st.markdown("")
    view = st.radio(
        "View", [VIEW_UPCOMING, VIEW_PROGRESS, VIEW_ALL],
        key="db_view", horizontal=True, label_visibility="collapsed",
    )
    _html_status_legend()

    # ── Upcoming Meetings ────────────────────────────────────────────────────
    if view == VIEW_UPCOMING:
        def _refresh_upcoming():
            st.session_state.update(
                db_start=date.today(),
                db_end=date.today() + timedelta(days=rec.UPCOMING_WINDOW_DAYS),
                db_applied=None,
                db_upcoming=None,
                db_pending={},
            )
            st.session_state["db_nonce"] += 1

        c1, c2, c3, c4 = st.columns([2, 2, 1.2, 1])
        start = c1.date_input("Start date", key="db_start")
        end   = c2.date_input("End date", key="db_end")
        with c3:
            st.markdown('<div style="height:1.7rem;"></div>', unsafe_allow_html=True)
            if st.button("🔎 Show Results", type="primary", use_container_width=True):
                st.session_state["db_applied"]  = (start, end)
                st.session_state["db_upcoming"] = None
        with c4:
            st.markdown('<div style="height:1.7rem;"></div>', unsafe_allow_html=True)
            st.button("↻ Refresh", key="db_up_refresh", on_click=_refresh_upcoming, use_container_width=True)

        applied = st.session_state["db_applied"]
        if applied:
            st.markdown(
                f'<div style="color:#1D4ED8;font-size:0.78rem;font-weight:600;">'
                f'● Filter active: {applied[0]:%b %d, %Y} → {applied[1]:%b %d, %Y}</div>',
                unsafe_allow_html=True,
            )
        else:
            st.caption(f"Next {rec.UPCOMING_WINDOW_DAYS} days")

        if st.session_state["db_upcoming"] is None:
            a_start, a_end = applied or (None, None)
            try:
                st.session_state["db_upcoming"] = load_upcoming(
                    backend,
                    a_start.isoformat() if a_start else "",
                    a_end.isoformat() if a_end else "",
                )
            except BackendError as exc:
                print(f"[dashboard] upcoming failed: {exc.message}")
                _html_callout("Error loading data. Please try again.", "alert")
                if st.button("↻ Retry", key="db_up_retry"):
                    st.rerun()
                st.stop()

        sort = _sort_picker("db_up", rec.UPCOMING_SORT_KEYS)
        rows = st.session_state["db_upcoming"]
        if sort.key:
            rows = rec.sort_rows(rows, sort.key, sort.direction)

        if not rows:
            _html_callout("No meetings in this window.", "info")
        drafts = _editable_grid(rows, rec.UPCOMING_COLUMNS, f"db_up_grid_{st.session_state['db_nonce']}")

        b1, b2, _ = st.columns([1.3, 1.3, 4])
        filename, data = export_upcoming(rows)
        b1.download_button("⬇ Export", data=data, file_name=filename,
                           mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                           use_container_width=True, disabled=not rows)
        if b2.button(f"💾 Save Changes ({len(drafts)})", type="primary",
                     disabled=not drafts, use_container_width=True, key="db_up_save"):
            _save_grid(drafts, "db_upcoming")

    # ── Progress Monitoring ──────────────────────────────────────────────────
    elif view == VIEW_PROGRESS:
        sort = _sort_picker("db_prog", rec.PROGRESS_COLUMNS, "db_prog_page")
        try:
            rows, total = load_progress(backend, st.session_state["db_prog_page"], sort)
        except BackendError as exc:
            print(f"[dashboard] progress failed: {exc.message}")
            _html_callout("Error loading data. Please try again.", "alert")
            if st.button("↻ Retry", key="db_prog_retry"):
                st.rerun()
            st.stop()

        frame = pd.DataFrame(
            [{c: r.get(c) for c in rec.PROGRESS_COLUMNS} for r in rows],
            columns=rec.PROGRESS_COLUMNS,
        )
        for c in ("last_call_date", "last_bop_date", "last_followup_date"):
            frame[c] = [rec.cell_text(v, "BOP_Date").replace("T", " ") for v in frame[c]]
        st.dataframe(
            frame,
            column_config={c: st.column_config.Column(rec.label_for(c)) for c in rec.PROGRESS_COLUMNS},
            hide_index=True,
            use_container_width=True,
        )
        _pager("db_prog_page", total, PROGRESS_PAGE_SIZE)

        b1, b2, _ = st.columns([1.3, 1.3, 4])
        if b1.button("↻ Refresh", key="db_prog_refresh", use_container_width=True):
            st.rerun()
        filename, data = export_progress(rows)
        b2.download_button("⬇ Export", data=data, file_name=filename,
                           mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                           use_container_width=True, disabled=not rows)

    # ── All Records ──────────────────────────────────────────────────────────
    else:
        sort = _sort_picker("db_all", rec.ALL_SORT_KEYS, "db_all_page")
        try:
            rows, total = load_all_records(backend, st.session_state["db_all_page"], sort)
        except BackendError as exc:
            print(f"[dashboard] all records failed: {exc.message}")
            _html_callout("Error loading data. Please try again.", "alert")
            if st.button("↻ Retry", key="db_all_retry"):
                st.rerun()
            st.stop()

        drafts = _editable_grid(rows, rec.ALL_COLUMNS, f"db_all_grid_{st.session_state['db_nonce']}")
        _pager("db_all_page", total, ALL_PAGE_SIZE)

        b1, b2, b3, _ = st.columns([1.3, 1.3, 1.3, 3])
        if b1.button("↻ Refresh", key="db_all_refresh", use_container_width=True):
            st.session_state["db_pending"] = {}
            st.session_state["db_nonce"] += 1
            st.rerun()
        filename, data = export_all(rows)
        b2.download_button("⬇ Export", data=data, file_name=filename,
                           mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                           use_container_width=True, disabled=not rows)
        if b3.button(f"💾 Save Changes ({len(drafts)})", type="primary",
                     disabled=not drafts, use_container_width=True, key="db_all_save"):
            _save_grid(drafts)

    _html_footer()


# ─────────────────────────────────────────────────────────────────────────────
# Page: Financial Need Analysis
# ─────────────────────────────────────────────────────────────────────────────

elif page == sess.PAGE_FNA:
    _html_page_header(
        "Financial Need Analysis",
        "Client & family profile, assets, liabilities, insurance, goals and estate.",
        "🧭",
    )

    def _form_text(val) -> str:
        if isinstance(val, float) and val.is_integer():
            return str(int(val))
        return "" if rec.is_blank(val) else str(val)

    def _open_fna(client: dict) -> None:
        try:
            header, created = load_or_create_fna(backend, client)
            sections        = load_fna_sections(backend, header["id"])
        except BackendError as exc:
            _flash_error("loading", exc)
            return
        form = rec.to_fna_form(header)
        for f in rec.FNA_HEADER_FIELDS:
            st.session_state[f"fna_f_{f.key}"] = _form_text(form[f.key])
        st.session_state.update(fna_client=client, fna_header=header, fna_sections=sections)
        st.session_state["fna_nonce"] += 1
        _flash_success(f"New FNA started for {client.get('client_name')}." if created else "FNA loaded.")

    try:
        clients = backend.select(CLIENT_TABLE)
    except BackendError as exc:
        _html_callout(sess.error_text("loading", exc.message), "alert")
        st.stop()

    _render_toast()

    by_id = {r.get("id"): r for r in clients}
    q_col, pick_col, btn_col = st.columns([2, 3, 1])
    query   = q_col.text_input("Find client", key="fna_query", placeholder="Name, email or phone")
    matches = rec.match_clients(clients, query)
    if not matches:
        with pick_col:
            _html_callout("No matching clients. Register the client or generate sample data.", "info")
    else:
        choice = pick_col.selectbox(
            "Client",
            [r.get("id") for r in matches],
            format_func=lambda i: (
                f"{by_id[i].get('client_name') or '—'}  ·  "
                f"{by_id[i].get('email') or by_id[i].get('phone') or ''}"
            ),
            key="fna_pick",
        )
        with btn_col:
            st.markdown('<div style="height:1.7rem;"></div>', unsafe_allow_html=True)
            st.button("📂 Open FNA", type="primary", use_container_width=True,
                      on_click=_open_fna, args=(by_id[choice],))

    header   = st.session_state["fna_header"]
    client   = st.session_state["fna_client"]
    sections = st.session_state["fna_sections"] or {}

    if header is None:
        _html_callout("Select a client and open their FNA to begin.", "info")
        _html_footer()
        st.stop()

    st.markdown(
        f'<div style="font-size:0.9rem;color:#0F172A;font-weight:700;margin:0.6rem 0 0.2rem;">'
        f'{header.get("client_name") or "Client"} '
        f'<span style="color:#94A3B8;font-weight:500;font-size:0.78rem;">FNA #{header.get("id")}</span></div>',
        unsafe_allow_html=True,
    )

    tabs = st.tabs(["Client & Family"] + [s.title for s in rec.FNA_SECTIONS] + ["Summary"])

    # ── Client & Family ──────────────────────────────────────────────────────
    with tabs[0]:
        cols = st.columns(3)
        for i, f in enumerate(rec.FNA_HEADER_FIELDS):
            key = f"fna_f_{f.key}"
            st.session_state.setdefault(key, "")
            label = f.label + (" *" if f.key == "client_name" else "")
            with cols[i % 3]:
                if f.kind == "select":
                    opts = list(f.options)
                    if st.session_state[key] not in opts:
                        opts.append(st.session_state[key])
                    st.selectbox(label, opts, key=key)
                elif f.key == "notes":
                    st.text_area(label, key=key, height=90)
                else:
                    st.text_input(label, key=key)

        form = {f.key: st.session_state[f"fna_f_{f.key}"] for f in rec.FNA_HEADER_FIELDS}
        if st.button("💾 Save Client & Family", type="primary", key="fna_save_header"):
            if not rec.fna_required_ok(form):
                st.error("Client Name is required.")
            else:
                try:
                    saved = backend.update(FNA_TABLE, header["id"], rec.fna_header_payload(client, form))
                except BackendError as exc:
                    _flash_error("saving", exc)
                else:
                    st.session_state["fna_header"] = saved
                    _flash_success("Client & Family saved.")
                st.rerun()

    # ── Detail sections ──────────────────────────────────────────────────────
    for tab, section in zip(tabs[1:-1], rec.FNA_SECTIONS):
        with tab:
            original = sections.get(section.key, [])
            keys     = [f.key for f in section.fields]
            frame    = pd.DataFrame(
                [dict({k: r.get(k) for k in keys}, id=r.get("id")) for r in original],
                columns=["id"] + keys,
            )
            cfg = {"id": st.column_config.NumberColumn("ID", width="small", disabled=True)}
            for f in section.fields:
                if f.kind == "select":
                    cfg[f.key] = st.column_config.SelectboxColumn(f.label, options=list(f.options))
                elif f.kind == "year":
                    cfg[f.key] = st.column_config.NumberColumn(f.label, min_value=1900, max_value=2200, step=1, format="%d")
                elif f.kind == "number":
                    fmt = "%.2f" if f.key == "interest_rate" else "$%.0f"
                    cfg[f.key] = st.column_config.NumberColumn(f.label, min_value=0, format=fmt)
                else:
                    cfg[f.key] = st.column_config.TextColumn(f.label)

            edited = st.data_editor(
                frame,
                column_config=cfg,
                num_rows="dynamic",
                hide_index=True,
                use_container_width=True,
                key=f"fna_grid_{section.key}_{st.session_state['fna_nonce']}",
            )
            if st.button(f"💾 Save {section.title}", key=f"fna_save_{section.key}"):
                inserts, updates, deletes = rec.diff_section_rows(
                    original, edited.to_dict("records"), header["id"], section,
                )
                if not (inserts or updates or deletes):
                    st.info("No changes to save.")
                else:
                    try:
                        n = save_fna_section(backend, section, inserts, updates, deletes)
                        st.session_state["fna_sections"] = load_fna_sections(backend, header["id"])
                    except BackendError as exc:
                        _flash_error("saving", exc)
                    else:
                        st.session_state["fna_nonce"] += 1
                        _flash_success(f"{section.title}: {n} change{'s' if n != 1 else ''} saved.")
                    st.rerun()

    # ── Summary ──────────────────────────────────────────────────────────────
    with tabs[-1]:
        totals = rec.fna_summary(header, sections)
        _html_stat_row([
            ("Total Assets",      rec.fmt_money(totals["total_assets"])),
            ("Total Liabilities", rec.fmt_money(totals["total_liabilities"])),
            ("Net Worth",         rec.fmt_money(totals["net_worth"])),
            ("Household Income",  rec.fmt_money(totals["household_income"])),
        ])
        _html_stat_row([
            ("Insurance Coverage", rec.fmt_money(totals["total_coverage"])),
            ("Annual Premiums",    rec.fmt_money(totals["annual_premiums"])),
            ("Goal Funding Gap",   rec.fmt_money(totals["goal_gap"])),
            ("Estate Docs",        totals["estate_documents"]),
        ])
        if totals["net_worth"] < 0:
            _html_callout("Liabilities exceed assets. Review debt strategy.", "warning")
        if totals["goal_gap"] > 0:
            _html_callout(f"Goals are underfunded by {rec.fmt_money(totals['goal_gap'])}.", "info")

        safe_name = "_".join((header.get("client_name") or "client").split())
        st.download_button(
            "⬇ Download FNA Summary (PDF)",
            data=fna_summary_pdf(header, sections, totals),
            file_name=f"FNA_{safe_name}.pdf",
            mime="application/pdf",
            type="primary",
        )

    _html_footer()


# ─────────────────────────────────────────────────────────────────────────────
# Page: Prospect List
# ─────────────────────────────────────────────────────────────────────────────

elif page == sess.PAGE_PROSPECTS:
    _html_page_header(
        "Prospect List",
        "Screen, track and follow up with prospects.",
        "📇",
    )

    def _pl_open(mode: str, row: dict = None) -> None:
        form = rec.to_prospect_form(row) if row else rec.empty_prospect_form()
        for f, v in form.items():
            st.session_state[f"pf_{f}"] = v
        st.session_state.update(
            pl_mode=mode,
            pl_original=row if mode != "new" else None,
            pl_confirm_delete=False,
        )

    def _pl_close() -> None:
        st.session_state.update(pl_mode=None, pl_original=None)

    def _pl_refresh() -> None:
        st.session_state.update(
            pl_rows=None, pl_search="", pl_result="ALL", pl_page=1,
            pl_sort=rec.SortConfig(), pl_sort_key="", pl_selected=None,
            pl_mode=None, pl_original=None, pl_confirm_delete=False,
        )
        st.session_state["pl_grid_nonce"] += 1

    def _pl_sort_changed() -> None:
        key = st.session_state["pl_sort_key"]
        st.session_state["pl_sort"] = (
            rec.toggle_sort(st.session_state["pl_sort"], key) if key else rec.SortConfig()
        )
        st.session_state["pl_grid_nonce"] += 1

    def _pl_flip_sort() -> None:
        cur = st.session_state["pl_sort"]
        if cur.key:
            st.session_state["pl_sort"] = rec.toggle_sort(cur, cur.key)
            st.session_state["pl_grid_nonce"] += 1

    def _prospect_input(field: str, disabled: bool) -> None:
        key   = f"pf_{field}"
        label = PROSPECT_LABELS[field] + (" *" if field in PROSPECT_REQUIRED else "")
        opts  = PROSPECT_SELECTS.get(field)
        st.session_state.setdefault(key, "")
        if opts is not None:
            if st.session_state[key] not in opts:
                opts = opts + [st.session_state[key]]
            st.selectbox(label, opts, key=key, disabled=disabled)
        elif field in ("next_steps", "comments"):
            st.text_area(label, key=key, disabled=disabled, height=80)
        else:
            st.text_input(label, key=key, disabled=disabled,
                          placeholder="YYYY-MM-DD" if field == "contact_date" else "")

    if st.session_state["pl_rows"] is None:
        try:
            st.session_state["pl_rows"] = backend.select(PROSPECT_TABLE, order="id", desc=True)
        except BackendError as exc:
            _flash_error("loading", exc)
            st.session_state["pl_rows"] = []

    _render_toast()
    rows = st.session_state["pl_rows"]

    # ── Filters ──────────────────────────────────────────────────────────────
    c1, c2, c3, c4 = st.columns([3, 2, 2, 1])
    c1.text_input("Search", key="pl_search", placeholder="Name, spouse or phone",
                  on_change=_reset_page, args=("pl_page",))
    c2.selectbox("Result", ["ALL"] + rec.RESULT_OPTIONS, key="pl_result",
                 on_change=_reset_page, args=("pl_page",))
    c3.selectbox("Sort by", [""] + list(PROSPECT_LABELS)[:-1],
                 format_func=lambda k: PROSPECT_LABELS[k] if k else "Newest first",
                 key="pl_sort_key", on_change=_pl_sort_changed)
    sort = st.session_state["pl_sort"]
    with c4:
        st.markdown('<div style="height:1.7rem;"></div>', unsafe_allow_html=True)
        st.button("↓ Desc" if sort.direction == "desc" else "↑ Asc", key="pl_sort_dir",
                  disabled=not sort.key, on_click=_pl_flip_sort, use_container_width=True)

    filtered = rec.filter_prospects(rows, st.session_state["pl_search"], st.session_state["pl_result"])
    ordered  = rec.sort_rows(filtered, sort.key, sort.direction)
    pg       = rec.paginate(ordered, st.session_state["pl_page"])
    st.session_state["pl_page"] = pg.page

    # ── Grid ─────────────────────────────────────────────────────────────────
    col_keys = [key for key, _, _ in rec.PROSPECT_COLUMNS]
    frame = pd.DataFrame(
        [{k: form[k] for k in col_keys} for form in map(rec.to_prospect_form, pg.rows)],
        columns=col_keys,
    )
    event = st.dataframe(
        frame,
        column_config={
            key: st.column_config.TextColumn(label, width=rec.width_class(px))
            for key, label, px in rec.PROSPECT_COLUMNS
        },
        hide_index=True,
        use_container_width=True,
        on_select="rerun",
        selection_mode="single-row",
        key=f"pl_grid_{st.session_state['pl_grid_nonce']}",
    )
    picked = event.selection.rows
    st.session_state["pl_selected"] = pg.rows[picked[0]].get("id") if picked and picked[0] < len(pg.rows) else None
    selected = next((r for r in rows if r.get("id") == st.session_state["pl_selected"]), None)

    p1, p2, p3 = st.columns([1, 3, 1])
    p1.button("◀ Prev", key="pl_prev", disabled=pg.page <= 1,
              on_click=_step_page, args=("pl_page", -1), use_container_width=True)
    p2.markdown(
        f'<div style="text-align:center;color:#64748B;font-size:0.8rem;padding-top:0.45rem;">'
        f'Showing {len(filtered)} of {len(rows)} prospects &nbsp;·&nbsp; '
        f'Page {pg.page} of {pg.total_pages}</div>',
        unsafe_allow_html=True,
    )
    p3.button("Next ▶", key="pl_next", disabled=pg.page >= pg.total_pages,
              on_click=_step_page, args=("pl_page", 1), use_container_width=True)

    # ── Actions ──────────────────────────────────────────────────────────────
    a = st.columns(7)
    a[0].button("👁 Show", disabled=selected is None, on_click=_pl_open,
                args=("view", selected), use_container_width=True)
    a[1].button("✏ Edit", disabled=selected is None, on_click=_pl_open,
                args=("edit", selected), use_container_width=True)
    a[2].button("➕ New", on_click=_pl_open, args=("new",), use_container_width=True)
    if a[3].button("🗑 Delete", disabled=selected is None, use_container_width=True):
        st.session_state["pl_confirm_delete"] = True
    a[4].button("↻ Refresh", key="pl_refresh", on_click=_pl_refresh, use_container_width=True)
    csv_name, csv_data = export_prospects(filtered, "csv")
    a[5].download_button("⬇ CSV", data=csv_data, file_name=csv_name, mime="text/csv",
                         use_container_width=True, disabled=not filtered)
    xlsx_name, xlsx_data = export_prospects(filtered, "xlsx")
    a[6].download_button("⬇ Excel", data=xlsx_data, file_name=xlsx_name,
                         mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                         use_container_width=True, disabled=not filtered)

    if st.session_state["pl_confirm_delete"] and selected:
        name = f"{selected.get('first_name') or ''} {selected.get('last_name') or ''}".strip()
        _html_callout(f"Delete <b>{name}</b>? This cannot be undone.", "alert")
        y_col, n_col, _ = st.columns([1, 1, 5])
        if y_col.button("Yes, delete", type="primary", use_container_width=True):
            try:
                backend.delete(PROSPECT_TABLE, selected["id"])
            except BackendError as exc:
                _flash_error("deleting", exc)
            else:
                _flash_success(f"Deleted {name}.")
                st.session_state.update(pl_rows=None, pl_selected=None, pl_mode=None, pl_original=None)
                st.session_state["pl_grid_nonce"] += 1
            st.session_state["pl_confirm_delete"] = False
            st.rerun()
        if n_col.button("Cancel", use_container_width=True):
            st.session_state["pl_confirm_delete"] = False
            st.rerun()

    # ── Detail form ──────────────────────────────────────────────────────────
    mode = st.session_state["pl_mode"]
    if mode:
        titles = {"view": "Prospect Details", "edit": "Edit Prospect", "new": "New Prospect"}
        _html_section_header(titles[mode], "🪪")
        readonly = mode == "view"
        cols = st.columns(3)
        for i, field in enumerate(rec.PROSPECT_FIELDS):
            with cols[i % 3]:
                _prospect_input(field, readonly)

        form     = {f: st.session_state[f"pf_{f}"] for f in rec.PROSPECT_FIELDS}
        original = st.session_state["pl_original"]
        dirty    = rec.is_dirty(form, original) if original else form != rec.empty_prospect_form()
        if dirty and not readonly:
            _html_callout("You have unsaved changes.", "warning")

        f1, f2, _ = st.columns([1.3, 1.3, 4])
        if mode == "view":
            f1.button("✏ Edit", key="pl_form_edit", on_click=_pl_open,
                      args=("edit", original), use_container_width=True)
        elif mode == "edit":
            if f1.button("💾 Save", type="primary", disabled=not dirty, use_container_width=True):
                if not rec.required_filled(form):
                    st.error(rec.REQUIRED_MSG)
                else:
                    try:
                        saved = backend.update(PROSPECT_TABLE, original["id"], rec.prospect_payload(form))
                    except BackendError as exc:
                        _flash_error("updating", exc)
                    else:
                        _flash_success("Prospect updated.")
                        st.session_state.update(pl_rows=None, pl_mode="view", pl_original=saved)
                    st.rerun()
        else:
            if f1.button("💾 Save New", type="primary", use_container_width=True):
                if not rec.required_filled(form):
                    st.error(rec.REQUIRED_MSG)
                else:
                    try:
                        saved = backend.insert(PROSPECT_TABLE, rec.prospect_payload(form))
                    except BackendError as exc:
                        _flash_error("saving", exc)
                    else:
                        _flash_success("Prospect added.")
                        st.session_state.update(
                            pl_rows=None, pl_mode="view", pl_original=saved, pl_selected=saved.get("id"),
                        )
                    st.rerun()
        f2.button("✖ Discard & Close" if dirty and not readonly else "✖ Close",
                  key="pl_form_close", on_click=_pl_close, use_container_width=True)

    _html_footer()
