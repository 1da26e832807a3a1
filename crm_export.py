"""
crm_export.py  –  Spreadsheet and PDF downloads for the CAN CRM.

Tables go out through pandas (openpyxl for .xlsx); the FNA summary sheet is
drawn with PyMuPDF (fitz).
"""

import io
import datetime

import fitz  # pymupdf
import pandas as pd

import crm_records as rec

UPCOMING_SHEET = "Upcoming Meetings"
PROGRESS_SHEET = "Progress Monitoring"
ALL_SHEET      = "All Records"
PROSPECT_SHEET = "Prospects"

PROSPECT_EXPORT_FIELDS  = [key for key, _, _ in rec.PROSPECT_COLUMNS] + ["comments"]
PROSPECT_EXPORT_HEADERS = [label for _, label, _ in rec.PROSPECT_COLUMNS] + ["Comments"]


# ─────────────────────────────────────────────────────────────────────────────
# Tables
# ─────────────────────────────────────────────────────────────────────────────

def rows_to_frame(rows: list, headers: list, fields: list) -> pd.DataFrame:
    """One column per field, in order, renamed to the display headers."""
    data = [[r.get(f) for f in fields] for r in rows]
    return pd.DataFrame(data, columns=headers)


def to_xlsx_bytes(frame: pd.DataFrame, sheet_name: str) -> bytes:
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as w:
        frame.to_excel(w, sheet_name=sheet_name, index=False)
    return buf.getvalue()


def to_csv_bytes(frame: pd.DataFrame) -> bytes:
    return frame.to_csv(index=False).encode("utf-8")


def _export(rows, fields, sheet_name, stem, fmt) -> tuple:
    frame = rows_to_frame(rows, [rec.label_for(f) for f in fields], fields)
    if fmt == "csv":
        return f"{stem}.csv", to_csv_bytes(frame)
    return f"{stem}.xlsx", to_xlsx_bytes(frame, sheet_name)


def export_prospects(rows: list, fmt: str = "csv") -> tuple:
    frame = rows_to_frame(rows, PROSPECT_EXPORT_HEADERS, PROSPECT_EXPORT_FIELDS)
    if fmt == "xlsx":
        return "prospects.xlsx", to_xlsx_bytes(frame, PROSPECT_SHEET)
    return "prospects.csv", to_csv_bytes(frame)


def export_upcoming(rows: list, fmt: str = "xlsx") -> tuple:
    return _export(rows, rec.UPCOMING_COLUMNS, UPCOMING_SHEET, "upcoming_meetings", fmt)


def export_progress(rows: list, fmt: str = "xlsx") -> tuple:
    return _export(rows, rec.PROGRESS_COLUMNS, PROGRESS_SHEET, "progress_monitoring", fmt)


def export_all(rows: list, fmt: str = "xlsx") -> tuple:
    return _export(rows, rec.ALL_COLUMNS, ALL_SHEET, "all_records", fmt)


# ─────────────────────────────────────────────────────────────────────────────
# FNA summary PDF
# ─────────────────────────────────────────────────────────────────────────────

NAVY     = (0.11, 0.25, 0.55)
STRIPE   = (0.95, 0.97, 1.00)
MID_GRAY = (0.50, 0.50, 0.50)
DARK     = (0.10, 0.10, 0.12)
WHITE    = (1.00, 1.00, 1.00)

PAGE_W, PAGE_H = 612, 792
MARGIN = 40
ROW_H  = 18

_SUMMARY_LINES = [
    ("Total Assets",          "total_assets"),
    ("Total Liabilities",     "total_liabilities"),
    ("Net Worth",             "net_worth"),
    ("Monthly Debt Payments", "monthly_debt"),
    ("Insurance Coverage",    "total_coverage"),
    ("Annual Premiums",       "annual_premiums"),
    ("Goal Funding Gap",      "goal_gap"),
    ("Household Income",      "household_income"),
]


def _new_page(doc, client_name):
    pg = doc.new_page(width=PAGE_W, height=PAGE_H)
    pg.draw_rect(fitz.Rect(0, 0, PAGE_W, 70), fill=NAVY)
    pg.insert_text((MARGIN, 30), "CAN FINANCIAL SOLUTIONS",
                   fontname="Helvetica-Bold", fontsize=13, color=WHITE)
    pg.insert_text((MARGIN, 50),
                   f"Financial Need Analysis  ·  {client_name}  ·  "
                   f"{datetime.date.today().strftime('%B %d, %Y')}",
                   fontname="Helvetica", fontsize=9, color=(0.80, 0.87, 1.00))
    return pg, 90


def _footer(page):
    page.draw_line((MARGIN, PAGE_H - 22), (PAGE_W - MARGIN, PAGE_H - 22),
                   color=MID_GRAY, width=0.4)
    page.insert_text((MARGIN, PAGE_H - 10), "Confidential  ·  Prepared for client review",
                     fontname="Helvetica", fontsize=7, color=MID_GRAY)


def _cell(val, field):
    if rec.is_blank(val):
        return ""
    if field.key == "interest_rate":
        return f"{rec.safe_float(val):.2f}%"
    if field.kind == "number":
        return rec.fmt_money(val)
    return str(val)[:28]


def fna_summary_pdf(header: dict, sections: dict, summary: dict) -> bytes:
    """Header facts, headline totals, then one table per non-empty section."""
    header      = header or {}
    client_name = str(header.get("client_name") or "Client")

    doc = fitz.open()
    page, y = _new_page(doc, client_name)

    def need(height):
        nonlocal page, y
        if y + height > PAGE_H - 36:
            _footer(page)
            page, y = _new_page(doc, client_name)

    def heading(text):
        nonlocal y
        need(ROW_H * 2)
        y += 8
        page.insert_text((MARGIN, y), text, fontname="Helvetica-Bold", fontsize=11, color=NAVY)
        y += 8

    heading("Client & Family")
    facts = [(f.label, header.get(f.key)) for f in rec.FNA_HEADER_FIELDS if not rec.is_blank(header.get(f.key))]
    for idx, (label, val) in enumerate(facts):
        need(ROW_H)
        if idx % 2 == 0:
            page.draw_rect(fitz.Rect(MARGIN, y, PAGE_W - MARGIN, y + ROW_H - 1), fill=STRIPE)
        page.insert_text((MARGIN + 6, y + 12), label, fontname="Helvetica", fontsize=8, color=MID_GRAY)
        page.insert_text((MARGIN + 170, y + 12), str(val)[:60], fontname="Helvetica-Bold", fontsize=9, color=DARK)
        y += ROW_H

    heading("Summary")
    for label, key in _SUMMARY_LINES:
        need(ROW_H)
        page.insert_text((MARGIN + 6, y + 12), label, fontname="Helvetica", fontsize=9, color=DARK)
        page.insert_text((MARGIN + 250, y + 12), rec.fmt_money(summary.get(key)),
                         fontname="Helvetica-Bold", fontsize=9, color=DARK)
        y += ROW_H
    need(ROW_H)
    page.insert_text((MARGIN + 6, y + 12), "Estate Documents In Place", fontname="Helvetica", fontsize=9, color=DARK)
    page.insert_text((MARGIN + 250, y + 12), str(summary.get("estate_documents", 0)),
                     fontname="Helvetica-Bold", fontsize=9, color=DARK)
    y += ROW_H

    for section in rec.FNA_SECTIONS:
        rows = sections.get(section.key) or []
        if not rows:
            continue
        heading(section.title)
        col_w = (PAGE_W - 2 * MARGIN) / len(section.fields)
        need(ROW_H)
        for i, f in enumerate(section.fields):
            page.insert_text((MARGIN + 4 + i * col_w, y + 12), f.label,
                             fontname="Helvetica-Bold", fontsize=7, color=MID_GRAY)
        y += ROW_H
        for idx, row in enumerate(rows):
            need(ROW_H)
            if idx % 2 == 0:
                page.draw_rect(fitz.Rect(MARGIN, y, PAGE_W - MARGIN, y + ROW_H - 1), fill=STRIPE)
            for i, f in enumerate(section.fields):
                page.insert_text((MARGIN + 4 + i * col_w, y + 12), _cell(row.get(f.key), f),
                                 fontname="Helvetica", fontsize=8, color=DARK)
            y += ROW_H

    _footer(page)
    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()
