from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from pontaj.services.reconciliation import (
    AUDIT_DISCREPANCY_THRESHOLD_HOURS,
    ReconciliationResult,
    summarize,
)

AUDIT_HEADERS = [
    "Data",
    "Total pontaj (ore)",
    "Total agregat (ore)",
    "Diferenta (ore)",
    "Ture",
    "Semnalari",
]

HEADER_FILL = PatternFill(fill_type="solid", fgColor="0B4F73")
META_LABEL_FILL = PatternFill(fill_type="solid", fgColor="EAF4F9")
META_VALUE_FILL = PatternFill(fill_type="solid", fgColor="F8FCFF")
ZEBRA_FILL = PatternFill(fill_type="solid", fgColor="F7FBFE")
WARNING_FILL = PatternFill(fill_type="solid", fgColor="FFF3CD")
ALERT_FILL = PatternFill(fill_type="solid", fgColor="FDE2E4")
SUMMARY_FILL = PatternFill(fill_type="solid", fgColor="E9F1F7")

HEADER_FONT = Font(bold=True, color="FFFFFF")
BOLD_FONT = Font(bold=True, color="0F172A")
TITLE_FONT = Font(bold=True, color="0B4F73", size=14)
MUTED_FONT = Font(color="334155")

THIN_SIDE = Side(style="thin", color="D5E2EC")
THIN_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)

FLAG_LABELS = {
    "discrepancy": "DIFERENTA",
    "incomplete": "TURA DESCHISA",
    "missing_aggregate": "LIPSA AGREGAT",
}


def _style_header(ws: Worksheet, row: int = 1) -> None:
    for cell in ws[row]:
        if cell.value is None:
            continue
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        cell.border = THIN_BORDER


def _auto_width(ws: Worksheet) -> None:
    for column_cells in ws.iter_cols(min_row=1, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        max_len = 0
        col_letter = get_column_letter(column_cells[0].column)
        for cell in column_cells:
            if cell.coordinate in ws.merged_cells:
                continue
            value = "" if cell.value is None else str(cell.value)
            max_len = max(max_len, len(value))
        ws.column_dimensions[col_letter].width = min(max_len + 2, 45)


def _flag_text(result: ReconciliationResult) -> str:
    return ", ".join(FLAG_LABELS[name] for name in result.flags)


def _append_metadata(
    ws: Worksheet,
    *,
    employee_id: int,
    employee_name: str | None,
    start_date: date,
    end_date: date,
) -> None:
    ws.append(["Raport reconciliere pontaj"])
    ws.cell(row=1, column=1).font = TITLE_FONT
    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=len(AUDIT_HEADERS))
    rows = [
        ("Angajat", f"#{employee_id} {employee_name or ''}".strip()),
        ("Perioada", f"{start_date.isoformat()} - {end_date.isoformat()}"),
        ("Prag diferenta (ore)", float(AUDIT_DISCREPANCY_THRESHOLD_HOURS)),
    ]
    start_row = ws.max_row + 1
    for label, value in rows:
        ws.append([label, value])
    for row_idx in range(start_row, ws.max_row + 1):
        label_cell = ws.cell(row=row_idx, column=1)
        value_cell = ws.cell(row=row_idx, column=2)
        label_cell.font = BOLD_FONT
        label_cell.fill = META_LABEL_FILL
        label_cell.border = THIN_BORDER
        value_cell.font = MUTED_FONT
        value_cell.fill = META_VALUE_FILL
        value_cell.border = THIN_BORDER
        value_cell.alignment = Alignment(horizontal="left", vertical="center")
    ws.append([])


def _append_results_table(ws: Worksheet, results: Sequence[ReconciliationResult]) -> None:
    ws.append(AUDIT_HEADERS)
    header_row = ws.max_row
    _style_header(ws, header_row)
    ws.freeze_panes = f"A{header_row + 1}"

    for index, result in enumerate(results):
        ws.append(
            [
                result.work_date,
                float(result.entries_total),
                float(result.aggregate_total) if result.aggregate_total is not None else None,
                float(result.delta),
                result.shift_count,
                _flag_text(result),
            ]
        )
        row_idx = ws.max_row
        row_fill = WARNING_FILL if result.flags else (ZEBRA_FILL if index % 2 else None)
        for col_idx in range(1, len(AUDIT_HEADERS) + 1):
            cell = ws.cell(row=row_idx, column=col_idx)
            cell.border = THIN_BORDER
            if row_fill is not None:
                cell.fill = row_fill
            if col_idx == 1:
                cell.number_format = "yyyy-mm-dd"
            elif col_idx in {2, 3, 4}:
                cell.number_format = "0.00"
                cell.alignment = Alignment(horizontal="right")
        if result.discrepancy:
            delta_cell = ws.cell(row=row_idx, column=4)
            delta_cell.fill = ALERT_FILL
            delta_cell.font = Font(bold=True, color="9F1239")


def _append_summary(ws: Worksheet, results: Sequence[ReconciliationResult]) -> None:
    summary = summarize(results)
    ws.append([])
    ws.append(["Rezumat", "Valoare"])
    summary_start = ws.max_row
    ws.append(["Zile", summary.days])
    ws.append(["Zile cu diferente", summary.discrepancy_days])
    ws.append(["Zile cu ture deschise", summary.incomplete_days])
    ws.append(["Zile fara agregat", summary.missing_aggregate_days])
    ws.append(["Total pontaj (ore)", float(summary.entries_total)])
    ws.append(["Total agregat (ore)", float(summary.aggregate_total)])
    ws.append(["Diferenta totala (ore)", float(summary.delta_total)])
    _style_header(ws, summary_start)

    for row_idx in range(summary_start + 1, ws.max_row + 1):
        label_cell = ws.cell(row=row_idx, column=1)
        value_cell = ws.cell(row=row_idx, column=2)
        label_cell.fill = SUMMARY_FILL
        label_cell.border = THIN_BORDER
        label_cell.font = BOLD_FONT
        value_cell.border = THIN_BORDER
        value_cell.alignment = Alignment(horizontal="center", vertical="center")


def build_audit_xlsx_bytes(
    results: Sequence[ReconciliationResult],
    *,
    employee_id: int,
    start_date: date,
    end_date: date,
    employee_name: str | None = None,
) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Reconciliere"

    _append_metadata(ws, employee_id=employee_id, employee_name=employee_name, start_date=start_date, end_date=end_date)
    _append_results_table(ws, results)
    _append_summary(ws, results)
    _auto_width(ws)

    stream = BytesIO()
    wb.save(stream)
    return stream.getvalue()
