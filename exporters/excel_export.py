"""Spreadsheet rendering of class timetables using openpyxl."""

from __future__ import annotations

import io
from datetime import datetime
from typing import List

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from scheduling.api import SessionKind, WEEKDAYS
from scheduling.grid import NOT_AVAILABLE, GridCell, LabContinuation, TimetableGrid
from scheduling.timeslots import BREAK

from .api import ExportResult, class_title

MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

HEADER_FILL = PatternFill(start_color="E0E0E0", end_color="E0E0E0", fill_type="solid")
BREAK_FILL = PatternFill(start_color="FFA500", end_color="FFA500", fill_type="solid")
LUNCH_FILL = PatternFill(start_color="90EE90", end_color="90EE90", fill_type="solid")
LAB_FILL = PatternFill(start_color="E7F3E7", end_color="E7F3E7", fill_type="solid")
THIN_BORDER = Border(
    left=Side(style='thin'),
    right=Side(style='thin'),
    top=Side(style='thin'),
    bottom=Side(style='thin'),
)
CENTERED = Alignment(horizontal='center', vertical='center', wrap_text=True)


def cell_text(cell: GridCell) -> str:
    teacher = cell.teacher_abbr or cell.teacher
    if cell.kind is SessionKind.LAB:
        if teacher and teacher != NOT_AVAILABLE:
            return f"{cell.subject} ({teacher})\n{cell.room}"
        return f"{cell.subject}\n{cell.room}"
    return f"{cell.subject}\n{teacher}\n{cell.room}"


def populate_sheet(ws, grid: TimetableGrid, institute: str) -> None:
    """Write one class timetable onto ``ws``.

    BREAK and LUNCH columns are merged vertically over the header and data
    rows.  A two-slot lab is merged with its continuation when the two
    windows are adjacent columns; a continuation is never written itself.
    """

    slots = grid.calendar.slots
    total_cols = len(slots) + 1

    ws.cell(row=1, column=1, value=institute).font = Font(bold=True, size=16)
    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=total_cols)
    ws.cell(row=1, column=1).alignment = Alignment(horizontal='center')
    ws.cell(row=2, column=1, value=f"Class: {class_title(grid)}").font = Font(bold=True, size=14)
    ws.merge_cells(start_row=2, start_column=1, end_row=2, end_column=total_cols)
    ws.cell(row=2, column=1).alignment = Alignment(horizontal='center')

    header_row = 4
    for col, label in enumerate(['Day'] + [s.label for s in slots], start=1):
        cell = ws.cell(row=header_row, column=col, value=label)
        cell.font = Font(bold=True)
        cell.fill = HEADER_FILL
        cell.alignment = CENTERED
        cell.border = THIN_BORDER

    for offset, day in enumerate(WEEKDAYS, start=1):
        row_num = header_row + offset
        day_cell = ws.cell(row=row_num, column=1, value=day.label)
        day_cell.font = Font(bold=True)
        day_cell.border = THIN_BORDER
        row = grid.row(day)
        for idx, (slot, cell) in enumerate(row):
            col = idx + 2
            target = ws.cell(row=row_num, column=col)
            target.alignment = CENTERED
            target.border = THIN_BORDER
            if isinstance(cell, GridCell):
                target.value = cell_text(cell)
                if cell.kind is SessionKind.LAB:
                    target.fill = LAB_FILL
                if idx + 1 < len(row) and isinstance(row[idx + 1][1], LabContinuation):
                    ws.merge_cells(start_row=row_num, start_column=col, end_row=row_num, end_column=col + 1)

    last_row = header_row + len(WEEKDAYS)
    for idx, slot in enumerate(slots):
        if not slot.is_pseudo:
            continue
        col = idx + 2
        ws.merge_cells(start_row=header_row, start_column=col, end_row=last_row, end_column=col)
        marker = ws.cell(row=header_row, column=col)
        marker.value = 'BREAK' if slot.key == BREAK else 'LUNCH BREAK'
        marker.fill = BREAK_FILL if slot.key == BREAK else LUNCH_FILL
        marker.alignment = Alignment(text_rotation=90, horizontal='center', vertical='center')
        marker.font = Font(bold=True, size=11)

    for col in range(1, total_cols + 1):
        longest = 0
        for row_num in range(header_row, last_row + 1):
            value = ws.cell(row=row_num, column=col).value
            if value:
                longest = max(longest, max(len(part) for part in str(value).split('\n')))
        ws.column_dimensions[get_column_letter(col)].width = min(max(longest + 2, 12), 30)
    for row_num in range(header_row + 1, last_row + 1):
        ws.row_dimensions[row_num].height = 48

    footer_row = last_row + 2
    footer = ws.cell(row=footer_row, column=1, value=f"Generated on {datetime.now():%Y-%m-%d %H:%M}")
    footer.font = Font(italic=True)
    footer.alignment = Alignment(horizontal='center')
    ws.merge_cells(start_row=footer_row, start_column=1, end_row=footer_row, end_column=total_cols)


def _sheet_title(title: str, used: set) -> str:
    # Worksheet titles are limited to 31 characters and must be unique.
    base = ''.join(ch for ch in title if ch not in '[]:*?/\\')[:31] or 'Timetable'
    name = base
    n = 2
    while name in used:
        suffix = f" ({n})"
        name = base[:31 - len(suffix)] + suffix
        n += 1
    used.add(name)
    return name


def _save(wb: Workbook) -> bytes:
    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()


def export(grid: TimetableGrid, institute: str) -> ExportResult:
    wb = Workbook()
    ws = wb.active
    ws.title = 'Timetable'
    populate_sheet(ws, grid, institute)
    return ExportResult(
        content=_save(wb),
        mimetype=MIMETYPE,
        filename=f"timetable-{class_title(grid)}.xlsx",
    )


def export_bulk(grids: List[TimetableGrid], institute: str) -> ExportResult:
    wb = Workbook()
    wb.remove(wb.active)
    used = set()
    for grid in grids:
        ws = wb.create_sheet(title=_sheet_title(class_title(grid), used))
        populate_sheet(ws, grid, institute)
    if not grids:
        wb.create_sheet(title='Timetable')
    return ExportResult(content=_save(wb), mimetype=MIMETYPE, filename="bulk-timetables.xlsx")
