"""PDF rendering of class timetables using reportlab."""

from __future__ import annotations

import io
from typing import List, Tuple
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from scheduling.api import WEEKDAYS
from scheduling.grid import NOT_AVAILABLE, GridCell, LabContinuation, TimetableGrid
from scheduling.timeslots import BREAK

from .api import ExportResult, class_title

MIMETYPE = "application/pdf"

BREAK_COLOR = colors.HexColor('#FFA500')
LUNCH_COLOR = colors.HexColor('#90EE90')
HEADER_COLOR = colors.HexColor('#E0E0E0')
LAB_COLOR = colors.HexColor('#E7F3E7')


def _cell_paragraph(cell: GridCell, style: ParagraphStyle) -> Paragraph:
    teacher = cell.teacher_abbr or cell.teacher
    lines = [f"<b>{escape(cell.subject)}</b>"]
    if teacher and teacher != NOT_AVAILABLE:
        lines.append(escape(teacher))
    lines.append(escape(cell.room))
    return Paragraph("<br/>".join(lines), style)


def _show_class_room(grid: TimetableGrid) -> bool:
    """Print the home room in the header only when some session is elsewhere."""

    room_code = grid.klass.room_code
    if not room_code:
        return False
    return any(
        cell.room and cell.room != NOT_AVAILABLE and cell.room != room_code
        for _, _, cell in grid.anchors()
    )


def build_page(grid: TimetableGrid, institute: str) -> List:
    """Return the flowables for one class page.

    Pseudo-slot columns are spanned over every data row; a lab anchor is
    spanned over its continuation when they sit in adjacent columns.
    """

    styles = getSampleStyleSheet()
    cell_style = ParagraphStyle('cell', parent=styles['Normal'], fontSize=7, leading=9, alignment=1)
    header_style = ParagraphStyle('header', parent=styles['Normal'], fontSize=7, leading=9,
                                  alignment=1, fontName='Helvetica-Bold')

    slots = grid.calendar.slots
    elements = [Paragraph(f"<b>{escape(institute)}</b>", styles["Title"])]
    heading = f"Class: {escape(class_title(grid))}"
    if _show_class_room(grid):
        heading += f" &nbsp;&nbsp; Room: {escape(grid.klass.room_code)}"
    elements.append(Paragraph(heading, styles['Heading2']))
    elements.append(Spacer(1, 0.15 * inch))

    data = [[Paragraph('Day', header_style)] + [Paragraph(s.label, header_style) for s in slots]]
    style_cmds: List[Tuple] = [
        ('GRID', (0, 0), (-1, -1), 0.5, colors.black),
        ('BACKGROUND', (0, 0), (-1, 0), HEADER_COLOR),
        ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
        ('FONTNAME', (0, 1), (0, -1), 'Helvetica-Bold'),
    ]

    for row_idx, day in enumerate(WEEKDAYS, start=1):
        row = grid.row(day)
        line = [day.label]
        for idx, (slot, cell) in enumerate(row):
            col = idx + 1
            if isinstance(cell, GridCell):
                line.append(_cell_paragraph(cell, cell_style))
                if cell.spans_two_slots:
                    style_cmds.append(('BACKGROUND', (col, row_idx), (col, row_idx), LAB_COLOR))
                if idx + 1 < len(row) and isinstance(row[idx + 1][1], LabContinuation):
                    style_cmds.append(('SPAN', (col, row_idx), (col + 1, row_idx)))
            else:
                line.append('')
        data.append(line)

    for idx, slot in enumerate(slots):
        if not slot.is_pseudo:
            continue
        col = idx + 1
        label = 'BREAK' if slot.key == BREAK else 'LUNCH'
        data[1][col] = Paragraph(f"<b>{label}</b>", cell_style)
        style_cmds.append(('SPAN', (col, 1), (col, len(WEEKDAYS))))
        style_cmds.append(('BACKGROUND', (col, 1), (col, len(WEEKDAYS)),
                           BREAK_COLOR if slot.key == BREAK else LUNCH_COLOR))

    page_width = landscape(A4)[0] - inch
    day_width = 0.9 * inch
    slot_width = (page_width - day_width) / len(slots)
    table = Table(data, colWidths=[day_width] + [slot_width] * len(slots),
                  rowHeights=[0.45 * inch] + [0.8 * inch] * len(WEEKDAYS), repeatRows=1)
    table.setStyle(TableStyle(style_cmds))
    elements.append(table)
    return elements


def _render(pages: List[List]) -> bytes:
    output = io.BytesIO()
    doc = SimpleDocTemplate(
        output,
        pagesize=landscape(A4),
        topMargin=0.5 * inch,
        bottomMargin=0.5 * inch,
        leftMargin=0.5 * inch,
        rightMargin=0.5 * inch,
    )
    elements = []
    for i, page in enumerate(pages):
        if i:
            elements.append(PageBreak())
        elements.extend(page)
    doc.build(elements)
    return output.getvalue()


def export(grid: TimetableGrid, institute: str) -> ExportResult:
    return ExportResult(
        content=_render([build_page(grid, institute)]),
        mimetype=MIMETYPE,
        filename=f"timetable-{class_title(grid)}.pdf",
    )


def export_bulk(grids: List[TimetableGrid], institute: str) -> ExportResult:
    pages = [build_page(g, institute) for g in grids]
    if not pages:
        pages = [[Paragraph(f"<b>{escape(institute)}</b>", getSampleStyleSheet()['Title'])]]
    return ExportResult(content=_render(pages), mimetype=MIMETYPE, filename="bulk-timetables.pdf")
