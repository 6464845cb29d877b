"""Normalized (v2.0) JSON rendering of class timetables."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List

from scheduling.api import SessionKind, WEEKDAYS
from scheduling.grid import NOT_AVAILABLE, LabContinuation, TimetableGrid

from .api import ExportResult, class_title

FORMAT_VERSION = "2.0"
MIMETYPE = "application/json"


def _exported_at() -> str:
    return datetime.now(timezone.utc).isoformat()


def generate_document(grid: TimetableGrid, institute: str) -> Dict[str, Any]:
    """Build the normalized document for one class.

    Continuation cells are never listed; a two-slot lab instead lists both
    period ids on its anchor entry.
    """

    calendar = grid.calendar
    teachers: Dict[str, Dict[str, str]] = {}
    subjects: Dict[str, Dict[str, str]] = {}
    timetable: Dict[str, List[Dict[str, Any]]] = {day.value: [] for day in WEEKDAYS}

    for day, slot, cell in grid.anchors():
        if cell.subject_code and cell.subject_code not in subjects:
            subjects[cell.subject_code] = {
                "name": cell.subject,
                "type": SessionKind.LAB.value if cell.kind is SessionKind.LAB else SessionKind.LECTURE.value,
            }
        if cell.teacher_abbr and cell.teacher != NOT_AVAILABLE and cell.teacher_abbr not in teachers:
            teachers[cell.teacher_abbr] = {"name": cell.teacher}

        periods = [calendar.period_id(slot)]
        following = calendar.next_window(slot) if cell.spans_two_slots else None
        if following is not None:
            continuation = grid.cell(day, following.key)
            if isinstance(continuation, LabContinuation) and continuation.anchor is cell:
                periods.append(calendar.period_id(following))

        timetable[day.value].append({
            "periods": periods,
            "subject": cell.subject_code or None,
            "teacher": cell.teacher_abbr if cell.teacher_abbr and cell.teacher != NOT_AVAILABLE else None,
            "room": cell.room if cell.room and cell.room != NOT_AVAILABLE else None,
        })

    klass = grid.klass
    return {
        "meta": {
            "institute": institute,
            "exportedAt": _exported_at(),
            "version": FORMAT_VERSION,
        },
        "class": {
            "id": klass.id,
            "code": klass.code,
            "name": klass.class_name,
            "year": klass.year,
            "section": klass.section,
        },
        "teachers": teachers,
        "subjects": subjects,
        "periods": [
            {"id": calendar.period_id(w), "start": w.key, "end": w.end_key}
            for w in calendar.teaching_windows()
        ],
        "breaks": calendar.breaks(),
        "timetable": timetable,
    }


def export(grid: TimetableGrid, institute: str) -> ExportResult:
    document = generate_document(grid, institute)
    return ExportResult(
        content=json.dumps(document, indent=2).encode("utf-8"),
        mimetype=MIMETYPE,
        filename=f"timetable-{class_title(grid)}.json",
    )


def export_bulk(grids: List[TimetableGrid], institute: str) -> ExportResult:
    document = {
        "institute": institute,
        "exportDate": _exported_at(),
        "exportType": "bulk",
        "totalClasses": len(grids),
        "classes": [generate_document(g, institute) for g in grids],
    }
    return ExportResult(
        content=json.dumps(document, indent=2).encode("utf-8"),
        mimetype=MIMETYPE,
        filename="bulk-timetables.json",
    )
