"""Selection of timetable export formats.

Each format lives in its own module exposing ``export(grid, institute)`` for
a single class and ``export_bulk(grids, institute)`` for several.  Both
return an :class:`ExportResult` ready to be sent as a download.
"""

from __future__ import annotations

from dataclasses import dataclass
from importlib import import_module
from types import ModuleType
from typing import Dict, List, Optional, Sequence

from scheduling.grid import TimetableGrid

DEFAULT_INSTITUTE = "IPS Academy Timetable Management"


@dataclass
class ExportResult:
    """Rendered bytes plus the metadata needed for the HTTP response."""

    content: bytes
    mimetype: str
    filename: str


_EXPORTER_REGISTRY: Dict[str, str] = {}
_DEFAULT_FORMAT = "excel"


def register_exporter(identifier: str, module_path: str) -> None:
    """Register an exporter import path under ``identifier``."""

    _EXPORTER_REGISTRY[identifier.lower()] = module_path


def available_formats() -> List[str]:
    return sorted(_EXPORTER_REGISTRY)


def get_exporter(identifier: Optional[str] = None) -> ModuleType:
    """Return the module implementing the requested export format."""

    key = (identifier or _DEFAULT_FORMAT).lower()
    if key not in _EXPORTER_REGISTRY:
        available = ", ".join(available_formats()) or "none"
        name = identifier if identifier is not None else _DEFAULT_FORMAT
        raise ValueError(f"Unknown export format '{name}'. Available options: {available}.")
    return import_module(_EXPORTER_REGISTRY[key])


def class_title(grid: TimetableGrid) -> str:
    klass = grid.klass
    return klass.code or f"{klass.class_name}-{klass.year}{klass.section}"


def export_timetable(
    grid: TimetableGrid,
    fmt: Optional[str] = None,
    *,
    institute: str = DEFAULT_INSTITUTE,
) -> ExportResult:
    return get_exporter(fmt).export(grid, institute=institute)


def export_timetables(
    grids: Sequence[TimetableGrid],
    fmt: Optional[str] = None,
    *,
    institute: str = DEFAULT_INSTITUTE,
) -> ExportResult:
    return get_exporter(fmt).export_bulk(list(grids), institute=institute)


register_exporter("excel", "exporters.excel_export")
register_exporter("pdf", "exporters.pdf_export")
register_exporter("json", "exporters.json_export")


__all__ = [
    "DEFAULT_INSTITUTE",
    "ExportResult",
    "available_formats",
    "class_title",
    "export_timetable",
    "export_timetables",
    "get_exporter",
    "register_exporter",
]
