"""Timetable exporters (spreadsheet, PDF and JSON)."""
