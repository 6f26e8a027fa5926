"""Report export to CSV or JSON documents."""

from __future__ import annotations

import csv
import io
import json
from datetime import date
from typing import Any, Iterable

from family_finance import models

# report type -> key holding the row list worth tabulating
_ROW_KEYS = {
    models.ReportType.CASH_FLOW: "periods",
    models.ReportType.SPENDING_ANALYSIS: "category_breakdown",
    models.ReportType.BUDGET_PERFORMANCE: "categories",
    models.ReportType.INCOME_ANALYSIS: "sources",
    models.ReportType.NET_WORTH: "accounts",
    models.ReportType.SAVINGS_RATE: "monthly_data",
    models.ReportType.MONTHLY_SUMMARY: "top_categories",
    models.ReportType.ANNUAL_SUMMARY: "months",
}

EXPORT_FORMATS = ("csv", "json")


# spreadsheet apps evaluate text cells starting with these as formulas
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def _safe_cell(value: Any) -> Any:
    if isinstance(value, str) and value.startswith(_FORMULA_PREFIXES):
        return "'" + value
    return value


def _flatten(row: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    flat: dict[str, Any] = {}
    for key, value in row.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{name}."))
        elif isinstance(value, (list, tuple)):
            flat[name] = json.dumps(value, default=str)
        else:
            flat[name] = _safe_cell(value)
    return flat


def rows_to_csv(rows: Iterable[dict[str, Any]]) -> str:
    flat_rows = [_flatten(r) for r in rows]
    columns: list[str] = []
    for row in flat_rows:
        for key in row:
            if key not in columns:
                columns.append(key)
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=columns, extrasaction="ignore")
    writer.writeheader()
    writer.writerows(flat_rows)
    return buffer.getvalue()


def report_rows(report_type: models.ReportType, data: dict) -> list[dict[str, Any]]:
    rows = data.get(_ROW_KEYS[report_type])
    if isinstance(rows, list) and rows:
        return rows
    # Summary-only reports fall back to a single flattened row.
    return [{k: v for k, v in data.items() if not isinstance(v, list)}]


def export_report(report_type: models.ReportType, data: dict, fmt: str) -> tuple[str, str, str]:
    """Return ``(body, media_type, filename)`` for a generated report."""
    stem = f"{report_type.value}_{date.today().isoformat()}"
    if fmt == "json":
        return json.dumps(data, default=str, indent=2), "application/json", f"{stem}.json"
    return rows_to_csv(report_rows(report_type, data)), "text/csv", f"{stem}.csv"
