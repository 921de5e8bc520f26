import csv
import io
import json
from datetime import date, datetime
from typing import Any, Iterable, List, Mapping, Optional

from .schemas import CategorySummary, InventoryRecord, InventoryReport
from .store import matches_criteria

CSV_HEADERS = [
    "ID", "Category", "Sub-Category", "Manufacturer", "Part Number",
    "Description", "Unit", "Quantity Available", "Quantity Allocated",
    "Total Quantity", "Reorder Threshold", "Reorder Quantity",
    "Location", "Cost", "Total Value", "Last Updated",
]


def _format_number(value: float) -> str:
    # 12.0 -> "12"
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def _format_date(value: datetime) -> str:
    return f"{value.month}/{value.day}/{value.year}"


def generate_inventory_report(
    records: Iterable[InventoryRecord], filters: Optional[Mapping[str, Any]] = None
) -> InventoryReport:
    """Summarize records, optionally narrowed by field-substring filters"""
    report_items: List[InventoryRecord] = list(records)
    if filters:
        report_items = [record for record in report_items if matches_criteria(record, filters)]

    by_category = {}
    total_value = 0.0
    for record in report_items:
        value = record.cost * record.total_quantity
        total_value += value
        summary = by_category.setdefault(record.category, CategorySummary())
        summary.count += 1
        summary.value += value

    return InventoryReport(
        total_items=len(report_items),
        total_value=total_value,
        low_stock_items=sum(1 for record in report_items if record.needs_reorder),
        by_category=by_category,
        items=[record.to_json() for record in report_items],
    )


def export_to_csv(records: Iterable[InventoryRecord]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)

    for record in records:
        writer.writerow([
            record.id,
            record.category,
            record.sub_category,
            record.manufacturer,
            record.part_number,
            record.description,
            record.unit_of_measure,
            _format_number(record.quantity_available),
            _format_number(record.quantity_allocated),
            _format_number(record.total_quantity),
            _format_number(record.reorder_threshold),
            _format_number(record.reorder_quantity),
            record.location,
            _format_number(record.cost),
            f"{record.cost * record.total_quantity:.2f}",
            _format_date(record.last_updated),
        ])

    return buffer.getvalue().rstrip("\n")


def export_report_json(report: InventoryReport) -> str:
    return json.dumps(report.model_dump(mode="json", by_alias=True), indent=2)


def export_filename(project_name: str, kind: str, extension: str, today: Optional[date] = None) -> str:
    """e.g. Tower_A_LV_Inventory_2024-05-01.csv"""
    today = today or date.today()
    return f"{project_name}_LV_{kind}_{today.isoformat()}.{extension}"
