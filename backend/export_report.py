"""
Export functionality for task reports.
Supports CSV and Excel formats.
"""

import csv
import io
from typing import Any, Dict

# Excel column widths per report column
COLUMN_WIDTHS = {
    "title": 40,
    "explanation": 80,
    "status": 12,
    "priorityLevel": 12,
    "assignee": 25,
    "group": 20,
    "estimatedCompletionDate": 14,
    "progress": 10,
    "tags": 25,
    "ticketNumber": 12,
    "lastUpdated": 20,
    "externalUrl": 40,
}


def export_report_to_csv(report: Dict[str, Any]) -> str:
    """
    Export a report to CSV format.

    Args:
        report: Output of analytics.generate_report_rows

    Returns:
        CSV string
    """
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(report["headers"])
    for row in report["rows"]:
        writer.writerow(row)
    return output.getvalue()


def export_report_to_xlsx(report: Dict[str, Any]) -> bytes:
    """
    Export a report to Excel format.

    Args:
        report: Output of analytics.generate_report_rows

    Returns:
        Excel file bytes
    """
    try:
        import openpyxl
        from openpyxl.styles import Font, Alignment, PatternFill
    except ImportError:
        raise ImportError("openpyxl is required for Excel export. Install with: pip install openpyxl")

    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Tasks"

    # Style for headers
    header_font = Font(bold=True)
    header_fill = PatternFill(start_color="CCCCCC", end_color="CCCCCC", fill_type="solid")

    for col, header in enumerate(report["headers"], 1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.font = header_font
        cell.fill = header_fill

    wrap = Alignment(wrap_text=True, vertical="top")
    for row_idx, row in enumerate(report["rows"], 2):
        for col, value in enumerate(row, 1):
            cell = ws.cell(row=row_idx, column=col, value=value)
            cell.alignment = wrap

    for col, column in enumerate(report["columns"], 1):
        ws.column_dimensions[openpyxl.utils.get_column_letter(col)].width = COLUMN_WIDTHS.get(column, 20)
    ws.freeze_panes = "A2"

    # Save to bytes
    output = io.BytesIO()
    wb.save(output)
    output.seek(0)
    return output.getvalue()
