"""
PDF rendering of task reports.

Produces a landscape table report: title, generation time, the filters that
were applied, then one row per task with alternating row shading.
Uses ReportLab for PDF generation.
"""

from datetime import datetime, timezone
from io import BytesIO
from typing import Any, Dict, List
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import letter, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import (
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

# =============================================================================
# STYLING CONSTANTS
# =============================================================================

HEADER_BLUE = colors.HexColor("#1f4788")
ROW_ALT = colors.HexColor("#f8f9fa")
MAX_CELL_CHARS = 400

# Relative column weights; unlisted columns get 1
COLUMN_WEIGHTS = {
    "title": 2.5,
    "explanation": 4,
    "externalUrl": 2,
    "assignee": 1.5,
    "tags": 1.5,
}


def _get_styles() -> Dict[str, ParagraphStyle]:
    """Create consistent paragraph styles for the PDF."""
    base = getSampleStyleSheet()

    return {
        "title": ParagraphStyle(
            "Title",
            parent=base["Heading1"],
            fontSize=20,
            textColor=HEADER_BLUE,
            spaceAfter=12,
            alignment=TA_CENTER,
        ),
        "body": ParagraphStyle(
            "Body",
            parent=base["Normal"],
            fontSize=9,
            spaceAfter=4,
            leading=12,
        ),
        "table_header": ParagraphStyle(
            "TableHeader",
            parent=base["Normal"],
            fontSize=8,
            textColor=colors.white,
            alignment=TA_CENTER,
        ),
        "table_cell": ParagraphStyle(
            "TableCell",
            parent=base["Normal"],
            fontSize=7,
            leading=9,
        ),
        "footer": ParagraphStyle(
            "Footer",
            parent=base["Normal"],
            fontSize=8,
            textColor=colors.gray,
            alignment=TA_CENTER,
        ),
    }


def _cell_text(value: Any) -> str:
    text = "" if value is None else str(value)
    if len(text) > MAX_CELL_CHARS:
        text = text[:MAX_CELL_CHARS] + "..."
    return escape(text)


# =============================================================================
# SECTION BUILDERS
# =============================================================================

def _build_header(report: Dict[str, Any], styles: Dict, generation_time: str) -> List:
    elements = [Paragraph(escape(report.get("title") or "Task Report"), styles["title"])]

    filters = report.get("filters") or {}
    status = filters.get("status")
    if isinstance(status, list):
        status = ", ".join(status)
    lines = [
        f"<b>Generated:</b> {generation_time}",
        f"<b>Tasks:</b> {report['count']}",
        f"<b>Status:</b> {escape(str(status or 'all'))}",
        f"<b>Assignee:</b> {escape(str(filters.get('assignee') or 'all'))}",
        f"<b>Group:</b> {escape(str(filters.get('group') or 'all'))}",
    ]
    if filters.get("startDate") or filters.get("endDate"):
        lines.append(
            f"<b>Date range:</b> {escape(str(filters.get('startDate') or '...'))} to "
            f"{escape(str(filters.get('endDate') or '...'))}"
        )
    for line in lines:
        elements.append(Paragraph(line, styles["body"]))
    elements.append(Spacer(1, 10))
    return elements


def _build_table(report: Dict[str, Any], styles: Dict, available_width: float) -> Table:
    weights = [COLUMN_WEIGHTS.get(c, 1) for c in report["columns"]]
    unit = available_width / sum(weights)
    col_widths = [w * unit for w in weights]

    data = [[Paragraph(escape(h), styles["table_header"]) for h in report["headers"]]]
    for row in report["rows"]:
        data.append([Paragraph(_cell_text(v), styles["table_cell"]) for v in row])

    table = Table(data, colWidths=col_widths, repeatRows=1)
    style = [
        ("BACKGROUND", (0, 0), (-1, 0), HEADER_BLUE),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.lightgrey),
        ("TOPPADDING", (0, 0), (-1, -1), 3),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
    ]
    for row_idx in range(2, len(data), 2):
        style.append(("BACKGROUND", (0, row_idx), (-1, row_idx), ROW_ALT))
    table.setStyle(TableStyle(style))
    return table


# =============================================================================
# PUBLIC API
# =============================================================================

def generate_report_pdf(report: Dict[str, Any]) -> bytes:
    """
    Render a report as PDF.

    Args:
        report: Output of analytics.generate_report_rows

    Returns:
        PDF file bytes
    """
    buffer = BytesIO()
    page_size = landscape(letter)
    doc = SimpleDocTemplate(
        buffer,
        pagesize=page_size,
        leftMargin=0.5 * inch,
        rightMargin=0.5 * inch,
        topMargin=0.5 * inch,
        bottomMargin=0.5 * inch,
        title=report.get("title") or "Task Report",
    )
    styles = _get_styles()
    generation_time = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")

    elements = _build_header(report, styles, generation_time)
    elements.append(_build_table(report, styles, page_size[0] - inch))
    elements.append(Spacer(1, 12))
    elements.append(Paragraph(f"{report['count']} tasks", styles["footer"]))

    doc.build(elements)
    return buffer.getvalue()
