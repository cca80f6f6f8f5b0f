"""
PDF Generator Service for Fix It.

Generates maintenance reports for requests: header, location, assignment,
status history, comments and attached media.
"""

import io
from datetime import datetime
from typing import Any, Dict, List
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import HRFlowable, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

BRAND = "#1a1a2e"
MUTED = "#666666"
RULE = "#e0e0e0"


class PDFGenerator:
    """Renders maintenance report PDFs."""

    def __init__(self, app_name: str = "Fix It by Threalty"):
        self.app_name = app_name
        self.styles = getSampleStyleSheet()
        self._setup_custom_styles()

    def _setup_custom_styles(self):
        """Add custom paragraph styles."""
        self.styles.add(ParagraphStyle(
            name='ReportTitle',
            parent=self.styles['Heading1'],
            fontSize=22,
            spaceAfter=24,
            alignment=TA_CENTER,
            textColor=colors.HexColor(BRAND),
        ))
        self.styles.add(ParagraphStyle(
            name='ReportSubtitle',
            parent=self.styles['Normal'],
            fontSize=12,
            spaceAfter=16,
            alignment=TA_CENTER,
            textColor=colors.HexColor(MUTED),
        ))
        self.styles.add(ParagraphStyle(
            name='SectionHeader',
            parent=self.styles['Heading2'],
            fontSize=13,
            spaceBefore=16,
            spaceAfter=8,
            textColor=colors.HexColor(BRAND),
        ))
        self.styles.add(ParagraphStyle(
            name='CommentMeta',
            parent=self.styles['Normal'],
            fontSize=8,
            textColor=colors.HexColor(MUTED),
        ))
        self.styles.add(ParagraphStyle(
            name='Footer',
            parent=self.styles['Normal'],
            fontSize=8,
            textColor=colors.HexColor('#888888'),
            alignment=TA_CENTER,
            spaceBefore=20,
        ))

    def _section(self, story: List, title: str) -> None:
        story.append(Paragraph(title, self.styles['SectionHeader']))
        story.append(HRFlowable(width="100%", thickness=1, color=colors.HexColor(RULE)))

    def _field_table(self, rows: List[List[str]]) -> Table:
        table = Table([[label, Paragraph(escape(value), self.styles['Normal'])] for label, value in rows],
                      colWidths=[1.8*inch, 4.7*inch])
        table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('TEXTCOLOR', (0, 0), (0, -1), colors.HexColor(MUTED)),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
        ]))
        return table

    def _grid(self, header: List[str], rows: List[List[str]], widths: List[float]) -> Table:
        data = [header] + [[Paragraph(escape(cell), self.styles['Normal']) for cell in row] for row in rows]
        table = Table(data, colWidths=[w*inch for w in widths], repeatRows=1)
        table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
            ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor(BRAND)),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor(RULE)),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
            ('TOPPADDING', (0, 0), (-1, -1), 6),
            ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#f9f9f9')]),
        ]))
        return table

    def generate_maintenance_report(self, report: Dict[str, Any]) -> bytes:
        """
        Generate a maintenance report PDF.

        Args:
            report: Flattened request data assembled by the document service

        Returns:
            PDF bytes
        """
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=0.75*inch,
            leftMargin=0.75*inch,
            topMargin=0.75*inch,
            bottomMargin=0.75*inch,
            title=f"Maintenance report - {report.get('title', '')}",
        )

        story = []

        story.append(Paragraph(escape(self.app_name), self.styles['ReportTitle']))
        story.append(Paragraph("Maintenance Request Report", self.styles['ReportSubtitle']))
        story.append(Spacer(1, 0.15*inch))

        self._section(story, "REQUEST")
        story.append(self._field_table([
            ["Title:", report.get("title") or "N/A"],
            ["Category:", report.get("category") or "N/A"],
            ["Priority:", report.get("priority") or "N/A"],
            ["Status:", report.get("status_label") or "N/A"],
            ["Created:", self._format_datetime(report.get("created_at"))],
            ["Resolved:", self._format_datetime(report.get("resolved_at"))],
            ["Reference:", report.get("reference") or "N/A"],
        ]))
        if report.get("description"):
            story.append(Spacer(1, 0.1*inch))
            story.append(Paragraph(escape(report["description"]), self.styles['Normal']))

        self._section(story, "LOCATION & ASSIGNMENT")
        story.append(self._field_table([
            ["Property:", report.get("property_name") or "N/A"],
            ["Address:", report.get("property_address") or "N/A"],
            ["Unit:", report.get("unit_name") or "N/A"],
            ["Reported by:", report.get("created_by") or "N/A"],
            ["Assigned to:", report.get("assignee") or "Unassigned"],
        ]))

        feedback = report.get("feedback")
        if feedback:
            self._section(story, "FEEDBACK")
            story.append(self._field_table([
                ["Rating:", f"{feedback.get('rating')}/5"],
                ["Comment:", feedback.get("comment") or "-"],
            ]))

        self._section(story, "STATUS HISTORY")
        history = report.get("status_history", [])
        if history:
            story.append(self._grid(
                ["When", "Status", "Notes"],
                [[self._format_datetime(h.get("changed_at")), h.get("label", ""), h.get("notes") or ""] for h in history],
                [1.5, 1.5, 3.5],
            ))
        else:
            story.append(Paragraph("No status changes recorded.", self.styles['Normal']))

        comments = report.get("comments", [])
        if comments:
            self._section(story, "COMMENTS")
            for c in comments:
                meta = f"{c.get('author', 'Unknown')} - {self._format_datetime(c.get('created_at'))}"
                if c.get("is_internal_note"):
                    meta += " (internal)"
                story.append(Paragraph(escape(meta), self.styles['CommentMeta']))
                story.append(Paragraph(escape(c.get("message", "")), self.styles['Normal']))
                story.append(Spacer(1, 0.08*inch))

        media = report.get("media", [])
        if media:
            self._section(story, "ATTACHMENTS")
            story.append(self._grid(
                ["File", "Type", "Size"],
                [[m.get("filename", ""), m.get("mime_type", ""), self._format_size(m.get("size", 0))] for m in media],
                [3.5, 1.8, 1.2],
            ))

        story.append(Spacer(1, 0.4*inch))
        story.append(HRFlowable(width="100%", thickness=1, color=colors.HexColor(RULE)))
        story.append(Paragraph(
            f"Generated by {escape(self.app_name)} on {datetime.utcnow().strftime('%Y-%m-%d %H:%M UTC')}",
            self.styles['Footer']
        ))

        doc.build(story)
        buffer.seek(0)
        return buffer.read()

    def _format_datetime(self, dt: Any) -> str:
        """Format datetime for display."""
        if dt is None:
            return "N/A"
        if isinstance(dt, str):
            return dt[:19].replace("T", " ")
        if hasattr(dt, 'strftime'):
            return dt.strftime("%Y-%m-%d %H:%M")
        return str(dt)

    def _format_size(self, size: int) -> str:
        if size >= 1024 * 1024:
            return f"{size / (1024 * 1024):.1f} MB"
        if size >= 1024:
            return f"{size / 1024:.0f} KB"
        return f"{size} B"


def get_pdf_generator() -> PDFGenerator:
    """Get PDF generator instance."""
    from fixit.core.config import get_settings

    return PDFGenerator(get_settings().app_name)
