"""PDF rendering for invoices.

The download endpoint and the email attachment both go through
``render_invoice_pdf`` so the two can never show different numbers.
"""
from dataclasses import dataclass, field
from io import BytesIO

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from billing import totals_for_invoice
from models import Invoice
from totals import TAX_LABEL, format_money, line_total

TIME_ENTRY_HEADER = ["Client", "Project", "Hours", "Rate", "Amount"]
SERVICE_HEADER = ["Service", "Fee"]


@dataclass
class InvoiceDocument:
    """Text content of a rendered invoice, independent of the PDF layout."""

    title: str
    date_line: str
    time_rows: list[list[str]] = field(default_factory=list)
    service_rows: list[list[str]] = field(default_factory=list)
    totals_rows: list[list[str]] = field(default_factory=list)


def invoice_filename(invoice: Invoice) -> str:
    return f"invoice-{invoice.id}.pdf"


def build_invoice_document(invoice: Invoice) -> InvoiceDocument:
    """Lay out the line items and totals block of an invoice."""
    time_rows = []
    for link in invoice.entry_links:
        entry = link.time_entry
        project = entry.project
        rate = link.rate
        time_rows.append(
            [
                project.client.name,
                project.title,
                f"{entry.hours:.2f}",
                f"${format_money(rate)}",
                f"${format_money(line_total(entry.hours, rate))}",
            ]
        )

    service_rows = [
        [link.service.name, f"${format_money(link.fee)}"] for link in invoice.service_links
    ]

    totals = totals_for_invoice(invoice)
    totals_rows = [
        ["Subtotal:", f"${format_money(totals.subtotal)}"],
        [f"{TAX_LABEL}:", f"${format_money(totals.tax)}"],
        ["Total:", f"${format_money(totals.total)}"],
    ]

    return InvoiceDocument(
        title=f"Invoice #{invoice.id}",
        date_line=f"Date: {invoice.date.strftime('%a %b %d %Y')}",
        time_rows=time_rows,
        service_rows=service_rows,
        totals_rows=totals_rows,
    )


def _line_item_table(header: list[str], rows: list[list[str]], col_widths: list[float]) -> Table:
    table = Table([header] + rows, colWidths=col_widths)
    table.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTNAME", (0, 1), (-1, -1), "Helvetica"),
                ("FONTSIZE", (0, 0), (-1, -1), 10),
                ("ALIGN", (0, 0), (-1, -1), "LEFT"),
                ("ALIGN", (-1, 0), (-1, -1), "RIGHT"),
                ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
                ("LINEBELOW", (0, 0), (-1, 0), 1, colors.HexColor("#0066cc")),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#f5f5f5")]),
            ]
        )
    )
    return table


def render_invoice_pdf(invoice: Invoice) -> bytes:
    """Render an invoice to PDF bytes.

    The document is built in reportlab's invariant mode, which leaves out the
    creation timestamp and random file id, so rendering the same invoice
    twice yields identical bytes.
    """
    document = build_invoice_document(invoice)

    pdf_buffer = BytesIO()
    doc = SimpleDocTemplate(
        pdf_buffer,
        pagesize=letter,
        rightMargin=0.5 * inch,
        leftMargin=0.5 * inch,
        topMargin=0.5 * inch,
        bottomMargin=0.5 * inch,
        title=document.title,
        author="",
        invariant=1,
    )

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        "InvoiceTitle",
        parent=styles["Heading1"],
        fontSize=20,
        alignment=TA_CENTER,
        spaceAfter=12,
    )
    heading_style = ParagraphStyle(
        "InvoiceHeading",
        parent=styles["Heading2"],
        fontSize=14,
        textColor=colors.HexColor("#0066cc"),
        spaceBefore=12,
        spaceAfter=6,
    )

    story = [
        Paragraph(document.title, title_style),
        Paragraph(document.date_line, styles["Normal"]),
        Spacer(1, 0.2 * inch),
        Paragraph("Time Entries", heading_style),
    ]
    if document.time_rows:
        story.append(
            _line_item_table(
                TIME_ENTRY_HEADER,
                document.time_rows,
                [1.8 * inch, 2.2 * inch, 0.8 * inch, 1.0 * inch, 1.2 * inch],
            )
        )

    story.append(Paragraph("One-Time Services", heading_style))
    if document.service_rows:
        story.append(_line_item_table(SERVICE_HEADER, document.service_rows, [5.8 * inch, 1.2 * inch]))

    story.append(Spacer(1, 0.3 * inch))
    totals_table = Table(document.totals_rows, colWidths=[1.5 * inch, 1.2 * inch], hAlign="RIGHT")
    totals_table.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (-1, -2), "Helvetica"),
                ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -2), 11),
                ("FONTSIZE", (0, -1), (-1, -1), 13),
                ("ALIGN", (0, 0), (-1, -1), "RIGHT"),
                ("LINEABOVE", (0, -1), (-1, -1), 1.5, colors.HexColor("#0066cc")),
            ]
        )
    )
    story.append(totals_table)

    doc.build(story)
    return pdf_buffer.getvalue()
