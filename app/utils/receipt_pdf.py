# app/utils/receipt_pdf.py
import io
from datetime import datetime
from typing import Any, Dict

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import (
    HRFlowable,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from app.core.config import settings

PRIMARY_COLOR = colors.HexColor("#2563EB")
TEXT_SECONDARY = colors.HexColor("#6B7280")
ROW_BACKGROUND = colors.HexColor("#EFF6FF")


def create_receipt_styles():
    styles = getSampleStyleSheet()
    styles.add(
        ParagraphStyle(
            name="ReceiptTitle",
            parent=styles["Title"],
            fontSize=24,
            textColor=PRIMARY_COLOR,
            fontName="Helvetica-Bold",
            spaceAfter=6,
            alignment=TA_CENTER,
        )
    )
    styles.add(
        ParagraphStyle(
            name="ReceiptMeta",
            parent=styles["Normal"],
            fontSize=10,
            textColor=TEXT_SECONDARY,
            alignment=TA_CENTER,
            spaceAfter=14,
        )
    )
    styles.add(
        ParagraphStyle(
            name="ReceiptTotal",
            parent=styles["Normal"],
            fontSize=14,
            fontName="Helvetica-Bold",
            alignment=TA_RIGHT,
        )
    )
    return styles


def _draw_footer(canvas, doc):
    canvas.saveState()
    width, _ = A4
    canvas.setFillColor(PRIMARY_COLOR)
    canvas.rect(0, 0, width, 6, fill=1, stroke=0)
    canvas.setFont("Helvetica", 8)
    canvas.setFillColor(TEXT_SECONDARY)
    canvas.drawCentredString(
        width / 2, 18, f"{settings.app_name} - thank you for your purchase"
    )
    canvas.restoreState()


def build_receipt_pdf(receipt: Dict[str, Any]) -> bytes:
    """
    Render a receipt dictionary (as returned by the receipt endpoints) into PDF bytes.
    """
    styles = create_receipt_styles()
    story = []

    purchase_date = receipt.get("purchase_date")
    if isinstance(purchase_date, datetime):
        purchase_date = purchase_date.strftime("%B %d, %Y %H:%M")

    story.append(Spacer(1, 0.2 * inch))
    story.append(Paragraph("Payment Receipt", styles["ReceiptTitle"]))
    story.append(
        Paragraph(
            f"Receipt #{receipt['receipt_number']} &bull; {purchase_date or ''}",
            styles["ReceiptMeta"],
        )
    )
    story.append(
        HRFlowable(width="100%", thickness=2, color=PRIMARY_COLOR, spaceAfter=18)
    )

    amount = float(receipt.get("amount") or 0)
    currency = (receipt.get("currency") or settings.payment_currency).upper()

    rows = [
        ["Customer", receipt.get("customer_name") or ""],
        ["Email", receipt.get("customer_email") or ""],
        ["Item", receipt.get("item_title") or ""],
        ["Type", (receipt.get("item_type") or "course").capitalize()],
        ["Payment method", receipt.get("payment_method") or "card"],
        ["Status", receipt.get("status") or "completed"],
        ["Transaction", receipt.get("transaction_id") or ""],
    ]
    table = Table(rows, colWidths=[1.8 * inch, 4.6 * inch])
    table.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 10),
                ("TEXTCOLOR", (0, 0), (0, -1), TEXT_SECONDARY),
                ("ROWBACKGROUNDS", (0, 0), (-1, -1), [colors.white, ROW_BACKGROUND]),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 8),
                ("TOPPADDING", (0, 0), (-1, -1), 8),
            ]
        )
    )
    story.append(table)
    story.append(Spacer(1, 0.3 * inch))
    story.append(Paragraph(f"Total: {amount:.2f} {currency}", styles["ReceiptTotal"]))

    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=45,
        leftMargin=45,
        topMargin=50,
        bottomMargin=45,
        title=f"Receipt {receipt['receipt_number']}",
    )
    doc.build(story, onFirstPage=_draw_footer, onLaterPages=_draw_footer)
    return buffer.getvalue()
