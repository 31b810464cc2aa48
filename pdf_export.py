"""
Bulk PDF export of QR cards.

Layout: A4 portrait, a grid of 4 cards per row and 60 mm tall cells, so 16
cards fit on each page. Cards are placed in the order they are given.
"""

from __future__ import annotations

import math
from datetime import date
from io import BytesIO
from pathlib import Path
from typing import Optional, Sequence

from config import (
    CARD_CATEGORY_LABEL,
    EVENT_TITLE,
    PDF_CARDS_PER_ROW,
    PDF_CELL_HEIGHT_MM,
    PDF_FILENAME_PREFIX,
    PDF_MARGIN_MM,
    PDF_PADDING_MM,
    PDF_PAGE_HEIGHT_MM,
    PDF_QR_SIZE_MM,
)
from errors import EmptySelectionError
from models import Registration
from qr_codes import QrTokenEncoder
from utils import data_url_to_bytes


def cards_per_page() -> int:
    rows_per_page = (PDF_PAGE_HEIGHT_MM - PDF_MARGIN_MM * 2) // PDF_CELL_HEIGHT_MM
    return rows_per_page * PDF_CARDS_PER_ROW


def estimate_pdf_pages(registration_count: int) -> int:
    """Number of pages the export will have for a given number of registrations."""
    if registration_count <= 0:
        return 0
    return math.ceil(registration_count / cards_per_page())


class PdfDocumentAssembler:
    """Packs QR cards for many registrations into a printable PDF."""

    def __init__(
        self,
        output_dir: str | Path = "output",
        encoder: Optional[QrTokenEncoder] = None,
        title: str = EVENT_TITLE,
    ):
        self.output_dir = Path(output_dir)
        # Don't mkdir here; build_pdf_bytes never touches the filesystem.
        self.encoder = encoder or QrTokenEncoder()
        self.title = title

    def estimate_pages(self, registration_count: int) -> int:
        return estimate_pdf_pages(registration_count)

    def default_filename(self, day: Optional[date] = None) -> str:
        return f"{PDF_FILENAME_PREFIX}-{(day or date.today()).isoformat()}.pdf"

    def build_pdf_bytes(self, registrations: Sequence[Registration]) -> bytes:
        """
        Create the PDF (bytes) for the given registrations (no filesystem writes).

        Returns:
            PDF bytes
        """
        from reportlab.lib.pagesizes import A4
        from reportlab.lib.units import mm
        from reportlab.lib.utils import ImageReader
        from reportlab.pdfgen import canvas

        if not registrations:
            raise EmptySelectionError()

        page_w, page_h = A4
        margin = PDF_MARGIN_MM * mm
        padding = PDF_PADDING_MM * mm
        cell_w = (page_w - margin * 2) / PDF_CARDS_PER_ROW
        cell_h = PDF_CELL_HEIGHT_MM * mm
        qr_size = PDF_QR_SIZE_MM * mm
        per_page = cards_per_page()

        buf = BytesIO()
        c = canvas.Canvas(buf, pagesize=A4)
        c.setTitle(f"{self.title} camper QR cards")
        for i, reg in enumerate(registrations):
            slot = i % per_page
            if i and slot == 0:
                c.showPage()
            col, row = slot % PDF_CARDS_PER_ROW, slot // PDF_CARDS_PER_ROW

            # Top-left of the cell, converted to reportlab's bottom-up y axis
            x = margin + col * cell_w
            top = page_h - (margin + row * cell_h)
            card_x = x + padding
            card_top = top - padding
            card_w = cell_w - padding * 2
            center_x = card_x + card_w / 2

            c.setStrokeGray(200 / 255)
            c.rect(x, top - cell_h, cell_w, cell_h, stroke=1, fill=0)

            c.setFont("Helvetica-Bold", 8)
            c.drawCentredString(center_x, card_top - 5 * mm, self.title)

            qr_png = data_url_to_bytes(self.encoder.encode(reg))
            qr_top = card_top - 10 * mm
            c.drawImage(
                ImageReader(BytesIO(qr_png)),
                center_x - qr_size / 2,
                qr_top - qr_size,
                width=qr_size,
                height=qr_size,
            )

            c.setFont("Helvetica-Bold", 6)
            c.drawCentredString(center_x, qr_top - qr_size - 6 * mm, reg.card_name)
            c.setFont("Helvetica", 6)
            c.drawCentredString(center_x, qr_top - qr_size - 12 * mm, f"Code: {reg.code}")
            c.drawCentredString(center_x, qr_top - qr_size - 18 * mm, f"Category: {CARD_CATEGORY_LABEL}")
        c.showPage()
        c.save()
        return buf.getvalue()

    def assemble(self, registrations: Sequence[Registration]) -> Path:
        """
        Create the PDF and save it in the output directory.

        Returns:
            Path of the written PDF
        """
        pdf_bytes = self.build_pdf_bytes(registrations)
        self.output_dir.mkdir(exist_ok=True, parents=True)
        out_path = self.output_dir / self.default_filename()
        with open(out_path, "wb") as f:
            f.write(pdf_bytes)
        return out_path
