"""Invoice rendering: draw the invoice to one tall raster, then cut it into
portrait pages.

Each page carries the full raster image, shifted up so that the page window
shows the next band of the document.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from io import BytesIO
from typing import Any

from PIL import Image, ImageDraw, ImageFont
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from blackbox_crm.core.config import Settings, settings as default_settings
from blackbox_crm.core.money import to_money
from blackbox_crm.core.observability import log_event

# Page bands smaller than this are float noise, not content.
_HEIGHT_TOLERANCE_MM = 1e-6

_MARGIN_PX = 72
_COLUMN_GAP_PX = 32
_TEXT_COLOR = (17, 24, 39)
_MUTED_COLOR = (107, 114, 128)
_ACCENT_COLOR = (37, 99, 235)
_RULE_COLOR = (209, 213, 219)

PAYMENT_TERMS = (
    "Payment is due within 30 days (Net 30).",
    "Please include the invoice number with your payment.",
)


@dataclass(frozen=True)
class PageSlice:
    page_index: int
    source_y_offset_px: float
    offset_mm: float


@dataclass(frozen=True)
class InvoicePdf:
    filename: str
    content: bytes
    page_count: int


@dataclass(frozen=True)
class _Line:
    text: str
    size: int = 24
    color: tuple[int, int, int] = _TEXT_COLOR
    right: str | None = None
    gap_before: int = 0
    rule_after: bool = False


@dataclass
class InvoiceDocument:
    serial_number: str
    status: str
    amount: Decimal
    invoice_date: date | None
    due_date: date | None
    service_title: str
    description: str | None = None
    bill_to: list[str] = field(default_factory=list)


def scaled_height_mm(raster_width_px: float, raster_height_px: float, page_width_mm: float) -> float:
    return raster_height_px * page_width_mm / raster_width_px


def paginate(
    raster_width_px: float,
    raster_height_px: float,
    page_width_mm: float = 210.0,
    page_height_mm: float = 295.0,
) -> list[PageSlice]:
    """Splits a raster scaled to the page width into page-sized bands.

    Page ``k`` starts ``k * page_height_mm`` down the scaled image and draws
    the whole image at ``offset_mm`` (zero or negative) from the page top.
    """
    if raster_width_px <= 0 or raster_height_px <= 0:
        raise ValueError("raster dimensions must be positive")
    if page_width_mm <= 0 or page_height_mm <= 0:
        raise ValueError("page dimensions must be positive")

    image_height_mm = scaled_height_mm(raster_width_px, raster_height_px, page_width_mm)
    px_per_mm = raster_width_px / page_width_mm

    slices = [PageSlice(page_index=0, source_y_offset_px=0.0, offset_mm=0.0)]
    remaining = image_height_mm - page_height_mm
    while remaining > _HEIGHT_TOLERANCE_MM:
        offset_mm = remaining - image_height_mm
        slices.append(
            PageSlice(
                page_index=len(slices),
                source_y_offset_px=-offset_mm * px_per_mm,
                offset_mm=offset_mm,
            )
        )
        remaining -= page_height_mm
    return slices


def invoice_pdf_filename(serial_number: str) -> str:
    return f"invoice-{serial_number}.pdf"


def build_invoice_document(invoice: Any, contact: Any = None, deal: Any = None) -> InvoiceDocument:
    bill_to: list[str] = []
    if contact is not None:
        bill_to = [
            value
            for value in (contact.name, contact.company, contact.address, contact.phone, contact.email)
            if value
        ]

    service_title = (deal.title if deal is not None else None) or invoice.description or "Professional Services"
    return InvoiceDocument(
        serial_number=invoice.serial_number,
        status=invoice.status,
        amount=to_money(invoice.amount or 0),
        invoice_date=invoice.invoice_date,
        due_date=invoice.due_date,
        service_title=service_title,
        description=invoice.description,
        bill_to=bill_to,
    )


def _format_date(value: date | None) -> str:
    return value.strftime("%d %b %Y") if value else "-"


def _layout(document: InvoiceDocument, config: Settings) -> list[_Line]:
    currency = config.invoice_currency_label
    amount_text = f"{currency} {document.amount:,.2f}"

    lines = [
        _Line(config.invoice_company_name, size=44, color=_ACCENT_COLOR),
        _Line(config.invoice_company_tagline, color=_MUTED_COLOR),
        _Line(f"INVOICE #{document.serial_number}", size=36, gap_before=24, rule_after=True),
        _Line("FROM", size=20, color=_MUTED_COLOR, gap_before=16),
        _Line(config.invoice_company_name),
        _Line(config.invoice_company_address),
        _Line(config.invoice_company_phone),
        _Line(config.invoice_company_email),
        _Line("BILL TO", size=20, color=_MUTED_COLOR, gap_before=24),
    ]
    lines.extend(_Line(value) for value in (document.bill_to or ["-"]))
    lines.extend(
        [
            _Line("Invoice Date", color=_MUTED_COLOR, right=_format_date(document.invoice_date), gap_before=24),
            _Line("Due Date", color=_MUTED_COLOR, right=_format_date(document.due_date)),
            _Line("Status", color=_MUTED_COLOR, right=document.status.upper(), rule_after=True),
            _Line("DESCRIPTION", size=20, color=_MUTED_COLOR, right="AMOUNT", gap_before=24),
            _Line(document.service_title, right=amount_text),
        ]
    )
    if document.description and document.description != document.service_title:
        lines.append(_Line(document.description, size=20, color=_MUTED_COLOR))
    lines.extend(
        [
            _Line("Subtotal", gap_before=24, right=amount_text),
            _Line("Total", size=30, right=amount_text, rule_after=True),
            _Line("PAYMENT TERMS", size=20, color=_MUTED_COLOR, gap_before=24),
        ]
    )
    lines.extend(_Line(term, size=20) for term in PAYMENT_TERMS)
    lines.append(_Line("Thank you for your business!", color=_ACCENT_COLOR, gap_before=32))
    return lines


def _line_height(line: _Line) -> int:
    return int(line.size * 1.6)


def _split_to_width(draw: ImageDraw.ImageDraw, word: str, font: Any, max_width: float) -> list[str]:
    pieces = []
    while len(word) > 1 and draw.textlength(word, font=font) > max_width:
        cut = len(word) - 1
        while cut > 1 and draw.textlength(word[:cut], font=font) > max_width:
            cut -= 1
        pieces.append(word[:cut])
        word = word[cut:]
    pieces.append(word)
    return pieces


def wrap_text(draw: ImageDraw.ImageDraw, text: str, font: Any, max_width: float) -> list[str]:
    """Breaks ``text`` into rows no wider than ``max_width``.

    Explicit newlines start a new row. Words wider than a row are split.
    """
    rows: list[str] = []
    for paragraph in text.splitlines() or [""]:
        current = ""
        for word in paragraph.split():
            candidate = f"{current} {word}" if current else word
            if draw.textlength(candidate, font=font) <= max_width:
                current = candidate
                continue
            if current:
                rows.append(current)
            *full_rows, current = _split_to_width(draw, word, font, max_width)
            rows.extend(full_rows)
        rows.append(current)
    return rows


def render_invoice_raster(
    document: InvoiceDocument,
    *,
    width_px: int,
    config: Settings | None = None,
) -> Image.Image | None:
    """Draws the invoice on a white canvas; ``None`` when there is nothing to draw.

    Long text wraps inside the margins and the canvas grows to fit it. A
    right-hand value keeps its own column on the first row of its line.
    """
    config = config or default_settings
    lines = _layout(document, config)
    content_width = width_px - 2 * _MARGIN_PX
    if not lines or content_width <= 0:
        return None

    measure = ImageDraw.Draw(Image.new("RGB", (1, 1), "white"))
    fonts: dict[int, Any] = {}
    rows: list[tuple[_Line, Any, list[str]]] = []
    for line in lines:
        font = fonts.get(line.size)
        if font is None:
            font = fonts[line.size] = ImageFont.load_default(size=line.size)
        text_width = content_width
        if line.right:
            text_width -= measure.textlength(line.right, font=font) + _COLUMN_GAP_PX
        rows.append((line, font, wrap_text(measure, line.text, font, max(text_width, 1))))

    height_px = 2 * _MARGIN_PX + sum(
        line.gap_before + _line_height(line) * len(wrapped) for line, _, wrapped in rows
    )
    image = Image.new("RGB", (width_px, height_px), "white")
    draw = ImageDraw.Draw(image)

    y = _MARGIN_PX
    for line, font, wrapped in rows:
        y += line.gap_before
        if line.right:
            right_width = draw.textlength(line.right, font=font)
            draw.text((width_px - _MARGIN_PX - right_width, y), line.right, fill=line.color, font=font)
        for text in wrapped:
            draw.text((_MARGIN_PX, y), text, fill=line.color, font=font)
            y += _line_height(line)
        if line.rule_after:
            draw.line((_MARGIN_PX, y - 6, width_px - _MARGIN_PX, y - 6), fill=_RULE_COLOR, width=2)
    return image


def write_pdf(
    raster: Image.Image,
    slices: list[PageSlice],
    *,
    page_width_mm: float,
    page_height_mm: float,
) -> bytes:
    """Writes one page per slice on a ``page_width_mm`` x ``page_height_mm`` sheet."""
    width_px, height_px = raster.size
    draw_width = page_width_mm * mm
    draw_height = scaled_height_mm(width_px, height_px, page_width_mm) * mm
    page_height_pt = page_height_mm * mm

    buffer = BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=(draw_width, page_height_pt))
    image = ImageReader(raster)
    for page in slices:
        top = page.offset_mm * mm
        pdf.drawImage(image, 0, page_height_pt - top - draw_height, width=draw_width, height=draw_height)
        pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def build_invoice_pdf(
    invoice: Any,
    *,
    contact: Any = None,
    deal: Any = None,
    config: Settings | None = None,
) -> InvoicePdf | None:
    """Renders the invoice to a paged PDF, or returns ``None`` without a partial file."""
    config = config or default_settings
    document = build_invoice_document(invoice, contact, deal)
    try:
        raster = render_invoice_raster(document, width_px=config.invoice_raster_width_px, config=config)
        if raster is None:
            log_event("invoice_pdf_skipped", level=logging.WARNING, invoice_id=invoice.id)
            return None
        slices = paginate(
            raster.width,
            raster.height,
            page_width_mm=config.invoice_page_width_mm,
            page_height_mm=config.invoice_page_height_mm,
        )
        content = write_pdf(
            raster,
            slices,
            page_width_mm=config.invoice_page_width_mm,
            page_height_mm=config.invoice_page_height_mm,
        )
    except (OSError, ValueError) as exc:
        log_event("invoice_pdf_failed", level=logging.ERROR, invoice_id=invoice.id, error=str(exc))
        return None

    log_event("invoice_pdf_generated", invoice_id=invoice.id, page_count=len(slices))
    return InvoicePdf(
        filename=invoice_pdf_filename(document.serial_number),
        content=content,
        page_count=len(slices),
    )
