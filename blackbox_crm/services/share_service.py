from dataclasses import dataclass
from urllib.parse import quote

WHATSAPP_SHARE_URL = "https://wa.me/"


@dataclass(frozen=True)
class InvoiceShare:
    invoice_id: str
    link: str
    message: str
    whatsapp_url: str


def build_invoice_link(origin: str, invoice_id: str) -> str:
    return f"{origin.rstrip('/')}/invoice/{invoice_id}"


def build_whatsapp_url(message: str) -> str:
    return f"{WHATSAPP_SHARE_URL}?text={quote(message, safe=':/')}"


def build_invoice_share(origin: str, invoice_id: str) -> InvoiceShare:
    link = build_invoice_link(origin, invoice_id)
    message = f"Invoice Link: {link}"
    return InvoiceShare(
        invoice_id=invoice_id,
        link=link,
        message=message,
        whatsapp_url=build_whatsapp_url(message),
    )
