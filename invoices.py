"""
Printable PDF invoice for an order, rendered with fpdf2's built-in Helvetica.
"""

from datetime import datetime
from typing import Iterable

from fpdf import FPDF
from fpdf.enums import XPos, YPos

from config import settings

BRAND = "Cupid Crochy"
TAGLINE = "Handcrafted with Love"
MAROON = (91, 26, 26)
GREY = (110, 110, 110)

# product, qty, unit price, line total
COLUMNS = ((95, "Product", "L"), (20, "Qty", "C"), (35, "Price", "R"), (40, "Total", "R"))


def _latin1(value) -> str:
    # core fonts only cover latin-1
    return str(value if value is not None else "").encode("latin-1", "replace").decode("latin-1")


def _money(amount) -> str:
    return f"{settings.currency.upper()} {float(amount or 0):,.2f}"


def _address_lines(address: dict) -> Iterable[str]:
    yield address.get("line1", "")
    yield address.get("line2", "")
    city = ", ".join(p for p in (address.get("city", ""), address.get("state", "")) if p)
    yield " ".join(p for p in (city, address.get("postal_code", "")) if p)
    yield address.get("country", "")


def _line(pdf: FPDF, text: str, height: float = 6, align: str = "L") -> None:
    pdf.cell(0, height, _latin1(text), align=align, new_x=XPos.LMARGIN, new_y=YPos.NEXT)


def render_invoice(order: dict) -> bytes:
    pdf = FPDF(format="A4")
    pdf.set_auto_page_break(auto=True, margin=20)
    pdf.add_page()

    pdf.set_text_color(*MAROON)
    pdf.set_font("Helvetica", "B", 22)
    _line(pdf, BRAND, height=10)
    pdf.set_font("Helvetica", "I", 10)
    pdf.set_text_color(*GREY)
    _line(pdf, TAGLINE)

    pdf.ln(4)
    pdf.set_text_color(*MAROON)
    pdf.set_font("Helvetica", "B", 16)
    _line(pdf, "INVOICE", height=8, align="R")

    created = order.get("created_at")
    pdf.set_text_color(0, 0, 0)
    pdf.set_font("Helvetica", "", 10)
    _line(pdf, f"Order #{order.get('short_order_id', '')}", align="R")
    if isinstance(created, datetime):
        _line(pdf, f"Date: {created:%d %b %Y}", align="R")
    _line(pdf, f"Status: {str(order.get('status', 'pending')).upper()}", align="R")

    pdf.ln(4)
    pdf.set_font("Helvetica", "B", 11)
    _line(pdf, "Bill To")
    pdf.set_font("Helvetica", "", 10)
    _line(pdf, order.get("user_name") or "Guest")
    if order.get("user_email"):
        _line(pdf, order["user_email"])
    for text in _address_lines(order.get("shipping_address") or {}):
        if text:
            _line(pdf, text)

    pdf.ln(6)
    pdf.set_fill_color(*MAROON)
    pdf.set_text_color(255, 255, 255)
    pdf.set_font("Helvetica", "B", 10)
    for width, title, align in COLUMNS:
        pdf.cell(width, 8, title, border=0, align=align, fill=True)
    pdf.ln(8)

    pdf.set_text_color(0, 0, 0)
    pdf.set_font("Helvetica", "", 10)
    for item in order.get("items", []):
        quantity = item.get("quantity", 0)
        price = item.get("price", 0)
        cells = (item.get("name", ""), quantity, _money(price), _money(price * quantity))
        for (width, _, align), text in zip(COLUMNS, cells):
            pdf.cell(width, 7, _latin1(text), border="B", align=align)
        pdf.ln(7)

    pdf.ln(4)
    if order.get("discount_amount"):
        coupon = f" ({order['coupon_code']})" if order.get("coupon_code") else ""
        _line(pdf, f"Discount{coupon}: -{_money(order['discount_amount'])}", align="R")
    pdf.set_font("Helvetica", "B", 12)
    _line(pdf, f"Total: {_money(order.get('total'))}", height=8, align="R")

    pdf.ln(10)
    pdf.set_font("Helvetica", "I", 9)
    pdf.set_text_color(*GREY)
    _line(pdf, f"Thank you for shopping with {BRAND}!", align="C")

    return bytes(pdf.output())
