"""Adoption certificate rendered as a single-page PDF with Pillow."""
from __future__ import annotations

from datetime import date
from io import BytesIO

from PIL import Image, ImageDraw, ImageFont

from app.adoptrees.images import qr_png_bytes

PAGE_SIZE = (1754, 1240)  # A4 landscape at 150 dpi
GREEN = (22, 101, 52)
DARK = (31, 41, 55)
MUTED = (107, 114, 128)


def _font(size: int, *, bold: bool = False):
    name = "DejaVuSans-Bold.ttf" if bold else "DejaVuSans.ttf"
    try:
        return ImageFont.truetype(name, size)
    except OSError:
        return ImageFont.load_default()


def _centered(draw: ImageDraw.ImageDraw, y: int, text: str, font, fill) -> int:
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    x = (PAGE_SIZE[0] - (right - left)) // 2
    draw.text((x, y), text, font=font, fill=fill)
    return y + (bottom - top)


def render_certificate_pdf(
    *,
    user_name: str,
    trees: int,
    oxygen_kgs: float,
    order_id: str,
    profile_url: str,
    issued_on: date | None = None,
) -> bytes:
    issued_on = issued_on or date.today()
    page = Image.new("RGB", PAGE_SIZE, "white")
    draw = ImageDraw.Draw(page)

    draw.rectangle((40, 40, PAGE_SIZE[0] - 40, PAGE_SIZE[1] - 40), outline=GREEN, width=12)
    draw.rectangle((70, 70, PAGE_SIZE[0] - 70, PAGE_SIZE[1] - 70), outline=GREEN, width=3)

    y = _centered(draw, 150, "Certificate of Tree Adoption", _font(84, bold=True), GREEN) + 70
    y = _centered(draw, y, "This certifies that", _font(40), MUTED) + 40
    y = _centered(draw, y, user_name, _font(72, bold=True), DARK) + 50
    tree_word = "tree" if trees == 1 else "trees"
    y = _centered(draw, y, f"has adopted {trees} {tree_word}", _font(44), DARK) + 30
    y = _centered(draw, y, f"contributing about {oxygen_kgs:,.0f} kg of oxygen every year", _font(40), DARK) + 60
    _centered(draw, y, f"Order {order_id}  |  Issued {issued_on.isoformat()}", _font(30), MUTED)

    qr = Image.open(BytesIO(qr_png_bytes(profile_url, box_size=6, border=2))).convert("RGB")
    qr = qr.resize((260, 260))
    qr_x, qr_y = PAGE_SIZE[0] - 120 - qr.width, PAGE_SIZE[1] - 140 - qr.height
    page.paste(qr, (qr_x, qr_y))
    draw.text((qr_x, qr_y + qr.height + 10), "Scan to view the forest", font=_font(22), fill=MUTED)

    buffer = BytesIO()
    page.save(buffer, format="PDF", resolution=150.0)
    return buffer.getvalue()
