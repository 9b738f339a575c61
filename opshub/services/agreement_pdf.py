"""
Build a printable PDF of a signed equipment agreement.
"""
import base64
import binascii
import io
from typing import Optional

from PIL import Image as PILImage
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from ..models.models import EquipmentAgreement
from .time_rules import utc_to_local

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
MARGIN = 72


def decode_signature(signature_data: str) -> Optional[ImageReader]:
    """
    Decode a ``data:image/...;base64,`` signature into an image reader.

    Returns None when the data is not a decodable image.
    """
    payload = signature_data.split(",", 1)[1] if signature_data.startswith("data:") else signature_data
    try:
        raw = base64.b64decode(payload, validate=True)
        pil_im = PILImage.open(io.BytesIO(raw))
        pil_im.load()
    except (binascii.Error, ValueError, OSError):
        return None
    # Flatten transparent pen strokes onto white
    if pil_im.mode in ("RGBA", "LA", "P"):
        pil_im = pil_im.convert("RGBA")
        background = PILImage.new("RGB", pil_im.size, (255, 255, 255))
        background.paste(pil_im, mask=pil_im.split()[-1])
        pil_im = background
    img_buf = io.BytesIO()
    pil_im.convert("RGB").save(img_buf, format="PNG")
    img_buf.seek(0)
    return ImageReader(img_buf)


def render_agreement_pdf(agreement: EquipmentAgreement) -> bytes:
    """Generate PDF bytes: agreement text, employee signature, signing time and witness."""
    buf = io.BytesIO()
    page_width, page_height = letter
    text_width = page_width - 2 * MARGIN

    c = canvas.Canvas(buf, pagesize=letter)
    c.setTitle(f"Equipment Agreement {agreement.equipment_number}")
    y = page_height - MARGIN

    def _ensure_room(height: float):
        nonlocal y
        if y - height < MARGIN:
            c.showPage()
            y = page_height - MARGIN

    lines = agreement.agreement_text.split("\n")
    c.setFont(FONT_BOLD, 14)
    c.drawString(MARGIN, y, lines[0])
    y -= 28
    for line in lines[1:]:
        if not line:
            y -= 8
            continue
        for part in simpleSplit(line, FONT, 10.5, text_width):
            _ensure_room(14)
            c.setFont(FONT, 10.5)
            c.setFillColor(colors.black)
            c.drawString(MARGIN, y, part)
            y -= 14

    y -= 20
    _ensure_room(120)
    c.setFont(FONT_BOLD, 10)
    c.drawString(MARGIN, y, "Employee Signature:")
    y -= 70
    reader = decode_signature(agreement.signature_data)
    if reader is not None:
        c.drawImage(reader, MARGIN, y, width=200, height=60, preserveAspectRatio=True, anchor="sw")
    else:
        c.setFont(FONT, 9)
        c.setFillColor(colors.grey)
        c.drawString(MARGIN, y + 25, "[signature on file]")
        c.setFillColor(colors.black)
    c.line(MARGIN, y - 4, MARGIN + 220, y - 4)
    y -= 20

    signed = utc_to_local(agreement.signed_at)
    c.setFont(FONT, 10)
    c.drawString(MARGIN, y, f"{agreement.personnel_name}")
    y -= 14
    c.drawString(MARGIN, y, f"Signed: {signed.strftime('%m/%d/%Y %I:%M %p %Z')}")
    y -= 14
    c.drawString(MARGIN, y, f"Witnessed by: {agreement.witnessed_by_name}")

    c.setFont(FONT, 8)
    c.setFillColor(colors.grey)
    c.drawString(MARGIN, MARGIN / 2, f"Agreement {agreement.id}")
    c.showPage()
    c.save()
    return buf.getvalue()
