"""
QR token encoder.

Each registration is encoded as a small JSON document so that scanners at
check-in and meal points can resolve the camper without a lookup table.
"""

from __future__ import annotations

import json
from io import BytesIO
from typing import Any, Dict

from config import QR_MARGIN_MODULES, QR_PAYLOAD_TYPE, QR_WIDTH_PX
from errors import GenerationError
from models import Registration
from utils import bytes_to_data_url


def build_qr_payload(registration: Registration) -> str:
    """JSON string encoded into the QR code for a registration."""
    data = {
        "camperId": registration.id,
        "camperCode": registration.code,
        "type": QR_PAYLOAD_TYPE,
    }
    return json.dumps(data, separators=(",", ":"))


def parse_qr_payload(text: str) -> Dict[str, Any]:
    """
    Decode a scanned QR payload back into its dict.

    Raises ValueError for anything that is not a camper identification code.
    """
    try:
        data = json.loads(text)
    except (TypeError, json.JSONDecodeError) as e:
        raise ValueError(f"QR payload is not valid JSON: {text!r}") from e
    if not isinstance(data, dict) or data.get("type") != QR_PAYLOAD_TYPE:
        raise ValueError("QR payload is not a camper identification code")
    if not data.get("camperId"):
        raise ValueError("QR payload has no camperId")
    data.setdefault("camperCode", data["camperId"])
    return data


class QrTokenEncoder:
    """Generates QR code images for registrations."""

    def __init__(self, width_px: int = QR_WIDTH_PX, margin: int = QR_MARGIN_MODULES):
        self.width_px = width_px
        self.margin = margin

    def make_image(self, registration: Registration):
        """
        Generate the QR code for a registration as a PIL image.

        Returns:
            RGB PIL Image, width_px x width_px
        """
        import qrcode
        from PIL import Image

        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=10,
            border=self.margin,
        )
        qr.add_data(build_qr_payload(registration))
        qr.make(fit=True)

        qr_img = qr.make_image(fill_color="black", back_color="white").convert("RGB")
        return qr_img.resize((self.width_px, self.width_px), Image.Resampling.NEAREST)

    def encode(self, registration: Registration) -> str:
        """Generate the QR code for a registration as a PNG data URL."""
        try:
            img = self.make_image(registration)
            buf = BytesIO()
            img.save(buf, format="PNG")
        except Exception as e:
            raise GenerationError("Failed to generate QR code") from e
        return bytes_to_data_url(buf.getvalue())
