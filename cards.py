"""
QR card renderer.

Composes a registration's QR code and name into the card image that is
emailed to campers. The layout matches the cards in the bulk PDF.
"""

from __future__ import annotations

import os
from io import BytesIO
from typing import Any, Optional

from config import (
    CARD_ACCENT_COLOR,
    CARD_CATEGORY_LABEL,
    CARD_HEIGHT_PX,
    CARD_PADDING_PX,
    CARD_QR_SIZE_PX,
    CARD_SCALE,
    CARD_WIDTH_PX,
    EVENT_TITLE,
)
from errors import RenderError
from models import Registration
from qr_codes import QrTokenEncoder
from utils import bytes_to_data_url, data_url_to_bytes


TEXT_COLOR = (51, 51, 51)       # #333333
MUTED_COLOR = (102, 102, 102)   # #666666
BORDER_COLOR = (204, 204, 204)  # #cccccc

_BOLD_FONTS = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/TTF/DejaVuSans-Bold.ttf",
    "/System/Library/Fonts/Supplemental/Arial Bold.ttf",
    "C:/Windows/Fonts/arialbd.ttf",
]
_REGULAR_FONTS = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/TTF/DejaVuSans.ttf",
    "/System/Library/Fonts/Supplemental/Arial.ttf",
    "C:/Windows/Fonts/arial.ttf",
]


class CardRenderer:
    """Renders camper QR cards as PNG images."""

    def __init__(
        self,
        encoder: Optional[QrTokenEncoder] = None,
        title: str = EVENT_TITLE,
        scale: int = CARD_SCALE,
    ):
        self.encoder = encoder or QrTokenEncoder()
        self.title = title
        self.scale = max(1, int(scale))
        self._fonts: dict = {}

    def _font(self, size: int, bold: bool = False):
        """Load and cache a font once per renderer instance."""
        from PIL import ImageFont

        key = (size, bold)
        if key in self._fonts:
            return self._fonts[key]

        font: Any = None
        for path in (_BOLD_FONTS if bold else []) + _REGULAR_FONTS:
            if os.path.exists(path):
                try:
                    font = ImageFont.truetype(path, size)
                    break
                except OSError:
                    continue
        if font is None:
            font = ImageFont.load_default(size=size)
        self._fonts[key] = font
        return font

    def create_card_image(self, registration: Registration, qr_img):
        """
        Create a card: title on top, QR code, then name, code and category.

        Args:
            registration: Registration to print
            qr_img: PIL image of the registration's QR code

        Returns:
            RGB PIL Image of the card
        """
        from PIL import Image, ImageDraw

        s = self.scale
        width, height = CARD_WIDTH_PX * s, CARD_HEIGHT_PX * s
        padding = CARD_PADDING_PX * s
        qr_size = CARD_QR_SIZE_PX * s

        card = Image.new("RGB", (width, height), (255, 255, 255))
        draw = ImageDraw.Draw(card)
        draw.rectangle([(5 * s, 5 * s), (width - 5 * s, height - 5 * s)], outline=BORDER_COLOR, width=2 * s)

        def text_width(text, font) -> int:
            bbox = draw.textbbox((0, 0), text, font=font)
            return bbox[2] - bbox[0]

        def centered(text, y, font, fill):
            # y is the text baseline, as with canvas fillText
            draw.text((width // 2, y), text, font=font, fill=fill, anchor="ms")

        centered(self.title, 45 * s, self._font(24 * s, bold=True), CARD_ACCENT_COLOR)

        qr_y = 70 * s
        qr_resized = qr_img.convert("RGB").resize((qr_size, qr_size), Image.Resampling.NEAREST)
        card.paste(qr_resized, ((width - qr_size) // 2, qr_y))

        # Name wraps to a second line when it does not fit
        name_font = self._font(18 * s, bold=True)
        full_name = registration.card_name
        max_w = width - padding * 2
        name_y = qr_y + qr_size + 35 * s
        if text_width(full_name, name_font) > max_w:
            words = full_name.split(" ")
            line1, line2 = "", ""
            for i, w in enumerate(words):
                test = (line1 + " " + w).strip()
                if line1 and text_width(test, name_font) > max_w:
                    line2 = " ".join(words[i:])
                    break
                line1 = test
            centered(line1, name_y, name_font, TEXT_COLOR)
            if line2:
                centered(line2, name_y + 25 * s, name_font, TEXT_COLOR)
        else:
            centered(full_name, name_y, name_font, TEXT_COLOR)

        info_font = self._font(16 * s)
        code_y = name_y + (50 if len(full_name) > 20 else 30) * s
        centered(f"Code: {registration.code}", code_y, info_font, MUTED_COLOR)
        centered(f"Category: {CARD_CATEGORY_LABEL}", code_y + 25 * s, info_font, MUTED_COLOR)

        draw.rectangle(
            [(padding, height - 15 * s), (width - padding, height - 12 * s)],
            fill=CARD_ACCENT_COLOR,
        )
        return card

    def render(self, registration: Registration) -> str:
        """Render the card for a registration as a PNG data URL."""
        from PIL import Image

        try:
            qr_img = Image.open(BytesIO(data_url_to_bytes(self.encoder.encode(registration))))
            card = self.create_card_image(registration, qr_img)
            buf = BytesIO()
            card.save(buf, format="PNG")
        except Exception as e:
            raise RenderError(str(e) or "Failed to render QR card") from e
        return bytes_to_data_url(buf.getvalue())
