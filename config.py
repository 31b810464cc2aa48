"""
Central configuration for camp-qr-tools.

Keep runtime-safe (no secrets). Secrets and deployment URLs come from the
environment via load_settings().
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# Event branding
EVENT_TITLE = "NBC 2025"
CARD_CATEGORY_LABEL = "Camper"
EMAIL_SUBJECT = "Your Camper QR Code"

# Progress state: seconds the final message stays visible before reset
PROGRESS_RESET_DELAY_SUCCESS_S = 2.0
PROGRESS_RESET_DELAY_FAILURE_S = 3.0

# Distribution: 1 = strictly sequential
DISTRIBUTION_CONCURRENCY = 1

# QR token
QR_WIDTH_PX = 200
QR_MARGIN_MODULES = 2
QR_PAYLOAD_TYPE = "camper_identification"

# Single QR download
TOKEN_FILENAME_PREFIX = "qr"
TOKEN_FILENAME_EXT = "png"

# Card rendering (base canvas in px, multiplied by CARD_SCALE)
CARD_WIDTH_PX = 300
CARD_HEIGHT_PX = 400
CARD_PADDING_PX = 20
CARD_QR_SIZE_PX = 150
CARD_SCALE = 2
CARD_ACCENT_COLOR = (44, 90, 160)  # #2c5aa0

# PDF layout (A4 portrait, millimetres)
PDF_PAGE_WIDTH_MM = 210
PDF_PAGE_HEIGHT_MM = 297
PDF_MARGIN_MM = 10
PDF_PADDING_MM = 5
PDF_CELL_HEIGHT_MM = 60
PDF_CARDS_PER_ROW = 4
PDF_QR_SIZE_MM = 25
PDF_FILENAME_PREFIX = "camper-qr-cards"

DEFAULT_API_BASE_URL = "http://localhost:5000"
DEFAULT_SMTP2GO_API_URL = "https://api.smtp2go.com/v3/email/send"


@dataclass
class Settings:
    """Deployment settings resolved from the environment."""
    api_base_url: str = DEFAULT_API_BASE_URL
    api_token: Optional[str] = None
    mail_backend: str = "api"            # "api" | "smtp2go"
    smtp2go_api_key: Optional[str] = None
    smtp2go_api_url: str = DEFAULT_SMTP2GO_API_URL
    from_email: str = "noreply@yourcamp.com"
    output_dir: Path = Path("output")
    distribution_concurrency: int = DISTRIBUTION_CONCURRENCY


def load_settings(
    api_base_url: Optional[str] = None,
    api_token: Optional[str] = None,
    mail_backend: Optional[str] = None,
    output_dir: Optional[str] = None,
) -> Settings:
    """Build Settings from explicit arguments, falling back to environment variables."""
    raw_concurrency = os.getenv("DISTRIBUTION_CONCURRENCY", "").strip()
    try:
        concurrency = int(raw_concurrency) if raw_concurrency else DISTRIBUTION_CONCURRENCY
    except ValueError:
        raise ValueError(f"DISTRIBUTION_CONCURRENCY must be an integer, got {raw_concurrency!r}") from None

    return Settings(
        api_base_url=(api_base_url or os.getenv("API_BASE_URL") or DEFAULT_API_BASE_URL).rstrip("/"),
        api_token=api_token or os.getenv("API_TOKEN") or None,
        mail_backend=(mail_backend or os.getenv("MAIL_BACKEND", "api")).strip().lower(),
        smtp2go_api_key=os.getenv("SMTP2GO_API_KEY") or None,
        smtp2go_api_url=os.getenv("SMTP2GO_API_URL", DEFAULT_SMTP2GO_API_URL),
        from_email=os.getenv("FROM_EMAIL", "noreply@yourcamp.com"),
        output_dir=Path(output_dir or os.getenv("OUTPUT_DIR", "output")).expanduser(),
        distribution_concurrency=max(1, concurrency),
    )
