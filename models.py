from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple


def _clean(v: Any) -> str:
    """Normalise a raw field value to a stripped string ('' for None/NaN)."""
    if v is None or (isinstance(v, float) and str(v) == "nan"):
        return ""
    s = str(v).strip()
    return "" if s.lower() == "nan" else s


@dataclass(frozen=True)
class Registration:
    """
    One participant record as supplied by the registration store.

    The pipeline only reads these; nothing here is ever written back.
    """
    id: str
    surname: str = ""
    middle_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    camper_code: Optional[str] = None
    category_id: Optional[str] = None
    church_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Registration":
        rid = _clean(data.get("id"))
        if not rid:
            raise ValueError(f"Registration record has no id: {dict(data)!r}")
        return cls(
            id=rid,
            surname=_clean(data.get("surname")),
            middle_name=_clean(data.get("middle_name")),
            last_name=_clean(data.get("last_name")),
            email=_clean(data.get("email")) or None,
            camper_code=_clean(data.get("camper_code")) or None,
            category_id=_clean(data.get("category_id")) or None,
            church_id=_clean(data.get("church_id")) or None,
        )

    @property
    def code(self) -> str:
        """Human-readable camper code, falling back to the record id."""
        return self.camper_code or self.id

    @property
    def display_name(self) -> str:
        """Name as used in emails and error reports: surname, middle, last."""
        return " ".join(p for p in (self.surname, self.middle_name, self.last_name) if p)

    @property
    def card_name(self) -> str:
        """Name as printed on cards: last, surname, middle."""
        return " ".join(p for p in (self.last_name, self.surname, self.middle_name) if p)

    @property
    def has_email(self) -> bool:
        return bool(self.email and self.email.strip())


@dataclass(frozen=True)
class MailMessage:
    """One outbound QR card email."""
    to: str
    subject: str
    name: str
    camper_code: str
    payload: str  # base64 PNG, no data-URI prefix

    def to_payload(self) -> Dict[str, str]:
        """Wire format expected by the send-email endpoint."""
        return {
            "to": self.to,
            "subject": self.subject,
            "name": self.name,
            "camperCode": self.camper_code,
            "qrBase64": self.payload,
        }


@dataclass(frozen=True)
class DistributionResult:
    success: int = 0
    failed: int = 0
    errors: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "errors", tuple(self.errors))

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "failed": self.failed, "errors": list(self.errors)}



@dataclass(frozen=True)
class ProgressState:
    """Observable status of a PDF export. Inactive always means an empty message."""
    active: bool = False
    message: str = ""

    def __post_init__(self):
        if not self.active and self.message:
            raise ValueError("Inactive progress state cannot carry a message")


IDLE = ProgressState()
