import base64
import re
import time
from typing import Callable

from config import TOKEN_FILENAME_EXT, TOKEN_FILENAME_PREFIX


# Path separators, characters Windows rejects, and control characters
_UNSAFE_FILENAME_CHARS = re.compile(r'[/\\:*?"<>|\x00-\x1f\x7f]')


def _clean_filename_part(value) -> str:
    raw = "" if value is None else str(value).strip()
    return _UNSAFE_FILENAME_CHARS.sub("_", raw).strip(" .")


def token_filename(code: str, fallback: str = "") -> str:
    """
    Filename for a single QR download: '<prefix>_<code>.<ext>'.

    Dots and non-ASCII letters are kept so distinct codes stay distinct.
    `fallback` (the registration id) is used when nothing usable is left.
    """
    safe = _clean_filename_part(code) or _clean_filename_part(fallback)
    if not safe:
        raise ValueError(f"Cannot build a QR filename from {code!r}")
    return f"{TOKEN_FILENAME_PREFIX}_{safe}.{TOKEN_FILENAME_EXT}"


def bytes_to_data_url(data: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def data_url_to_base64(data_url: str) -> str:
    """Strip the 'data:<mime>;base64,' prefix and keep only the encoded payload."""
    if not data_url:
        raise ValueError("Empty data URL")
    head, sep, payload = str(data_url).partition(",")
    if not sep:
        # Already a bare payload
        return head.strip()
    return payload.strip()


def data_url_to_bytes(data_url: str) -> bytes:
    return base64.b64decode(data_url_to_base64(data_url), validate=True)


def make_logger(tag: str) -> Callable[[str], None]:
    """
    Return a stdout logger that prefixes messages with a tag and the elapsed
    time since the logger was created, e.g. '[qr-tools] +0.042s message'.
    """
    t0 = time.perf_counter()

    def _log(msg: str) -> None:
        print(f"[{tag}] +{time.perf_counter() - t0:.3f}s {msg}", flush=True)

    return _log
