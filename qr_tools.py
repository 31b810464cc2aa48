"""
QR tools: bulk PDF export, bulk email distribution and single QR retrieval.

QrTools drives the token encoder, card renderer, PDF assembler and mail
transport for a selection of registrations. Blocking collaborators run in a
worker thread, so every call into them is an await point for the event loop.

Progress of a PDF export is observable through QrTools.progress (a
ProgressTracker); email distribution reports through its returned
DistributionResult instead.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, List, Optional, Protocol, Sequence, Tuple

from config import (
    EMAIL_SUBJECT,
    PROGRESS_RESET_DELAY_FAILURE_S,
    PROGRESS_RESET_DELAY_SUCCESS_S,
)
from errors import (
    BusyError,
    DeliveryError,
    EmptySelectionError,
    ExportError,
    GenerationError,
    NoDeliverableRecipientsError,
    RenderError,
)
from models import IDLE, DistributionResult, MailMessage, ProgressState, Registration
from utils import data_url_to_base64, data_url_to_bytes, make_logger, token_filename

_log = make_logger("qr-tools")


class Encoder(Protocol):
    def encode(self, registration: Registration) -> str: ...


class Renderer(Protocol):
    def render(self, registration: Registration) -> str: ...


class Assembler(Protocol):
    def estimate_pages(self, registration_count: int) -> int: ...

    def assemble(self, registrations: Sequence[Registration]) -> Any: ...


class Transport(Protocol):
    def send(self, message: MailMessage) -> Any: ...


ProgressListener = Callable[[ProgressState], None]


class ProgressTracker:
    """Holds the export progress state and notifies subscribers on every change."""

    def __init__(self):
        self._state: ProgressState = IDLE
        self._listeners: List[ProgressListener] = []
        self._reset_handle: Optional[asyncio.TimerHandle] = None

    @property
    def state(self) -> ProgressState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state.active

    @property
    def message(self) -> str:
        return self._state.message

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def set(self, message: str) -> None:
        self._publish(ProgressState(active=True, message=message))

    def reset(self) -> None:
        self.cancel_scheduled_reset()
        self._publish(IDLE)

    def schedule_reset(self, delay_s: float) -> None:
        """Reset to idle after delay_s on the running loop; replaces any pending reset."""
        self.cancel_scheduled_reset()
        loop = asyncio.get_running_loop()
        self._reset_handle = loop.call_later(delay_s, self._fire_reset)

    def cancel_scheduled_reset(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None

    def _fire_reset(self) -> None:
        self._reset_handle = None
        self._publish(IDLE)

    def _publish(self, state: ProgressState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                _log(f"progress listener failed: {type(e).__name__}: {e}")


def pages_label(count: int) -> str:
    return f"{count} page{'s' if count > 1 else ''}"


class QrTools:
    """Coordinates QR generation, PDF export and email distribution."""

    def __init__(
        self,
        encoder: Encoder,
        renderer: Renderer,
        assembler: Assembler,
        transport: Transport,
        *,
        subject: str = EMAIL_SUBJECT,
        concurrency: int = 1,
        success_reset_delay_s: float = PROGRESS_RESET_DELAY_SUCCESS_S,
        failure_reset_delay_s: float = PROGRESS_RESET_DELAY_FAILURE_S,
    ):
        self.encoder = encoder
        self.renderer = renderer
        self.assembler = assembler
        self.transport = transport
        self.subject = subject
        self.concurrency = max(1, int(concurrency))
        self.success_reset_delay_s = success_reset_delay_s
        self.failure_reset_delay_s = failure_reset_delay_s
        self.progress = ProgressTracker()
        self._export_in_flight = False

    # PDF export

    async def export_pdf(self, registrations: Sequence[Registration]) -> Any:
        """
        Generate the bulk QR card PDF for the selected registrations.

        Returns whatever the assembler produced (the written PDF path for
        PdfDocumentAssembler). Progress moves through preparing, generating and
        success/failure, then back to idle after a short display delay.

        Raises:
            EmptySelectionError: nothing selected (progress untouched)
            BusyError: another export on this instance has not finished
            ExportError: the assembler failed (after progress shows the failure)
        """
        if not registrations:
            raise EmptySelectionError()
        if self._export_in_flight:
            raise BusyError()

        self._export_in_flight = True
        try:
            self.progress.cancel_scheduled_reset()
            self.progress.set("Preparing PDF generation...")
            try:
                count = len(registrations)
                pages = await asyncio.to_thread(self.assembler.estimate_pages, count)
                self.progress.set(f"Generating {count} QR codes ({pages_label(pages)})...")
                result = await asyncio.to_thread(self.assembler.assemble, list(registrations))
            except Exception as e:
                _log(f"PDF generation failed: {type(e).__name__}: {e}")
                self.progress.set("PDF generation failed")
                self.progress.schedule_reset(self.failure_reset_delay_s)
                if isinstance(e, ExportError):
                    raise
                raise ExportError(str(e) or "PDF generation failed") from e

            self.progress.set("PDF generated successfully!")
            self.progress.schedule_reset(self.success_reset_delay_s)
            return result
        finally:
            self._export_in_flight = False

    # Email distribution

    def _build_message(self, registration: Registration) -> MailMessage:
        card_data_url = self.renderer.render(registration)
        return MailMessage(
            to=(registration.email or "").strip(),
            subject=self.subject,
            name=registration.display_name,
            camper_code=registration.code,
            payload=data_url_to_base64(card_data_url),
        )

    def _deliver(self, registration: Registration) -> None:
        """Render and send one card. Raises RenderError or DeliveryError."""
        try:
            message = self._build_message(registration)
        except RenderError:
            raise
        except Exception as e:
            raise RenderError(str(e)) from e
        try:
            self.transport.send(message)
        except DeliveryError:
            raise
        except Exception as e:
            raise DeliveryError(str(e)) from e

    async def _attempt(self, index: int, registration: Registration) -> Tuple[int, Registration, Optional[Exception]]:
        try:
            await asyncio.to_thread(self._deliver, registration)
        except (RenderError, DeliveryError) as e:
            _log(f"Failed to send email to {registration.email}: {e}")
            return index, registration, e
        return index, registration, None

    async def send_emails(self, registrations: Sequence[Registration]) -> DistributionResult:
        """
        Email each selected registration its QR card.

        Registrations without an email address are skipped and not counted.
        One failed card never stops the batch: it is counted in `failed` and
        described in `errors` as "<name>: <message>", in input order.

        Raises:
            EmptySelectionError: nothing selected
            NoDeliverableRecipientsError: no selected registration has an email
        """
        if not registrations:
            raise EmptySelectionError()

        valid = [r for r in registrations if r.has_email]
        if not valid:
            raise NoDeliverableRecipientsError()
        skipped = len(registrations) - len(valid)
        if skipped:
            _log(f"Skipping {skipped} registration(s) without email addresses")

        if self.concurrency == 1:
            outcomes = [await self._attempt(i, r) for i, r in enumerate(valid)]
        else:
            sem = asyncio.Semaphore(self.concurrency)

            async def _bounded(i: int, r: Registration):
                async with sem:
                    return await self._attempt(i, r)

            outcomes = await asyncio.gather(*(_bounded(i, r) for i, r in enumerate(valid)))
            outcomes = sorted(outcomes, key=lambda o: o[0])

        errors = [
            f"{registration.display_name}: {str(error) or 'Unknown error'}"
            for _, registration, error in outcomes
            if error is not None
        ]
        result = DistributionResult(success=len(outcomes) - len(errors), failed=len(errors), errors=errors)
        _log(f"Emails sent: {result.success} succeeded, {result.failed} failed")
        return result

    # Single registration

    async def retrieve_token(self, registration: Registration) -> str:
        """Generate one registration's QR code as a PNG data URL."""
        try:
            return await asyncio.to_thread(self.encoder.encode, registration)
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(str(e) or "Failed to generate QR code") from e

    async def save_token(self, registration: Registration, output_dir: str | Path = ".") -> Path:
        """
        Save one registration's QR code as '<output_dir>/qr_<camper_code or id>.png'.

        The image is written to a temporary file in the same directory and moved
        into place, so a failed write never leaves a partial file behind.
        """
        data_url = await self.retrieve_token(registration)
        payload = data_url_to_bytes(data_url)

        out_dir = Path(output_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        target = out_dir / token_filename(registration.code, fallback=registration.id)
        fd, tmp_name = tempfile.mkstemp(dir=out_dir, prefix=".qr_", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
            os.replace(tmp_name, target)
        finally:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
        return target
