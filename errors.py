"""Error taxonomy for the QR generation and distribution pipeline."""


class QrToolsError(RuntimeError):
    """Base class for every error raised by the pipeline."""


class EmptySelectionError(QrToolsError):
    """No registrations were selected."""

    def __init__(self, message: str = "No registrations selected"):
        super().__init__(message)


class NoDeliverableRecipientsError(QrToolsError):
    """None of the selected registrations has a usable email address."""

    def __init__(self, message: str = "No registrations with valid email addresses found"):
        super().__init__(message)


class BusyError(QrToolsError):
    """A PDF export is already running on this coordinator."""

    def __init__(self, message: str = "A PDF export is already in progress"):
        super().__init__(message)


class GenerationError(QrToolsError):
    """The QR code for a single registration could not be generated."""


class RenderError(QrToolsError):
    """A QR card image could not be rendered."""


class DeliveryError(QrToolsError):
    """The mail transport rejected a message or could not be reached."""


class ExportError(QrToolsError):
    """The PDF document could not be assembled."""


class DataSourceError(QrToolsError):
    """Registrations could not be loaded from a file or the REST backend."""
