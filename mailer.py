"""
Outbound mail transports for QR card emails.

Two transports share one contract: ``send(message)`` returns the provider's
response data on success and raises ``DeliveryError`` with a human-readable
message otherwise. Failed sends are never retried here.
"""

from __future__ import annotations

from html import escape
from typing import Any, Dict, Optional

import requests

from config import DEFAULT_SMTP2GO_API_URL, EVENT_TITLE, Settings
from errors import DeliveryError
from models import MailMessage

REQUIRED_FIELDS = ("to", "subject", "name", "camperCode", "qrBase64")

_STATUS_MESSAGES = {
    400: "Invalid request. Please check your input.",
    401: "Please log in to continue.",
    403: "You do not have permission to perform this action.",
    404: "The requested resource was not found.",
    409: "This resource already exists.",
    422: "Please check your input and try again.",
    500: "Something went wrong. Please try again later.",
}


def _missing_fields(payload: Dict[str, str]) -> list:
    return [k for k in REQUIRED_FIELDS if not payload.get(k)]


def _error_message(resp: requests.Response) -> str:
    """Best human-readable message for a failed API response."""
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        data = body.get("data")
        if isinstance(data, dict) and data.get("message"):
            return str(data["message"])
        if body.get("message"):
            msg = str(body["message"])
            return f"{msg}: {body['error']}" if body.get("error") else msg
    return _STATUS_MESSAGES.get(resp.status_code, "An unexpected error occurred.")


class BackendMailTransport:
    """Sends card emails through the camp backend's /camps/send-email endpoint."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout_s: int = 30,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = f"{base_url.rstrip('/')}/camps/send-email"
        self.token = token
        self.timeout_s = timeout_s
        self.session = session or requests.Session()

    def send(self, message: MailMessage) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            resp = self.session.post(
                self.endpoint,
                json=message.to_payload(),
                headers=headers,
                timeout=(10, max(10, int(self.timeout_s))),
            )
        except requests.RequestException as e:
            raise DeliveryError(f"Network error: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise DeliveryError(_error_message(resp))
        try:
            data = resp.json()
        except ValueError:
            return {}
        if isinstance(data, dict) and data.get("success") is False:
            raise DeliveryError(_error_message(resp))
        return data if isinstance(data, dict) else {"data": data}


def render_html_body(name: str, camper_code: str, event: str = EVENT_TITLE) -> str:
    name, camper_code, event = escape(name), escape(camper_code), escape(event)
    return f"""
      <!DOCTYPE html>
      <html>
        <head>
          <meta charset="utf-8">
          <title>Your Camper QR Code Card</title>
        </head>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
          <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
            <h2 style="color: #2c5aa0;">Your Camper QR Code Card</h2>
            <p>Hi <strong>{name}</strong>,</p>
            <p>Attached is your official {event} camper identification card containing your QR code.</p>
            <p>Please save this card and bring it with you to the camp for identification purposes.</p>
            <div style="text-align: center; margin: 20px 0; padding: 15px; background-color: #f8f9fa; border-radius: 8px;">
              <p><strong>Camper Code: {camper_code}</strong></p>
              <p style="margin: 0; color: #666; font-size: 14px;">Your identification card is attached to this email</p>
            </div>
            <p><strong>Important:</strong></p>
            <ul>
              <li>Save the attached card image to your phone or print it out</li>
              <li>Bring your card to all camp activities for identification</li>
              <li>Keep your camper code handy for quick reference</li>
            </ul>
            <p>If you have any questions, please don't hesitate to contact us.</p>
            <p>Regards,<br>
            <strong>{event} Camp Management Team</strong></p>
          </div>
        </body>
      </html>
    """


def render_text_body(name: str, camper_code: str, event: str = EVENT_TITLE) -> str:
    return f"""
Hi {name},

Attached is your official {event} camper identification card containing your QR code.
Please save this card and bring it with you to the camp for identification purposes.

Camper Code: {camper_code}

IMPORTANT:
- Save the attached card image to your phone or print it out
- Bring your card to all camp activities for identification
- Keep your camper code handy for quick reference

If you have any questions, please don't hesitate to contact us.

Regards,
{event} Camp Management Team
"""


def attachment_filename(camper_code: str, event: str = EVENT_TITLE) -> str:
    return f"{event.replace(' ', '')}_ID_Card_{camper_code}.png"


class Smtp2goMailTransport:
    """Sends card emails directly through the SMTP2GO HTTP API."""

    def __init__(
        self,
        api_key: str,
        sender: str,
        api_url: str = DEFAULT_SMTP2GO_API_URL,
        event: str = EVENT_TITLE,
        timeout_s: int = 30,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise ValueError("SMTP2GO transport requires an API key (SMTP2GO_API_KEY).")
        self.api_key = api_key
        self.sender = sender
        self.api_url = api_url
        self.event = event
        self.timeout_s = timeout_s
        self.session = session or requests.Session()

    def build_request(self, message: MailMessage) -> Dict[str, Any]:
        payload = message.to_payload()
        missing = _missing_fields(payload)
        if missing:
            raise DeliveryError(f"Missing required fields: {', '.join(missing)}")
        return {
            "api_key": self.api_key,
            "to": [message.to],
            "sender": self.sender,
            "subject": message.subject,
            "html_body": render_html_body(message.name, message.camper_code, self.event),
            "text_body": render_text_body(message.name, message.camper_code, self.event),
            "attachments": [
                {
                    "filename": attachment_filename(message.camper_code, self.event),
                    "fileblob": message.payload,
                    "mimetype": "image/png",
                }
            ],
        }

    def send(self, message: MailMessage) -> Dict[str, Any]:
        body = self.build_request(message)
        try:
            resp = self.session.post(
                self.api_url,
                json=body,
                headers={"Content-Type": "application/json"},
                timeout=(10, max(10, int(self.timeout_s))),
            )
        except requests.RequestException as e:
            raise DeliveryError(f"Network error: {e}") from e
        try:
            result = resp.json()
        except ValueError as e:
            raise DeliveryError(f"SMTP2GO returned a non-JSON response (status {resp.status_code})") from e

        data = result.get("data") if isinstance(result, dict) else None
        if isinstance(data, dict) and (data.get("succeeded") or 0) > 0:
            return result
        error = data.get("error") if isinstance(data, dict) else None
        raise DeliveryError(str(error or "Failed to send email"))


def build_mail_transport(settings: Settings, session: Optional[requests.Session] = None):
    """Pick the transport configured by settings.mail_backend."""
    backend = (settings.mail_backend or "api").lower()
    if backend == "api":
        return BackendMailTransport(settings.api_base_url, settings.api_token, session=session)
    if backend == "smtp2go":
        return Smtp2goMailTransport(
            settings.smtp2go_api_key or "",
            settings.from_email,
            api_url=settings.smtp2go_api_url,
            session=session,
        )
    raise ValueError(f"Unknown mail backend: {settings.mail_backend!r} (expected 'api' or 'smtp2go')")
