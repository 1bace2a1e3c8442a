"""
Monitoring alert delivery.

``AlertSender`` is the collaborator the monitoring service calls when
a diff has changes.  ``ResendAlertSender`` delivers an HTML email
through the Resend HTTP API; ``LoggingAlertSender`` only logs and is
used when no API key is configured.
"""

from __future__ import annotations

import dataclasses
import html
from typing import Protocol

import aiohttp

from src.config import ScannerSettings
from src.models import monitoring
from src.utils import logger
from src.utils import url as url_mod

log = logger.create_logger("Alerts")

RESEND_ENDPOINT = "https://api.resend.com/emails"

_SEND_TIMEOUT = aiohttp.ClientTimeout(total=10)


class AlertDeliveryError(Exception):
    """The alert could not be delivered."""


@dataclasses.dataclass(frozen=True)
class Alert:
    recipient: str
    target_url: str
    job_id: str
    diff: monitoring.ScanDiff


class AlertSender(Protocol):
    async def send_alert(self, alert: Alert) -> None: ...


def scan_link(app_url: str, job_id: str) -> str:
    return f"{app_url.rstrip('/')}/scan/{job_id}"


def render_subject(alert: Alert) -> str:
    host = url_mod.extract_hostname(alert.target_url) or alert.target_url
    return f"New risks detected on {host}"


def render_html(alert: Alert, app_url: str) -> str:
    """HTML body listing every regression in the diff."""
    esc = html.escape
    host = url_mod.extract_hostname(alert.target_url) or alert.target_url

    items = [f'<li style="color:#c0392b">{esc(flag)}</li>' for flag in alert.diff.new_risk_flags]
    items += [
        f'<li style="color:#555">New external host: <code>{esc(h)}</code></li>'
        for h in alert.diff.new_external_hosts
    ]
    items += [
        f'<li style="color:#555">New cookie: <code>{esc(c)}</code></li>'
        for c in alert.diff.new_cookies
    ]

    return f"""<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width"></head>
<body style="font-family:system-ui,sans-serif;background:#f5f5f5;margin:0;padding:2rem">
  <div style="max-width:560px;margin:0 auto;background:#fff;border-radius:8px;border:1px solid #e0e0e0;padding:1.5rem">
    <h2 style="margin:0 0 0.5rem;font-size:1.1rem">New risks detected on <strong>{esc(host)}</strong></h2>
    <p style="color:#555;font-size:0.9rem">The latest re-scan of your site found the following changes:</p>
    <ul style="line-height:1.8;font-size:0.9rem">{''.join(items)}</ul>
    <a href="{esc(scan_link(app_url, alert.job_id))}">View the full scan</a>
    <p style="color:#aaa;font-size:0.75rem">You receive this email because {esc(alert.target_url)} is monitored for {esc(alert.recipient)}.</p>
  </div>
</body>
</html>"""


class ResendAlertSender:
    """Delivers alerts as email through the Resend API."""

    def __init__(self, settings: ScannerSettings, endpoint: str = RESEND_ENDPOINT) -> None:
        self._api_key = settings.resend_api_key
        self._sender = settings.email_from
        self._app_url = settings.app_url
        self._endpoint = endpoint

    def build_payload(self, alert: Alert) -> dict[str, object]:
        return {
            "from": self._sender,
            "to": [alert.recipient],
            "subject": render_subject(alert),
            "html": render_html(alert, self._app_url),
        }

    async def send_alert(self, alert: Alert) -> None:
        """POST the alert email.

        Raises:
            AlertDeliveryError: on transport errors or a non-2xx response.
        """
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            async with aiohttp.ClientSession(timeout=_SEND_TIMEOUT) as http_session:
                async with http_session.post(self._endpoint, json=self.build_payload(alert), headers=headers) as response:
                    if response.status >= 300:
                        body = await response.text()
                        raise AlertDeliveryError(f"Resend returned HTTP {response.status}: {body[:200]}")
        except aiohttp.ClientError as exc:
            raise AlertDeliveryError(f"Resend request failed: {exc}") from exc
        except TimeoutError as exc:
            raise AlertDeliveryError("Resend request timed out") from exc
        log.info("Alert email sent", {"recipient": alert.recipient, "jobId": alert.job_id})


class LoggingAlertSender:
    """Records alerts in the log instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[Alert] = []

    async def send_alert(self, alert: Alert) -> None:
        self.sent.append(alert)
        log.info("Alert (not delivered, no email backend configured)", {
            "recipient": alert.recipient,
            "url": alert.target_url,
            "flags": alert.diff.new_risk_flags,
            "hosts": alert.diff.new_external_hosts,
            "cookies": alert.diff.new_cookies,
        })


def create_alert_sender(settings: ScannerSettings) -> AlertSender:
    """Pick the Resend sender when an API key is configured."""
    if settings.resend_api_key:
        return ResendAlertSender(settings)
    log.warn("RESEND_API_KEY not set; alerts will only be logged")
    return LoggingAlertSender()
