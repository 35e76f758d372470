"""
Notification channels for the run summary.

publish(summary, extra) -> bool. Channels report delivery problems by
returning False; the reporter logs them and the run result is unchanged.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import click
import requests


log = logging.getLogger(__name__)


def render_message(summary, extra: Dict[str, Any]) -> str:
    """Plain-text notification body: breakdown plus excerpts for failing components."""
    lines = [summary.render_text()]

    excerpts = extra.get('excerpts') or {}
    if excerpts:
        lines.append("")
        lines.append("Diagnostics:")
        for name, excerpt in excerpts.items():
            lines.append(f"  {name}:")
            for line in excerpt:
                lines.append(f"    {line}")
    return "\n".join(lines)


class NotificationChannel:
    """Interface for notification transports."""

    def publish(self, summary, extra: Dict[str, Any]) -> bool:
        raise NotImplementedError


class ConsoleChannel(NotificationChannel):
    """Echo the notification to the terminal."""

    def publish(self, summary, extra: Dict[str, Any]) -> bool:
        click.echo(render_message(summary, extra))
        return True


class FileChannel(NotificationChannel):
    """Write the notification payload to a JSON file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def publish(self, summary, extra: Dict[str, Any]) -> bool:
        payload = {**summary.to_dict(), **extra, 'message': render_message(summary, extra)}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w') as f:
                json.dump(payload, f, indent=2, default=str)
        except OSError as e:
            log.error("Could not write notification to %s: %s", self.path, e)
            return False
        log.info("Wrote notification to %s", self.path)
        return True


class WebhookChannel(NotificationChannel):
    """
    POST the notification as JSON to a webhook (chat or CI notification hook).

    The body has a human-readable "message" plus the machine-readable summary.
    """

    def __init__(self, url: str, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def publish(self, summary, extra: Dict[str, Any]) -> bool:
        body = {
            'message': render_message(summary, extra),
            'summary': summary.to_dict(),
            **extra,
        }
        try:
            response = self.session.post(self.url, json=body, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            log.error("Webhook notification to %s failed: %s", self.url, e)
            return False
        log.info("Posted run summary to webhook (HTTP %s)", response.status_code)
        return True


def get_channel(config) -> NotificationChannel:
    """Notification channel configured in a RunConfig."""
    name = config.notification_channel
    if name == 'webhook':
        return WebhookChannel(config.webhook_url)
    if name == 'file':
        return FileChannel(config.notification_file)
    return ConsoleChannel()
