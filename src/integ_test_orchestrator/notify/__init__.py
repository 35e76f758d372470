"""Notification channels for run summaries."""

from .channels import (
    NotificationChannel,
    ConsoleChannel,
    FileChannel,
    WebhookChannel,
    get_channel,
    render_message,
)

__all__ = [
    'NotificationChannel',
    'ConsoleChannel',
    'FileChannel',
    'WebhookChannel',
    'get_channel',
    'render_message',
]
