"""Cross-platform system notifications for DriveSync.

This module provides:
- Native OS notifications (Windows toast, macOS notification center, Linux notify-send)
- Breaker state change notifications wired into CircuitBreaker
"""

from __future__ import annotations

import logging
import platform
import subprocess
from dataclasses import dataclass
from enum import Enum, auto

from drivesync.core.types import CircuitState, ErrorKind, ServiceCircuit

logger = logging.getLogger(__name__)

APP_NAME = "DriveSync"


class NotificationType(Enum):
    """Type of notification."""

    INFO = auto()
    WARNING = auto()
    ERROR = auto()


@dataclass
class Notification:
    """Represents a notification to display."""

    title: str
    message: str
    type: NotificationType = NotificationType.INFO


def _notify_windows(notification: Notification) -> bool:
    """Send notification on Windows using PowerShell toast.

    Args:
        notification: The notification to send.

    Returns:
        True if notification was sent successfully.
    """
    try:
        ps_script = f'''
        [Windows.UI.Notifications.ToastNotificationManager, Windows.UI.Notifications, ContentType = WindowsRuntime] | Out-Null
        [Windows.Data.Xml.Dom.XmlDocument, Windows.Data.Xml.Dom.XmlDocument, ContentType = WindowsRuntime] | Out-Null

        $template = @"
        <toast>
            <visual>
                <binding template="ToastText02">
                    <text id="1">{notification.title}</text>
                    <text id="2">{notification.message}</text>
                </binding>
            </visual>
        </toast>
"@

        $xml = New-Object Windows.Data.Xml.Dom.XmlDocument
        $xml.LoadXml($template)
        $toast = New-Object Windows.UI.Notifications.ToastNotification $xml
        [Windows.UI.Notifications.ToastNotificationManager]::CreateToastNotifier("{APP_NAME}").Show($toast)
        '''

        subprocess.run(
            ["powershell", "-ExecutionPolicy", "Bypass", "-Command", ps_script],
            capture_output=True,
            check=True,
            timeout=30,
            creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
        )
        return True
    except Exception as e:
        logger.debug(f"Windows notification failed: {e}")
        return False


def _notify_macos(notification: Notification) -> bool:
    """Send notification on macOS using osascript."""
    try:
        title = notification.title.replace('"', '\\"')
        message = notification.message.replace('"', '\\"')

        script = f'display notification "{message}" with title "{title}"'
        subprocess.run(
            ["osascript", "-e", script],
            capture_output=True,
            check=True,
            timeout=30,
        )
        return True
    except Exception as e:
        logger.debug(f"macOS notification failed: {e}")
        return False


def _notify_linux(notification: Notification) -> bool:
    """Send notification on Linux using notify-send."""
    urgency = "critical" if notification.type == NotificationType.ERROR else "normal"
    try:
        subprocess.run(
            [
                "notify-send",
                "--urgency", urgency,
                "--app-name", APP_NAME,
                notification.title,
                notification.message,
            ],
            capture_output=True,
            check=True,
            timeout=30,
        )
        return True
    except FileNotFoundError:
        logger.debug("notify-send not found")
        return False
    except Exception as e:
        logger.debug(f"Linux notification failed: {e}")
        return False


def send_notification(notification: Notification) -> bool:
    """Send a system notification.

    Args:
        notification: The notification to send.

    Returns:
        True if notification was sent, False if failed or unavailable.
    """
    system = platform.system()

    if system == "Windows":
        return _notify_windows(notification)
    elif system == "Darwin":
        return _notify_macos(notification)
    elif system == "Linux":
        return _notify_linux(notification)
    else:
        logger.warning(f"Notifications not supported on {system}")
        return False


def notify_circuit_opened(service_id: str, error_kind: ErrorKind | None) -> bool:
    """Notify that syncing a service has been suspended.

    Args:
        service_id: Service whose circuit opened.
        error_kind: Kind of the failure that opened it.

    Returns:
        True if notification was sent.
    """
    reason = error_kind.value.replace("_", " ") if error_kind else "repeated"
    return send_notification(Notification(
        title=f"{APP_NAME} - {service_id} suspended",
        message=f"Sync paused after {reason} failures. Run 'drivesync status' for details.",
        type=NotificationType.ERROR,
    ))


def notify_circuit_closed(service_id: str) -> bool:
    """Notify that a service recovered."""
    return send_notification(Notification(
        title=f"{APP_NAME} - {service_id} recovered",
        message="Sync resumed.",
        type=NotificationType.INFO,
    ))


def notify_state_change(circuit: ServiceCircuit, old: CircuitState) -> None:
    """Breaker state change callback that raises desktop notifications.

    Usage:
        breaker = CircuitBreaker(store, on_state_change=notify_state_change)
    """
    if circuit.state == CircuitState.OPEN:
        notify_circuit_opened(circuit.service_id, circuit.last_error_type)
    elif circuit.state == CircuitState.CLOSED and old != CircuitState.CLOSED:
        notify_circuit_closed(circuit.service_id)
