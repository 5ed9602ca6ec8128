"""Team messenger.

Chat notifications are not configured in this deployment, so alerts go to
the log. Escalation always calls ``send_alert``; swap in a real messenger
through ``get_messenger`` to reach a chat channel.
"""

import logging

logger = logging.getLogger(__name__)


class LoggingMessenger:
    """Messenger that writes alerts to the log."""

    def send_alert(self, team: str, title: str, body: str) -> None:
        logger.warning(f"[ALERT -> {team}] {title}\n{body}")


def get_messenger(settings=None) -> LoggingMessenger:
    """Return the configured messenger."""
    return LoggingMessenger()
