"""
Notification sink for recurring processing.

Every alert is logged; when WhatsApp delivery is enabled it is also sent to
each number in NOTIFICATION_PHONES.  Sending is fire-and-forget: a delivery
failure never propagates into the processing run that raised the alert.
"""

import logging
from decimal import Decimal

from fintrack.core.config import settings
from fintrack.services.whatsapp import broadcast

logger = logging.getLogger(__name__)


def _fmt_currency(value: Decimal | None) -> str:
    if not value:
        return "$0"
    return f"${value:,.2f}"


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def processed_message(count: int, total_amount: Decimal) -> str:
    return (
        f"*{_plural(count, 'Recurring Transaction')} Processed*\n"
        f"Total amount: {_fmt_currency(total_amount)}"
    )


def confirmation_message(count: int, total_amount: Decimal) -> str:
    return (
        "*Recurring Transactions Ready*\n"
        f"{count} transaction(s) ready to process ({_fmt_currency(total_amount)})\n"
        "Review & process them in the app."
    )


class NotificationService:
    def __init__(self, phones: list[str] | None = None):
        self._phones = settings.notification_phones if phones is None else phones

    def _send(self, message: str) -> None:
        logger.info("Notification: %s", message.replace("\n", " | "))
        if self._phones:
            broadcast(self._phones, message)

    def notify_summary(self, count: int, total_amount: Decimal) -> None:
        self._send(processed_message(count, total_amount))

    def notify_confirmation_needed(self, count: int, total_amount: Decimal) -> None:
        self._send(confirmation_message(count, total_amount))
