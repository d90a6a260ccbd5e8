"""
WhatsApp delivery for recurring-processing alerts.

Posts to the whatsapp-bot side-car's ``/send`` endpoint, the same contract the
rest of the Fintrack stack uses.  A processing run calls ``broadcast`` once per
alert; delivery problems are logged and counted, never raised, so an outage
of the bot cannot fail or roll back a run.
"""

import logging

import requests

from fintrack.core.config import settings

logger = logging.getLogger(__name__)

_SEND_TIMEOUT_SECONDS = 10


def send_whatsapp(to: str, message: str) -> bool:
    """Deliver one alert to ``to`` (E.164, e.g. +12223334444). False when not delivered."""
    if not settings.whatsapp_enabled or not to or not message:
        return False
    try:
        resp = requests.post(
            f"{settings.whatsapp_bot_url}/send",
            json={"to": to, "message": message},
            timeout=_SEND_TIMEOUT_SECONDS,
        )
    except requests.RequestException as exc:
        logger.warning("WhatsApp alert to %s not sent: %s", to, exc)
        return False
    if resp.status_code != 200:
        logger.warning("WhatsApp /send returned %d: %s", resp.status_code, resp.text[:200])
        return False
    return True


def broadcast(recipients: list[str], message: str) -> int:
    """Send ``message`` once to each distinct recipient. Returns how many were delivered."""
    unique = list(dict.fromkeys(r.strip() for r in recipients if r and r.strip()))
    delivered = sum(send_whatsapp(to, message) for to in unique)
    if unique and delivered < len(unique):
        logger.warning("WhatsApp alert delivered to %d of %d recipients", delivered, len(unique))
    return delivered
