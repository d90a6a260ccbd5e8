"""
Due-date arithmetic for recurring definitions.

Each frequency moves an anchor timestamp by exactly one period.  Calendar
month and year steps use ``dateutil.relativedelta``, which clamps to the
last valid day of the target month:

    2024-01-31 + 1 month  → 2024-02-29
    2024-02-29 - 1 month  → 2024-01-29   (not back to the 31st)
    2024-02-29 + 1 year   → 2025-02-28

so ``retreat(advance(d))`` is NOT an identity around month-length boundaries.
"""
import enum
import logging
from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)


class Frequency(str, enum.Enum):
    daily = "daily"
    weekly = "weekly"
    biweekly = "bi-weekly"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"


_PERIODS: dict[Frequency, timedelta | relativedelta] = {
    Frequency.daily:     timedelta(days=1),
    Frequency.weekly:    timedelta(days=7),
    Frequency.biweekly:  timedelta(days=14),
    Frequency.monthly:   relativedelta(months=1),
    Frequency.quarterly: relativedelta(months=3),
    Frequency.yearly:    relativedelta(years=1),
}

# Unrecognized frequencies are treated as monthly instead of being rejected
FALLBACK_FREQUENCY = Frequency.monthly


def period_for(frequency: str | Frequency | None) -> timedelta | relativedelta:
    """Return the one-period offset for ``frequency``."""
    try:
        return _PERIODS[Frequency(frequency)]
    except ValueError:
        logger.debug("Unknown frequency %r — using %s", frequency, FALLBACK_FREQUENCY.value)
        return _PERIODS[FALLBACK_FREQUENCY]


def advance(frequency: str | Frequency | None, anchor: datetime) -> datetime:
    """Next occurrence after ``anchor``."""
    return anchor + period_for(frequency)


def retreat(frequency: str | Frequency | None, anchor: datetime) -> datetime:
    """Previous occurrence before ``anchor`` (used by undo)."""
    return anchor - period_for(frequency)
