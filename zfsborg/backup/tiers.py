"""
Tier classification for scheduled backups.

Every scheduled run takes exactly one snapshot per filesystem, and the tier
of that snapshot is decided from the calendar and from which tiers already
have a snapshot:

1. month - no monthly snapshot yet, or the first day of the month
2. week  - no weekly snapshot yet, or the configured weekly day
3. day   - everything else
"""

from datetime import date
from enum import Enum
from dataclasses import dataclass


WEEKDAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')

SUNDAY = WEEKDAYS.index('sunday')

LABEL_DATE_FORMAT = '%Y%m%d'


class Tier(Enum):
    """Snapshot cadence bucket, declared in order of precedence."""

    MONTH = 'month'
    WEEK = 'week'
    DAY = 'day'

    @property
    def prefix(self) -> str:
        """Label prefix shared by every snapshot of this tier."""
        return f"{self.value}-"


@dataclass(frozen=True)
class RetentionPolicy:
    """Keep-counts per tier."""

    month_keep: int
    week_keep: int
    day_keep: int

    def keep_for(self, tier: Tier) -> int:
        return {
            Tier.MONTH: self.month_keep,
            Tier.WEEK: self.week_keep,
            Tier.DAY: self.day_keep,
        }[tier]


@dataclass(frozen=True)
class TierDecision:
    """
    Outcome of classifying one filesystem on one day.

    force_month / force_week record that no snapshot of that tier existed
    yet. They belong to a single filesystem's run.
    """

    tier: Tier
    label: str
    force_month: bool = False
    force_week: bool = False

    @property
    def forced(self) -> bool:
        """True when the chosen tier had no snapshot yet."""
        if self.tier is Tier.MONTH:
            return self.force_month
        if self.tier is Tier.WEEK:
            return self.force_week
        return False


def make_label(tier: Tier, today: date) -> str:
    """
    Build the snapshot/archive label for a tier and day.

    Example: make_label(Tier.MONTH, date(2024, 6, 1)) -> 'month-20240601'
    """
    return f"{tier.prefix}{today.strftime(LABEL_DATE_FORMAT)}"


def parse_weekday(value) -> int:
    """
    Convert a weekday name ('sunday', 'Sun') or number (0=Monday) to the
    number used by date.weekday().

    Raises:
        ValueError: If the value is not a weekday
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid weekday: {value!r}")

    if isinstance(value, int):
        if 0 <= value <= 6:
            return value
        raise ValueError(f"Weekday number must be 0-6, got {value}")

    if isinstance(value, str):
        name = value.strip().lower()
        for number, day_name in enumerate(WEEKDAYS):
            if name in (day_name, day_name[:3]):
                return number

    raise ValueError(f"Invalid weekday: {value!r}")


def classify(
    today: date,
    has_month: bool,
    has_week: bool,
    weekly_day: int = SUNDAY
) -> TierDecision:
    """
    Decide which tier to snapshot today.

    Args:
        today: Current date
        has_month: A monthly snapshot already exists for the filesystem
        has_week: A weekly snapshot already exists for the filesystem
        weekly_day: Weekday (0=Monday) on which weekly snapshots are taken

    Returns:
        TierDecision with the tier, its label and the force flags
    """
    force_month = not has_month
    force_week = not has_week

    if force_month or today.day == 1:
        tier = Tier.MONTH
    elif force_week or today.weekday() == weekly_day:
        tier = Tier.WEEK
    else:
        tier = Tier.DAY

    return TierDecision(
        tier=tier,
        label=make_label(tier, today),
        force_month=force_month,
        force_week=force_week
    )
