"""
Five-field cron expressions evaluated in an IANA timezone.

Format: minute hour day-of-month month day-of-week, for example
"*/5 * * * *" (every 5 minutes) or "0 9-17 * * 1-5" (hourly on weekdays).
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from jobengine.v1.core.exceptions import InvalidCronExpression, ValidationError

CRON_FIELDS = 5


def resolve_timezone(name: str) -> ZoneInfo:
    """Look up an IANA timezone, raising ValidationError for unknown names."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        raise ValidationError(f"Unknown timezone: {name}", {"timezone": name}) from None


@dataclass(frozen=True)
class CronExpression:
    expression: str

    @classmethod
    def parse(cls, text: str) -> "CronExpression":
        """Validate and normalize a cron expression."""
        if not isinstance(text, str):
            raise InvalidCronExpression(
                "Cron expression must be a string", {"cron_expression": repr(text)}
            )

        fields = text.split()
        if len(fields) != CRON_FIELDS:
            raise InvalidCronExpression(
                "Invalid cron expression. Format: minute hour day month dayOfWeek",
                {"cron_expression": text},
            )

        normalized = " ".join(fields)
        if not croniter.is_valid(normalized):
            raise InvalidCronExpression(
                f"Invalid cron expression: {text}", {"cron_expression": text}
            )
        return cls(normalized)

    def next_after(self, moment: datetime, timezone: ZoneInfo | str = "UTC") -> datetime:
        """Next fire time strictly after `moment`, returned in UTC."""
        zone = resolve_timezone(timezone) if isinstance(timezone, str) else timezone
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)

        local_after = moment.astimezone(zone)
        nxt = croniter(self.expression, local_after).get_next(datetime)
        if nxt.tzinfo is None:
            nxt = nxt.replace(tzinfo=zone)
        return nxt.astimezone(UTC)

    def __str__(self) -> str:
        return self.expression


class CronPatterns:
    """Common cron expressions."""

    EVERY_MINUTE = "* * * * *"
    EVERY_5_MINUTES = "*/5 * * * *"
    EVERY_15_MINUTES = "*/15 * * * *"
    EVERY_30_MINUTES = "*/30 * * * *"
    EVERY_HOUR = "0 * * * *"
    EVERY_2_HOURS = "0 */2 * * *"
    EVERY_6_HOURS = "0 */6 * * *"
    DAILY = "0 0 * * *"
    DAILY_3AM = "0 3 * * *"
    WEEKLY = "0 0 * * 0"
    MONTHLY = "0 0 1 * *"
    BUSINESS_HOURS = "0 9-17 * * 1-5"
    WEEKDAYS_9AM = "0 9 * * 1-5"
