from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional, Union

from errors import InvalidInput

ALL_TIME = "All Time"

DateLike = Union[date, str, None]


@dataclass(frozen=True)
class Period:
    """Inclusive date window; either bound may be open."""

    start: Optional[date] = None
    end: Optional[date] = None

    @property
    def is_bounded(self) -> bool:
        return self.start is not None and self.end is not None

    def datetime_bounds(self) -> tuple[Optional[datetime], Optional[datetime]]:
        """Half-open ``[start 00:00, end + 1 day)`` bounds for timestamp columns."""
        lower = datetime.combine(self.start, time.min) if self.start else None
        upper = (
            datetime.combine(self.end + timedelta(days=1), time.min)
            if self.end
            else None
        )
        return lower, upper

    def describe(self) -> dict[str, str]:
        return {
            "startDate": self.start.isoformat() if self.start else ALL_TIME,
            "endDate": self.end.isoformat() if self.end else ALL_TIME,
        }


def _parse(value: DateLike, label: str) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise InvalidInput(f"Invalid {label}. Use YYYY-MM-DD.") from exc


def resolve_period(
    start: DateLike, end: DateLike, *, require_bounds: bool = False
) -> Period:
    start_date = _parse(start, "startDate")
    end_date = _parse(end, "endDate")
    if require_bounds and (start_date is None or end_date is None):
        raise InvalidInput(
            "startDate and endDate are required query parameters (YYYY-MM-DD)."
        )
    if start_date and end_date and start_date > end_date:
        raise InvalidInput("Start date must be before end date")
    return Period(start_date, end_date)
