"""
Availability resolution

Works out which doctors are working on a given date by layering three
override sources, most specific last:
- Weekly availability (standing schedule per weekday)
- Recurring rules (weekday + occurrence(s) of that weekday within the month)
- Special schedules (one-off per-date exceptions, scoped to one clinic)

Every function here is pure: callers fetch the rows (ORM objects or anything
exposing the same attributes) and pass them in.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d"

Window = Tuple[Optional[time], Optional[time]]


class InvalidDate(ValueError):
    """The supplied date (or date range) cannot be used."""


class InvalidDateRange(InvalidDate):
    pass


class UnknownEntity(LookupError):
    """A referenced doctor or clinic does not exist."""

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


@dataclass(frozen=True)
class ResolvedWorkingDay:
    date: date
    doctor_id: int
    clinic_id: int
    start_time: Optional[time]
    end_time: Optional[time]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.strftime(DATE_FORMAT),
            "doctor_id": self.doctor_id,
            "clinic_id": self.clinic_id,
            "start_time": _format_time(self.start_time),
            "end_time": _format_time(self.end_time),
        }


def _format_time(value: Optional[time]) -> Optional[str]:
    return value.strftime("%H:%M") if value is not None else None


def parse_date(value: Union[date, str]) -> date:
    """Accept a date, a datetime or a YYYY-MM-DD string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.strptime(value.strip(), DATE_FORMAT).date()
        except ValueError:
            raise InvalidDate(f"Invalid date '{value}'. Use YYYY-MM-DD.") from None
    raise InvalidDate(f"Cannot interpret {type(value).__name__} as a date")


def day_of_week(target_date: date) -> int:
    """Weekday number as stored in schedule rows: Sunday=0 ... Saturday=6."""
    return (target_date.weekday() + 1) % 7


def week_of_month(target_date: date) -> int:
    """Which occurrence (1-5) of its weekday the date is within its month."""
    return (target_date.day - 1) // 7 + 1


def iter_dates(start_date: date, end_date: date) -> Iterator[date]:
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


def _start_sort_key(row: Any) -> Tuple[time, int]:
    return (row.start_time, getattr(row, "id", None) or 0)


def _weekly_windows(rows: Iterable[Any], clinic_id: int, dow: int) -> Dict[int, Window]:
    # Overlapping weekly rows are tolerated; the earliest-starting one wins
    windows: Dict[int, Window] = {}
    matching = [r for r in rows if r.clinic_id == clinic_id and r.day_of_week == dow]
    for row in sorted(matching, key=_start_sort_key):
        windows.setdefault(row.doctor_id, (row.start_time, row.end_time))
    return windows


def _rule_windows(rows: Iterable[Any], clinic_id: int, dow: int, wom: int) -> Dict[int, Window]:
    windows: Dict[int, Window] = {}
    matching = [
        r
        for r in rows
        if r.clinic_id == clinic_id and r.day_of_week == dow and wom in (r.weeks_of_month or ())
    ]
    for row in sorted(matching, key=_start_sort_key):
        windows.setdefault(row.doctor_id, (row.start_time, row.end_time))
    return windows


def _written_at(row: Any) -> Optional[datetime]:
    return getattr(row, "updated_at", None) or getattr(row, "created_at", None)


def _latest_written(rows: Sequence[Any]) -> Any:
    def key(row):
        written = _written_at(row)
        return (written is not None, written or datetime.min, getattr(row, "id", None) or 0)

    return max(rows, key=key)


def _specials_by_doctor(rows: Iterable[Any], clinic_id: int, target_date: date) -> Dict[int, Any]:
    """Each doctor's governing special schedule for the date, kept only if it belongs to ``clinic_id``."""
    grouped: Dict[int, List[Any]] = {}
    for row in rows:
        if parse_date(row.schedule_date) == target_date:
            grouped.setdefault(row.doctor_id, []).append(row)

    chosen: Dict[int, Any] = {}
    for doctor_id, candidates in grouped.items():
        winner = candidates[0]
        if len(candidates) > 1:
            winner = _latest_written(candidates)
            logger.warning(
                "Found %d special schedules for doctor %s on %s; using the most recent (id=%s, clinic %s)",
                len(candidates),
                doctor_id,
                target_date,
                getattr(winner, "id", None),
                winner.clinic_id,
            )
        if winner.clinic_id == clinic_id:
            chosen[doctor_id] = winner
    return chosen


def _window_sort_key(item: ResolvedWorkingDay) -> Tuple[bool, time, int, int]:
    return (item.start_time is None, item.start_time or time.min, item.doctor_id, item.clinic_id)


def resolve_day(
    clinic_id: int,
    target_date: Union[date, str],
    weekly_rows: Iterable[Any],
    rule_rows: Iterable[Any],
    special_rows: Iterable[Any],
) -> List[ResolvedWorkingDay]:
    """
    Resolve who works at a clinic on one date.

    Args:
        clinic_id: clinic to resolve
        target_date: date object or YYYY-MM-DD string
        weekly_rows: WeeklyAvailability-like rows (may include other clinics/days)
        rule_rows: RecurringRule-like rows
        special_rows: SpecialSchedule-like rows

    Returns:
        One ResolvedWorkingDay per working doctor, ordered by start time.

    Algorithm:
        1. Weekly rows for the weekday seed a doctor_id -> window mapping
        2. Recurring rules matching the weekday occurrence overwrite it
        3. The doctor's special schedule for the date (the most recent one
           when there are several), if it is for this clinic, deletes the
           doctor (is_available = false) or adds/replaces its window
    """
    target_date = parse_date(target_date)
    dow = day_of_week(target_date)
    wom = week_of_month(target_date)

    windows: Dict[int, Window] = {}
    windows.update(_weekly_windows(weekly_rows, clinic_id, dow))
    windows.update(_rule_windows(rule_rows, clinic_id, dow, wom))

    for doctor_id, special in _specials_by_doctor(special_rows, clinic_id, target_date).items():
        if not special.is_available:
            windows.pop(doctor_id, None)
        elif special.start_time is not None:
            windows[doctor_id] = (special.start_time, special.end_time)
        else:
            # Available without hours: keep the regular window if there is one
            windows.setdefault(doctor_id, (None, None))

    resolved = [
        ResolvedWorkingDay(
            date=target_date,
            doctor_id=doctor_id,
            clinic_id=clinic_id,
            start_time=start,
            end_time=end,
        )
        for doctor_id, (start, end) in windows.items()
    ]
    resolved.sort(key=_window_sort_key)
    return resolved


def resolve_range(
    doctor_id: int,
    start_date: Union[date, str],
    end_date: Union[date, str],
    weekly_rows: Iterable[Any],
    rule_rows: Iterable[Any],
    special_rows: Iterable[Any],
    clinic_ids: Optional[Iterable[int]] = None,
    max_days: Optional[int] = None,
) -> List[ResolvedWorkingDay]:
    """
    Resolve a doctor's working days over [start_date, end_date].

    Only clinics in ``clinic_ids`` are considered (defaults to every clinic
    the rows mention). When the doctor works at several clinics the same
    day, the earliest-starting window is reported, so there is at most one
    entry per date.
    """
    start_date = parse_date(start_date)
    end_date = parse_date(end_date)
    if end_date < start_date:
        raise InvalidDateRange(f"End date {end_date} is before start date {start_date}")
    span = (end_date - start_date).days + 1
    if max_days is not None and span > max_days:
        raise InvalidDateRange(f"Date range of {span} days exceeds the maximum of {max_days} days")

    weekly = [r for r in weekly_rows if r.doctor_id == doctor_id]
    rules = [r for r in rule_rows if r.doctor_id == doctor_id]
    specials = [r for r in special_rows if r.doctor_id == doctor_id]

    if clinic_ids is None:
        clinics = sorted({r.clinic_id for r in (*weekly, *rules, *specials)})
    else:
        clinics = sorted(set(clinic_ids))

    working_days: List[ResolvedWorkingDay] = []
    for current in iter_dates(start_date, end_date):
        candidates = []
        for clinic_id in clinics:
            candidates.extend(resolve_day(clinic_id, current, weekly, rules, specials))
        if candidates:
            working_days.append(min(candidates, key=_window_sort_key))
    return working_days
