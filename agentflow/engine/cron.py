"""Five-field cron validation and timezone-aware fire time computation.

Expressions are matched against local wall-clock time in the schedule's
timezone. Around daylight-saving transitions:

- a wall-clock time that occurs twice (fall back) fires once, at its first
  occurrence;
- a wall-clock time that does not exist (spring forward) fires at the same
  distance past the transition, e.g. 02:30 becomes 03:30 when 02:00 jumps to
  03:00.
"""
from datetime import datetime, timedelta, timezone
from typing import Iterator, List, Optional

from croniter import croniter

from agentflow.core.clock import ensure_utc, get_zone

CRON_FIELD_COUNT = 5

# Upper bound on a single UTC offset change (DST shifts are at most 2h in tzdata)
MAX_OFFSET_SHIFT = timedelta(hours=3)


def validate(expression: str) -> bool:
    """True iff ``expression`` is a well-formed 5-field cron expression.

    Second-level (6 field) and year (7 field) forms that croniter would
    otherwise accept are rejected, as are ``@daily`` style aliases.
    """
    if not isinstance(expression, str):
        return False
    if len(expression.split()) != CRON_FIELD_COUNT:
        return False
    return croniter.is_valid(expression)


def _local_to_utc(local: datetime, zone) -> datetime:
    # fold=0 picks the first of a repeated time and the pre-transition offset for a skipped one
    return local.replace(tzinfo=zone, fold=0).astimezone(timezone.utc)


def _offset_changes(zone, a: datetime, b: datetime) -> bool:
    return a.astimezone(zone).utcoffset() != b.astimezone(zone).utcoffset()


def next_fire_time(
    expression: str,
    tz: str = "UTC",
    start: Optional[datetime] = None,
    inclusive: bool = False,
) -> datetime:
    """Next instant strictly after ``start`` matching ``expression`` in ``tz``.

    With ``inclusive=True`` a ``start`` that is itself a scheduled instant
    (whole minute, matching) is returned as-is; callers use that for an
    instant that has not been dispatched yet. The result is always UTC.
    """
    zone = get_zone(tz)
    start = ensure_utc(start or datetime.now(timezone.utc))
    local_start = start.astimezone(zone).replace(tzinfo=None)

    # Near a transition, local order and UTC order differ, so look at candidates slightly before start
    lookback = timedelta(0)
    if _offset_changes(zone, start - MAX_OFFSET_SHIFT, start + MAX_OFFSET_SHIFT):
        lookback = MAX_OFFSET_SHIFT

    # croniter yields strictly after its base, back off a second so start itself is a candidate
    itr = croniter(expression, local_start - lookback - timedelta(seconds=1))
    best: Optional[datetime] = None
    while True:
        candidate = _local_to_utc(itr.get_next(datetime), zone)
        if candidate > start or (inclusive and candidate == start):
            if best is None or candidate < best:
                best = candidate
        if best is None:
            continue
        horizon = best
        if _offset_changes(zone, best, best + MAX_OFFSET_SHIFT):
            horizon = best + 2 * MAX_OFFSET_SHIFT
        if candidate >= horizon:
            return best


def iter_fire_times(expression: str, tz: str = "UTC", start: Optional[datetime] = None) -> Iterator[datetime]:
    current = start
    while True:
        current = next_fire_time(expression, tz, current)
        yield current


def upcoming(expression: str, tz: str = "UTC", start: Optional[datetime] = None, count: int = 5) -> List[datetime]:
    result = []
    for fire_at in iter_fire_times(expression, tz, start):
        if len(result) >= count:
            break
        result.append(fire_at)
    return result
