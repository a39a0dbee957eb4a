# Recurrence rule handling
# Rule text parsing, validation and window expansion on top of dateutil

import logging
import re
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Iterable, Optional, Union

from dateutil.rrule import rrulestr

from .errors import RecurrenceParseError
from .utils import coerce_date, end_of_day, ensure_utc

logger = logging.getLogger(__name__)


FREQUENCIES = ("DAILY", "WEEKLY", "MONTHLY", "YEARLY")
WEEKDAYS = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")
RULE_KEYS = ("FREQ", "INTERVAL", "COUNT", "UNTIL", "BYDAY")

DEFAULT_MAX_INSTANCES = 2500
MAX_SCANNED_CANDIDATES = 100_000

# Largest ordinal a BYDAY token can carry per frequency
BYDAY_ORDINAL_LIMITS = {"DAILY": 0, "WEEKLY": 0, "MONTHLY": 5, "YEARLY": 53}

_BYDAY_PATTERN = re.compile(r"^([+-]?[1-9][0-9]?)?(MO|TU|WE|TH|FR|SA|SU)$")
_ICAL_DATETIME = "%Y%m%dT%H%M%SZ"


# ============================================================================
# RULE VALUE OBJECT
# ============================================================================


@dataclass(frozen=True)
class RecurrenceRuleSpec:
    """
    A recurrence rule owned by an event.

    Mirrors the supported RRULE subset: FREQ, INTERVAL, COUNT, UNTIL, BYDAY.
    """

    frequency: str
    interval: int = 1
    count: Optional[int] = None
    until: Optional[datetime] = None
    by_day: Optional[tuple[str, ...]] = None

    def validate(self) -> "RecurrenceRuleSpec":
        """Raise RecurrenceParseError unless the rule is expandable."""
        text = self.to_rule_text()
        if self.frequency not in FREQUENCIES:
            raise RecurrenceParseError(
                f"unsupported frequency '{self.frequency}'", text
            )
        if self.interval is None or self.interval < 1:
            raise RecurrenceParseError("INTERVAL must be a positive integer", text)
        if self.count is not None and self.count < 1:
            raise RecurrenceParseError("COUNT must be a positive integer", text)
        if self.count is not None and self.until is not None:
            raise RecurrenceParseError("COUNT and UNTIL are mutually exclusive", text)
        limit = BYDAY_ORDINAL_LIMITS[self.frequency]
        for token in self.by_day or ():
            match = _BYDAY_PATTERN.match(token)
            if not match:
                raise RecurrenceParseError(f"invalid BYDAY value '{token}'", text)
            if match.group(1) and abs(int(match.group(1))) > limit:
                raise RecurrenceParseError(
                    f"BYDAY ordinal in '{token}' is out of range for {self.frequency}",
                    text,
                )
        return self

    def to_rule_text(self) -> str:
        """Render as single-line rule text, e.g. FREQ=WEEKLY;BYDAY=MO."""
        parts = [f"FREQ={self.frequency}"]
        if self.interval is not None and self.interval != 1:
            parts.append(f"INTERVAL={self.interval}")
        if self.count is not None:
            parts.append(f"COUNT={self.count}")
        if self.until is not None:
            parts.append(f"UNTIL={ensure_utc(self.until).strftime(_ICAL_DATETIME)}")
        if self.by_day:
            parts.append("BYDAY=" + ",".join(self.by_day))
        return ";".join(parts)


RuleLike = Union[RecurrenceRuleSpec, str]


# ============================================================================
# PARSING
# ============================================================================


def _rule_lines(text: str) -> list[str]:
    return [line.strip() for line in text.strip().splitlines() if line.strip()]


def _parse_positive_int(values: dict[str, str], key: str, text: str) -> Optional[int]:
    if key not in values:
        return None
    try:
        number = int(values[key])
    except ValueError:
        raise RecurrenceParseError(f"{key} must be an integer", text)
    if number < 1:
        raise RecurrenceParseError(f"{key} must be a positive integer", text)
    return number


def _parse_until(value: str, text: str) -> datetime:
    """UNTIL as UTC datetime; a bare date means the end of that day."""
    for fmt in (_ICAL_DATETIME, "%Y%m%dT%H%M%S"):
        try:
            return ensure_utc(datetime.strptime(value, fmt))
        except ValueError:
            continue
    try:
        return end_of_day(datetime.strptime(value, "%Y%m%d").date())
    except ValueError:
        raise RecurrenceParseError(f"invalid UNTIL value '{value}'", text)


def _parse_by_day(value: str, text: str) -> tuple[str, ...]:
    tokens: list[str] = []
    for raw in value.split(","):
        token = raw.strip().upper()
        if not _BYDAY_PATTERN.match(token):
            raise RecurrenceParseError(f"invalid BYDAY value '{raw}'", text)
        if token not in tokens:
            tokens.append(token)
    return tuple(tokens)


def parse_rule_text(text: str) -> RecurrenceRuleSpec:
    """
    Parse rule text into a RecurrenceRuleSpec.

    Accepts an optional "RRULE:" prefix and an optional DTSTART line
    (the series start is the anchor, so DTSTART is not kept).

    Raises:
        RecurrenceParseError: On any malformed or unsupported component
    """
    if text is None or not str(text).strip():
        raise RecurrenceParseError("rule text is empty", text)

    body: Optional[str] = None
    for line in _rule_lines(text):
        upper = line.upper()
        if upper.startswith("DTSTART"):
            continue
        if upper.startswith("RRULE:"):
            line = line[6:]
        if body is not None:
            raise RecurrenceParseError("multiple rules are not supported", text)
        body = line

    if not body:
        raise RecurrenceParseError("no RRULE component found", text)

    values: dict[str, str] = {}
    for part in body.split(";"):
        if not part.strip():
            continue
        key, sep, value = part.partition("=")
        key = key.strip().upper()
        value = value.strip()
        if not sep or not value:
            raise RecurrenceParseError(f"malformed component '{part}'", text)
        if key not in RULE_KEYS:
            raise RecurrenceParseError(f"unsupported component '{key}'", text)
        if key in values:
            raise RecurrenceParseError(f"duplicate component '{key}'", text)
        values[key] = value

    frequency = values.get("FREQ", "").upper()
    if not frequency:
        raise RecurrenceParseError("FREQ is required", text)

    spec = RecurrenceRuleSpec(
        frequency=frequency,
        interval=_parse_positive_int(values, "INTERVAL", text) or 1,
        count=_parse_positive_int(values, "COUNT", text),
        until=_parse_until(values["UNTIL"], text) if "UNTIL" in values else None,
        by_day=_parse_by_day(values["BYDAY"], text) if "BYDAY" in values else None,
    )
    return spec.validate()


def coerce_rule(rule: RuleLike) -> RecurrenceRuleSpec:
    """Accept either rule text or a spec and return a validated spec."""
    if isinstance(rule, RecurrenceRuleSpec):
        return rule.validate()
    return parse_rule_text(rule)


def build_rrule(rule: RuleLike, anchor: datetime):
    """
    Build a dateutil rule anchored at the series start.

    Rule text without its own DTSTART gets one injected from `anchor`
    before parsing. The RRULE line is re-rendered from the parsed rule so
    UNTIL is always a UTC timestamp.

    Raises:
        RecurrenceParseError: If the rule cannot be parsed
    """
    if isinstance(rule, RecurrenceRuleSpec):
        spec = rule.validate()
        lines = []
    else:
        spec = parse_rule_text(rule)
        lines = [
            line for line in _rule_lines(rule) if line.upper().startswith("DTSTART")
        ]

    if not lines:
        lines.append("DTSTART:" + ensure_utc(anchor).strftime(_ICAL_DATETIME))
    lines.append("RRULE:" + spec.to_rule_text())

    text = "\n".join(lines)
    try:
        return rrulestr(text)
    except (ValueError, TypeError, OverflowError) as exc:
        raise RecurrenceParseError(str(exc), text) from exc


# ============================================================================
# EXPANSION
# ============================================================================


def expand_occurrences(
    rule: RuleLike,
    anchor: datetime,
    range_start: datetime,
    range_end: datetime,
    excluded: Iterable[Union[date, datetime, str]] = (),
    *,
    strict: bool = False,
    max_instances: int = DEFAULT_MAX_INSTANCES,
    max_scanned: int = MAX_SCANNED_CANDIDATES,
) -> list[datetime]:
    """
    Expand a recurrence rule into occurrence start times within a window.

    Args:
        rule: Rule text or RecurrenceRuleSpec
        anchor: Series start; also the DTSTART injected into bare rule text
        range_start: Inclusive lower bound
        range_end: Inclusive upper bound
        excluded: Dates whose occurrences are suppressed
        strict: Raise RecurrenceParseError instead of returning []
        max_instances: Cap on returned occurrences
        max_scanned: Cap on rule candidates examined, counted from the anchor

    Returns:
        Ordered, de-duplicated aware-UTC datetimes
    """
    range_start = ensure_utc(range_start)
    range_end = ensure_utc(range_end)
    if range_end < range_start:
        return []

    excluded_dates = {coerce_date(value) for value in excluded}

    instances: list[datetime] = []
    seen: set[datetime] = set()
    try:
        for scanned, dt in enumerate(build_rrule(rule, anchor), start=1):
            dt = ensure_utc(dt)
            if dt > range_end:
                break
            if scanned > max_scanned:
                logger.warning(
                    "Stopped expanding %r after %d candidates", rule, scanned - 1
                )
                break
            if dt < range_start or dt in seen:
                continue
            seen.add(dt)
            if dt.date() in excluded_dates:
                continue
            instances.append(dt)
            if len(instances) >= max_instances:
                break
    except (RecurrenceParseError, TypeError) as exc:
        if strict:
            if isinstance(exc, RecurrenceParseError):
                raise
            raise RecurrenceParseError(str(exc)) from exc
        logger.warning("Skipping unexpandable recurrence rule %r: %s", rule, exc)
        return []

    return instances


def truncate_rule(
    rule: RecurrenceRuleSpec,
    anchor: datetime,
    last_date: date,
) -> RecurrenceRuleSpec:
    """
    Bound a rule so that no occurrence falls after `last_date`.

    An existing earlier UNTIL is kept. COUNT is folded into UNTIL, since
    the two cannot coexist.
    """
    boundary = end_of_day(last_date)
    if rule.until is not None and ensure_utc(rule.until) <= boundary:
        return replace(rule, count=None)

    if rule.count is not None:
        occurrences = list(build_rrule(rule, anchor))
        if occurrences and ensure_utc(occurrences[-1]) <= boundary:
            boundary = end_of_day(ensure_utc(occurrences[-1]).date())

    return replace(rule, until=boundary, count=None)
