"""
Step resolution for panel queries.

A query carries up to three interval hints (interval, intervalMs and the
datasource-level timeInterval). They are reduced to a single minimum interval
and then, for range queries, to a step that sits on a fixed staircase of
human-friendly durations.
"""
import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional

from .models import Query
from .settings import DEFAULT_RATE_SCRAPE_INTERVAL, DEFAULT_RESOLUTION, DEFAULT_SCRAPE_INTERVAL, \
    INSTANT_QUERY_DEFAULT_STEP
from ..exceptions import ParseError, ValidationError

logger = logging.getLogger(__name__)

VAR_INTERVAL = '$__interval'
VAR_INTERVAL_MS = '$__interval_ms'
VAR_RATE_INTERVAL = '$__rate_interval'
INTERVAL_VARIABLES = (VAR_INTERVAL, VAR_INTERVAL_MS, VAR_RATE_INTERVAL)

DAY = timedelta(days=1)
WEEK = timedelta(days=7)
MONTH = timedelta(days=30)
YEAR = timedelta(days=365)

_PURE_NUMBER_RE = re.compile(r'^\d+$')
_SINGLE_UNIT_RE = re.compile(r'^(\d+)([dwMy])$')
_DURATION_PART_RE = re.compile(r'(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)')

_SINGLE_UNITS = {'d': DAY, 'w': WEEK, 'M': MONTH, 'y': YEAR}
_NANOS_PER_UNIT = {
    'ns': 1,
    'us': 1000,
    'µs': 1000,
    'μs': 1000,
    'ms': 1000 ** 2,
    's': 1000 ** 3,
    'm': 60 * 1000 ** 3,
    'h': 3600 * 1000 ** 3,
}

# (upper bound in ms, inclusive) -> step in ms. Bounds sit halfway between
# neighbouring steps; anything at or above the last bound becomes 1y.
_ROUNDING_STAIRCASE = (
    (10, 1),
    (15, 10),
    (35, 20),
    (75, 50),
    (150, 100),
    (350, 200),
    (750, 500),
    (1500, 1000),
    (3500, 2000),
    (7500, 5000),
    (12500, 10000),
    (17500, 15000),
    (25000, 20000),
    (45000, 30000),
    (90000, 60000),
    (210000, 120000),
    (450000, 300000),
    (750000, 600000),
    (1050000, 900000),
    (1500000, 1200000),
    (2700000, 1800000),
    (5400000, 3600000),
    (9000000, 7200000),
    (16200000, 10800000),
    (32400000, 21600000),
    (86400000, 43200000),
    (172800000, 86400000),
    (604800000, 86400000),
    (1814400000, 604800000),
)
_MONTH_STEP_BOUND_MS = 3628800000
_MONTH_STEP_MS = 2592000000
_YEAR_STEP_MS = 31536000000


def parse_duration(value: str) -> timedelta:
    """
    Parse a duration string.

    Accepts single-unit day/week/month/year forms ("2d", "1w", "1M", "1y") and
    compound forms built from ns, us, ms, s, m and h ("1h30m", "1.5s").

    Raises:
        ParseError: If the string is not a valid duration
    """
    if not isinstance(value, str):
        raise ParseError(f"invalid duration {value!r}")

    match = _SINGLE_UNIT_RE.match(value)
    if match:
        try:
            return int(match.group(1)) * _SINGLE_UNITS[match.group(2)]
        except OverflowError as e:
            raise ParseError(f"invalid duration {value!r}: out of range") from e

    text = value
    sign = 1
    if text[:1] in ('+', '-'):
        sign = -1 if text[0] == '-' else 1
        text = text[1:]
    if text == '0':
        return timedelta(0)
    if not text:
        raise ParseError(f"invalid duration {value!r}")

    total_nanos = Decimal(0)
    pos = 0
    while pos < len(text):
        part = _DURATION_PART_RE.match(text, pos)
        if not part:
            raise ParseError(f"invalid duration {value!r}")
        try:
            total_nanos += Decimal(part.group(1)) * _NANOS_PER_UNIT[part.group(2)]
        except InvalidOperation as e:
            raise ParseError(f"invalid duration {value!r}") from e
        pos = part.end()

    try:
        return sign * timedelta(microseconds=int(total_nanos / 1000))
    except OverflowError as e:
        raise ParseError(f"invalid duration {value!r}: out of range") from e


def parse_interval(interval: str) -> timedelta:
    """
    Parse an interval hint. A bare integer is read as whole seconds and one
    leading "<" or ">" comparison marker is ignored.

    Raises:
        ParseError: If the interval is malformed or negative
    """
    formatted = interval.replace('<', '', 1).replace('>', '', 1)
    if _PURE_NUMBER_RE.match(formatted):
        formatted += 's'
    parsed = parse_duration(formatted)
    if parsed < timedelta(0):
        raise ParseError(f"interval can't be negative: {interval!r}")
    return parsed


def round_interval(interval: timedelta) -> timedelta:
    """Round an interval onto the staircase of human-friendly steps."""
    interval_ms = interval / timedelta(milliseconds=1)
    for bound_ms, step_ms in _ROUNDING_STAIRCASE:
        if interval_ms <= bound_ms:
            return timedelta(milliseconds=step_ms)
    if interval_ms < _MONTH_STEP_BOUND_MS:
        return timedelta(milliseconds=_MONTH_STEP_MS)
    return timedelta(milliseconds=_YEAR_STEP_MS)


@dataclass(frozen=True)
class StepDefaults:
    """Fallback values used while resolving intervals"""
    scrape_interval: timedelta = DEFAULT_SCRAPE_INTERVAL
    resolution: int = DEFAULT_RESOLUTION
    instant_step: timedelta = INSTANT_QUERY_DEFAULT_STEP
    rate_scrape_interval: timedelta = DEFAULT_RATE_SCRAPE_INTERVAL


class IntervalResolver:
    """
    Reduces the interval hints of a query to the step sent to the datasource.

    Precedence of the minimum interval, first non-empty wins:
        1. interval "0s" (or an interval template variable) counts as unset
        2. intervalMs, when the interval string is unset
        3. the interval string
        4. the datasource-level timeInterval
        5. the defaults: scrape interval for range queries, instant step
           for instant queries
    """

    def __init__(self, defaults: Optional[StepDefaults] = None):
        self.defaults = defaults or StepDefaults()

    def min_interval(self, query: Query, datasource_default: Optional[timedelta] = None) -> timedelta:
        if datasource_default is None:
            datasource_default = self.defaults.scrape_interval

        interval = query.interval
        if interval == '0s' or interval in INTERVAL_VARIABLES:
            interval = ''

        if not interval and query.interval_ms:
            return timedelta(milliseconds=query.interval_ms)
        if not interval and query.time_interval:
            interval = query.time_interval

        if interval:
            return parse_interval(interval)

        if query.instant:
            return self.defaults.instant_step
        return datasource_default

    def calculate_step(self, query: Query, min_interval: timedelta) -> timedelta:
        """Calculate the step from the time range, max data points and minimum interval"""
        if query.instant:
            if min_interval:
                return min_interval
            return self.defaults.instant_step

        if query.time_range is None:
            raise ValidationError(f"query {query.ref_id!r} has no time range")

        resolution = query.max_data_points or self.defaults.resolution
        calculated = query.time_range.duration / resolution
        if calculated < min_interval:
            return round_interval(min_interval)
        return round_interval(calculated)

    def resolve(self, query: Query, datasource_default: Optional[timedelta] = None) -> timedelta:
        """
        Resolve the step of a query.

        Args:
            query: Panel query carrying the interval hints
            datasource_default: Minimum interval used when no hint is set

        Returns:
            Step as a timedelta

        Raises:
            ParseError: If one of the interval hints is malformed
        """
        min_interval = self.min_interval(query, datasource_default)
        step = self.calculate_step(query, min_interval)
        logger.debug(f"Query {query.ref_id}: min interval {min_interval}, step {step}")
        return step
