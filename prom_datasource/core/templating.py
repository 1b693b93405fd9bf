"""
Substitution of Grafana's built-in interval and range variables in PromQL expressions.
"""
import logging
import math
import re
from datetime import timedelta
from typing import Optional

from .step import DAY, INTERVAL_VARIABLES, VAR_RATE_INTERVAL, YEAR, StepDefaults, parse_interval
from ..exceptions import QueryBuildError

logger = logging.getLogger(__name__)

MILLISECOND = timedelta(milliseconds=1)

# Longer names come first so that $__interval_ms is never read as $__interval
_VARIABLE_NAMES = 'interval_ms|interval|range_ms|range_s|range|rate_interval'
_VARIABLE_RE = re.compile(r'\$(?:\{__(' + _VARIABLE_NAMES + r')\}|__(' + _VARIABLE_NAMES + r'))')

_FORMAT_UNITS = (
    (YEAR, 'y'),
    (DAY, 'd'),
    (timedelta(hours=1), 'h'),
    (timedelta(minutes=1), 'm'),
    (timedelta(seconds=1), 's'),
)


def format_duration(duration: timedelta) -> str:
    """
    Format a duration with the largest unit that divides it evenly,
    e.g. 90s -> "90s", 2h -> "2h". Anything below a millisecond becomes "1ms".
    """
    total_ms = duration // MILLISECOND
    if total_ms <= 0:
        return '1ms'
    for unit, suffix in _FORMAT_UNITS:
        unit_ms = unit // MILLISECOND
        if total_ms % unit_ms == 0:
            return f"{total_ms // unit_ms}{suffix}"
    return f"{total_ms}ms"


def calculate_rate_interval(interval: timedelta, scrape_interval: timedelta) -> timedelta:
    """A rate window must cover at least four scrapes and one full step plus a scrape"""
    return max(interval + scrape_interval, 4 * scrape_interval)


class TemplateExpander:
    """Replaces $__interval, $__interval_ms, $__range, $__range_s, $__range_ms and $__rate_interval"""

    def __init__(self, defaults: Optional[StepDefaults] = None):
        self.defaults = defaults or StepDefaults()

    def rate_interval(self, step: timedelta, rate_interval_hint: str = '') -> timedelta:
        # A query whose own interval is $__rate_interval can't derive from itself
        if rate_interval_hint == VAR_RATE_INTERVAL:
            return step
        if not rate_interval_hint or rate_interval_hint == '0s' or rate_interval_hint in INTERVAL_VARIABLES:
            scrape_interval = self.defaults.rate_scrape_interval
        else:
            scrape_interval = parse_interval(rate_interval_hint)
        return calculate_rate_interval(step, scrape_interval)

    def expand(self, expr: str, step: timedelta, range_duration: timedelta, rate_interval_hint: str = '') -> str:
        """
        Expand the built-in variables of an expression.

        Args:
            expr: Raw PromQL expression
            step: Resolved step of the query
            range_duration: Length of the query time range
            rate_interval_hint: Interval hint the scrape interval is read from

        Returns:
            The expression with all variables replaced

        Raises:
            ParseError: If the rate interval hint is malformed
            QueryBuildError: If the expanded expression is blank
        """
        range_ms = range_duration // MILLISECOND
        range_s = int(math.floor(range_ms / 1000.0 + 0.5))
        values = {}

        def substitute(match):
            name = match.group(1) or match.group(2)
            if name not in values:
                if name == 'interval':
                    values[name] = format_duration(step)
                elif name == 'interval_ms':
                    values[name] = str(step // MILLISECOND)
                elif name == 'range_ms':
                    values[name] = str(range_ms)
                elif name == 'range_s':
                    values[name] = str(range_s)
                elif name == 'range':
                    values[name] = f"{range_s}s"
                else:
                    values[name] = format_duration(self.rate_interval(step, rate_interval_hint))
            return values[name]

        expanded = _VARIABLE_RE.sub(substitute, expr or '')
        if not expanded.strip():
            raise QueryBuildError("expression can't be blank")
        if expanded != expr:
            logger.debug(f"Expanded expression {expr!r} -> {expanded!r}")
        return expanded
