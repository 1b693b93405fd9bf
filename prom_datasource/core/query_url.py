"""
Request URL construction for instant and range queries.
"""
import logging
import math
import re
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .models import TimeRange
from .settings import INSTANT_QUERY_PATH, RANGE_QUERY_PATH
from .templating import format_duration
from ..exceptions import QueryBuildError

logger = logging.getLogger(__name__)

_INVALID_ESCAPE_RE = re.compile(r'%(?![0-9A-Fa-f]{2})')

ExtraParams = Union[None, str, Dict[str, Union[str, List[str]]], Iterable[Tuple[str, str]]]


def parse_query_params(raw: ExtraParams) -> List[Tuple[str, str]]:
    """
    Normalize extra query parameters into a list of (key, value) pairs.

    Accepts a URL-encoded string ("a=1&b=2"), a mapping (values may be lists)
    or an iterable of pairs.

    Raises:
        QueryBuildError: If the encoded string contains invalid escapes
    """
    if not raw:
        return []
    if isinstance(raw, str):
        if _INVALID_ESCAPE_RE.search(raw):
            raise QueryBuildError(f"failed to parse query params: invalid escape in {raw!r}")
        return parse_qsl(raw, keep_blank_values=True)
    if isinstance(raw, dict):
        pairs = []
        for key, value in raw.items():
            if isinstance(value, (list, tuple)):
                pairs.extend((key, str(v)) for v in value)
            else:
                pairs.append((key, str(value)))
        return pairs
    return [(str(key), str(value)) for key, value in raw]


def _unix_seconds(value: datetime) -> int:
    return int(math.floor(value.timestamp()))


def _join_path(base_path: str, api_path: str) -> str:
    parts = [p for p in (base_path.strip('/'), api_path.strip('/')) if p]
    return '/' + '/'.join(parts)


class QueryURLBuilder:
    """Builds /api/v1/query and /api/v1/query_range URLs against one datasource"""

    def __init__(self, base_url: str, extra_params: ExtraParams = None):
        self.base_url = base_url
        self.extra_params = parse_query_params(extra_params)

    def _split_base_url(self):
        if not self.base_url or not self.base_url.strip():
            raise QueryBuildError("url can't be blank")
        try:
            parts = urlsplit(self.base_url.strip())
        except ValueError as e:
            raise QueryBuildError(f"failed to parse datasource url: {e}") from e
        if not parts.scheme or not parts.netloc:
            raise QueryBuildError(f"failed to parse datasource url: {self.base_url!r} has no scheme or host")
        return parts

    def build(self, expr: str, step: timedelta, time_range: TimeRange, instant: bool,
              extra_params: ExtraParams = None) -> str:
        """
        Build the request URL of a query.

        Args:
            expr: Expanded PromQL expression
            step: Resolved step
            time_range: Time range of the query
            instant: True for /api/v1/query, False for /api/v1/query_range
            extra_params: Parameters merged on top of the datasource-level ones

        Returns:
            Absolute URL with parameters encoded in sorted key order

        Raises:
            QueryBuildError: On a blank base URL, a blank expression or bad parameters
        """
        parts = self._split_base_url()
        if not expr or not expr.strip():
            raise QueryBuildError("expression can't be blank")
        if time_range is None:
            raise QueryBuildError("time range can't be empty")

        params: 'OrderedDict[str, List[str]]' = OrderedDict()
        for key, value in parse_qsl(parts.query, keep_blank_values=True):
            params.setdefault(key, []).append(value)
        for key, value in self.extra_params + parse_query_params(extra_params):
            params.setdefault(key, []).append(value)

        if instant:
            api_path = INSTANT_QUERY_PATH
            params['query'] = [expr]
            params['time'] = [str(_unix_seconds(time_range.to_time))]
        else:
            api_path = RANGE_QUERY_PATH
            params['query'] = [expr]
            params['start'] = [str(_unix_seconds(time_range.from_time))]
            params['end'] = [str(_unix_seconds(time_range.to_time))]
        params['step'] = [format_duration(step)]

        encoded = urlencode([(key, value) for key in sorted(params) for value in params[key]])
        url = urlunsplit((parts.scheme, parts.netloc, _join_path(parts.path, api_path), encoded, ''))
        logger.debug(f"Built {'instant' if instant else 'range'} query url: {url}")
        return url
