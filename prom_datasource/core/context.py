"""
Caller-supplied context governing one batch of queries.
"""
import threading
from concurrent.futures import Future
from typing import Dict, Optional

from .settings import REQUEST_FROM_ALERT_HEADER
from ..exceptions import QueryCancelledError, ValidationError

_TRUE_VALUES = ('1', 't', 'T', 'TRUE', 'true', 'True')
_FALSE_VALUES = ('0', 'f', 'F', 'FALSE', 'false', 'False')


class QueryContext:
    """
    Carries the request headers of a batch and its cancellation flag.

    Cancelling is thread-safe. Tasks check the flag before every HTTP round
    trip, and in-flight round trips wait on `cancelled_future` alongside the
    request so they can be abandoned as soon as the batch is cancelled.
    """

    def __init__(self, headers: Optional[Dict[str, str]] = None):
        self.headers = dict(headers or {})
        self._lock = threading.Lock()
        self._cancelled = Future()

    def cancel(self):
        with self._lock:
            if not self._cancelled.done():
                self._cancelled.set_result(True)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.done()

    @property
    def cancelled_future(self) -> Future:
        """Resolves once the batch is cancelled"""
        return self._cancelled

    def raise_if_cancelled(self, ref_id: str = ''):
        if self.cancelled:
            raise QueryCancelledError(f"query {ref_id} cancelled" if ref_id else "query cancelled")

    def for_alerting(self) -> bool:
        """Parse the FromAlert header; a missing or empty header means False"""
        value = self.headers.get(REQUEST_FROM_ALERT_HEADER)
        if not value:
            return False
        if value in _TRUE_VALUES:
            return True
        if value in _FALSE_VALUES:
            return False
        raise ValidationError(f"failed to parse {REQUEST_FROM_ALERT_HEADER} header value: {value}")
