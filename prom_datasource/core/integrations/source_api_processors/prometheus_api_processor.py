import http.client
import logging
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Dict, Optional

import requests
from requests.adapters import HTTPAdapter

from ...context import QueryContext
from ...settings import DEFAULT_HTTP_METHOD, DEFAULT_MAX_WORKERS, EXTERNAL_CALL_TIMEOUT
from ....exceptions import ConnectionError, QueryCancelledError, UnexpectedStatusError

logger = logging.getLogger(__name__)

_TRIVIAL_ERROR_TYPES = (
    ConnectionResetError,
    BrokenPipeError,
    EOFError,
    http.client.RemoteDisconnected,
    http.client.IncompleteRead,
    requests.exceptions.ChunkedEncodingError,
)
_TRIVIAL_ERROR_MESSAGES = (
    'broken pipe',
    'reset by peer',
    'remote end closed connection',
    'unexpected eof',
    'incompleteread',
)


def _error_chain(err: BaseException):
    seen = set()
    pending = [err]
    while pending:
        current = pending.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        pending.append(current.__cause__)
        pending.append(current.__context__)
        pending.extend(arg for arg in current.args if isinstance(arg, BaseException))


def _close_response(request):
    if not request.cancelled() and request.exception() is None:
        request.result().close()


def is_trivial_error(err: BaseException) -> bool:
    """
    Returns True if the error is a connection dropped mid-flight (reset,
    broken pipe, truncated read) and the request can be retried.
    """
    for current in _error_chain(err):
        if isinstance(current, _TRIVIAL_ERROR_TYPES):
            return True
        message = str(current).lower()
        if any(marker in message for marker in _TRIVIAL_ERROR_MESSAGES):
            return True
    return False


class PrometheusApiProcessor:
    """HTTP round trips against the query API of a Prometheus-compatible datasource"""

    def __init__(self, http_method=DEFAULT_HTTP_METHOD, headers: Optional[Dict[str, str]] = None,
                 ssl_verify=True, timeout=EXTERNAL_CALL_TIMEOUT, pool_size=DEFAULT_MAX_WORKERS, session=None):
        self.__http_method = (http_method or DEFAULT_HTTP_METHOD).upper()
        self.__ssl_verify = False if isinstance(ssl_verify, str) and ssl_verify.lower() == 'false' else bool(ssl_verify)
        self.__timeout = timeout
        self.headers = dict(headers or {})
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
            session.mount('http://', adapter)
            session.mount('https://', adapter)
        self.__session = session
        self.__pool_size = pool_size
        self.__round_trips = ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix='prometheus-http')

    @property
    def http_method(self):
        return self.__http_method

    @property
    def pool_size(self):
        return self.__pool_size

    def _request(self, method, url):
        return self.__session.request(method, url, headers=self.headers, timeout=self.__timeout,
                                      verify=self.__ssl_verify)

    def _round_trip(self, method, url, context: QueryContext, ref_id: str):
        request = self.__round_trips.submit(self._request, method, url)
        wait([request, context.cancelled_future], return_when=FIRST_COMPLETED)
        if not request.done():
            # abandoned, the response is released once the request returns
            request.add_done_callback(_close_response)
            context.raise_if_cancelled(ref_id)
        return request.result()

    def fetch_query(self, url: str, context: Optional[QueryContext] = None, ref_id: str = '') -> bytes:
        """
        Perform a query request and return the raw response body.

        A connection dropped mid-flight is retried once with GET, since
        something between us and the datasource may be closing connections.

        Raises:
            QueryCancelledError: If the context was cancelled
            ConnectionError: If the request failed
            UnexpectedStatusError: If the datasource answered with a non-2xx status
        """
        context = context or QueryContext()
        context.raise_if_cancelled(ref_id)
        try:
            response = self._round_trip(self.__http_method, url, context, ref_id)
        except requests.exceptions.RequestException as e:
            if context.cancelled:
                raise QueryCancelledError(f"query {ref_id} cancelled: {e}") from e
            if not is_trivial_error(e):
                raise ConnectionError(f"failed to make http request: {e}") from e

            logger.warning(f"Query {ref_id}: connection dropped during {self.__http_method} {url}, "
                           f"retrying once with GET: {e}")
            context.raise_if_cancelled(ref_id)
            try:
                response = self._round_trip('GET', url, context, ref_id)
            except requests.exceptions.RequestException as retry_err:
                raise ConnectionError(f"failed to make http request: {retry_err}",
                                      transient=is_trivial_error(retry_err)) from retry_err

        if context.cancelled:
            response.close()
            context.raise_if_cancelled(ref_id)

        if not 200 <= response.status_code < 300:
            raise UnexpectedStatusError(
                f"got unexpected response status code: {response.status_code} with request url: {url!r}",
                status_code=response.status_code)
        return response.content

    def close(self):
        self.__round_trips.shutdown(wait=False)
        self.__session.close()
