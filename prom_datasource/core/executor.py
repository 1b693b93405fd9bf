"""
Concurrent execution of a batch of panel queries.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import replace
from typing import Dict, List, Optional

from .context import QueryContext
from .datasource_settings import DatasourceSettings
from .integrations.source_api_processors.prometheus_api_processor import PrometheusApiProcessor
from .legend import LegendFormatter
from .models import DataResponse, Frame, Query
from .settings import DEFAULT_MAX_WORKERS
from .query_url import QueryURLBuilder
from .response import ResponseDecoder
from .step import VAR_INTERVAL, VAR_INTERVAL_MS, IntervalResolver
from .templating import TemplateExpander
from ..exceptions import ConnectionError, QueryBuildError, QueryCancelledError, ResponseDecodeError, \
    UnexpectedStatusError, ValidationError

logger = logging.getLogger(__name__)

STATUS_OK = 200
STATUS_BAD_REQUEST = 400
STATUS_CLIENT_CLOSED_REQUEST = 499
STATUS_INTERNAL = 500


def new_response_error(err: Exception, status: int) -> DataResponse:
    logger.error(str(err))
    return DataResponse(error=err, status=status)


class QueryExecutor:
    """
    Runs every query of a batch in its own task and collects one DataResponse per refId.

    Slots are created for every refId before any task starts and each task
    writes only its own slot, so a failing query never touches its siblings.
    """

    def __init__(self, settings: DatasourceSettings, processor: Optional[PrometheusApiProcessor] = None):
        self.settings = settings
        self.max_workers = settings.max_workers or DEFAULT_MAX_WORKERS
        self.resolver = IntervalResolver(settings.step_defaults)
        self.expander = TemplateExpander(settings.step_defaults)
        self.url_builder = QueryURLBuilder(settings.url, settings.query_params)
        self.processor = processor or PrometheusApiProcessor(
            http_method=settings.http_method,
            headers=settings.headers,
            ssl_verify=settings.ssl_verify,
            timeout=settings.timeout,
            pool_size=self.max_workers,
        )

    def build_url(self, query: Query) -> str:
        """Resolve the step, expand the expression and build the request URL of a query"""
        if not query.time_interval and self.settings.time_interval:
            query = replace(query, time_interval=self.settings.time_interval)
        if query.time_range is None:
            raise QueryBuildError("failed to create request URL: time range can't be empty")
        try:
            step = self.resolver.resolve(query)
            rate_hint = query.interval
            if rate_hint in ('', '0s', VAR_INTERVAL, VAR_INTERVAL_MS):
                rate_hint = query.time_interval
            expr = self.expander.expand(query.expr, step, query.time_range.duration, rate_hint)
            return self.url_builder.build(expr, step, query.time_range, query.instant)
        except ValidationError as e:
            raise e.__class__(f"failed to create request URL: {e}") from e

    def query(self, query: Query, context: QueryContext, for_alerting: bool = False) -> List[Frame]:
        url = self.build_url(query)
        body = self.processor.fetch_query(url, context, query.ref_id)
        frames = ResponseDecoder.decode(body, for_alerting)
        for frame in frames:
            LegendFormatter.apply(frame, query.legend_format, query.expr)
        return frames

    def _run(self, query: Query, context: QueryContext, for_alerting: bool) -> DataResponse:
        try:
            return DataResponse(frames=self.query(query, context, for_alerting), status=STATUS_OK)
        except QueryCancelledError as e:
            return new_response_error(e, STATUS_CLIENT_CLOSED_REQUEST)
        except UnexpectedStatusError as e:
            return new_response_error(e, e.status_code)
        except (ValidationError, ConnectionError) as e:
            return new_response_error(e, STATUS_BAD_REQUEST)
        except ResponseDecodeError as e:
            return new_response_error(e, STATUS_INTERNAL)
        except Exception as e:
            logger.error(f"Unexpected error while executing query {query.ref_id}: {e}", exc_info=True)
            return DataResponse(error=e, status=STATUS_INTERNAL)

    def execute(self, queries: List[Query], context: Optional[QueryContext] = None) -> Dict[str, DataResponse]:
        """
        Execute a batch of queries concurrently.

        Args:
            queries: Queries of the batch, refIds must be unique
            context: Headers and cancellation of the batch

        Returns:
            Mapping of refId to its DataResponse

        Raises:
            ValidationError: On duplicate refIds or an unparsable FromAlert header
        """
        context = context or QueryContext()
        for_alerting = context.for_alerting()

        responses: Dict[str, Optional[DataResponse]] = {}
        for query in queries:
            if query.ref_id in responses:
                raise ValidationError(f"duplicate refId {query.ref_id!r} in batch")
            responses[query.ref_id] = None
        if not queries:
            return {}

        def run(query: Query):
            responses[query.ref_id] = self._run(query, context, for_alerting)

        with ThreadPoolExecutor(max_workers=min(len(queries), self.max_workers)) as executor:
            futures = [executor.submit(run, query) for query in queries]
            wait(futures)

        logger.debug(f"Executed {len(queries)} queries, "
                     f"{sum(1 for r in responses.values() if r and r.ok)} succeeded")
        return responses

    def close(self):
        self.processor.close()
