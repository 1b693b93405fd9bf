import json
import threading
import time
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch
from urllib.parse import parse_qs, urlsplit

from prom_datasource.core.context import QueryContext
from prom_datasource.core.datasource_settings import DatasourceSettings
from prom_datasource.core.executor import QueryExecutor
from prom_datasource.core.integrations.source_api_processors.prometheus_api_processor import \
    PrometheusApiProcessor
from prom_datasource.core.models import Query, TimeRange
from prom_datasource.exceptions import QueryBuildError, ValidationError

END = datetime(2022, 12, 5, 7, 53, 13, tzinfo=timezone.utc)
LAST_MINUTE = TimeRange(from_time=END - timedelta(seconds=60), to_time=END)

VECTOR_BODY = json.dumps({
    "status": "success",
    "data": {
        "resultType": "vector",
        "result": [
            {"metric": {"__name__": "http_requests_total", "status": "200"}, "value": [1670226793, "10"]},
            {"metric": {"__name__": "http_requests_total", "status": "500"}, "value": [1670226793, "2"]},
        ],
    },
}).encode()


def http_response(status_code, content):
    response = Mock()
    response.status_code = status_code
    response.content = content
    return response


def expr_of(url):
    return parse_qs(urlsplit(url).query)["query"][0]


class TestQueryExecutor(unittest.TestCase):
    """Unit tests for batch execution against a mocked datasource."""

    def setUp(self):
        self.session = Mock()
        self.settings = DatasourceSettings(url="http://localhost:9090", max_workers=4)
        self.executor = QueryExecutor(self.settings, PrometheusApiProcessor(session=self.session))
        self.addCleanup(self.executor.close)

    def test_build_url_expands_rate_interval(self):
        query = Query(ref_id="A", expr="rate(x[$__rate_interval])", range=True, interval="5s", interval_ms=20000,
                      time_interval="30s", time_range=LAST_MINUTE)
        url = self.executor.build_url(query)
        params = parse_qs(urlsplit(url).query)
        self.assertEqual(params["step"], ["5s"])
        self.assertEqual(params["query"], ["rate(x[20s])"])
        self.assertTrue(url.startswith("http://localhost:9090/api/v1/query_range?"))

    def test_build_url_uses_datasource_time_interval(self):
        settings = DatasourceSettings(url="http://localhost:9090", time_interval="1m")
        executor = QueryExecutor(settings, PrometheusApiProcessor(session=Mock()))
        url = executor.build_url(Query(ref_id="A", expr="up", instant=True, time_range=LAST_MINUTE))
        self.assertEqual(parse_qs(urlsplit(url).query)["step"], ["1m"])

    def test_interval_placeholder_rate_hint_uses_time_interval(self):
        for interval in ("$__interval", "$__interval_ms", ""):
            with self.subTest(interval=interval):
                query = Query(ref_id="A", expr="rate(x[$__rate_interval])", interval=interval, time_interval="1m",
                              time_range=LAST_MINUTE)
                self.assertEqual(expr_of(self.executor.build_url(query)), "rate(x[4m])")

    def test_build_url_errors_are_prefixed(self):
        with self.assertRaises(QueryBuildError) as ctx:
            self.executor.build_url(Query(ref_id="A", expr=" ", time_range=LAST_MINUTE))
        self.assertTrue(str(ctx.exception).startswith("failed to create request URL: "))

    def test_failing_query_does_not_affect_sibling(self):
        def request(method, url, **kwargs):
            if expr_of(url) == "broken":
                return http_response(500, b"internal error")
            return http_response(200, VECTOR_BODY)

        self.session.request.side_effect = request
        queries = [
            Query(ref_id="A", expr="broken", instant=True, time_range=LAST_MINUTE),
            Query(ref_id="B", expr="http_requests_total", instant=True, legend_format="{{status}}",
                  time_range=LAST_MINUTE),
        ]
        responses = self.executor.execute(queries)

        self.assertEqual(set(responses), {"A", "B"})
        self.assertFalse(responses["A"].ok)
        self.assertEqual(responses["A"].status, 500)
        self.assertIn("got unexpected response status code: 500", str(responses["A"].error))
        self.assertTrue(responses["B"].ok)
        self.assertEqual([f.name for f in responses["B"].frames], ["200", "500"])

    def test_missing_legend_label_is_empty(self):
        self.session.request.return_value = http_response(200, VECTOR_BODY)
        query = Query(ref_id="A", expr="http_requests_total", instant=True, legend_format="legend {{app}}",
                      time_range=LAST_MINUTE)
        response = self.executor.execute([query])["A"]
        self.assertEqual([f.name for f in response.frames], ["legend ", "legend "])

    def test_legend_falls_back_to_raw_expression(self):
        body = json.dumps({"status": "success",
                           "data": {"resultType": "vector", "result": [{"metric": {}, "value": [1, "1"]}]}})
        self.session.request.return_value = http_response(200, body.encode())
        query = Query(ref_id="A", expr="sum(rate(x[$__rate_interval]))", instant=True, time_range=LAST_MINUTE)
        response = self.executor.execute([query])["A"]
        self.assertEqual(response.frames[0].name, "sum(rate(x[$__rate_interval]))")

    def test_build_error_maps_to_bad_request(self):
        responses = self.executor.execute([Query(ref_id="A", expr="up", interval="often", time_range=LAST_MINUTE)])
        self.assertEqual(responses["A"].status, 400)
        self.session.request.assert_not_called()

    def test_decode_error_maps_to_internal(self):
        self.session.request.return_value = http_response(200, b"not json")
        responses = self.executor.execute([Query(ref_id="A", expr="up", instant=True, time_range=LAST_MINUTE)])
        self.assertEqual(responses["A"].status, 500)
        self.assertIn("failed to decode body response", str(responses["A"].error))

    def test_cancelled_batch(self):
        context = QueryContext()
        context.cancel()
        queries = [Query(ref_id=ref_id, expr="up", instant=True, time_range=LAST_MINUTE) for ref_id in "ABC"]
        responses = self.executor.execute(queries, context)
        self.assertEqual({r.status for r in responses.values()}, {499})
        self.session.request.assert_not_called()

    def test_cancel_while_requests_in_flight(self):
        release = threading.Event()
        self.addCleanup(release.set)

        def request(method, url, **kwargs):
            release.wait(5)
            return http_response(200, VECTOR_BODY)

        self.session.request.side_effect = request
        context = QueryContext()
        threading.Timer(0.1, context.cancel).start()
        queries = [Query(ref_id=ref_id, expr="up", instant=True, time_range=LAST_MINUTE) for ref_id in "AB"]

        started = time.monotonic()
        responses = self.executor.execute(queries, context)
        self.assertLess(time.monotonic() - started, 2)
        self.assertEqual({r.status for r in responses.values()}, {499})
        self.assertFalse(any(r.ok for r in responses.values()))

    def test_queries_run_concurrently(self):
        barrier = threading.Barrier(3, timeout=5)

        def request(method, url, **kwargs):
            barrier.wait()
            return http_response(200, VECTOR_BODY)

        self.session.request.side_effect = request
        queries = [Query(ref_id=ref_id, expr="up", instant=True, time_range=LAST_MINUTE) for ref_id in "ABC"]
        responses = self.executor.execute(queries)
        self.assertTrue(all(r.ok for r in responses.values()))

    def test_alert_header_drops_time_field(self):
        self.session.request.return_value = http_response(200, VECTOR_BODY)
        query = Query(ref_id="A", expr="up", instant=True, time_range=LAST_MINUTE)
        response = self.executor.execute([query], QueryContext({"FromAlert": "true"}))["A"]
        self.assertEqual([len(f.fields) for f in response.frames], [1, 1])
        self.assertEqual(response.frames[0].meta.type, "numeric-multi")

    def test_invalid_alert_header(self):
        with self.assertRaises(ValidationError):
            self.executor.execute([Query(ref_id="A", expr="up", time_range=LAST_MINUTE)],
                                  QueryContext({"FromAlert": "yes"}))

    def test_duplicate_ref_id(self):
        queries = [Query(ref_id="A", expr="up", time_range=LAST_MINUTE),
                   Query(ref_id="A", expr="down", time_range=LAST_MINUTE)]
        with self.assertRaises(ValidationError):
            self.executor.execute(queries)
        self.session.request.assert_not_called()

    def test_scalar_frame_takes_legend_name(self):
        body = json.dumps({"status": "success", "data": {"resultType": "scalar", "result": [1670226793, "4"]}})
        self.session.request.return_value = http_response(200, body.encode())
        response = self.executor.execute([Query(ref_id="A", expr="scalar(up)", instant=True,
                                                time_range=LAST_MINUTE)])["A"]
        self.assertEqual(response.frames[0].name, "scalar(up)")

    @patch('requests.Session.request')
    def test_fan_out_matches_connection_pool(self, mock_request):
        executor = QueryExecutor(DatasourceSettings(url="http://localhost:9090"))
        self.addCleanup(executor.close)
        self.assertEqual(executor.max_workers, 10)
        self.assertEqual(executor.processor.pool_size, executor.max_workers)

        lock = threading.Lock()
        running = [0, 0]

        def request(*args, **kwargs):
            with lock:
                running[0] += 1
                running[1] = max(running[1], running[0])
            time.sleep(0.05)
            with lock:
                running[0] -= 1
            return http_response(200, VECTOR_BODY)

        mock_request.side_effect = request
        queries = [Query(ref_id=str(i), expr="up", instant=True, time_range=LAST_MINUTE) for i in range(25)]
        responses = executor.execute(queries)
        self.assertTrue(all(r.ok for r in responses.values()))
        self.assertLessEqual(running[1], executor.max_workers)

    def test_empty_batch(self):
        self.assertEqual(self.executor.execute([]), {})


class TestQueryContext(unittest.TestCase):

    def test_alert_header_values(self):
        self.assertFalse(QueryContext().for_alerting())
        self.assertFalse(QueryContext({"FromAlert": ""}).for_alerting())
        self.assertTrue(QueryContext({"FromAlert": "1"}).for_alerting())
        self.assertTrue(QueryContext({"FromAlert": "TRUE"}).for_alerting())
        self.assertFalse(QueryContext({"FromAlert": "f"}).for_alerting())

    def test_cancel(self):
        context = QueryContext()
        context.raise_if_cancelled("A")
        context.cancel()
        self.assertTrue(context.cancelled)


if __name__ == '__main__':
    unittest.main()
