"""
Settings and configuration constants for the Prometheus datasource toolkit.

These only seed defaults; the interval resolver receives them explicitly
through StepDefaults so callers can vary them per datasource.
"""
from datetime import timedelta

# External API call timeout in seconds
EXTERNAL_CALL_TIMEOUT = 90

DEFAULT_HTTP_METHOD = 'POST'
SUPPORTED_HTTP_METHODS = ('GET', 'POST')

# Concurrent queries of a batch, and HTTP connections kept per host
DEFAULT_MAX_WORKERS = 10

# Assumed scrape interval when neither the query nor the datasource sets one
DEFAULT_SCRAPE_INTERVAL = timedelta(seconds=15)

# Step used by instant queries when no interval could be resolved
INSTANT_QUERY_DEFAULT_STEP = timedelta(minutes=5)

# Number of points a range query aims for when maxDataPoints is not set
DEFAULT_RESOLUTION = 1500

# Scrape interval used to derive $__rate_interval when the hint is empty
DEFAULT_RATE_SCRAPE_INTERVAL = timedelta(seconds=15)

INSTANT_QUERY_PATH = '/api/v1/query'
RANGE_QUERY_PATH = '/api/v1/query_range'

# Grafana passes the alerting marker in a request header
REQUEST_FROM_ALERT_HEADER = 'FromAlert'
