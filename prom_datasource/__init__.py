"""
Prometheus datasource toolkit

Turns dashboard panel queries into Prometheus query API requests and
decodes the responses into named time series frames.
"""

from .exceptions import PromDatasourceError, ConfigurationError, ConnectionError, ValidationError, \
    TaskExecutionError
from .sdk import PrometheusDatasourceSDK

__version__ = "1.0.0"
__all__ = ["PrometheusDatasourceSDK", "PromDatasourceError", "ConfigurationError", "ConnectionError",
           "ValidationError", "TaskExecutionError"]
