"""
High-level SDK for querying a Prometheus-compatible datasource
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .core.context import QueryContext
from .core.datasource_settings import DatasourceSettings
from .core.executor import QueryExecutor
from .core.models import DataResponse, Query, TimeRange
from .exceptions import TaskExecutionError

logger = logging.getLogger(__name__)


class PrometheusDatasourceSDK:
    """
    Entry point wrapping settings loading and the query executor.
    """

    def __init__(self, settings_file_path: Optional[str] = None, settings: Optional[DatasourceSettings] = None):
        """
        Initialize the SDK from a YAML settings file or a settings object

        Args:
            settings_file_path: Path to the YAML settings file
            settings: Already loaded settings, takes precedence over the file
        """
        if settings is None:
            settings = DatasourceSettings.from_yaml(settings_file_path)
        self.settings = settings
        self.executor = QueryExecutor(settings)

    def _create_time_range(self, start_time: Optional[datetime] = None,
                           end_time: Optional[datetime] = None,
                           duration_minutes: Optional[int] = None) -> TimeRange:
        if end_time is None:
            end_time = datetime.now().astimezone()

        if start_time is None:
            if duration_minutes:
                start_time = end_time - timedelta(minutes=duration_minutes)
            else:
                start_time = end_time - timedelta(hours=1)  # Default to 1 hour

        return TimeRange(from_time=start_time, to_time=end_time)

    def execute(self, queries: List[Query], headers: Optional[Dict[str, str]] = None) -> Dict[str, DataResponse]:
        """Execute a batch of queries, returning a DataResponse per refId"""
        return self.executor.execute(queries, QueryContext(headers))

    def query(self,
              expr: str,
              start_time: Optional[datetime] = None,
              end_time: Optional[datetime] = None,
              duration_minutes: Optional[int] = None,
              instant: bool = False,
              interval: str = '',
              legend_format: str = '',
              max_data_points: int = 0) -> DataResponse:
        """
        Execute a single PromQL query

        Args:
            expr: PromQL expression, may use $__interval, $__range and friends
            start_time: Start time for the query
            end_time: End time for the query
            duration_minutes: Duration in minutes (used if start_time not provided)
            instant: Run an instant query instead of a range query
            interval: Minimum interval hint, e.g. "30s"
            legend_format: Legend template, e.g. "{{instance}}"
            max_data_points: Number of points to aim for

        Returns:
            DataResponse of the query

        Raises:
            TaskExecutionError: If the query failed
        """
        query = Query(
            ref_id='A',
            expr=expr,
            instant=instant,
            range=not instant,
            interval=interval,
            legend_format=legend_format,
            max_data_points=max_data_points,
            time_range=self._create_time_range(start_time, end_time, duration_minutes),
        )
        response = self.execute([query])['A']
        if response.error is not None:
            raise TaskExecutionError(f"Prometheus query failed: {response.error}") from response.error
        return response

    def close(self):
        self.executor.close()
