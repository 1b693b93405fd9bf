"""
Custom exceptions for the Prometheus datasource toolkit
"""


class PromDatasourceError(Exception):
    """Base exception for all toolkit errors"""
    pass


class ConfigurationError(PromDatasourceError):
    """Raised when there's an issue with datasource configuration"""
    pass


class ConnectionError(PromDatasourceError):
    """Raised when the HTTP round trip to the datasource fails"""

    def __init__(self, message, transient=False):
        super().__init__(message)
        self.transient = transient


class ValidationError(PromDatasourceError):
    """Raised when input validation fails"""
    pass


class ParseError(ValidationError):
    """Raised when an interval or duration string can't be parsed"""
    pass


class QueryBuildError(ValidationError):
    """Raised when a request URL can't be built from a query"""
    pass


class TaskExecutionError(PromDatasourceError):
    """Raised when query execution fails"""
    pass


class UnexpectedStatusError(TaskExecutionError):
    """Raised when the datasource answers with a non-2xx status code"""

    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


class ResponseDecodeError(TaskExecutionError):
    """Raised when a response body can't be turned into frames"""
    pass


class QueryCancelledError(TaskExecutionError):
    """Raised when the query context was cancelled"""
    pass
