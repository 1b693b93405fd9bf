"""
Data model shared by the query pipeline: panel queries going in,
frames and per-query responses coming out.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from google.protobuf import json_format
from google.protobuf.struct_pb2 import Struct

from ..exceptions import ValidationError

TIME_SERIES_TIME_FIELD_NAME = 'Time'
TIME_SERIES_VALUE_FIELD_NAME = 'Value'

FRAME_TYPE_TIME_SERIES_MULTI = 'timeseries-multi'
FRAME_TYPE_NUMERIC_MULTI = 'numeric-multi'

RESULT_TYPE_VECTOR = 'vector'
RESULT_TYPE_MATRIX = 'matrix'
RESULT_TYPE_SCALAR = 'scalar'
RESULT_TYPE_TRACE = 'trace'


def _to_utc(value) -> datetime:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise ValidationError(f"Invalid time range boundary: {value!r}")


@dataclass
class TimeRange:
    """Absolute time range of a query"""
    from_time: datetime
    to_time: datetime

    def __post_init__(self):
        self.from_time = _to_utc(self.from_time)
        self.to_time = _to_utc(self.to_time)
        if self.from_time > self.to_time:
            raise ValidationError(f"Time range start {self.from_time} is after its end {self.to_time}")

    @property
    def duration(self) -> timedelta:
        return self.to_time - self.from_time

    @classmethod
    def last(cls, duration: timedelta, end: Optional[datetime] = None) -> 'TimeRange':
        end = _to_utc(end) if end is not None else datetime.now(timezone.utc)
        return cls(from_time=end - duration, to_time=end)


@dataclass
class Query:
    """One panel query as sent by the dashboard"""
    ref_id: str
    expr: str = ''
    instant: bool = False
    range: bool = False
    interval: str = ''
    interval_ms: int = 0
    time_interval: str = ''
    legend_format: str = ''
    max_data_points: int = 0
    time_range: Optional[TimeRange] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], time_range: Optional[TimeRange] = None,
                  max_data_points: Optional[int] = None) -> 'Query':
        """
        Build a Query from the panel JSON shape.

        Args:
            data: Panel query JSON (refId, expr, instant, range, interval, ...)
            time_range: Time range of the request, overrides any range in data
            max_data_points: Resolution requested by the panel, overrides data

        Returns:
            Query instance
        """
        if not isinstance(data, dict):
            raise ValidationError(f"failed to parse query json: expected an object, got {type(data).__name__}")
        try:
            interval_ms = int(data.get('intervalMs') or 0)
            if max_data_points is None:
                max_data_points = int(data.get('maxDataPoints') or 0)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"failed to parse query json: {e}") from e

        if time_range is None and 'from' in data and 'to' in data:
            time_range = TimeRange(from_time=data['from'], to_time=data['to'])

        return cls(
            ref_id=str(data.get('refId', '')),
            expr=data.get('expr') or '',
            instant=bool(data.get('instant', False)),
            range=bool(data.get('range', False)),
            interval=data.get('interval') or '',
            interval_ms=interval_ms,
            time_interval=data.get('timeInterval') or '',
            legend_format=data.get('legendFormat') or '',
            max_data_points=max_data_points,
            time_range=time_range,
        )


@dataclass
class FieldConfig:
    display_name_from_ds: str = ''


@dataclass
class Field:
    """A single column of a frame"""
    name: str
    values: List[Any]
    labels: Optional[Dict[str, str]] = None
    config: Optional[FieldConfig] = None

    def __len__(self):
        return len(self.values)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'name': self.name,
            'values': [v.isoformat() if isinstance(v, datetime) else v for v in self.values],
        }
        if self.labels:
            result['labels'] = dict(self.labels)
        if self.config and self.config.display_name_from_ds:
            result['config'] = {'displayNameFromDS': self.config.display_name_from_ds}
        return result


@dataclass
class FrameMeta:
    """Frame metadata: which result type produced it and its frame type"""
    result_type: str = ''
    type: str = ''
    custom: Optional[Struct] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {'resultType': self.result_type}
        if self.type:
            result['type'] = self.type
        if self.custom is not None:
            result['custom'] = json_format.MessageToDict(self.custom)
        return result


@dataclass
class Frame:
    """One decoded time series ready for display"""
    name: str = ''
    fields: List[Field] = field(default_factory=list)
    meta: FrameMeta = field(default_factory=FrameMeta)

    def __post_init__(self):
        lengths = {len(f) for f in self.fields}
        if len(lengths) > 1:
            raise ValidationError(f"frame {self.name!r} has fields of different lengths: {sorted(lengths)}")

    @property
    def value_field(self) -> Optional[Field]:
        if len(self.fields) < 2:
            return None
        return self.fields[1]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'fields': [f.to_dict() for f in self.fields],
            'meta': self.meta.to_dict(),
        }


@dataclass
class DataResponse:
    """Result slot of one query: frames on success, error and status otherwise"""
    frames: List[Frame] = field(default_factory=list)
    error: Optional[Exception] = None
    status: int = 200

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        if self.error is not None:
            return {'status': self.status, 'error': str(self.error)}
        return {'status': self.status, 'frames': [f.to_dict() for f in self.frames]}
