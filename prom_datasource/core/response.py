"""
Decoding of Prometheus query API responses into frames.

The `data.resultType` tag selects one of a closed set of result variants;
each variant knows how to validate its own `result` payload and turn it
into frames. An optional top-level `trace` becomes a metadata-only frame
placed in front of the others.
"""
import json
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Tuple, Union

from google.protobuf import json_format
from google.protobuf.struct_pb2 import Struct

from .legend import labels_to_string
from .models import FRAME_TYPE_NUMERIC_MULTI, FRAME_TYPE_TIME_SERIES_MULTI, RESULT_TYPE_MATRIX, \
    RESULT_TYPE_SCALAR, RESULT_TYPE_TRACE, RESULT_TYPE_VECTOR, TIME_SERIES_TIME_FIELD_NAME, \
    TIME_SERIES_VALUE_FIELD_NAME, Field, Frame, FrameMeta
from ..exceptions import ResponseDecodeError

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_float_to_time(timestamp: Union[int, float]) -> datetime:
    """
    Convert a float timestamp in seconds to a UTC datetime with millisecond precision.

    The milliseconds come from the fraction printed with three decimals,
    which avoids the rounding drift of multiplying the float by 1000.
    """
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        raise ResponseDecodeError(f"invalid timestamp {timestamp!r}")
    if isinstance(timestamp, float) and not math.isfinite(timestamp):
        raise ResponseDecodeError(f"invalid timestamp {timestamp!r}")
    try:
        if timestamp < 0:
            raise ResponseDecodeError(f"error negative timestamp: {timestamp:f}")
        seconds = int(timestamp)
        millis = int(f"{timestamp:.3f}"[-3:])
        return EPOCH + timedelta(seconds=seconds, milliseconds=millis)
    except (ValueError, OverflowError) as e:
        raise ResponseDecodeError(f"timestamp {timestamp!r} out of range: {e}") from e


def parse_sample_value(raw: Any, labels: Dict[str, str]) -> float:
    if not isinstance(raw, str) or raw != raw.strip() or '_' in raw:
        raise ResponseDecodeError(f"metric {labels_to_string(labels)}, unable to parse float64 from {raw!r}")
    try:
        return float(raw)
    except ValueError as e:
        raise ResponseDecodeError(
            f"metric {labels_to_string(labels)}, unable to parse float64 from {raw!r}: {e}") from e


def parse_sample(sample: Any, labels: Dict[str, str]) -> Tuple[datetime, float]:
    if not isinstance(sample, (list, tuple)) or len(sample) != 2:
        raise ResponseDecodeError(f"metric {labels_to_string(labels)}, malformed sample {sample!r}")
    return parse_float_to_time(sample[0]), parse_sample_value(sample[1], labels)


def _parse_series_list(result: Any, result_type: str) -> List[Dict[str, Any]]:
    if not isinstance(result, list):
        raise ResponseDecodeError(f"unmarshal err: {result_type} result must be a list, got {type(result).__name__}")
    series = []
    for entry in result:
        if not isinstance(entry, dict):
            raise ResponseDecodeError(f"unmarshal err: {result_type} entry must be an object, got {entry!r}")
        labels = entry.get('metric') or {}
        if not isinstance(labels, dict):
            raise ResponseDecodeError(f"unmarshal err: metric labels must be an object, got {labels!r}")
        entry = dict(entry)
        entry['metric'] = {str(k): str(v) for k, v in labels.items()}
        series.append(entry)
    return series


class VectorResult:
    result_type = RESULT_TYPE_VECTOR

    def __init__(self, series):
        self.series = series

    @classmethod
    def parse(cls, result):
        return cls(_parse_series_list(result, cls.result_type))

    def frames(self, for_alerting: bool = False) -> List[Frame]:
        frames = []
        for entry in self.series:
            labels = entry['metric']
            timestamp, value = parse_sample(entry.get('value'), labels)
            value_field = Field(TIME_SERIES_VALUE_FIELD_NAME, [value], labels=labels)
            if for_alerting:
                # alert evaluation only consumes values
                frames.append(Frame(fields=[value_field],
                                    meta=FrameMeta(result_type=self.result_type, type=FRAME_TYPE_NUMERIC_MULTI)))
            else:
                frames.append(Frame(fields=[Field(TIME_SERIES_TIME_FIELD_NAME, [timestamp]), value_field],
                                    meta=FrameMeta(result_type=self.result_type, type=FRAME_TYPE_TIME_SERIES_MULTI)))
        return frames


class MatrixResult:
    result_type = RESULT_TYPE_MATRIX

    def __init__(self, series):
        self.series = series

    @classmethod
    def parse(cls, result):
        return cls(_parse_series_list(result, cls.result_type))

    def frames(self, for_alerting: bool = False) -> List[Frame]:
        frames = []
        for entry in self.series:
            labels = entry['metric']
            samples = entry.get('values') or []
            if not isinstance(samples, list) or not samples:
                raise ResponseDecodeError(f"metric {labels_to_string(labels)} contains no values")

            timestamps, values = [], []
            for sample in samples:
                timestamp, value = parse_sample(sample, labels)
                timestamps.append(timestamp)
                values.append(value)

            frames.append(Frame(
                fields=[Field(TIME_SERIES_TIME_FIELD_NAME, timestamps),
                        Field(TIME_SERIES_VALUE_FIELD_NAME, values, labels=labels)],
                meta=FrameMeta(result_type=self.result_type, type=FRAME_TYPE_TIME_SERIES_MULTI)))
        return frames


class ScalarResult:
    result_type = RESULT_TYPE_SCALAR

    def __init__(self, sample):
        self.sample = sample

    @classmethod
    def parse(cls, result):
        return cls(result)

    def frames(self, for_alerting: bool = False) -> List[Frame]:
        timestamp, value = parse_sample(self.sample, {})
        return [Frame(name=f"{value:g}",
                      fields=[Field('time', [timestamp]), Field('value', [value])],
                      meta=FrameMeta(result_type=self.result_type))]


class TraceResult:
    result_type = RESULT_TYPE_TRACE

    def __init__(self, trace):
        self.trace = trace

    @classmethod
    def parse(cls, trace):
        if not isinstance(trace, dict):
            trace = {'trace': trace}
        return cls(trace)

    def frame(self) -> Frame:
        custom = Struct()
        try:
            json_format.ParseDict(self.trace, custom)
        except json_format.ParseError as e:
            raise ResponseDecodeError(f"unmarshal err: invalid trace payload: {e}") from e
        return Frame(meta=FrameMeta(result_type=self.result_type, custom=custom))


_RESULT_VARIANTS = {
    RESULT_TYPE_VECTOR: VectorResult,
    RESULT_TYPE_MATRIX: MatrixResult,
    RESULT_TYPE_SCALAR: ScalarResult,
}


class ResponseDecoder:

    @staticmethod
    def load(body: Union[str, bytes, Dict[str, Any]]) -> Dict[str, Any]:
        if isinstance(body, dict):
            return body
        try:
            payload = json.loads(body)
        except (TypeError, ValueError) as e:
            raise ResponseDecodeError(f"failed to decode body response: {e}") from e
        if not isinstance(payload, dict):
            raise ResponseDecodeError(
                f"failed to decode body response: expected an object, got {type(payload).__name__}")
        return payload

    @classmethod
    def decode(cls, body: Union[str, bytes, Dict[str, Any]], for_alerting: bool = False) -> List[Frame]:
        """
        Decode a query API response body into frames.

        Args:
            body: Raw JSON body or the already parsed object
            for_alerting: Drop timestamps from vector frames and tag them as numeric

        Returns:
            List of frames; a trace frame, if any, comes first

        Raises:
            ResponseDecodeError: On malformed JSON, an unknown result type or bad samples
        """
        payload = cls.load(body)
        try:
            return cls._frames(payload, for_alerting)
        except ResponseDecodeError as e:
            raise ResponseDecodeError(f"failed to prepare data from response: {e}") from e

    @staticmethod
    def _frames(payload: Dict[str, Any], for_alerting: bool) -> List[Frame]:
        if payload.get('status') == 'error':
            raise ResponseDecodeError(f"{payload.get('errorType', 'error')}: {payload.get('error', '')}")

        data = payload.get('data') or {}
        if not isinstance(data, dict):
            raise ResponseDecodeError(f"unmarshal err: data must be an object, got {type(data).__name__}")

        result_type = data.get('resultType') or ''
        variant = _RESULT_VARIANTS.get(result_type)
        if variant is None:
            raise ResponseDecodeError(f'unknown result type "{result_type}"')
        if 'result' not in data:
            raise ResponseDecodeError(f"unmarshal err: {result_type} response has no result")

        frames = variant.parse(data['result']).frames(for_alerting)
        if payload.get('trace') is not None:
            frames.insert(0, TraceResult.parse(payload['trace']).frame())

        logger.debug(f"Decoded {len(frames)} frames from {result_type} response")
        return frames
