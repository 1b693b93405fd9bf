"""
Display names for decoded series.
"""
import json
import re
from typing import Dict, Optional

from .models import FieldConfig, Frame

LEGEND_FORMAT_AUTO = '__auto'
METRIC_NAME_LABEL = '__name__'

_LEGEND_RE = re.compile(r'\{\{\s*(.+?)\s*\}\}')


def labels_to_string(labels: Optional[Dict[str, str]]) -> str:
    """
    Render a label set the way Prometheus prints series:
    name{a="1",b="2"}, the bare name when it is the only label, "{}" for no labels.
    """
    if not labels:
        return '{}'
    pairs = sorted(
        f"{label}={json.dumps(value, ensure_ascii=False)}"
        for label, value in labels.items() if label != METRIC_NAME_LABEL
    )
    metric_name = labels.get(METRIC_NAME_LABEL, '')
    if not pairs:
        return metric_name or '{}'
    return f"{metric_name}{{{','.join(pairs)}}}"


class LegendFormatter:

    @staticmethod
    def format(legend_format: str, labels: Optional[Dict[str, str]], expr: str) -> str:
        """
        Derive a series name from a legend template.

        "__auto" and "" render the label set; any other template has each
        {{label}} replaced with that label's value (empty when missing).
        Whenever nothing usable is left the expression is the name.
        """
        labels = labels or {}
        if not legend_format or legend_format == LEGEND_FORMAT_AUTO:
            legend = labels_to_string(labels)
            if legend == '{}':
                return expr
            return legend

        legend = _LEGEND_RE.sub(lambda m: labels.get(m.group(1).strip(), ''), legend_format)
        if legend == '':
            return expr
        return legend

    @classmethod
    def apply(cls, frame: Frame, legend_format: str, expr: str) -> Frame:
        """Name a frame after its value field; frames with fewer than two fields are left as they are"""
        value_field = frame.value_field
        if value_field is None:
            return frame

        name = cls.format(legend_format, value_field.labels, expr)
        if name:
            value_field.config = FieldConfig(display_name_from_ds=name)
        frame.name = name
        return frame
