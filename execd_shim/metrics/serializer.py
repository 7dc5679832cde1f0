"""Line protocol serializer for metrics."""

import math
from typing import Any

from ..errors import EncodingError
from .metric import Metric, UnsignedInt

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1
UINT64_MAX = 2 ** 64 - 1

_MEASUREMENT_ESCAPES = str.maketrans({",": r"\,", " ": r"\ ", "\n": r"\n"})
_KEY_ESCAPES = str.maketrans({",": r"\,", " ": r"\ ", "=": r"\=", "\n": r"\n"})
_STRING_ESCAPES = str.maketrans({"\\": "\\\\", '"': '\\"'})


class LineProtocolSerializer:
    """
    Encode metrics as line protocol.

    Format::

        measurement[,tag=value...] field=value[,field=value...] timestamp

    Tags are written sorted by key so identical metrics always encode to
    identical bytes. Fields keep the order the plugin supplied.
    """

    def serialize(self, metric: Metric) -> bytes:
        """
        Encode one metric, without the trailing newline.

        Args:
            metric: Metric to encode

        Returns:
            bytes: UTF-8 encoded line

        Raises:
            EncodingError: If the metric cannot be represented
        """
        if not metric.name:
            raise EncodingError("metric has an empty measurement name")
        if not metric.fields:
            raise EncodingError(f"metric {metric.name!r} has no fields")

        parts = [metric.name.translate(_MEASUREMENT_ESCAPES)]
        for key in sorted(metric.tags):
            value = metric.tags[key]
            if not isinstance(key, str) or not isinstance(value, str):
                raise EncodingError(f"metric {metric.name!r}: tag {key!r} is not a string pair")
            if not key:
                raise EncodingError(f"metric {metric.name!r}: empty tag key")
            if value == "":
                continue
            parts.append(f"{key.translate(_KEY_ESCAPES)}={value.translate(_KEY_ESCAPES)}")

        fields = []
        for key, value in metric.fields.items():
            if not isinstance(key, str) or not key:
                raise EncodingError(f"metric {metric.name!r}: invalid field key {key!r}")
            fields.append(f"{key.translate(_KEY_ESCAPES)}={self._encode_value(metric.name, key, value)}")

        line = f"{','.join(parts)} {','.join(fields)} {metric.timestamp}"
        return line.encode("utf-8")

    @staticmethod
    def _encode_value(name: str, key: str, value: Any) -> str:
        """Encode a single field value."""
        # bool is an int subclass, check it first
        if isinstance(value, bool):
            return "true" if value else "false"

        if isinstance(value, UnsignedInt):
            if value > UINT64_MAX:
                raise EncodingError(f"metric {name!r}: field {key!r} overflows uint64")
            return f"{int(value)}u"

        if isinstance(value, int):
            if value < INT64_MIN or value > INT64_MAX:
                raise EncodingError(f"metric {name!r}: field {key!r} overflows int64")
            return f"{value}i"

        if isinstance(value, float):
            if math.isnan(value) or math.isinf(value):
                raise EncodingError(f"metric {name!r}: field {key!r} is not a finite float")
            return repr(value)

        if isinstance(value, str):
            return f'"{value.translate(_STRING_ESCAPES)}"'

        raise EncodingError(
            f"metric {name!r}: field {key!r} has unsupported type {type(value).__name__}"
        )
