from __future__ import annotations

import math
import re
from typing import Union

from ..errors import ConfigError

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: Union[str, int, float, None]) -> float:
    """Brief: Parse a duration into seconds.

    Inputs:
      - value: Go-style duration string ('200ms', '1.5s', '1m30s', '-2h'),
        a bare number of seconds (int/float or numeric string), or None.

    Outputs:
      - float: duration in seconds; None and '' give 0.0.

    Raises:
      - ConfigError for anything else.

    Example:
      >>> parse_duration("1m30s")
      90.0
      >>> parse_duration("200ms")
      0.2
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise ConfigError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    if not text:
        return 0.0

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if text == "0":
        return 0.0
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        if not math.isfinite(seconds):
            raise ConfigError(f"invalid duration {value!r}")
        return sign * seconds

    total = 0.0
    pos = 0
    for m in _COMPONENT.finditer(text):
        if m.start() != pos:
            raise ConfigError(f"invalid duration {value!r}")
        total += float(m.group(1)) * _UNITS[m.group(2)]
        pos = m.end()
    if pos == 0 or pos != len(text):
        raise ConfigError(f"invalid duration {value!r}")
    return sign * total
