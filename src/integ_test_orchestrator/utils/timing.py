"""
Timing helpers for run configuration and reports.

Durations in run configs use the same notation as job runtime requests
("4:00:00") or plain seconds; reports summarise per-component task
durations.
"""

import re
from typing import Dict, Iterable, Optional, Union

import numpy as np


_HMS_PATTERN = re.compile(r'^(?:(?P<h>\d+):)?(?P<m>\d{1,2}):(?P<s>\d{1,2})$')


def parse_duration(value: Union[int, float, str, None]) -> Optional[float]:
    """
    Parse a duration given as seconds or as an "H:MM:SS" / "MM:SS" string.

    Args:
        value: Seconds (int/float/numeric string), "H:MM:SS" string, or None

    Returns:
        Duration in seconds, or None if value is None

    Raises:
        ValueError: If the value cannot be parsed or is negative
    """
    if value is None:
        return None

    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")

    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip()
        match = _HMS_PATTERN.match(text)
        if match:
            hours = int(match.group('h') or 0)
            seconds = hours * 3600 + int(match.group('m')) * 60 + int(match.group('s'))
        else:
            try:
                seconds = float(text)
            except ValueError:
                raise ValueError(f"Invalid duration: {value!r}") from None

    if seconds < 0:
        raise ValueError(f"Duration must be non-negative: {value!r}")
    return float(seconds)


def format_duration(seconds: Optional[float]) -> str:
    """Format duration in seconds to human-readable string."""
    if seconds is None:
        return 'N/A'

    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.2f}h"


def duration_stats(durations: Iterable[Optional[float]]) -> Dict[str, Optional[float]]:
    """
    Summary statistics over task durations (None entries are ignored).

    Returns:
        Dict with n, total, mean, min and max (None when there is no data)
    """
    values = np.array([d for d in durations if d is not None], dtype=float)

    if values.size == 0:
        return {'n': 0, 'total': None, 'mean': None, 'min': None, 'max': None}

    return {
        'n': int(values.size),
        'total': float(np.sum(values)),
        'mean': float(np.mean(values)),
        'min': float(np.min(values)),
        'max': float(np.max(values)),
    }
