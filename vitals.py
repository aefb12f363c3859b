"""
Health metric classification.

Maps logged values to display severity bands and chart values.
"""

import math
import re
from typing import Optional

NORMAL = "normal"
ELEVATED = "elevated"
HIGH = "high"

MOOD_SCORES = {
    "very_poor": 1,
    "poor": 2,
    "neutral": 3,
    "good": 4,
    "excellent": 5,
}
NEUTRAL_MOOD = MOOD_SCORES["neutral"]

# (normal below, elevated below), anything else is high
THRESHOLDS = {
    "blood_pressure": (120, 140),   # systolic mmHg
    "blood_sugar": (140, 180),      # mg/dL
    "temperature": (99.5, 103),     # Fahrenheit
}

UNITS = {
    "blood_pressure": "mmHg",
    "blood_sugar": "mg/dL",
    "temperature": "°F",
    "mood": "Score",
}

_BLOOD_PRESSURE = re.compile(r"^\s*(\d{2,3})\s*/\s*(\d{2,3})\s*$")


def systolic(value: str) -> int:
    return int(value.split("/")[0].strip())


def mood_score(token: str) -> int:
    return MOOD_SCORES.get((token or "").strip(), NEUTRAL_MOOD)


def _reading(metric: str, value: str):
    if metric == "blood_pressure":
        return systolic(value)
    if metric == "blood_sugar":
        return int(value.strip())
    if metric == "temperature":
        return float(value.strip())
    raise ValueError(f"no severity scale for {metric!r}")


def severity(metric: str, value: str) -> Optional[str]:
    """Severity band of a reading, None for metrics without a scale (mood)."""
    if metric not in THRESHOLDS:
        return None
    reading = _reading(metric, value)
    normal_below, elevated_below = THRESHOLDS[metric]
    if reading < normal_below:
        return NORMAL
    if reading < elevated_below:
        return ELEVATED
    return HIGH


def chart_value(metric: str, value: str) -> float:
    if metric == "blood_pressure":
        return float(systolic(value))
    if metric == "mood":
        return float(mood_score(value))
    return float(value)


def normalize_value(metric: str, value: str) -> str:
    """Check the stored format of a reading and return it normalized.

    Raises ValueError when ``value`` does not fit ``metric``.
    """
    value = (value or "").strip()
    if not value:
        raise ValueError("value is required")
    if metric == "blood_pressure":
        match = _BLOOD_PRESSURE.match(value)
        if not match:
            raise ValueError("blood pressure must look like '120/80'")
        return f"{int(match.group(1))}/{int(match.group(2))}"
    if metric == "blood_sugar":
        if not value.isdigit():
            raise ValueError("blood sugar must be a whole number")
        return str(int(value))
    if metric == "temperature":
        try:
            reading = float(value)
        except ValueError:
            raise ValueError("temperature must be a number") from None
        if not math.isfinite(reading):
            raise ValueError("temperature must be a number")
        return value
    if metric == "mood":
        if value not in MOOD_SCORES:
            raise ValueError(f"mood must be one of {', '.join(MOOD_SCORES)}")
        return value
    raise ValueError(f"unknown metric {metric!r}")
