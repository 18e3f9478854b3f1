# echoid/consent/coercion.py
"""
EchoID Consent: Coercion Heuristic

Scores a voice recording for signs of pressure from timing features only.
The score goes on-chain as coercionLevel; the raw features stay off-chain.

Rules, first match wins:
    duration < 5s                              -> AMBER (rushed)
    pause_count > duration / 3                 -> AMBER (hesitation/prompting)
    avg_pause_length > 5s                      -> RED
    speaking_rate < 50 or > 200 wpm            -> AMBER (stress)
    pause_count > duration / 4
        and avg_pause_length > 3
        and (rate < 60 or rate > 180)          -> RED
    otherwise                                  -> GREEN
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class CoercionLevel(IntEnum):
    """Coercion level (uint8 on-chain)."""
    GREEN = 0  # normal, voluntary
    AMBER = 1  # suspicious patterns
    RED = 2    # high risk of coercion


@dataclass(frozen=True)
class AudioAnalysis:
    """Timing features extracted from the consent recording."""
    duration: float          # seconds
    pause_count: int
    avg_pause_length: float  # seconds
    speaking_rate: float     # words per minute (estimated)


def analyze_coercion(analysis: AudioAnalysis) -> CoercionLevel:
    duration = analysis.duration
    pauses = analysis.pause_count
    avg_pause = analysis.avg_pause_length
    rate = analysis.speaking_rate

    if duration < 5:
        return CoercionLevel.AMBER
    if pauses > duration / 3:
        return CoercionLevel.AMBER
    if avg_pause > 5:
        return CoercionLevel.RED
    if rate < 50 or rate > 200:
        return CoercionLevel.AMBER
    if pauses > duration / 4 and avg_pause > 3 and (rate < 60 or rate > 180):
        return CoercionLevel.RED
    return CoercionLevel.GREEN


_LABELS = {
    CoercionLevel.GREEN: "Normal",
    CoercionLevel.AMBER: "Caution",
    CoercionLevel.RED: "High Risk",
}

_COLORS = {
    CoercionLevel.GREEN: "#4CAF50",
    CoercionLevel.AMBER: "#FF9800",
    CoercionLevel.RED: "#F44336",
}


def coercion_label(level: int) -> str:
    try:
        return _LABELS[CoercionLevel(level)]
    except ValueError:
        return "Unknown"


def coercion_color(level: int) -> str:
    try:
        return _COLORS[CoercionLevel(level)]
    except ValueError:
        return "#757575"
