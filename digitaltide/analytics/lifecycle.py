"""Trending topic lifecycle state machine."""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

# Relative velocity change thresholds
SURGE_DELTA = 0.5
UP_DELTA = 0.1
# Absolute trend score change used when velocity is flat
SCORE_DELTA = 0.05

INITIAL_CONFIDENCE = 0.5
MAX_CONFIDENCE = 0.95
CONFIDENCE_GAIN = 0.3


class LifecycleStage(str, Enum):
    """Position of a topic along its emergence-to-fade curve."""
    EMERGING = "emerging"
    RISING = "rising"
    PEAK = "peak"
    DECLINING = "declining"
    FADING = "fading"

    @property
    def description(self) -> str:
        return STAGE_DESCRIPTIONS[self]


class Signal(str, Enum):
    SURGE = "surge"
    UP = "up"
    FLAT = "flat"
    DOWN = "down"
    COLLAPSE = "collapse"


STAGE_DESCRIPTIONS = {
    LifecycleStage.EMERGING: "Newly detected or re-emerging trend",
    LifecycleStage.RISING: "Gaining momentum",
    LifecycleStage.PEAK: "At peak popularity",
    LifecycleStage.DECLINING: "Losing momentum",
    LifecycleStage.FADING: "Rapidly declining",
}

# Confidence assigned when a transition changes stage
SIGNAL_STRENGTH = {
    Signal.SURGE: 0.8,
    Signal.UP: 0.65,
    Signal.FLAT: 0.6,
    Signal.DOWN: 0.65,
    Signal.COLLAPSE: 0.8,
}

S = LifecycleStage
TRANSITIONS: Dict[LifecycleStage, Dict[Signal, LifecycleStage]] = {
    S.EMERGING: {Signal.SURGE: S.RISING, Signal.UP: S.RISING, Signal.FLAT: S.EMERGING,
                 Signal.DOWN: S.DECLINING, Signal.COLLAPSE: S.FADING},
    S.RISING: {Signal.SURGE: S.RISING, Signal.UP: S.RISING, Signal.FLAT: S.PEAK,
               Signal.DOWN: S.PEAK, Signal.COLLAPSE: S.DECLINING},
    S.PEAK: {Signal.SURGE: S.RISING, Signal.UP: S.PEAK, Signal.FLAT: S.PEAK,
             Signal.DOWN: S.DECLINING, Signal.COLLAPSE: S.FADING},
    S.DECLINING: {Signal.SURGE: S.RISING, Signal.UP: S.RISING, Signal.FLAT: S.DECLINING,
                  Signal.DOWN: S.DECLINING, Signal.COLLAPSE: S.FADING},
    # No terminal stage: a renewed spike brings a fading topic back
    S.FADING: {Signal.SURGE: S.RISING, Signal.UP: S.EMERGING, Signal.FLAT: S.FADING,
               Signal.DOWN: S.FADING, Signal.COLLAPSE: S.FADING},
}
del S


@dataclass
class Lifecycle:
    stage: LifecycleStage
    confidence: float
    velocity_change: float = 0.0
    trend_score_change: float = 0.0
    history_length: int = 0

    @property
    def description(self) -> str:
        return self.stage.description

    def to_dict(self) -> Dict[str, Any]:
        return {
            'stage': self.stage.value,
            'confidence': self.confidence,
            'description': self.description,
            'velocity_change': self.velocity_change,
            'trend_score_change': self.trend_score_change,
            'history_length': self.history_length,
        }


def classify_signal(trend_score_delta: float, velocity_delta: float) -> Signal:
    """
    Map deltas to a movement signal.

    ``velocity_delta`` is the relative velocity change since the previous pass;
    ``trend_score_delta`` is the absolute trend score change and only decides
    the signal when velocity is flat.
    """
    if velocity_delta > SURGE_DELTA:
        return Signal.SURGE
    if velocity_delta < -SURGE_DELTA:
        return Signal.COLLAPSE
    if velocity_delta > UP_DELTA:
        return Signal.UP
    if velocity_delta < -UP_DELTA:
        return Signal.DOWN
    if trend_score_delta > SCORE_DELTA:
        return Signal.UP
    if trend_score_delta < -SCORE_DELTA:
        return Signal.DOWN
    return Signal.FLAT


def transition(prev_stage: Optional[LifecycleStage], trend_score_delta: float,
               velocity_delta: float,
               prev_confidence: float = INITIAL_CONFIDENCE) -> Tuple[LifecycleStage, float]:
    """
    Advance a topic's lifecycle by one analysis pass.

    Returns the new stage and its confidence. Staying in the same stage
    reinforces confidence towards MAX_CONFIDENCE; changing stage resets it
    to the strength of the triggering signal. A topic without history is
    EMERGING with INITIAL_CONFIDENCE.
    """
    if prev_stage is None:
        return LifecycleStage.EMERGING, INITIAL_CONFIDENCE

    signal = classify_signal(trend_score_delta, velocity_delta)
    new_stage = TRANSITIONS[prev_stage][signal]
    if new_stage == prev_stage:
        confidence = prev_confidence + (MAX_CONFIDENCE - prev_confidence) * CONFIDENCE_GAIN
    else:
        confidence = SIGNAL_STRENGTH[signal]
    return new_stage, round(min(MAX_CONFIDENCE, max(0.0, confidence)), 3)
