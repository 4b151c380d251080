"""
Threshold Beat Detection for Pulsatile Signals

Hysteresis-based beat detector for long, noisy quasi-periodic waveforms
(photoplethysmograph-like signals). Each sample is classified against a low
and a high threshold; a beat starts on a continuous rise from below the low
threshold to above the high threshold and ends on the matching continuous
descent.

Scanner states:
    IDLE          - waiting for the signal to leave the below-low region
    RISING_EDGE   - rising through the band, high threshold not yet reached
    IN_BEAT       - beat accepted, signal above the high threshold
    FALLING_EDGE  - falling through the band, low threshold not yet reached
"""

import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np

from .timestamps import as_seconds, from_seconds

logger = logging.getLogger(__name__)


class ScanState(Enum):
    IDLE = 0
    RISING_EDGE = 1
    IN_BEAT = 2
    FALLING_EDGE = 3


# Events emitted by BeatScanner.step
ONSET = 'onset'
OFFSET = 'offset'


@dataclass(frozen=True)
class DetectionOptions:
    """
    Detection parameters.

    Parameters
    ----------
    threshold_high : float
        Upper hysteresis threshold
    threshold_low : float
        Lower hysteresis threshold, strictly below threshold_high
    refractory : float
        Minimum time (s) between the high-threshold crossings of
        consecutive accepted beats
    amplitude_high_min, amplitude_low_min, amplitude_min, duration_min : float
        Validity criteria, see ``Beat.valid``
    """
    threshold_high: float = 0.75
    threshold_low: float = -0.75
    refractory: float = 0.2
    amplitude_high_min: float = 0.0
    amplitude_low_min: float = 0.0
    amplitude_min: float = 0.0
    duration_min: float = 0.0

    def __post_init__(self):
        if self.threshold_low >= self.threshold_high:
            raise ValueError(
                f"threshold_low ({self.threshold_low}) must be strictly less than "
                f"threshold_high ({self.threshold_high})"
            )
        if self.refractory <= 0:
            raise ValueError(f"refractory must be positive, got {self.refractory}")
        for name in ('amplitude_high_min', 'amplitude_low_min', 'amplitude_min', 'duration_min'):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")

    @property
    def mean_threshold(self) -> float:
        return (self.threshold_high + self.threshold_low) / 2

    @classmethod
    def from_config(cls, config: Dict) -> 'DetectionOptions':
        """Build options from a configuration dict (full config or its 'detection' section)."""
        section = config.get('detection', config)
        fields = cls.__dataclass_fields__
        return cls(**{k: v for k, v in section.items() if k in fields})


@dataclass(frozen=True)
class Beat:
    """
    One detected beat.

    onset/offset are seconds, or numpy.datetime64 when the input time base
    was datetime64. period, instant_freq and duty_cycle are NaN when
    undefined (first beat, no earlier valid beat). high_crossing is the raw
    sample time at which the high threshold was reached; the refractory gate
    compares these.
    """
    onset: float
    offset: float
    duty_cycle: float
    period: float
    instant_freq: float
    amplitude: float
    amplitude_high: float
    amplitude_low: float
    valid: bool
    up_duration: float
    high_crossing: float

    def to_dict(self) -> Dict:
        return asdict(self)


class BeatScanner:
    """
    Finite state machine over consecutive sample pairs.

    ``step`` is the single transition function. It returns ``None`` or an
    ``(event, time, crossing_time)`` tuple, where event is ONSET or OFFSET,
    time is the midpoint onset/offset and crossing_time is the raw sample
    time that completed the edge.

    Example
    -------
    >>> scanner = BeatScanner(threshold_high=0.5, threshold_low=-0.5, refractory=0.2)
    >>> scanner.step(1.0, -1.0, 2.0, 1.0)
    ('onset', 1.5, 2.0)
    """

    def __init__(self, threshold_high: float, threshold_low: float, refractory: float):
        self.threshold_high = threshold_high
        self.threshold_low = threshold_low
        self.refractory = refractory
        self.state = ScanState.IDLE
        self.edge_start = None
        self.last_crossing = -np.inf

    @property
    def in_beat(self) -> bool:
        return self.state in (ScanState.IN_BEAT, ScanState.FALLING_EDGE)

    def step(self, t_prev: float, d_prev: float,
             t_cur: float, d_cur: float) -> Optional[Tuple[str, float, float]]:
        high = self.threshold_high
        low = self.threshold_low

        if self.state == ScanState.IDLE:
            if d_prev <= low and d_cur > low:
                self.state = ScanState.RISING_EDGE
                self.edge_start = t_prev
                # a single sample may cover the whole band
                return self._rising(t_cur, d_cur)
            return None

        if self.state == ScanState.RISING_EDGE:
            return self._rising(t_cur, d_cur)

        if self.state == ScanState.IN_BEAT:
            if d_prev > high and d_cur <= high:
                self.state = ScanState.FALLING_EDGE
                self.edge_start = t_prev
                return self._falling(t_cur, d_cur)
            return None

        return self._falling(t_cur, d_cur)

    def _rising(self, t_cur, d_cur):
        if d_cur > self.threshold_high:
            onset = (self.edge_start + t_cur) / 2
            if t_cur - self.last_crossing >= self.refractory:
                self.state = ScanState.IN_BEAT
                self.last_crossing = t_cur
                return ONSET, onset, t_cur
            self.state = ScanState.IDLE
        elif d_cur <= self.threshold_low:
            # false rise
            self.state = ScanState.IDLE
        return None

    def _falling(self, t_cur, d_cur):
        if d_cur <= self.threshold_low:
            self.state = ScanState.IDLE
            return OFFSET, (self.edge_start + t_cur) / 2, t_cur
        if d_cur > self.threshold_high:
            self.state = ScanState.IN_BEAT
        return None


def _nearest_index(t: np.ndarray, x: float) -> int:
    """Index of the sample closest to x (later sample on ties)."""
    i = int(np.searchsorted(t, x))
    if i <= 0:
        return 0
    if i >= len(t):
        return len(t) - 1
    return i - 1 if x - t[i - 1] < t[i] - x else i


def _validate_series(t: np.ndarray, d: np.ndarray):
    if t.ndim != 1 or d.ndim != 1:
        raise ValueError("t and d must be one-dimensional")
    if t.size != d.size:
        raise ValueError(f"t and d must have the same length ({t.size} != {d.size})")
    if t.size == 0:
        raise ValueError("t and d must not be empty")
    if not np.all(np.isfinite(d)):
        raise ValueError("d contains non-finite values")
    if not np.all(np.isfinite(t)):
        raise ValueError("t contains non-finite values")
    if np.any(np.diff(t) <= 0):
        raise ValueError("Timestamp vector 't' must be strictly increasing")


def detect_beats(t, d, options: Optional[DetectionOptions] = None, **kwargs) -> List[Beat]:
    """
    Detect beats in a pulsatile signal.

    Parameters
    ----------
    t : array-like
        Strictly increasing timestamps, seconds or numpy.datetime64
    d : array-like
        Signal values, finite, same length as t. Assumed preprocessed and
        normalised so that the thresholds are meaningful.
    options : DetectionOptions, optional
        Detection parameters. Keyword arguments build one if not given.

    Returns
    -------
    beats : list of Beat
        Beats in increasing onset order. Empty if none were found.

    Notes
    -----
    A sample counts as above a threshold only when strictly greater than it;
    a sample equal to threshold_low is below the band.

    A candidate is rejected when its high-threshold crossing time is less
    than ``refractory`` after the crossing time of the previous accepted
    beat. The comparison uses raw crossing times, not onset midpoints.

    Amplitudes are measured on the samples nearest the onset and offset
    midpoints, rounding ties to the later sample: the window runs from the
    first sample above the band to the first sample below it.

    A beat still in progress at the end of the series is closed at the final
    timestamp.

    Example
    -------
    >>> t = np.arange(6.0)
    >>> d = np.array([-1, -1, 1, 1, -1, -1.0])
    >>> beats = detect_beats(t, d, threshold_high=0.5, threshold_low=-0.5)
    >>> beats[0].onset, beats[0].offset
    (1.5, 3.5)
    """
    if options is None:
        options = DetectionOptions(**kwargs)
    elif kwargs:
        raise ValueError("pass either options or keyword arguments, not both")

    t_sec, t0 = as_seconds(t)
    d = np.asarray(d, dtype=float)
    _validate_series(t_sec, d)

    scanner = BeatScanner(options.threshold_high, options.threshold_low, options.refractory)
    records = []
    last_valid_onset = -np.inf
    pre_onset_min = np.nan

    for i in range(1, len(d)):
        event = scanner.step(t_sec[i - 1], d[i - 1], t_sec[i], d[i])
        if event is None:
            continue
        kind, when, crossing = event

        if kind == ONSET:
            onset_index = _nearest_index(t_sec, when)
            if records:
                start = _nearest_index(t_sec, records[-1]['offset'])
            else:
                start = 0
            pre_onset_min = d[start:onset_index + 1].min() if onset_index >= start else np.nan

            if last_valid_onset > -np.inf:
                period = when - last_valid_onset
                instant_freq = 1 / period
            else:
                period = np.nan
                instant_freq = np.nan

            records.append({
                'onset': when,
                'period': period,
                'instant_freq': instant_freq,
                'high_crossing': crossing,
            })
        else:
            _close_beat(records, when, t_sec, d, pre_onset_min, options)
            if records[-1]['valid']:
                last_valid_onset = records[-1]['onset']

    if scanner.in_beat:
        _close_beat(records, t_sec[-1], t_sec, d, pre_onset_min, options)

    logger.info("Detected %d beats (%d valid) in %d samples",
                len(records), sum(r['valid'] for r in records), len(d))

    beats = []
    for rec in records:
        if t0 is not None:
            rec['onset'] = from_seconds(rec['onset'], t0)
            rec['offset'] = from_seconds(rec['offset'], t0)
            rec['high_crossing'] = from_seconds(rec['high_crossing'], t0)
        beats.append(Beat(**rec))
    return beats


def _close_beat(records, offset, t, d, pre_onset_min, options: DetectionOptions):
    """Fill offset, amplitudes, validity and duty cycle of the open beat."""
    rec = records[-1]
    rec['offset'] = offset
    rec['up_duration'] = offset - rec['onset']

    onset_index = _nearest_index(t, rec['onset'])
    offset_index = _nearest_index(t, offset)
    beat_data = d[onset_index:offset_index + 1]
    mean_threshold = options.mean_threshold

    if beat_data.size:
        rec['amplitude'] = beat_data.max() - pre_onset_min
    else:
        rec['amplitude'] = np.nan

    high = beat_data[beat_data >= mean_threshold]
    rec['amplitude_high'] = high.max() - mean_threshold if high.size else -np.inf
    low = beat_data[beat_data <= mean_threshold]
    rec['amplitude_low'] = mean_threshold - low.min() if low.size else np.inf

    rec['valid'] = bool(
        rec['amplitude_high'] >= options.amplitude_high_min
        and rec['amplitude_low'] >= options.amplitude_low_min
        and rec['amplitude'] >= options.amplitude_min
        and rec['up_duration'] >= options.duration_min
    )

    if len(records) > 1:
        total_duration = offset - records[-2]['offset']
        rec['duty_cycle'] = rec['up_duration'] / total_duration
    else:
        rec['duty_cycle'] = np.nan


def beat_times(beats: List[Beat], valid_only: bool = True) -> np.ndarray:
    """
    Onset times of detected beats, for rate estimation.

    Parameters
    ----------
    beats : list of Beat
    valid_only : bool
        Drop beats flagged invalid (default True)
    """
    onsets = [b.onset for b in beats if b.valid or not valid_only]
    return np.asarray(onsets)
