"""
Data Utilities for Detected Beats

Helper functions for:
- Converting beat records into a pandas table
- Recovering physiological amplitudes from the un-normalised signal
"""

from typing import List, Union

import numpy as np
import pandas as pd

from ..beats.detector import Beat
from ..beats.timestamps import as_seconds

BEAT_COLUMNS = [
    'onset', 'offset', 'duty_cycle', 'period', 'instant_freq', 'amplitude',
    'amplitude_high', 'amplitude_low', 'valid', 'up_duration', 'high_crossing',
]


def beats_to_frame(beats: List[Beat]) -> pd.DataFrame:
    """
    Convert beat records into a DataFrame, one row per beat.

    Parameters
    ----------
    beats : list of Beat
        Output of detect_beats

    Returns
    -------
    frame : pd.DataFrame
        Columns as in BEAT_COLUMNS. An empty list gives an empty frame with
        those columns.

    Example
    -------
    >>> frame = beats_to_frame(detect_beats(t, d))
    >>> frame.loc[frame['valid'], 'instant_freq'].mean()
    """
    if not beats:
        return pd.DataFrame(columns=BEAT_COLUMNS)
    return pd.DataFrame([b.to_dict() for b in beats], columns=BEAT_COLUMNS)


def add_raw_beat_values(
    beats: Union[List[Beat], pd.DataFrame],
    t_raw,
    d_raw
) -> pd.DataFrame:
    """
    Recalculate beat amplitudes on the raw (un-normalised) signal.

    Beat timing usually comes from a normalised copy of the signal. This maps
    each onset/offset onto the raw sample index by linear interpolation
    (rounded, clipped to the signal) and measures:

    - raw_peak: maximum of the raw signal within the beat
    - raw_trough: minimum between the previous beat's offset (first sample for
      the first beat) and the onset
    - raw_amplitude: raw_peak - raw_trough

    Parameters
    ----------
    beats : list of Beat or pd.DataFrame
        Beats with at least 'onset' and 'offset'
    t_raw : array-like
        Raw signal timestamps, same time base as the beats
    d_raw : array-like
        Raw signal values

    Returns
    -------
    frame : pd.DataFrame
        Copy of the beat table with raw_peak, raw_trough and raw_amplitude
        columns. Beats with an empty index range get NaN.
    """
    frame = beats.copy() if isinstance(beats, pd.DataFrame) else beats_to_frame(beats)

    d_raw = np.asarray(d_raw, dtype=float)
    t_numeric, origin = as_seconds(t_raw)
    if t_numeric.size != d_raw.size:
        raise ValueError("t_raw and d_raw must have the same number of elements")

    n = len(frame)
    raw_peak = np.full(n, np.nan)
    raw_trough = np.full(n, np.nan)
    if n == 0 or d_raw.size == 0:
        frame['raw_peak'] = raw_peak
        frame['raw_trough'] = raw_trough
        frame['raw_amplitude'] = raw_peak - raw_trough
        return frame

    if origin is not None:
        onset_times = (frame['onset'].to_numpy(dtype='datetime64[ns]') - origin) / np.timedelta64(1, 'ns') * 1e-9
        offset_times = (frame['offset'].to_numpy(dtype='datetime64[ns]') - origin) / np.timedelta64(1, 'ns') * 1e-9
    else:
        onset_times = frame['onset'].to_numpy(dtype=float)
        offset_times = frame['offset'].to_numpy(dtype=float)

    sample_index = np.arange(d_raw.size)
    onset_idx = _interp_index(t_numeric, sample_index, onset_times)
    offset_idx = _interp_index(t_numeric, sample_index, offset_times)
    last_offset_idx = np.concatenate([[0], offset_idx[:-1]])

    for i in range(n):
        pre_beat = d_raw[last_offset_idx[i]:onset_idx[i] + 1]
        in_beat = d_raw[onset_idx[i]:offset_idx[i] + 1]
        if pre_beat.size == 0 or in_beat.size == 0:
            continue
        raw_peak[i] = in_beat.max()
        raw_trough[i] = pre_beat.min()

    frame['raw_peak'] = raw_peak
    frame['raw_trough'] = raw_trough
    frame['raw_amplitude'] = raw_peak - raw_trough
    return frame


def _interp_index(t: np.ndarray, index: np.ndarray, times: np.ndarray) -> np.ndarray:
    """Fractional sample index of times, extrapolated linearly, rounded half up and clipped."""
    if t.size == 1:
        return np.zeros(times.size, dtype=int)
    pos = np.interp(times, t, index)
    # np.interp clamps; extend linearly beyond the ends
    before = times < t[0]
    after = times > t[-1]
    pos[before] = (times[before] - t[0]) / (t[1] - t[0])
    pos[after] = index[-1] + (times[after] - t[-1]) / (t[-1] - t[-2])
    return np.clip(np.floor(pos + 0.5).astype(int), 0, index[-1])
