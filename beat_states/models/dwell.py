"""
State Dwell-Time Utilities

Helper functions for:
- Run-length encoding decoded state paths
- Histogramming how long each state is occupied per visit
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

DEFAULT_TIME_BINS = np.logspace(np.log10(0.1), np.log10(3600), 100)


@dataclass(eq=False)
class DwellStats:
    """Dwell-time histogram of one state."""
    state: int
    bin_centers: np.ndarray
    counts: np.ndarray

    @property
    def n_dwells(self) -> int:
        return int(self.counts.sum())


def run_lengths(states: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Run-length encode a label sequence.

    Parameters
    ----------
    states : np.ndarray
        Label sequence

    Returns
    -------
    values : np.ndarray
        Label of each maximal run
    lengths : np.ndarray
        Number of samples in each run

    Example
    -------
    >>> run_lengths(np.array([1, 1, 2, 2, 2, 1]))
    (array([1, 2, 1]), array([2, 3, 1]))
    """
    states = np.asarray(states).ravel()
    if states.size == 0:
        return states.copy(), np.zeros(0, dtype=int)

    change = np.concatenate([[True], states[1:] != states[:-1]])
    starts = np.flatnonzero(change)
    lengths = np.diff(np.append(starts, states.size))
    return states[starts], lengths


def dwell_histogram(
    states: np.ndarray,
    bin_spacing: Optional[float] = None,
    time_bins: Optional[np.ndarray] = None,
    timestamps: Optional[np.ndarray] = None,
    n_states: Optional[int] = None
) -> List[DwellStats]:
    """
    Histogram the dwell durations of every state in a decoded path.

    Each maximal run of one label lasts run_length * bin_spacing seconds.
    For every state 1..n_states the run durations are histogrammed with
    the given bin edges; a state that never occurs gets all-zero counts.

    Parameters
    ----------
    states : np.ndarray
        Canonical state labels (1..N), e.g. from decode_states
    bin_spacing : float, optional
        Seconds per sample of the path. If omitted it is taken from
        timestamps (difference of the first two; 1 s for a single sample).
    time_bins : np.ndarray, optional
        Histogram bin edges in seconds. Default: 100 log-spaced edges from
        0.1 s to 3600 s.
    timestamps : np.ndarray, optional
        Evenly spaced sample times (seconds or numpy.datetime64)
    n_states : int, optional
        Number of states to report. Default: the largest label in states.

    Returns
    -------
    dwell_stats : list of DwellStats
        One entry per state, in state order

    Example
    -------
    >>> stats = dwell_histogram(states, bin_spacing=0.5)
    >>> stats[0].bin_centers, stats[0].counts
    """
    states = np.asarray(states).ravel()
    if states.size == 0:
        raise ValueError("states must not be empty")
    if not np.issubdtype(states.dtype, np.integer):
        if not np.all(np.mod(states, 1) == 0):
            raise ValueError("states must be integer labels")
        states = states.astype(int)
    if states.min() < 1:
        raise ValueError("states must be positive labels (1..N)")

    if bin_spacing is None:
        bin_spacing = _spacing_from_timestamps(timestamps, states.size)
    if bin_spacing <= 0:
        raise ValueError(f"bin_spacing must be positive, got {bin_spacing}")

    edges = DEFAULT_TIME_BINS if time_bins is None else np.asarray(time_bins, dtype=float)
    if edges.ndim != 1 or edges.size < 2 or np.any(np.diff(edges) <= 0):
        raise ValueError("time_bins must be a strictly increasing sequence of at least two edges")
    bin_centers = edges[:-1] + np.diff(edges) / 2

    if n_states is None:
        n_states = int(states.max())

    values, lengths = run_lengths(states)
    durations = lengths * bin_spacing

    dwell_stats = []
    for s in range(1, n_states + 1):
        counts, _ = np.histogram(durations[values == s], bins=edges)
        dwell_stats.append(DwellStats(state=s, bin_centers=bin_centers.copy(), counts=counts))
    return dwell_stats


def _spacing_from_timestamps(timestamps, n_samples: int) -> float:
    if timestamps is None:
        raise ValueError("either bin_spacing or timestamps is required")
    timestamps = np.asarray(timestamps).ravel()
    if timestamps.size != n_samples:
        raise ValueError("states and timestamps must have the same number of elements")
    if timestamps.size < 2:
        return 1.0
    step = timestamps[1] - timestamps[0]
    if isinstance(step, np.timedelta64):
        return float(step / np.timedelta64(1, 'ns')) * 1e-9
    return float(step)
