"""
Sliding-window beat rate estimation.
"""

import logging
from typing import Tuple

import numpy as np

from .timestamps import as_seconds, from_seconds

logger = logging.getLogger(__name__)


def beat_rate_bins(
    beat_times,
    delta_t: float = 0.5,
    window: float = 5.0
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Estimate beat rate in regularly spaced time bins.

    Bin centres run from the first to the last beat time in steps of
    ``delta_t`` (a trailing partial step is dropped). The rate at centre c is
    the number of beats in [c - window/2, c + window/2) divided by window.

    Parameters
    ----------
    beat_times : array-like
        Strictly increasing beat times, seconds or numpy.datetime64
    delta_t : float
        Spacing between bin centres (s)
    window : float
        Width of the counting window (s)

    Returns
    -------
    rates : np.ndarray
        Beats per second for each bin
    bin_centers : np.ndarray
        Bin centre times, same type as beat_times

    Example
    -------
    >>> rates, centers = beat_rate_bins(np.arange(11.0), delta_t=1, window=2)
    >>> rates[5]
    1.0
    """
    if delta_t <= 0:
        raise ValueError(f"delta_t must be positive, got {delta_t}")
    if window <= 0:
        raise ValueError(f"window must be positive, got {window}")

    times, origin = as_seconds(beat_times)
    times = times.ravel()
    if times.size == 0:
        raise ValueError("beat_times must not be empty")
    if np.any(np.diff(times) <= 0):
        raise ValueError("beat_times must be strictly increasing")

    span = times[-1] - times[0]
    n_bins = int(np.floor(span / delta_t + 1e-9)) + 1
    centers = times[0] + delta_t * np.arange(n_bins)

    half_window = window / 2
    # two-pointer count over the sorted beat times
    start = np.searchsorted(times, centers - half_window, side='left')
    stop = np.searchsorted(times, centers + half_window, side='left')
    rates = (stop - start) / window

    logger.debug("Binned %d beats into %d rate bins (delta_t=%g, window=%g)",
                 times.size, n_bins, delta_t, window)

    return rates, from_seconds(centers, origin)
