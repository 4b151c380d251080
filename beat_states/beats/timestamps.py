"""
Time base helpers.

Beat detection and rate binning work on float seconds. Callers holding
numpy.datetime64 timestamps get seconds relative to the first timestamp and
convert results back with the returned origin.
"""

from typing import Optional, Tuple

import numpy as np

_NS = np.timedelta64(1, 'ns')


def as_seconds(t) -> Tuple[np.ndarray, Optional[np.datetime64]]:
    """
    Convert timestamps to float seconds.

    Returns
    -------
    seconds : np.ndarray
        Float seconds. Relative to the first timestamp for datetime64 input,
        unchanged otherwise.
    origin : np.datetime64 or None
        First timestamp for datetime64 input, else None
    """
    t = np.asarray(t)
    if np.issubdtype(t.dtype, np.datetime64):
        if t.size == 0:
            return np.zeros(0), None
        origin = t[0]
        return (t - origin) / _NS * 1e-9, origin
    return t.astype(float), None


def from_seconds(seconds, origin: Optional[np.datetime64]):
    """Inverse of ``as_seconds`` for a scalar or array of seconds."""
    if origin is None:
        return seconds
    ns = np.round(np.asarray(seconds, dtype=float) * 1e9).astype(np.int64)
    return origin + ns.astype('timedelta64[ns]')
