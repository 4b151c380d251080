"""
Quantile quantisation of continuous rates into discrete HMM symbols.
"""

import logging
from typing import Tuple

import numpy as np

logger = logging.getLogger(__name__)


def quantize_rates(rates, n_symbols: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Quantise continuous values into symbols 1..n_symbols.

    Cut points are the n_symbols - 1 equally spaced quantiles of the data, so
    each symbol occurs about equally often even for skewed data. When the
    quantiles collapse (constant or low-variance data) the cut points fall
    back to linear spacing between min and max (min - 1 and max + 1 for
    constant data).

    Parameters
    ----------
    rates : array-like
        Observed continuous values, finite and non-empty
    n_symbols : int
        Alphabet size

    Returns
    -------
    symbols : np.ndarray
        Integer symbols in [1, n_symbols], same length as rates
    edges : np.ndarray
        Cut points. Keep them to quantise new data identically
        (see ``digitize_rates``).

    Example
    -------
    >>> symbols, edges = quantize_rates([0.5, 1.0, 1.5, 2.0], n_symbols=2)
    >>> symbols
    array([1, 1, 2, 2])
    """
    if int(n_symbols) != n_symbols or n_symbols < 1:
        raise ValueError(f"n_symbols must be a positive integer, got {n_symbols}")
    n_symbols = int(n_symbols)
    rates = _as_rates(rates)

    probs = np.arange(1, n_symbols) / n_symbols
    edges = np.unique(np.quantile(rates, probs, method='hazen'))

    if edges.size < n_symbols - 1:
        min_r = rates.min()
        max_r = rates.max()
        if min_r == max_r:
            edges = np.linspace(min_r - 1, max_r + 1, n_symbols + 1)
        else:
            edges = np.linspace(min_r, max_r, n_symbols + 1)
        edges = edges[1:-1]
        logger.warning("Quantile edges collapsed; using %d linearly spaced edges", edges.size)

    return digitize_rates(rates, edges), edges


def digitize_rates(rates, edges) -> np.ndarray:
    """Assign each value its 1-based bin in [-inf, edges..., inf]."""
    rates = _as_rates(rates)
    edges = np.asarray(edges, dtype=float).ravel()
    return np.searchsorted(edges, rates, side='right') + 1


def _as_rates(rates) -> np.ndarray:
    rates = np.asarray(rates, dtype=float).ravel()
    if rates.size == 0:
        raise ValueError("rates must not be empty")
    if not np.all(np.isfinite(rates)):
        raise ValueError("rates contains non-finite values")
    return rates
