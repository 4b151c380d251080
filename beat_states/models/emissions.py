"""
Emission Models for the Rate HMM

Two interchangeable emission models share one interface so that the
forward-backward, Baum-Welch and Viterbi code is written once:

    DiscreteEmission - categorical distribution over quantised rate symbols
    GaussianEmission - one univariate Gaussian per state

Observations are prepared with ``encode`` (raw rates -> what the model
scores), scored with ``log_likelihood`` and re-estimated with ``fit``.
"""

from typing import Optional

import numpy as np
from scipy.stats import norm

from .quantize import digitize_rates

# floor to prevent log-domain underflow
_EPS = 1e-300


class EmissionModel:
    """Interface for per-state emission distributions."""

    n_states: int

    def encode(self, rates) -> np.ndarray:
        """Turn raw rate values into observations for this model."""
        raise NotImplementedError

    def log_likelihood(self, observations: np.ndarray, state: Optional[int] = None) -> np.ndarray:
        """
        Log-likelihood of encoded observations.

        Returns an array of shape (T, n_states), or shape (T,) for a single
        state when ``state`` is given.
        """
        raise NotImplementedError

    def fit(self, observations: np.ndarray, responsibilities: np.ndarray) -> 'EmissionModel':
        """M-step: new model re-estimated from state posteriors of shape (T, n_states)."""
        raise NotImplementedError

    def permuted(self, order: np.ndarray) -> 'EmissionModel':
        """Copy with states reordered so that new state k is old state order[k]."""
        raise NotImplementedError


class DiscreteEmission(EmissionModel):
    """
    Categorical emissions over symbols 1..M.

    Parameters
    ----------
    emission : np.ndarray
        Row-stochastic matrix of shape (n_states, M)
    edges : np.ndarray, optional
        Quantisation cut points from training, used by ``encode``
    """

    def __init__(self, emission: np.ndarray, edges: Optional[np.ndarray] = None):
        self.emission = np.asarray(emission, dtype=float)
        self.edges = None if edges is None else np.asarray(edges, dtype=float)
        self.n_states, self.n_symbols = self.emission.shape

    @classmethod
    def random(cls, n_states: int, n_symbols: int, rng: np.random.Generator,
               edges: Optional[np.ndarray] = None) -> 'DiscreteEmission':
        emission = rng.random((n_states, n_symbols))
        return cls(emission / emission.sum(axis=1, keepdims=True), edges)

    def encode(self, rates) -> np.ndarray:
        if self.edges is None:
            raise ValueError("Discrete emission model has no quantisation edges")
        return digitize_rates(rates, self.edges)

    def log_likelihood(self, observations, state=None):
        idx = np.asarray(observations, dtype=int) - 1
        if idx.size and (idx.min() < 0 or idx.max() >= self.n_symbols):
            raise ValueError(f"symbols must lie in [1, {self.n_symbols}]")
        log_emission = np.log(np.maximum(self.emission, _EPS))
        if state is not None:
            return log_emission[state, idx]
        return log_emission[:, idx].T

    def fit(self, observations, responsibilities):
        idx = np.asarray(observations, dtype=int) - 1
        counts = np.zeros((self.n_states, self.n_symbols))
        for m in range(self.n_symbols):
            counts[:, m] = responsibilities[idx == m].sum(axis=0)
        totals = counts.sum(axis=1, keepdims=True)
        emission = np.where(totals > 0, counts / np.where(totals > 0, totals, 1.0),
                            1.0 / self.n_symbols)
        return DiscreteEmission(emission, self.edges)

    def permuted(self, order):
        return DiscreteEmission(self.emission[order], self.edges)


class GaussianEmission(EmissionModel):
    """
    Univariate Gaussian emissions, one component per state.

    Parameters
    ----------
    means : np.ndarray
        Per-state means, shape (n_states,)
    variances : np.ndarray
        Per-state variances, shape (n_states,); floored at var_floor
    var_floor : float
        Smallest allowed variance
    """

    def __init__(self, means: np.ndarray, variances: np.ndarray, var_floor: float = 1e-6):
        self.means = np.asarray(means, dtype=float).ravel()
        self.var_floor = var_floor
        self.variances = np.maximum(np.asarray(variances, dtype=float).ravel(), var_floor)
        if self.means.shape != self.variances.shape:
            raise ValueError("means and variances must have the same length")
        self.n_states = self.means.size

    def encode(self, rates) -> np.ndarray:
        rates = np.asarray(rates, dtype=float).ravel()
        if rates.size == 0:
            raise ValueError("rates must not be empty")
        if not np.all(np.isfinite(rates)):
            raise ValueError("rates contains non-finite values")
        return rates

    def log_likelihood(self, observations, state=None):
        x = np.asarray(observations, dtype=float)
        if state is not None:
            return norm.logpdf(x, loc=self.means[state], scale=np.sqrt(self.variances[state]))
        return norm.logpdf(x[:, None], loc=self.means[None, :],
                           scale=np.sqrt(self.variances)[None, :])

    def fit(self, observations, responsibilities):
        x = np.asarray(observations, dtype=float)
        weight = responsibilities.sum(axis=0)
        means = self.means.copy()
        variances = self.variances.copy()
        used = weight > 0
        # states with no posterior mass keep their previous parameters
        means[used] = (responsibilities[:, used] * x[:, None]).sum(axis=0) / weight[used]
        resid = (x[:, None] - means[None, :]) ** 2
        variances[used] = (responsibilities[:, used] * resid[:, used]).sum(axis=0) / weight[used]
        return GaussianEmission(means, variances, self.var_floor)

    def permuted(self, order):
        return GaussianEmission(self.means[order], self.variances[order], self.var_floor)

    @property
    def stds(self) -> np.ndarray:
        return np.sqrt(self.variances)
