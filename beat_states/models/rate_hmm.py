"""
Rate Hidden Markov Model

Hidden Markov Model over a binned beat-rate series, fitted by Baum-Welch
(EM) with either a discrete (quantised) or a Gaussian emission model and
decoded with Viterbi.

EM labels states arbitrarily. After fitting, states are ranked by ascending
mean rate and the ranking is stored as a StateRemap. The model keeps the raw
EM parameters; decoding runs on them and maps the path through the remap,
so decoded labels are canonical:
    1 - lowest mean rate
    N - highest mean rate
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import numpy as np
from numba import jit
from scipy.cluster.vq import kmeans2

from .emissions import EmissionModel, DiscreteEmission, GaussianEmission
from .quantize import quantize_rates

logger = logging.getLogger(__name__)

KMEANS_REPLICATES = 5

RandomState = Union[None, int, np.random.Generator]


class InsufficientDataError(ValueError):
    """Raised when there are too few observations to fit the requested model."""


@dataclass(frozen=True, eq=False)
class StateRemap:
    """
    Canonical relabelling of EM states.

    remap[fitted_state] is the 1-based canonical rank of a 0-based
    fitted state. order[k] is the fitted state holding rank k + 1.
    """
    remap: np.ndarray

    @classmethod
    def from_means(cls, means: np.ndarray) -> 'StateRemap':
        """Rank states by ascending mean; NaN means rank last."""
        order = np.argsort(np.asarray(means, dtype=float), kind='stable')
        remap = np.empty(order.size, dtype=int)
        remap[order] = np.arange(1, order.size + 1)
        return cls(remap)

    @classmethod
    def identity(cls, n_states: int) -> 'StateRemap':
        return cls(np.arange(1, n_states + 1))

    @property
    def order(self) -> np.ndarray:
        return np.argsort(self.remap, kind='stable')

    def apply(self, path: np.ndarray) -> np.ndarray:
        """Map a 0-based raw state path to canonical labels 1..N."""
        return self.remap[np.asarray(path, dtype=int)]


@dataclass(eq=False)
class RateHMM:
    """
    Trained rate HMM.

    Attributes
    ----------
    prior : np.ndarray
        Initial state distribution (raw EM order)
    transition : np.ndarray
        Row-stochastic transition matrix (raw EM order)
    emission : EmissionModel
        DiscreteEmission (carries quantisation edges) or GaussianEmission
    state_remap : StateRemap
        Raw state -> canonical label
    state_stats : np.ndarray
        (N, 2) mean and std of the rate per canonical state
    log_likelihood : float
        Training log-likelihood at the last EM iteration
    n_iterations : int
    converged : bool
    """
    prior: np.ndarray
    transition: np.ndarray
    emission: EmissionModel
    state_remap: StateRemap
    state_stats: Optional[np.ndarray] = None
    log_likelihood: float = np.nan
    n_iterations: int = 0
    converged: bool = False

    @property
    def n_states(self) -> int:
        return self.transition.shape[0]

    @property
    def model_type(self) -> str:
        return 'discrete' if isinstance(self.emission, DiscreteEmission) else 'gaussian'

    # Canonical (sorted) views of the parameters

    @property
    def sorted_prior(self) -> np.ndarray:
        return self.prior[self.state_remap.order]

    @property
    def sorted_transition(self) -> np.ndarray:
        order = self.state_remap.order
        return self.transition[np.ix_(order, order)]

    @property
    def sorted_emission(self) -> EmissionModel:
        return self.emission.permuted(self.state_remap.order)

    def decode(self, rates) -> np.ndarray:
        return decode_states(rates, self)


def _random_stochastic(rng: np.random.Generator, shape) -> np.ndarray:
    x = rng.random(shape)
    return x / x.sum(axis=-1, keepdims=True)


def _safe_log(x: np.ndarray) -> np.ndarray:
    with np.errstate(divide='ignore'):
        return np.log(np.asarray(x, dtype=float))


@jit(nopython=True, cache=True)
def _forward_backward(prior, transition, likelihood):
    """
    Scaled forward-backward pass.

    likelihood[t, s] is proportional to P(obs_t | state s); any per-row
    scaling only shifts the returned log-likelihood.

    Returns state posteriors (T, N), expected transition counts (N, N) and
    the sum of log scaling factors.
    """
    T, N = likelihood.shape
    alpha = np.zeros((T, N))
    beta = np.zeros((T, N))
    scale = np.zeros(T)

    for s in range(N):
        alpha[0, s] = prior[s] * likelihood[0, s]
    c = alpha[0].sum()
    if c <= 0.0:
        c = 1e-300
    scale[0] = c
    for s in range(N):
        alpha[0, s] /= c

    for t in range(1, T):
        for j in range(N):
            acc = 0.0
            for i in range(N):
                acc += alpha[t - 1, i] * transition[i, j]
            alpha[t, j] = acc * likelihood[t, j]
        c = alpha[t].sum()
        if c <= 0.0:
            c = 1e-300
        scale[t] = c
        for j in range(N):
            alpha[t, j] /= c

    for s in range(N):
        beta[T - 1, s] = 1.0
    for t in range(T - 2, -1, -1):
        for i in range(N):
            acc = 0.0
            for j in range(N):
                acc += transition[i, j] * likelihood[t + 1, j] * beta[t + 1, j]
            beta[t, i] = acc / scale[t + 1]

    gamma = alpha * beta
    for t in range(T):
        g = gamma[t].sum()
        if g > 0.0:
            for s in range(N):
                gamma[t, s] /= g

    xi_sum = np.zeros((N, N))
    for t in range(T - 1):
        for i in range(N):
            for j in range(N):
                xi_sum[i, j] += (alpha[t, i] * transition[i, j] * likelihood[t + 1, j]
                                 * beta[t + 1, j] / scale[t + 1])

    return gamma, xi_sum, np.log(scale).sum()


@jit(nopython=True, cache=True)
def _viterbi(log_prior, log_transition, log_likelihood):
    """Most probable 0-based state path in the log domain."""
    T, N = log_likelihood.shape
    delta = np.empty((T, N))
    psi = np.zeros((T, N), dtype=np.int64)

    for s in range(N):
        delta[0, s] = log_prior[s] + log_likelihood[0, s]

    for t in range(1, T):
        for j in range(N):
            best = -np.inf
            arg = 0
            for i in range(N):
                score = delta[t - 1, i] + log_transition[i, j]
                if score > best:
                    best = score
                    arg = i
            delta[t, j] = best + log_likelihood[t, j]
            psi[t, j] = arg

    path = np.zeros(T, dtype=np.int64)
    path[T - 1] = np.argmax(delta[T - 1])
    for t in range(T - 2, -1, -1):
        path[t] = psi[t + 1, path[t + 1]]
    return path


def viterbi_path(prior: np.ndarray, transition: np.ndarray,
                 emission: EmissionModel, observations: np.ndarray) -> np.ndarray:
    """
    Viterbi decoding for any emission model.

    Parameters
    ----------
    prior : np.ndarray
        Initial state distribution
    transition : np.ndarray
        Transition matrix
    emission : EmissionModel
        Emission model scoring the observations
    observations : np.ndarray
        Encoded observations (``emission.encode``)

    Returns
    -------
    path : np.ndarray
        0-based state indices in the emission model's own state order
    """
    log_lik = np.ascontiguousarray(emission.log_likelihood(observations), dtype=np.float64)
    if log_lik.shape[0] == 0:
        return np.zeros(0, dtype=np.int64)
    return _viterbi(np.ascontiguousarray(_safe_log(prior)),
                    np.ascontiguousarray(_safe_log(transition)),
                    log_lik)


def baum_welch(
    observations: np.ndarray,
    prior: np.ndarray,
    transition: np.ndarray,
    emission: EmissionModel,
    max_iterations: int = 100,
    tolerance: float = 1e-4
) -> Tuple[np.ndarray, np.ndarray, EmissionModel, float, int, bool]:
    """
    Re-estimate HMM parameters by expectation-maximisation.

    Convergence is declared when the relative change in log-likelihood,
    |LL - LL_prev| / (1 + |LL_prev|), falls below tolerance.

    Returns
    -------
    prior, transition, emission, log_likelihood, n_iterations, converged
    """
    prior = np.asarray(prior, dtype=float)
    transition = np.asarray(transition, dtype=float)
    n_states = transition.shape[0]
    prev_ll = -np.inf
    log_likelihood = -np.inf
    converged = False
    iteration = 0

    for iteration in range(1, max_iterations + 1):
        log_lik = emission.log_likelihood(observations)
        row_max = log_lik.max(axis=1, keepdims=True)
        likelihood = np.ascontiguousarray(np.exp(log_lik - row_max))

        gamma, xi_sum, log_scale = _forward_backward(
            np.ascontiguousarray(prior), np.ascontiguousarray(transition), likelihood)
        log_likelihood = float(log_scale + row_max.sum())

        # M-step
        prior = gamma[0] / gamma[0].sum()
        row_totals = xi_sum.sum(axis=1, keepdims=True)
        transition = np.where(row_totals > 0,
                              xi_sum / np.where(row_totals > 0, row_totals, 1.0),
                              1.0 / n_states)
        emission = emission.fit(observations, gamma)

        logger.debug("EM iteration %d: log-likelihood %.6f", iteration, log_likelihood)
        if np.isfinite(prev_ll) and abs(log_likelihood - prev_ll) / (1 + abs(prev_ll)) < tolerance:
            converged = True
            break
        prev_ll = log_likelihood

    if not converged:
        logger.warning("EM did not converge within %d iterations", max_iterations)
    else:
        logger.info("EM converged after %d iterations (log-likelihood %.4f)",
                    iteration, log_likelihood)

    return prior, transition, emission, log_likelihood, iteration, converged


def _check_fit_args(rates, n_states, max_iterations, tolerance) -> np.ndarray:
    rates = np.asarray(rates, dtype=float).ravel()
    if rates.size == 0:
        raise ValueError("rates must not be empty")
    if not np.all(np.isfinite(rates)):
        raise ValueError("rates contains non-finite values")
    if int(n_states) != n_states or n_states < 1:
        raise ValueError(f"n_states must be a positive integer, got {n_states}")
    if int(max_iterations) != max_iterations or max_iterations < 1:
        raise ValueError(f"max_iterations must be a positive integer, got {max_iterations}")
    if tolerance <= 0:
        raise ValueError(f"tolerance must be positive, got {tolerance}")
    return rates


def fit_discrete_hmm(
    rates,
    n_states: int,
    n_symbols: int = 10,
    max_iterations: int = 100,
    tolerance: float = 1e-4,
    random_state: RandomState = None
) -> RateHMM:
    """
    Fit a discrete-emission HMM to a rate series.

    Steps:
      1. Quantise rates into n_symbols symbols (quantile edges)
      2. Baum-Welch from random row-stochastic transition/emission matrices
      3. Viterbi on the training sequence with the raw model
      4. Mean/std of the rates assigned to each state (NaN if none)
      5. Rank states by mean rate -> state_remap

    Parameters
    ----------
    rates : array-like
        Binned rates, e.g. from beat_rate_bins
    n_states : int
        Number of hidden states
    n_symbols : int
        Quantisation alphabet size
    max_iterations : int
        EM iteration cap
    tolerance : float
        Relative log-likelihood convergence tolerance
    random_state : int or np.random.Generator, optional
        Source of the random initial parameters

    Returns
    -------
    model : RateHMM
        Model with DiscreteEmission; state_stats in canonical order

    Example
    -------
    >>> model = fit_discrete_hmm(rates, n_states=3, random_state=0)
    >>> states = decode_states(rates, model)
    """
    rates = _check_fit_args(rates, n_states, max_iterations, tolerance)
    n_states = int(n_states)
    rng = np.random.default_rng(random_state)

    symbols, edges = quantize_rates(rates, n_symbols)

    prior0 = np.full(n_states, 1.0 / n_states)
    transition0 = _random_stochastic(rng, (n_states, n_states))
    emission0 = DiscreteEmission.random(n_states, int(n_symbols), rng, edges)

    prior, transition, emission, ll, n_iter, converged = baum_welch(
        symbols, prior0, transition0, emission0, max_iterations, tolerance)

    training_states = viterbi_path(prior, transition, emission, symbols)

    stats = np.full((n_states, 2), np.nan)
    for s in range(n_states):
        in_state = rates[training_states == s]
        if in_state.size == 0:
            logger.warning("State %d received no training assignments", s + 1)
            continue
        stats[s, 0] = in_state.mean()
        stats[s, 1] = in_state.std(ddof=1) if in_state.size > 1 else 0.0

    remap = StateRemap.from_means(stats[:, 0])

    return RateHMM(
        prior=prior,
        transition=transition,
        emission=emission,
        state_remap=remap,
        state_stats=stats[remap.order],
        log_likelihood=ll,
        n_iterations=n_iter,
        converged=converged,
    )


def _kmeans_init(rates: np.ndarray, n_states: int,
                 rng: np.random.Generator) -> Tuple[np.ndarray, np.ndarray]:
    """Best of KMEANS_REPLICATES k-means runs on the 1-D rates."""
    unique = np.unique(rates)
    best = None
    for _ in range(KMEANS_REPLICATES):
        if unique.size >= n_states:
            init = np.sort(rng.choice(unique, size=n_states, replace=False))
        else:
            init = np.linspace(rates.min(), rates.max(), n_states)
        centroids, labels = kmeans2(rates, init, minit='matrix', missing='warn')
        sse = float(((rates - centroids[labels]) ** 2).sum())
        if best is None or sse < best[0]:
            best = (sse, centroids, labels)
    centroids, labels = best[1], best[2]
    n_empty = n_states - np.unique(labels).size
    if n_empty:
        logger.warning("k-means left %d of %d clusters empty; their states start "
                       "from the initial centres", n_empty, n_states)
    return centroids, labels


def fit_gaussian_hmm(
    rates,
    n_states: int,
    max_iterations: int = 100,
    tolerance: float = 1e-4,
    var_floor: float = 1e-6,
    random_state: RandomState = None
) -> RateHMM:
    """
    Fit an HMM with one Gaussian per state to a rate series.

    Means start at k-means centroids, variances at the per-cluster sample
    variance (overall variance for clusters with fewer than two members),
    floored at var_floor. Prior and transition start random.

    Parameters
    ----------
    rates : array-like
        Binned rates
    n_states : int
        Number of hidden states; must be smaller than len(rates)
    max_iterations : int
    tolerance : float
    var_floor : float
        Smallest allowed state variance
    random_state : int or np.random.Generator, optional

    Returns
    -------
    model : RateHMM
        Model with GaussianEmission; state_stats holds canonical
        (mean, std) per state

    Raises
    ------
    InsufficientDataError
        If len(rates) <= n_states
    """
    rates = _check_fit_args(rates, n_states, max_iterations, tolerance)
    n_states = int(n_states)
    if rates.size <= n_states:
        raise InsufficientDataError(
            f"The number of binned rates ({rates.size}) is not greater than the number "
            f"of requested HMM states ({n_states}). The beat data may be too short, or "
            f"delta_t too large relative to its duration."
        )
    rng = np.random.default_rng(random_state)

    centroids, labels = _kmeans_init(rates, n_states, rng)
    overall_var = rates.var(ddof=1)
    variances = np.empty(n_states)
    for s in range(n_states):
        in_cluster = rates[labels == s]
        variances[s] = in_cluster.var(ddof=1) if in_cluster.size > 1 else overall_var
    logger.debug("k-means initial means %s, variances %s", centroids, variances)

    emission0 = GaussianEmission(centroids, variances, var_floor)
    prior0 = _random_stochastic(rng, n_states)
    transition0 = _random_stochastic(rng, (n_states, n_states))

    prior, transition, emission, ll, n_iter, converged = baum_welch(
        rates, prior0, transition0, emission0, max_iterations, tolerance)

    remap = StateRemap.from_means(emission.means)
    order = remap.order

    return RateHMM(
        prior=prior,
        transition=transition,
        emission=emission,
        state_remap=remap,
        state_stats=np.column_stack([emission.means[order], emission.stds[order]]),
        log_likelihood=ll,
        n_iterations=n_iter,
        converged=converged,
    )


def fit_hmm(rates, n_states: int, model_type: str = 'gaussian', **options) -> RateHMM:
    """Fit a 'discrete' or 'gaussian' rate HMM."""
    if model_type == 'discrete':
        return fit_discrete_hmm(rates, n_states, **options)
    if model_type == 'gaussian':
        return fit_gaussian_hmm(rates, n_states, **options)
    raise ValueError(f"Unknown model type: {model_type}")


def decode_states(rates, model: RateHMM) -> np.ndarray:
    """
    Most likely canonical state sequence for a rate series.

    Observations are encoded with the model's own emission (training-time
    quantisation edges for the discrete model), decoded with the raw
    parameters and mapped through state_remap. Parameters are never refit.

    Returns
    -------
    states : np.ndarray
        Labels in 1..N, one per rate
    """
    observations = model.emission.encode(rates)
    path = viterbi_path(model.prior, model.transition, model.emission, observations)
    return model.state_remap.apply(path)
