"""
Models subpackage for the beat-rate HMM.
"""

from .quantize import quantize_rates, digitize_rates
from .emissions import EmissionModel, DiscreteEmission, GaussianEmission
from .rate_hmm import (
    RateHMM,
    StateRemap,
    InsufficientDataError,
    baum_welch,
    viterbi_path,
    fit_discrete_hmm,
    fit_gaussian_hmm,
    fit_hmm,
    decode_states,
)
from .dwell import DwellStats, DEFAULT_TIME_BINS, run_lengths, dwell_histogram

__all__ = [
    'quantize_rates',
    'digitize_rates',
    'EmissionModel',
    'DiscreteEmission',
    'GaussianEmission',
    'RateHMM',
    'StateRemap',
    'InsufficientDataError',
    'baum_welch',
    'viterbi_path',
    'fit_discrete_hmm',
    'fit_gaussian_hmm',
    'fit_hmm',
    'decode_states',
    'DwellStats',
    'DEFAULT_TIME_BINS',
    'run_lengths',
    'dwell_histogram',
]
