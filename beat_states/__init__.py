"""
Beat States Package

Beat detection and Hidden Markov Model state analysis for long pulsatile
recordings (photoplethysmograph-like signals).

Pipeline:
    raw signal -> beats -> binned rate -> fitted HMM -> state path -> dwell times

Main Components:
    - detect_beats: Threshold hysteresis beat detector
    - beat_rate_bins: Sliding-window beat rate
    - fit_discrete_hmm / fit_gaussian_hmm: Baum-Welch fitting with canonical state order
    - decode_states: Viterbi decoding to canonical labels
    - dwell_histogram: Per-state dwell-time histograms
    - hmm_analysis: The whole rate -> states pipeline
"""

from .beats.detector import Beat, BeatScanner, DetectionOptions, ScanState, detect_beats, beat_times
from .beats.rates import beat_rate_bins
from .models.quantize import quantize_rates, digitize_rates
from .models.emissions import EmissionModel, DiscreteEmission, GaussianEmission
from .models.rate_hmm import (
    RateHMM,
    StateRemap,
    InsufficientDataError,
    fit_discrete_hmm,
    fit_gaussian_hmm,
    fit_hmm,
    decode_states,
)
from .models.dwell import DwellStats, run_lengths, dwell_histogram
from .data.beat_table import beats_to_frame, add_raw_beat_values
from .analysis import AnalysisResult, hmm_analysis

__all__ = [
    # Beats
    'Beat',
    'BeatScanner',
    'DetectionOptions',
    'ScanState',
    'detect_beats',
    'beat_times',
    'beat_rate_bins',

    # HMM
    'quantize_rates',
    'digitize_rates',
    'EmissionModel',
    'DiscreteEmission',
    'GaussianEmission',
    'RateHMM',
    'StateRemap',
    'InsufficientDataError',
    'fit_discrete_hmm',
    'fit_gaussian_hmm',
    'fit_hmm',
    'decode_states',

    # Dwell times
    'DwellStats',
    'run_lengths',
    'dwell_histogram',

    # Data utilities
    'beats_to_frame',
    'add_raw_beat_values',

    # Pipeline
    'AnalysisResult',
    'hmm_analysis',
]

__version__ = "0.1.0"
