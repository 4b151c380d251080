"""
Beat detection and rate estimation subpackage.
"""

from .detector import Beat, BeatScanner, DetectionOptions, ScanState, detect_beats, beat_times
from .rates import beat_rate_bins

__all__ = [
    'Beat',
    'BeatScanner',
    'DetectionOptions',
    'ScanState',
    'detect_beats',
    'beat_times',
    'beat_rate_bins',
]
