"""
Data utilities subpackage for detected beats.
"""

from .beat_table import BEAT_COLUMNS, beats_to_frame, add_raw_beat_values

__all__ = [
    'BEAT_COLUMNS',
    'beats_to_frame',
    'add_raw_beat_values',
]
