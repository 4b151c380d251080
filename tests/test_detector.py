import numpy as np
import pandas as pd
import pytest

from beat_states.beats.detector import (
    BeatScanner,
    DetectionOptions,
    ScanState,
    beat_times,
    detect_beats,
)
from beat_states.data.beat_table import beats_to_frame


def test_single_beat_midpoints():
    t = np.arange(6.0)
    d = np.array([-1, -1, 1, 1, -1, -1], dtype=float)
    beats = detect_beats(t, d, threshold_high=0.5, threshold_low=-0.5)

    assert len(beats) == 1
    beat = beats[0]
    assert beat.onset == pytest.approx(1.5)
    assert beat.offset == pytest.approx(3.5)
    assert beat.up_duration == pytest.approx(2.0)
    assert beat.high_crossing == pytest.approx(2.0)
    assert beat.amplitude == pytest.approx(2.0)
    assert beat.amplitude_high == pytest.approx(1.0)
    assert beat.amplitude_low == pytest.approx(1.0)
    assert beat.valid
    assert np.isnan(beat.period)
    assert np.isnan(beat.instant_freq)
    assert np.isnan(beat.duty_cycle)


def test_sine_wave_beats():
    fs = 100.0
    f = 1.2
    t = np.arange(0, 30.0, 1 / fs)
    d = np.sin(2 * np.pi * f * t)
    opts = DetectionOptions()
    beats = detect_beats(t, d, opts)

    assert 34 <= len(beats) <= 36
    onsets = np.array([b.onset for b in beats])
    offsets = np.array([b.offset for b in beats])
    assert np.all(np.diff(onsets) > 0)
    assert np.all(offsets >= onsets)
    # each beat ends before the next begins
    assert np.all(offsets[:-1] < onsets[1:])

    crossings = np.array([b.high_crossing for b in beats])
    assert np.all(np.diff(crossings) >= opts.refractory)

    freqs = np.array([b.instant_freq for b in beats[1:]])
    assert np.nanmean(freqs) == pytest.approx(f, abs=0.02)
    duty = np.array([b.duty_cycle for b in beats[1:]])
    assert np.all((duty > 0) & (duty < 1))


def test_refractory_rejects_close_second_pulse():
    t = np.array([0.0, 0.1, 0.2, 0.3, 0.4])
    d = np.array([-1.0, 1.0, -1.0, 1.0, -1.0])
    opts = dict(threshold_high=0.5, threshold_low=-0.5)

    assert len(detect_beats(t, d, refractory=0.25, **opts)) == 1
    assert len(detect_beats(t, d, refractory=0.1, **opts)) == 2


def test_refractory_compares_high_crossing_times():
    # onsets 0.1 and 0.35 (gap 0.25), high crossings 0.2 and 0.4 (gap 0.2)
    t = np.array([0.0, 0.1, 0.2, 0.3, 0.4])
    d = np.array([-1.0, 0.0, 1.0, -1.0, 1.0])
    opts = dict(threshold_high=0.5, threshold_low=-0.5)

    beats = detect_beats(t, d, refractory=0.15, **opts)
    assert [b.onset for b in beats] == pytest.approx([0.1, 0.35])
    assert [b.high_crossing for b in beats] == pytest.approx([0.2, 0.4])

    beats = detect_beats(t, d, refractory=0.22, **opts)
    assert len(beats) == 1


def test_beat_in_progress_ends_at_last_sample():
    t = np.arange(5.0)
    d = np.array([-1.0, 1.0, 1.0, 1.0, 1.0])
    beats = detect_beats(t, d, threshold_high=0.5, threshold_low=-0.5)
    assert len(beats) == 1
    assert beats[0].onset == pytest.approx(0.5)
    assert beats[0].offset == pytest.approx(4.0)
    assert beats[0].up_duration == pytest.approx(3.5)


def test_false_rise_is_discarded():
    t = np.arange(7.0)
    d = np.array([-1.0, 0.0, -1.0, 0.0, 1.0, 1.0, -1.0])
    beats = detect_beats(t, d, threshold_high=0.5, threshold_low=-0.5)
    assert len(beats) == 1
    assert beats[0].onset == pytest.approx(3.0)
    assert beats[0].offset == pytest.approx(5.5)


def test_period_chains_from_last_valid_beat():
    t = np.arange(7.0)
    d = np.array([-1.0, 2.0, -1.0, 0.6, -1.0, 2.0, -1.0])
    beats = detect_beats(t, d, threshold_high=0.5, threshold_low=-0.5,
                         refractory=0.5, amplitude_min=2.0)

    assert [b.valid for b in beats] == [True, False, True]
    assert [b.amplitude for b in beats] == pytest.approx([3.0, 1.6, 3.0])
    assert beats[1].period == pytest.approx(2.0)
    assert beats[2].period == pytest.approx(4.0)
    assert beats[2].instant_freq == pytest.approx(0.25)
    assert beats[1].duty_cycle == pytest.approx(0.5)
    assert beats[2].duty_cycle == pytest.approx(0.5)

    assert beat_times(beats) == pytest.approx([0.5, 4.5])
    assert len(beat_times(beats, valid_only=False)) == 3


def test_no_beats_is_not_an_error():
    t = np.arange(10.0)
    assert detect_beats(t, np.zeros(10)) == []


def test_detection_is_idempotent():
    rng = np.random.default_rng(3)
    t = np.arange(0, 20.0, 0.01)
    d = np.sin(2 * np.pi * 1.5 * t) + 0.3 * rng.standard_normal(t.size)
    first = beats_to_frame(detect_beats(t, d))
    second = beats_to_frame(detect_beats(t, d))
    pd.testing.assert_frame_equal(first, second)


def test_datetime_timestamps():
    start = np.datetime64('2024-01-01T00:00:00', 'ns')
    t = start + (np.arange(6) * 1_000_000_000).astype('timedelta64[ns]')
    d = np.array([-1, -1, 1, 1, -1, -1], dtype=float)
    beats = detect_beats(t, d, threshold_high=0.5, threshold_low=-0.5)
    assert beats[0].onset == np.datetime64('2024-01-01T00:00:01.500', 'ns')
    assert beats[0].offset == np.datetime64('2024-01-01T00:00:03.500', 'ns')
    assert beats[0].up_duration == pytest.approx(2.0)


@pytest.mark.parametrize("t, d", [
    (np.array([0.0, 2.0, 1.0]), np.zeros(3)),
    (np.array([0.0, 1.0, 1.0]), np.zeros(3)),
    (np.arange(3.0), np.array([0.0, np.nan, 0.0])),
    (np.arange(3.0), np.zeros(4)),
    (np.zeros(0), np.zeros(0)),
])
def test_invalid_series_raise(t, d):
    with pytest.raises(ValueError):
        detect_beats(t, d)


def test_invalid_thresholds_raise():
    with pytest.raises(ValueError):
        DetectionOptions(threshold_high=0.5, threshold_low=0.5)
    with pytest.raises(ValueError):
        detect_beats(np.arange(3.0), np.zeros(3), threshold_high=-1.0, threshold_low=1.0)


def test_scanner_transitions():
    scanner = BeatScanner(threshold_high=0.5, threshold_low=-0.5, refractory=0.2)
    assert scanner.state == ScanState.IDLE

    assert scanner.step(0.0, -1.0, 1.0, 0.0) is None
    assert scanner.state == ScanState.RISING_EDGE

    assert scanner.step(1.0, 0.0, 2.0, 1.0) == ('onset', 1.0, 2.0)
    assert scanner.state == ScanState.IN_BEAT

    assert scanner.step(2.0, 1.0, 3.0, 0.0) is None
    assert scanner.state == ScanState.FALLING_EDGE

    # climbing back above the high threshold resumes the beat
    assert scanner.step(3.0, 0.0, 4.0, 1.0) is None
    assert scanner.state == ScanState.IN_BEAT

    assert scanner.step(4.0, 1.0, 5.0, 0.0) is None
    assert scanner.step(5.0, 0.0, 6.0, -1.0) == ('offset', 5.0, 6.0)
    assert scanner.state == ScanState.IDLE


def test_options_from_config():
    config = {'detection': {'threshold_high': 1.0, 'threshold_low': -1.0, 'refractory': 0.3}}
    opts = DetectionOptions.from_config(config)
    assert opts.threshold_high == 1.0
    assert opts.refractory == 0.3
    assert opts.mean_threshold == 0.0


def test_samples_on_high_threshold_do_not_start_a_beat():
    t = np.arange(5.0)
    d = np.array([-1.0, 0.5, 0.5, -1.0, -1.0])
    assert detect_beats(t, d, threshold_high=0.5, threshold_low=-0.5) == []


def test_sample_on_low_threshold_ends_a_rise():
    t = np.arange(6.0)
    d = np.array([-1.0, 0.0, -0.5, 0.0, 1.0, -1.0])
    beats = detect_beats(t, d, threshold_high=0.5, threshold_low=-0.5)
    assert len(beats) == 1
    assert beats[0].onset == pytest.approx(3.0)
    assert beats[0].offset == pytest.approx(4.5)


def test_sample_on_high_threshold_starts_the_fall():
    t = np.arange(5.0)
    d = np.array([-1.0, 1.0, 0.5, -1.0, -1.0])
    beats = detect_beats(t, d, threshold_high=0.5, threshold_low=-0.5)
    assert len(beats) == 1
    assert beats[0].offset == pytest.approx(2.0)


def test_scanner_needs_strictly_above_high():
    scanner = BeatScanner(threshold_high=0.5, threshold_low=-0.5, refractory=0.2)
    assert scanner.step(0.0, -1.0, 1.0, 0.5) is None
    assert scanner.state == ScanState.RISING_EDGE
    assert scanner.step(1.0, 0.5, 2.0, -0.5) is None
    assert scanner.state == ScanState.IDLE


def test_refractory_gap_equal_to_refractory_is_kept():
    t = np.arange(5.0)
    d = np.array([-1.0, 1.0, -1.0, 1.0, -1.0])
    beats = detect_beats(t, d, threshold_high=0.5, threshold_low=-0.5, refractory=2.0)
    assert [b.high_crossing for b in beats] == pytest.approx([1.0, 3.0])


def test_amplitude_window_starts_at_first_sample_above():
    # onset midpoint 0.5 is equidistant from samples 0 and 1
    t = np.arange(6.0)
    d = np.array([-3.0, 1.0, 1.0, -1.0, -1.0, -1.0])
    beats = detect_beats(t, d, threshold_high=0.5, threshold_low=-0.5)
    assert len(beats) == 1
    assert beats[0].amplitude == pytest.approx(4.0)
    assert beats[0].amplitude_high == pytest.approx(1.0)
    assert beats[0].amplitude_low == pytest.approx(1.0)
