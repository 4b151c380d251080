"""Configuration management for the beat-state pipeline.

This module provides functions to load and save pipeline settings
from/to a JSON configuration file. Settings are grouped by stage.
"""

import copy
import json
import logging
import os

import numpy as np

logger = logging.getLogger(__name__)

CONFIG_FILE = "beat_states.json"
DEFAULT_CONFIG = {
    "detection": {
        "threshold_high": 0.75,
        "threshold_low": -0.75,
        "refractory": 0.2,
        "amplitude_high_min": 0.0,
        "amplitude_low_min": 0.0,
        "amplitude_min": 0.0,
        "duration_min": 0.0
    },
    "rates": {
        "delta_t": 0.5,
        "window": 5.0
    },
    "hmm": {
        "n_states": 2,
        "model_type": "gaussian",
        "n_symbols": 10,
        "max_iterations": 100,
        "tolerance": 1e-4
    },
    "dwell": {
        "min_time": 0.1,
        "max_time": 3600.0,
        "n_edges": 100
    },
    "version": "1.0"
}


def _merge(defaults, overrides):
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def load_config(path=CONFIG_FILE):
    """Load configuration from a JSON file, merged over the defaults.

    Args:
        path (str): Configuration file path

    Returns:
        dict: Configuration dictionary with all settings. Defaults if the
        file is missing or unreadable.
    """
    if not os.path.exists(path):
        return copy.deepcopy(DEFAULT_CONFIG)

    try:
        with open(path, 'r') as f:
            config = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Error loading config %s: %s, using defaults", path, e)
        return copy.deepcopy(DEFAULT_CONFIG)
    if not isinstance(config, dict):
        logger.warning("Config %s is not a JSON object, using defaults", path)
        return copy.deepcopy(DEFAULT_CONFIG)
    return _merge(DEFAULT_CONFIG, config)


def save_config(config, path=CONFIG_FILE):
    """Save configuration to a JSON file.

    Args:
        config (dict): Configuration dictionary to save
        path (str): Configuration file path

    Returns:
        bool: True if save successful, False otherwise
    """
    try:
        with open(path, 'w') as f:
            json.dump(config, f, indent=2)
        return True
    except OSError as e:
        logger.error("Error saving config %s: %s", path, e)
        return False


def get_config_value(section, key, default=None, path=CONFIG_FILE):
    """Get a single config value.

    Args:
        section (str): Stage section, e.g. "hmm"
        key (str): Configuration key to retrieve
        default: Default value if key not found

    Returns:
        Configuration value or default
    """
    config = load_config(path)
    return config.get(section, {}).get(key, default)


def dwell_time_bins(config):
    """Log-spaced dwell histogram edges from the 'dwell' section."""
    dwell = config.get("dwell", DEFAULT_CONFIG["dwell"])
    return np.logspace(np.log10(dwell["min_time"]), np.log10(dwell["max_time"]),
                       int(dwell["n_edges"]))
