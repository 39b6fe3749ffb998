# src/automatic_eq_optimizer/utils.py

"""
Utility functions for target curves and frequency masking.
"""

import numpy as np

from . import config
from .core.curve import Curve


def band_mask(freqs, start_freq, end_freq):
    """Boolean mask of the frequencies inside [start_freq, end_freq]."""
    freqs = np.asarray(freqs)
    return (freqs >= start_freq) & (freqs <= end_freq)


def generate_harman_target(freqs: np.ndarray,
                           bass_boost_db=config.TARGET_BASS_BOOST_DB,
                           tilt_db_per_decade=config.TARGET_TILT_DB_PER_DECADE,
                           corner_freq=config.TARGET_CORNER_FREQ_HZ,
                           norm_freq=config.NORM_FREQ) -> np.ndarray:
    """
    Generates a Harman-like target curve: a low-shelf bass boost plus a
    gentle downward tilt, normalized to 0 dB at norm_freq.

    Args:
        freqs: A NumPy array of frequency points.
        bass_boost_db: Maximum gain (in dB) in the low-frequency region.
        tilt_db_per_decade: Slope of the tilt relative to 1 kHz.
        corner_freq: Corner frequency of the low-shelf.
        norm_freq: Frequency at which the curve reads 0 dB.

    Returns:
        A NumPy array of the target magnitude in dB for each frequency.
    """
    freqs = np.asarray(freqs, dtype=float)
    if len(freqs) == 0:
        return np.array([])

    def shape(f):
        # 2nd-order (12 dB/octave) low-shelf magnitude plus the log tilt
        low_shelf = bass_boost_db / np.sqrt(1 + (f / corner_freq) ** 4)
        tilt = tilt_db_per_decade * np.log10(f / 1000.0)
        return low_shelf + tilt

    return shape(freqs) - shape(float(norm_freq))


def harman_target_curve(freqs, **kwargs):
    """generate_harman_target wrapped in a Curve."""
    return Curve(freqs, generate_harman_target(freqs, **kwargs))
