# src/automatic_eq_optimizer/optimization/score.py

"""
Preference scores used to grade a response before and after EQ.

Headphones: predicted preference from the standard deviation (SD) and the
absolute slope (AS, dB/octave) of the error against the target:

    114.49 - 12.62 * SD - 15.52 * |AS|

Speakers (CEA2034 / spin data):

    12.69 - 2.49 * NBD_ON - 2.99 * NBD_PIR - 4.31 * LFX + 2.32 * SM_PIR

The array functions accept a single curve (1-D) or a batch of curves
(2-D, one per row) sharing one frequency grid; the loss functions call them
on a whole population at once.
"""

import numpy as np

from .. import config
from ..core.curve import linear_interpolation_matrix
from ..core.params import (
    EARLY_REFLECTIONS, ESTIMATED_IN_ROOM, LISTENING_WINDOW, ON_AXIS, REQUIRED_SPIN_CURVES, SOUND_POWER,
)
from .filters import peq_response

HEADPHONE_INTERCEPT = 114.49
HEADPHONE_SD_WEIGHT = 12.62
HEADPHONE_AS_WEIGHT = 15.52

SPEAKER_INTERCEPT = 12.69
SPEAKER_NBD_ON_WEIGHT = 2.49
SPEAKER_NBD_PIR_WEIGHT = 2.99
SPEAKER_LFX_WEIGHT = 4.31
SPEAKER_SM_PIR_WEIGHT = 2.32

LFX_REF_MIN_FREQ = 300.0
LFX_REF_MAX_FREQ = 10000.0
LFX_DROP_DB = 6.0
SM_MIN_FREQ = 100.0
SM_MAX_FREQ = 16000.0


def apply_operator(matrix, y):
    """Apply a sparse operator along the last axis of y (1-D or 2-D)."""
    y = np.asarray(y, dtype=float)
    return np.asarray(matrix @ y.T).T


def log_grid(freqs, fmin, fmax, points=config.SCORE_GRID_POINTS):
    lo = max(fmin, freqs[0])
    hi = min(fmax, freqs[-1])
    return np.logspace(np.log10(lo), np.log10(hi), points)


# === Headphone model ===

def error_sd_slope(grid, error):
    """Standard deviation and regression slope (dB/octave) of error over grid."""
    x = np.log2(grid)
    xc = x - x.mean()
    yc = error - error.mean(axis=-1, keepdims=True)
    slope = (yc * xc).sum(axis=-1) / (xc ** 2).sum()
    sd = np.sqrt((yc ** 2).mean(axis=-1))
    return sd, slope


def headphone_penalty(grid, error):
    sd, slope = error_sd_slope(grid, error)
    return HEADPHONE_SD_WEIGHT * sd + HEADPHONE_AS_WEIGHT * np.abs(slope)


def headphone_preference(freqs, deviation,
                         fmin=config.HEADPHONE_SCORE_MIN_FREQ,
                         fmax=config.HEADPHONE_SCORE_MAX_FREQ):
    """Headphone preference score of a deviation-from-target curve."""
    freqs = np.asarray(freqs, dtype=float)
    grid = log_grid(freqs, fmin, fmax)
    error = apply_operator(linear_interpolation_matrix(freqs, grid), deviation)
    return HEADPHONE_INTERCEPT - headphone_penalty(grid, error)


# === Speaker model ===

def half_octave_bands(fmin=config.SPEAKER_NBD_MIN_FREQ, fmax=config.SPEAKER_NBD_MAX_FREQ):
    edges = []
    lo = fmin
    while lo < fmax:
        hi = min(lo * np.sqrt(2.0), fmax)
        edges.append((lo, hi))
        lo = hi
    return edges


def nbd(freqs, spl):
    """Narrow-band deviation: mean absolute deviation inside half-octave bands."""
    freqs = np.asarray(freqs, dtype=float)
    spl = np.asarray(spl, dtype=float)
    per_band = []
    for lo, hi in half_octave_bands():
        sel = (freqs >= lo) & (freqs < hi)
        if not np.any(sel):
            continue
        y = spl[..., sel]
        per_band.append(np.abs(y - y.mean(axis=-1, keepdims=True)).mean(axis=-1))
    if not per_band:
        return np.zeros(spl.shape[:-1])
    return np.mean(per_band, axis=0)


def lfx(freqs, lw, sp):
    """
    log10 of the highest frequency below 300 Hz where the sound power sits
    6 dB under the mean listening-window level (300 Hz - 10 kHz). When the
    sound power never drops that far, the lowest measured frequency is used.
    """
    freqs = np.asarray(freqs, dtype=float)
    ref_band = (freqs >= LFX_REF_MIN_FREQ) & (freqs <= LFX_REF_MAX_FREQ)
    ref = np.asarray(lw)[..., ref_band].mean(axis=-1) - LFX_DROP_DB
    hit = (np.asarray(sp) <= np.expand_dims(ref, -1)) & (freqs < LFX_REF_MIN_FREQ)
    idx = np.where(hit, np.arange(len(freqs)), -1).max(axis=-1)
    return np.where(idx >= 0, np.log10(freqs[np.clip(idx, 0, None)]), np.log10(freqs[0]))


def smoothness(freqs, spl, fmin=SM_MIN_FREQ, fmax=SM_MAX_FREQ):
    """r^2 of the linear regression of spl against log10(frequency)."""
    freqs = np.asarray(freqs, dtype=float)
    sel = (freqs >= fmin) & (freqs <= fmax)
    x = np.log10(freqs[sel])
    y = np.asarray(spl, dtype=float)[..., sel]
    xc = x - x.mean()
    yc = y - y.mean(axis=-1, keepdims=True)
    cov = (xc * yc).sum(axis=-1)
    var_y = (yc ** 2).sum(axis=-1)
    with np.errstate(divide="ignore", invalid="ignore"):
        r2 = cov ** 2 / ((xc ** 2).sum() * var_y)
    return np.where(var_y > 0, r2, 1.0)


def estimated_in_room(lw, er, sp):
    """Predicted in-room response from the spin curves (power average)."""
    power = (0.12 * 10.0 ** (np.asarray(lw) / 10.0)
             + 0.44 * 10.0 ** (np.asarray(er) / 10.0)
             + 0.44 * 10.0 ** (np.asarray(sp) / 10.0))
    return 10.0 * np.log10(power)


def speaker_preference(freqs, on, lw, er, sp, pir=None):
    """Speaker preference score; all curves on the same frequency grid."""
    if pir is None:
        pir = estimated_in_room(lw, er, sp)
    return (SPEAKER_INTERCEPT
            - SPEAKER_NBD_ON_WEIGHT * nbd(freqs, on)
            - SPEAKER_NBD_PIR_WEIGHT * nbd(freqs, pir)
            - SPEAKER_LFX_WEIGHT * lfx(freqs, lw, sp)
            + SPEAKER_SM_PIR_WEIGHT * smoothness(freqs, pir))


def spin_arrays(spin_curves):
    """
    Resample the CEA2034 curves onto the listening-window grid.

    Returns (freqs, {name: spl}); the in-room curve is only present when it
    was measured.
    """
    freqs = spin_curves[LISTENING_WINDOW].freq
    names = [ON_AXIS, LISTENING_WINDOW, EARLY_REFLECTIONS, SOUND_POWER]
    if ESTIMATED_IN_ROOM in spin_curves:
        names.append(ESTIMATED_IN_ROOM)
    return freqs, {name: spin_curves[name].interpolate(freqs) for name in names}


def speaker_preference_with_eq(freqs, curves, eq_db):
    """Score the spin set after adding eq_db (1-D or a batch) to every curve."""
    pir = curves.get(ESTIMATED_IN_ROOM)
    return speaker_preference(
        freqs,
        curves[ON_AXIS] + eq_db,
        curves[LISTENING_WINDOW] + eq_db,
        curves[EARLY_REFLECTIONS] + eq_db,
        curves[SOUND_POWER] + eq_db,
        None if pir is None else pir + eq_db,
    )


# === Pluggable scorers used by the orchestrator ===

def headphone_score(cfg, x=None):
    """Headphone score of the input (x=None) or of the input with EQ x applied."""
    freqs = cfg.input_curve.freq
    corrected = cfg.input_curve.spl.copy()
    if x is not None:
        corrected += peq_response(freqs, x, cfg.peq_model, cfg.sample_rate)
    deviation = corrected - cfg.target_or_flat.interpolate(freqs)
    return float(headphone_preference(freqs, deviation))


def speaker_score(cfg, x=None):
    """Speaker score of the spin data, optionally with EQ x applied."""
    freqs, curves = spin_arrays(cfg.spin_curves)
    eq_db = 0.0 if x is None else peq_response(freqs, x, cfg.peq_model, cfg.sample_rate)
    return float(speaker_preference_with_eq(freqs, curves, eq_db))


def scorer_for(cfg):
    """
    Pick the preference scorer for a config, or None when no model applies.
    """
    if cfg.loss.is_headphone:
        return headphone_score
    if all(name in (cfg.spin_curves or {}) for name in REQUIRED_SPIN_CURVES):
        return speaker_score
    return None
