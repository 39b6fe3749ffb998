# src/automatic_eq_optimizer/optimization/loss.py

"""
Objective functions for the PEQ search (lower is better).

For a candidate vector the pipeline is:

    chain   = summed biquad response on the input grid
    corrected = input + chain            (1/N octave smoothed if enabled)
    deviation = corrected - target       (flat 0 dB when no target)
    loss    = strategy(deviation over [min_freq, max_freq]) + spacing penalty

Every step is linear algebra over the whole population, so one generation
of differential evolution is a single call to Objective.evaluate_population.
"""

import logging

import numpy as np
from scipy.interpolate import interp1d

from ..core.curve import linear_interpolation_matrix, octave_smoothing_matrix
from ..core.params import LossType
from ..utils import band_mask
from .filters import (
    FilterType, PeqModel, batch_peq_response, parameter_bounds, peq_response,
)
from .score import (
    apply_operator, headphone_penalty, log_grid, speaker_preference_with_eq, spin_arrays,
)

logger = logging.getLogger(__name__)


def rms_loss(deviation, mask):
    """Root mean square of the deviation inside the band."""
    d = deviation[..., mask]
    return np.sqrt(np.mean(d ** 2, axis=-1))


def octave_weights(freqs):
    """
    Per-point share of the log2 frequency span, normalized to sum to 1.

    Dense linear grids put most of their points in the top octaves; these
    weights give every octave the same say.
    """
    x = np.log2(np.asarray(freqs, dtype=float))
    if len(x) == 1:
        return np.ones(1)
    edges = np.concatenate([[x[0]], (x[1:] + x[:-1]) / 2.0, [x[-1]]])
    w = np.diff(edges)
    total = w.sum()
    if total <= 0:
        return np.full(len(x), 1.0 / len(x))
    return w / total


def weighted_rms_loss(deviation, mask, weights):
    d = deviation[..., mask]
    return np.sqrt(np.sum(weights * d ** 2, axis=-1))


def spacing_penalty(log_freqs, min_spacing_oct, weight):
    """
    weight * deficit^2 summed over every pair of bands whose centers are
    closer than min_spacing_oct octaves. log_freqs holds log10 centers with
    bands along the last axis.
    """
    log_freqs = np.asarray(log_freqs, dtype=float)
    k = log_freqs.shape[-1]
    if k < 2 or weight == 0 or min_spacing_oct <= 0:
        return np.zeros(log_freqs.shape[:-1])
    i, j = np.triu_indices(k, 1)
    dist_oct = np.abs(log_freqs[..., i] - log_freqs[..., j]) / np.log10(2.0)
    deficit = np.maximum(0.0, min_spacing_oct - dist_oct)
    return weight * np.sum(deficit ** 2, axis=-1)


class Objective:
    """
    Loss closure over one OptimizationConfig.

    Call it with one vector for a float, or use evaluate_population for a
    2-D array of candidates (used by the differential evolution loop).
    """

    def __init__(self, cfg):
        self.cfg = cfg
        self.loss_type = LossType.from_name(cfg.loss)
        self.model = PeqModel.from_name(cfg.peq_model)
        self.sample_rate = cfg.sample_rate
        self.num_filters = cfg.num_filters
        self.nfev = 0

        self.freqs = cfg.input_curve.freq
        self.input_spl = np.array(cfg.input_curve.spl)
        self.target_spl = cfg.target_or_flat.interpolate(self.freqs)
        self.mask = band_mask(self.freqs, cfg.min_freq, cfg.max_freq)

        self.smoother = None
        if cfg.smooth:
            self.smoother = octave_smoothing_matrix(self.freqs, cfg.smooth_n)
            self.input_spl = apply_operator(self.smoother, self.input_spl)

        if self.loss_type is LossType.HEADPHONE_FLAT:
            self.weights = octave_weights(self.freqs[self.mask])
        elif self.loss_type is LossType.HEADPHONE_SCORE:
            self.score_grid = log_grid(self.freqs, cfg.min_freq, cfg.max_freq)
            self.score_interp = linear_interpolation_matrix(self.freqs, self.score_grid)
        elif self.loss_type is LossType.SPEAKER_SCORE:
            self.spin_freqs, self.spin_curves = spin_arrays(cfg.spin_curves)

        self.lower, self.upper = parameter_bounds(
            cfg.num_filters, self.model, cfg.min_freq, cfg.max_freq,
            cfg.min_q, cfg.max_q, cfg.min_db, cfg.max_db)

    @property
    def bounds(self):
        return self.lower, self.upper

    def chain_response(self, X):
        """Chain response on the input grid, smoothed like the input."""
        response = batch_peq_response(self.freqs, X, self.model, self.sample_rate)
        if self.smoother is not None:
            response = apply_operator(self.smoother, response)
        return response

    def deviation(self, X):
        return self.input_spl + self.chain_response(X) - self.target_spl

    def base_loss(self, X):
        lt = self.loss_type
        if lt is LossType.SPEAKER_SCORE:
            eq_db = batch_peq_response(self.spin_freqs, X, self.model, self.sample_rate)
            return -speaker_preference_with_eq(self.spin_freqs, self.spin_curves, eq_db)

        deviation = self.deviation(X)
        if lt is LossType.SPEAKER_FLAT:
            return rms_loss(deviation, self.mask)
        if lt is LossType.HEADPHONE_FLAT:
            return weighted_rms_loss(deviation, self.mask, self.weights)
        if lt is LossType.HEADPHONE_SCORE:
            error = apply_operator(self.score_interp, deviation)
            return headphone_penalty(self.score_grid, error)
        raise ValueError(f"Unhandled loss {lt}")

    def penalty(self, X):
        X = np.asarray(X, dtype=float)
        stride = self.model.params_per_filter
        log_freqs = X.reshape(X.shape[:-1] + (-1, stride))[..., 0]
        return spacing_penalty(log_freqs, self.cfg.min_spacing_oct, self.cfg.spacing_weight)

    def evaluate_population(self, X):
        X = np.atleast_2d(np.asarray(X, dtype=float))
        self.nfev += len(X)
        with np.errstate(all="ignore"):
            values = self.base_loss(X) + self.penalty(X)
        return np.where(np.isfinite(values), values, np.inf)

    def __call__(self, x):
        return float(self.evaluate_population(np.asarray(x, dtype=float)[None, :])[0])


def build_objective(cfg):
    return Objective(cfg)


def initial_guess(cfg):
    """
    A "smart" starting point: bands spread logarithmically over the band,
    peak gains set to the opposite of the deviation at each center, Q at
    the geometric middle of its range. Pass filters sit at the band edges.
    """
    model = PeqModel.from_name(cfg.peq_model)
    n = cfg.num_filters
    fc0 = np.logspace(np.log10(cfg.min_freq), np.log10(cfg.max_freq), n)

    freqs = cfg.input_curve.freq
    deviation = cfg.input_curve.spl - cfg.target_or_flat.interpolate(freqs)
    interp_deviation = interp1d(freqs, deviation, kind='linear', bounds_error=False,
                                fill_value=(deviation[0], deviation[-1]))
    gain0 = np.clip(-interp_deviation(fc0), cfg.min_db, cfg.max_db)
    q0 = np.sqrt(cfg.min_q * cfg.max_q)

    x0 = []
    for i, band_type in enumerate(model.band_types(n)):
        fc, gain = fc0[i], gain0[i]
        if band_type is FilterType.HIGHPASS:
            fc, gain = cfg.min_freq, 0.0
        elif band_type is FilterType.LOWPASS:
            fc, gain = cfg.max_freq, 0.0
        x0.extend([np.log10(fc), q0, gain])
        if model.has_free_bands:
            x0.append(0.5)
    return np.array(x0, dtype=float)


def evaluate_filters(cfg, x):
    """Raw corrected deviation (no smoothing) of vector x on the input grid."""
    freqs = cfg.input_curve.freq
    chain = peq_response(freqs, x, cfg.peq_model, cfg.sample_rate)
    return chain, cfg.input_curve.spl + chain - cfg.target_or_flat.interpolate(freqs)
