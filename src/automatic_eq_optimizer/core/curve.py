# src/automatic_eq_optimizer/core/curve.py

"""
Frequency response curves.

A Curve is an immutable pair of frequency (Hz) and magnitude (dB) arrays.
Frequencies must already be strictly increasing: unsorted input is rejected
rather than silently reordered, so a swapped column or a duplicated point in
a measurement file shows up as an error instead of a wrong optimization.
"""

import numpy as np
from scipy import sparse

from ..errors import InvalidCurve, OutOfRange


def octave_smoothing_matrix(freqs, n):
    """
    Build the 1/n octave moving-average operator for a frequency grid.

    Row i averages every point whose frequency lies within half a 1/n octave
    window on either side of freqs[i]. Smoothing is then a (sparse) matrix
    product, which lets the objective smooth a whole population in one call.
    """
    freqs = np.asarray(freqs, dtype=float)
    if n <= 0:
        raise InvalidCurve(f"Smoothing fraction must be positive, got {n}")

    half_window = 2 ** (0.5 / n)
    lo = np.searchsorted(freqs, freqs / half_window, side='left')
    hi = np.searchsorted(freqs, freqs * half_window, side='right')

    # Every row contains at least its own point, so counts >= 1.
    counts = hi - lo
    rows = np.repeat(np.arange(len(freqs)), counts)
    offsets = np.arange(counts.sum()) - np.repeat(np.cumsum(counts) - counts, counts)
    cols = np.repeat(lo, counts) + offsets
    values = np.repeat(1.0 / counts, counts)
    return sparse.csr_matrix((values, (rows, cols)), shape=(len(freqs), len(freqs)))


def linear_interpolation_matrix(src_freqs, dst_freqs):
    """
    Sparse operator M with M @ y == np.interp(dst_freqs, src_freqs, y).

    Points outside the source range take the edge value.
    """
    src = np.asarray(src_freqs, dtype=float)
    dst = np.clip(np.asarray(dst_freqs, dtype=float), src[0], src[-1])
    hi = np.clip(np.searchsorted(src, dst, side='right'), 1, len(src) - 1)
    lo = hi - 1
    t = (dst - src[lo]) / (src[hi] - src[lo])
    rows = np.arange(len(dst))
    data = np.concatenate([1.0 - t, t])
    return sparse.csr_matrix(
        (data, (np.concatenate([rows, rows]), np.concatenate([lo, hi]))),
        shape=(len(dst), len(src)))


class Curve:
    """
    Ordered (frequency, magnitude) samples.

    Attributes:
        freq (np.ndarray): Frequencies in Hz, strictly increasing, all > 0.
        spl (np.ndarray): Magnitudes in dB, same length as freq.

    Both arrays are read-only copies of the input.
    """

    __slots__ = ("freq", "spl")

    def __init__(self, freq, spl):
        try:
            freq = np.array(freq, dtype=float).ravel()
            spl = np.array(spl, dtype=float).ravel()
        except (TypeError, ValueError) as e:
            raise InvalidCurve(f"Curve data must be numeric: {e}") from e

        if len(freq) != len(spl):
            raise InvalidCurve(
                f"Frequency and magnitude lengths differ ({len(freq)} != {len(spl)})")
        if len(freq) < 2:
            raise InvalidCurve(f"A curve needs at least 2 points, got {len(freq)}")
        if not (np.all(np.isfinite(freq)) and np.all(np.isfinite(spl))):
            raise InvalidCurve("Curve data contains NaN or infinite values")
        if np.any(freq <= 0):
            raise InvalidCurve("All frequencies must be positive")
        if np.any(np.diff(freq) <= 0):
            raise InvalidCurve("Frequencies must be strictly increasing")

        freq.setflags(write=False)
        spl.setflags(write=False)
        object.__setattr__(self, "freq", freq)
        object.__setattr__(self, "spl", spl)

    def __setattr__(self, name, value):
        raise AttributeError("Curve is immutable")

    def __len__(self):
        return len(self.freq)

    def __repr__(self):
        return (f"Curve({len(self)} points, {self.freq[0]:.1f}-{self.freq[-1]:.1f} Hz, "
                f"{self.spl.min():.2f}..{self.spl.max():.2f} dB)")

    def __eq__(self, other):
        if not isinstance(other, Curve):
            return NotImplemented
        return np.array_equal(self.freq, other.freq) and np.array_equal(self.spl, other.spl)

    __hash__ = None

    @classmethod
    def flat(cls, freqs, level_db=0.0):
        """A constant-level curve on the given grid."""
        freqs = np.asarray(freqs, dtype=float)
        return cls(freqs, np.full(len(freqs), float(level_db)))

    @property
    def bounds(self):
        """(min_freq, max_freq, min_spl, max_spl)."""
        return (float(self.freq[0]), float(self.freq[-1]),
                float(self.spl.min()), float(self.spl.max()))

    def interpolate(self, f, extrapolate="clamp"):
        """
        Linear interpolation of the magnitude at frequency f (scalar or array).

        extrapolate="clamp" holds the edge values outside the curve's range,
        extrapolate="raise" raises OutOfRange instead.
        """
        f_arr = np.asarray(f, dtype=float)
        if extrapolate == "raise":
            if np.any(f_arr < self.freq[0]) or np.any(f_arr > self.freq[-1]):
                raise OutOfRange(
                    f"Frequency outside {self.freq[0]:.2f}-{self.freq[-1]:.2f} Hz")
        elif extrapolate != "clamp":
            raise ValueError(f"Unknown extrapolation policy: {extrapolate!r}")

        values = np.interp(f_arr, self.freq, self.spl)
        if np.ndim(f) == 0:
            return float(values)
        return values

    def resample(self, freqs):
        """Return a new Curve on another frequency grid (edges clamped)."""
        freqs = np.asarray(freqs, dtype=float)
        return Curve(freqs, self.interpolate(freqs))

    def smooth(self, n):
        """Return the 1/n octave smoothed curve (same grid)."""
        return Curve(self.freq, octave_smoothing_matrix(self.freq, n) @ self.spl)

    def normalized(self, at_freq):
        """Return the curve shifted to read 0 dB at at_freq."""
        return Curve(self.freq, self.spl - self.interpolate(at_freq))

