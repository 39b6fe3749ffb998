# src/automatic_eq_optimizer/optimization/filters.py

"""
PEQ filter chains and their parameter vectors.

A parameter vector stores one slot group per band:

    [log10(fc), Q, gain]            fixed-type models (pk, hp-pk, hp-pk-lp)
    [log10(fc), Q, gain, selector]  models with free bands (free-pk-free, free)

The selector slot lives in [0, 3) and picks the band type by its integer part
(0 = peak, 1 = high-pass, 2 = low-pass). Fixed-type bands in a free model still
carry the slot so every band has the same stride; it is ignored on decode.

Magnitudes are exact RBJ "cookbook" biquads evaluated on the unit circle,
computed in closed form so a whole population of chains can be evaluated with
a single broadcast.
"""

import enum
from dataclasses import asdict, dataclass

import numpy as np

from ..errors import InvalidConfig


class FilterType(enum.Enum):
    PEAK = "PK"
    HIGHPASS = "HP"
    LOWPASS = "LP"


# Index order used by the free-band selector slot and the vectorized kernel.
TYPE_ORDER = (FilterType.PEAK, FilterType.HIGHPASS, FilterType.LOWPASS)
TYPE_CODE = {t: i for i, t in enumerate(TYPE_ORDER)}


@dataclass(frozen=True)
class FilterParameter:
    """One decoded EQ band."""

    filter_type: FilterType
    frequency: float  # Hz
    q: float
    gain: float  # dB, 0.0 for high-pass/low-pass

    def to_dict(self):
        d = asdict(self)
        d["filter_type"] = self.filter_type.value
        return d


class PeqModel(enum.Enum):
    """Band-type topology of the filter chain."""

    PK = "pk"
    HP_PK = "hp-pk"
    HP_PK_LP = "hp-pk-lp"
    FREE_PK_FREE = "free-pk-free"
    FREE = "free"

    @classmethod
    def from_name(cls, name):
        if isinstance(name, cls):
            return name
        try:
            return cls(str(name).strip().lower())
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise InvalidConfig(f"Unknown PEQ model {name!r} (expected one of: {valid})") from None

    @property
    def has_free_bands(self):
        return self in (PeqModel.FREE_PK_FREE, PeqModel.FREE)

    @property
    def params_per_filter(self):
        return 4 if self.has_free_bands else 3

    def band_types(self, num_filters):
        """
        Fixed type of every band, or None where the optimizer picks the type.
        """
        types = [FilterType.PEAK] * num_filters
        if self is PeqModel.FREE:
            return [None] * num_filters
        if self in (PeqModel.HP_PK, PeqModel.HP_PK_LP):
            types[0] = FilterType.HIGHPASS
        if self is PeqModel.HP_PK_LP and num_filters > 1:
            types[-1] = FilterType.LOWPASS
        if self is PeqModel.FREE_PK_FREE:
            types[0] = None
            types[-1] = None
        return types


def vector_length(num_filters, model):
    return num_filters * PeqModel.from_name(model).params_per_filter


def num_filters_for(x, model):
    stride = PeqModel.from_name(model).params_per_filter
    size = np.shape(x)[-1]
    if size % stride:
        raise InvalidConfig(f"Parameter vector of length {size} does not match model stride {stride}")
    return size // stride


def parameter_bounds(num_filters, model, min_freq, max_freq, min_q, max_q, min_db, max_db):
    """
    Lower and upper bound arrays for a parameter vector.

    Frequency bounds are in log10 space, matching the vector layout.
    """
    model = PeqModel.from_name(model)
    band_lo = [np.log10(min_freq), min_q, min_db]
    band_hi = [np.log10(max_freq), max_q, max_db]
    if model.has_free_bands:
        band_lo.append(0.0)
        band_hi.append(float(len(TYPE_ORDER)) - 1e-9)
    lower = np.tile(np.array(band_lo, dtype=float), num_filters)
    upper = np.tile(np.array(band_hi, dtype=float), num_filters)
    return lower, upper


def band_arrays(X, model):
    """
    Split vector(s) X of shape (..., dim) into per-band arrays of shape (..., k).

    Returns (freq_hz, q, gain, type_code).
    """
    model = PeqModel.from_name(model)
    X = np.asarray(X, dtype=float)
    stride = model.params_per_filter
    k = num_filters_for(X, model)
    bands = X.reshape(X.shape[:-1] + (k, stride))

    freq = 10.0 ** bands[..., 0]
    q = bands[..., 1]
    gain = bands[..., 2]

    fixed = model.band_types(k)
    codes = np.array([TYPE_CODE[t] if t is not None else -1 for t in fixed])
    type_code = np.broadcast_to(codes, freq.shape).copy()
    if model.has_free_bands:
        selected = np.clip(np.floor(bands[..., 3]), 0, len(TYPE_ORDER) - 1).astype(int)
        free = codes < 0
        type_code[..., free] = selected[..., free]

    # Pass filters have no gain parameter.
    gain = np.where(type_code == TYPE_CODE[FilterType.PEAK], gain, 0.0)
    return freq, q, gain, type_code


def biquad_magnitude_db(freqs, f0, q, gain, type_code, sample_rate):
    """
    Magnitude (dB) of RBJ biquads at freqs.

    f0, q, gain and type_code broadcast together (shape S); the result has
    shape S + (len(freqs),).
    """
    freqs = np.asarray(freqs, dtype=float)
    f0 = np.asarray(f0, dtype=float)[..., None]
    q = np.asarray(q, dtype=float)[..., None]
    gain = np.asarray(gain, dtype=float)[..., None]
    type_code = np.asarray(type_code)[..., None]

    w0 = 2.0 * np.pi * f0 / sample_rate
    cosw = np.cos(w0)
    alpha = np.sin(w0) / (2.0 * q)
    A = 10.0 ** (gain / 40.0)

    is_peak = type_code == TYPE_CODE[FilterType.PEAK]
    is_hp = type_code == TYPE_CODE[FilterType.HIGHPASS]

    # Pass filters share the denominator; the numerator differs by type.
    pass_scale = np.where(is_hp, (1.0 + cosw) / 2.0, (1.0 - cosw) / 2.0)
    pass_b1 = np.where(is_hp, -(1.0 + cosw), 1.0 - cosw)

    b0 = np.where(is_peak, 1.0 + alpha * A, pass_scale)
    b1 = np.where(is_peak, -2.0 * cosw, pass_b1)
    b2 = np.where(is_peak, 1.0 - alpha * A, pass_scale)
    a0 = np.where(is_peak, 1.0 + alpha / A, 1.0 + alpha)
    a1 = -2.0 * cosw
    a2 = np.where(is_peak, 1.0 - alpha / A, 1.0 - alpha)

    w = 2.0 * np.pi * freqs / sample_rate
    cos1 = np.cos(w)
    cos2 = np.cos(2.0 * w)

    num = b0 ** 2 + b1 ** 2 + b2 ** 2 + 2.0 * (b0 * b1 + b1 * b2) * cos1 + 2.0 * b0 * b2 * cos2
    den = a0 ** 2 + a1 ** 2 + a2 ** 2 + 2.0 * (a0 * a1 + a1 * a2) * cos1 + 2.0 * a0 * a2 * cos2

    tiny = np.finfo(float).tiny
    return 10.0 * np.log10(np.maximum(num, tiny) / np.maximum(den, tiny))


def batch_peq_response(freqs, X, model, sample_rate):
    """Summed chain response (dB) for every vector in X: shape (..., len(freqs))."""
    freq, q, gain, type_code = band_arrays(X, model)
    return biquad_magnitude_db(freqs, freq, q, gain, type_code, sample_rate).sum(axis=-2)


def peq_response(freqs, x, model, sample_rate):
    """Summed chain response (dB) of one parameter vector."""
    return batch_peq_response(freqs, np.asarray(x, dtype=float), model, sample_rate)


def filters_response(freqs, filters, sample_rate):
    """Summed response (dB) of a list of FilterParameter."""
    freqs = np.asarray(freqs, dtype=float)
    if not filters:
        return np.zeros_like(freqs)
    f0 = [f.frequency for f in filters]
    q = [f.q for f in filters]
    gain = [f.gain if f.filter_type is FilterType.PEAK else 0.0 for f in filters]
    codes = [TYPE_CODE[f.filter_type] for f in filters]
    return biquad_magnitude_db(freqs, f0, q, gain, codes, sample_rate).sum(axis=0)


def decode_params(x, model):
    """
    Convert a parameter vector into a list of FilterParameter, in band order.
    """
    freq, q, gain, type_code = band_arrays(np.asarray(x, dtype=float), model)
    return [
        FilterParameter(
            filter_type=TYPE_ORDER[int(type_code[i])],
            frequency=float(freq[i]),
            q=float(q[i]),
            gain=float(gain[i]),
        )
        for i in range(len(freq))
    ]


def encode_filters(filters, model):
    """
    Build a parameter vector from a list of FilterParameter.

    Band types must agree with the model wherever it fixes them.
    """
    model = PeqModel.from_name(model)
    fixed = model.band_types(len(filters))
    x = []
    for i, (filt, expected) in enumerate(zip(filters, fixed)):
        if expected is not None and filt.filter_type is not expected:
            raise InvalidConfig(
                f"Band {i + 1} is {filt.filter_type.value} but model {model.value} requires {expected.value}")
        if filt.frequency <= 0:
            raise InvalidConfig(f"Band {i + 1} frequency must be positive")
        x.extend([np.log10(filt.frequency), filt.q, filt.gain])
        if model.has_free_bands:
            x.append(TYPE_CODE[filt.filter_type] + 0.5)
    return np.array(x, dtype=float)
