# src/automatic_eq_optimizer/core/params.py

"""
Optimization parameters and their validation.

OptimizationConfig is immutable. Enum-valued fields accept either the enum
member or its name string ("speaker-flat", "hp-pk", "cobyla", ...) and are
normalized on construction. validate_params() checks every cross-field
invariant at once and raises before any search starts.
"""

import enum
import logging
import numbers
from dataclasses import dataclass, fields, replace
from typing import Mapping, Optional

import numpy as np

from .. import config
from ..errors import EmptyInput, InvalidConfig, OptimizationError
from ..optimization.filters import PeqModel
from ..optimization.optimizer import Strategy
from .curve import Curve

logger = logging.getLogger(__name__)

SUPPORTED_ALGOS = ("autoeq:de", "de")

# CEA2034 curve names used by the speaker score
ON_AXIS = "On Axis"
LISTENING_WINDOW = "Listening Window"
EARLY_REFLECTIONS = "Early Reflections"
SOUND_POWER = "Sound Power"
ESTIMATED_IN_ROOM = "Estimated In-Room Response"
REQUIRED_SPIN_CURVES = (ON_AXIS, LISTENING_WINDOW, EARLY_REFLECTIONS, SOUND_POWER)


class LossType(enum.Enum):
    SPEAKER_FLAT = "speaker-flat"
    SPEAKER_SCORE = "speaker-score"
    HEADPHONE_FLAT = "headphone-flat"
    HEADPHONE_SCORE = "headphone-score"

    @classmethod
    def from_name(cls, name):
        if isinstance(name, cls):
            return name
        try:
            return cls(str(name).strip().lower())
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise InvalidConfig(f"Unknown loss {name!r} (expected one of: {valid})") from None

    @property
    def is_headphone(self):
        return self in (LossType.HEADPHONE_FLAT, LossType.HEADPHONE_SCORE)


class LocalAlgo(enum.Enum):
    COBYLA = "cobyla"
    NELDER_MEAD = "nelder-mead"
    POWELL = "powell"

    @classmethod
    def from_name(cls, name):
        if isinstance(name, cls):
            return name
        key = str(name).strip().lower().replace("_", "-")
        # Saved settings may carry a backend prefix, e.g. "nlopt:cobyla".
        key = key.split(":", 1)[-1]
        try:
            return cls(key)
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise InvalidConfig(f"Unknown local algorithm {name!r} (expected one of: {valid})") from None

    @property
    def scipy_method(self):
        return {"cobyla": "COBYLA", "nelder-mead": "Nelder-Mead", "powell": "Powell"}[self.value]


@dataclass(frozen=True)
class OptimizationConfig:
    """Everything one optimization run needs."""

    input_curve: Optional[Curve] = None
    target_curve: Optional[Curve] = None
    spin_curves: Optional[Mapping[str, Curve]] = None

    num_filters: int = config.NUM_FILTERS
    sample_rate: float = config.SAMPLE_RATE
    min_freq: float = config.MIN_FREQ
    max_freq: float = config.MAX_FREQ
    min_q: float = config.MIN_Q
    max_q: float = config.MAX_Q
    min_db: float = config.MIN_DB
    max_db: float = config.MAX_DB
    peq_model: PeqModel = PeqModel.from_name(config.PEQ_MODEL)

    loss: LossType = LossType.from_name(config.LOSS)
    min_spacing_oct: float = config.MIN_SPACING_OCT
    spacing_weight: float = config.SPACING_WEIGHT
    smooth: bool = config.SMOOTH
    smooth_n: int = config.SMOOTH_N

    algo: str = config.ALGO
    population: int = config.POPULATION
    maxeval: int = config.MAXEVAL
    strategy: Strategy = Strategy.from_name(config.STRATEGY)
    de_f: float = config.DE_F
    de_cr: float = config.DE_CR
    adaptive_weight_f: float = config.ADAPTIVE_WEIGHT_F
    adaptive_weight_cr: float = config.ADAPTIVE_WEIGHT_CR
    tolerance: float = config.TOLERANCE
    atolerance: float = config.ATOLERANCE
    stall_generations: int = config.STALL_GENERATIONS
    seed: Optional[int] = None

    refine: bool = config.REFINE
    local_algo: LocalAlgo = LocalAlgo.from_name(config.LOCAL_ALGO)
    local_maxeval: int = config.LOCAL_MAXEVAL

    def __post_init__(self):
        object.__setattr__(self, "peq_model", PeqModel.from_name(self.peq_model))
        object.__setattr__(self, "loss", LossType.from_name(self.loss))
        object.__setattr__(self, "strategy", Strategy.from_name(self.strategy))
        object.__setattr__(self, "local_algo", LocalAlgo.from_name(self.local_algo))
        object.__setattr__(self, "algo", str(self.algo).strip().lower())
        if self.spin_curves is not None:
            object.__setattr__(self, "spin_curves", dict(self.spin_curves))

    @property
    def target_or_flat(self):
        """The target curve, or a flat 0 dB line on the input grid."""
        if self.target_curve is not None:
            return self.target_curve
        return Curve.flat(self.input_curve.freq)

    def with_changes(self, **changes):
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, params):
        """
        Build a config from the flat parameter mapping the desktop UI sends.

        Curves arrive as captured_frequencies/captured_magnitudes and
        target_frequencies/target_magnitudes arrays. Keys that only matter to
        the UI (file paths, speaker database selections) are ignored, and
        None values fall back to the defaults. Numeric strings are accepted.

        The UI's min_db/max_db are gain magnitudes: max_db is how far a band
        may cut or boost, min_db the smallest gain worth a band. They become
        the signed bounds [-max_db, +max_db]; min_db does not narrow the box.

        Raises InvalidConfig (or InvalidCurve) for anything that cannot be
        turned into a config.
        """
        try:
            return cls(**_kwargs_from_mapping(params, {f.name for f in fields(cls)}))
        except OptimizationError:
            raise
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise InvalidConfig(f"Invalid optimization parameters: {e}") from e


FLOAT_FIELDS = ("sample_rate", "min_freq", "max_freq", "min_q", "max_q", "min_db", "max_db",
                "min_spacing_oct", "spacing_weight", "de_f", "de_cr", "adaptive_weight_f",
                "adaptive_weight_cr", "tolerance", "atolerance")
INT_FIELDS = ("num_filters", "smooth_n", "population", "maxeval", "stall_generations", "local_maxeval",
              "seed")


def _as_int(name, value):
    number = float(value)
    if not number.is_integer():
        raise InvalidConfig(f"{name} must be a whole number, got {value!r}")
    return int(number)


def _curve_from(name, data):
    if isinstance(data, Curve):
        return data
    try:
        return Curve(data["freq"], data["spl"])
    except KeyError as e:
        raise InvalidConfig(f"Spin curve {name!r} needs 'freq' and 'spl' arrays") from e


def _kwargs_from_mapping(params, names):
    params = dict(params)
    kwargs = {}

    freqs = params.pop("captured_frequencies", None)
    mags = params.pop("captured_magnitudes", None)
    if freqs is not None and mags is not None and len(freqs) > 0:
        kwargs["input_curve"] = Curve(freqs, mags)

    freqs = params.pop("target_frequencies", None)
    mags = params.pop("target_magnitudes", None)
    if freqs is not None and mags is not None and len(freqs) > 0:
        kwargs["target_curve"] = Curve(freqs, mags)

    spin = params.pop("spin_curves", None)
    if spin:
        kwargs["spin_curves"] = {name: _curve_from(name, c) for name, c in spin.items()}

    for key, value in params.items():
        if key not in names:
            logger.debug("Ignoring parameter %r", key)
            continue
        if value is None:
            continue
        if key in FLOAT_FIELDS:
            value = float(value)
        elif key in INT_FIELDS:
            value = _as_int(key, value)
        kwargs[key] = value

    if "min_db" in kwargs or "max_db" in kwargs:
        if "min_db" in kwargs:
            logger.debug("Minimum useful gain %.2f dB does not narrow the gain bounds", kwargs["min_db"])
        limit = abs(kwargs.get("max_db", config.MAX_DB))
        kwargs["min_db"], kwargs["max_db"] = -limit, limit
    return kwargs


def min_population(strategy):
    """Smallest population that gives the strategy enough distinct donors."""
    return Strategy.from_name(strategy).donors_needed + 1


def validate_params(cfg):
    """
    Check an OptimizationConfig; raise InvalidConfig or EmptyInput on the first violation.
    """
    if cfg.input_curve is None:
        raise EmptyInput("No input curve data available")
    if not isinstance(cfg.input_curve, Curve):
        raise InvalidConfig("input_curve must be a Curve")
    if cfg.target_curve is not None and not isinstance(cfg.target_curve, Curve):
        raise InvalidConfig("target_curve must be a Curve")

    for name in FLOAT_FIELDS + INT_FIELDS:
        value = getattr(cfg, name)
        if name == "seed" and value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise InvalidConfig(f"{name} must be a number, got {value!r}")
        if name in INT_FIELDS and not float(value).is_integer():
            raise InvalidConfig(f"{name} must be a whole number, got {value!r}")
    for name in FLOAT_FIELDS:
        if not np.isfinite(getattr(cfg, name)):
            raise InvalidConfig(f"{name} must be a finite number")
    if cfg.spin_curves is not None and not isinstance(cfg.spin_curves, Mapping):
        raise InvalidConfig("spin_curves must map curve names to Curves")

    if not 1 <= cfg.num_filters <= config.MAX_NUM_FILTERS:
        raise InvalidConfig(f"Number of filters must be between 1 and {config.MAX_NUM_FILTERS}")

    if cfg.sample_rate <= 0:
        raise InvalidConfig("Sample rate must be positive")
    if cfg.min_freq <= 0:
        raise InvalidConfig("Min frequency must be positive")
    if cfg.min_freq >= cfg.max_freq:
        raise InvalidConfig("Min frequency must be less than Max frequency")
    if cfg.max_freq >= cfg.sample_rate / 2:
        raise InvalidConfig("Max frequency must be below the Nyquist frequency")
    if cfg.min_q <= 0:
        raise InvalidConfig("Min Q must be positive")
    if cfg.min_q >= cfg.max_q:
        raise InvalidConfig("Min Q must be less than Max Q")
    if cfg.min_db >= cfg.max_db:
        raise InvalidConfig("Min dB must be less than Max dB")

    f_lo, f_hi = cfg.input_curve.freq[0], cfg.input_curve.freq[-1]
    if cfg.max_freq < f_lo or cfg.min_freq > f_hi:
        raise InvalidConfig(
            f"Frequency range {cfg.min_freq:g}-{cfg.max_freq:g} Hz does not overlap the input curve")
    band = (cfg.input_curve.freq >= cfg.min_freq) & (cfg.input_curve.freq <= cfg.max_freq)
    if np.count_nonzero(band) < 2:
        raise InvalidConfig("Fewer than 2 input points fall within the frequency range")

    if cfg.min_spacing_oct < 0 or cfg.spacing_weight < 0:
        raise InvalidConfig("Spacing parameters must be non-negative")
    if cfg.smooth and cfg.smooth_n < 1:
        raise InvalidConfig("Smoothing fraction must be at least 1")

    if cfg.algo not in SUPPORTED_ALGOS:
        if cfg.algo.startswith("nlopt:"):
            raise InvalidConfig(
                f"Algorithm {cfg.algo!r} is not available as a global search; use 'autoeq:de' "
                f"and set local_algo={cfg.algo.split(':', 1)[1]!r} with refine=True instead")
        raise InvalidConfig(f"Unknown algorithm {cfg.algo!r} (expected one of: {', '.join(SUPPORTED_ALGOS)})")
    needed = min_population(cfg.strategy)
    if cfg.population < needed:
        raise InvalidConfig(
            f"Population must be at least {needed} for strategy {cfg.strategy.value}")
    if cfg.maxeval < cfg.population:
        raise InvalidConfig("Max evaluations must be at least the population size")
    if not 0 < cfg.de_f <= 2:
        raise InvalidConfig("Mutation factor must be in (0, 2]")
    if not 0 <= cfg.de_cr <= 1:
        raise InvalidConfig("Recombination factor must be in [0, 1]")
    if not (0 <= cfg.adaptive_weight_f <= 1 and 0 <= cfg.adaptive_weight_cr <= 1):
        raise InvalidConfig("Adaptive weights must be in [0, 1]")
    if cfg.tolerance < 0 or cfg.atolerance < 0:
        raise InvalidConfig("Tolerances must be non-negative")
    if cfg.stall_generations < 0:
        raise InvalidConfig("Stall generations must be non-negative")
    if cfg.refine and cfg.local_maxeval < 1:
        raise InvalidConfig("Local refinement needs a positive evaluation budget")

    if cfg.loss is LossType.SPEAKER_SCORE:
        missing = [name for name in REQUIRED_SPIN_CURVES if name not in (cfg.spin_curves or {})]
        if missing:
            raise InvalidConfig(f"Loss speaker-score needs CEA2034 curves; missing: {', '.join(missing)}")
    for name, curve in (cfg.spin_curves or {}).items():
        if not isinstance(curve, Curve):
            raise InvalidConfig(f"Spin curve {name!r} must be a Curve")
