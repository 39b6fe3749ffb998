# src/automatic_eq_optimizer/optimization/optimizer.py

import enum
import logging
from dataclasses import dataclass

import numpy as np

from ..errors import InvalidConfig

logger = logging.getLogger(__name__)

# Spread of the per-individual F/CR draws in the adaptive strategies.
ADAPTIVE_SIGMA = 0.1
ADAPTIVE_F_MIN = 0.05


class Strategy(enum.Enum):
    """
    Mutation/crossover scheme, named like scipy's differential_evolution.

    The prefix selects how the mutant is built, the suffix the crossover:
    "bin" (binomial) or "exp" (exponential).
    """

    BEST1BIN = "best1bin"
    BEST1EXP = "best1exp"
    RAND1BIN = "rand1bin"
    RAND1EXP = "rand1exp"
    RAND2BIN = "rand2bin"
    RAND2EXP = "rand2exp"
    BEST2BIN = "best2bin"
    BEST2EXP = "best2exp"
    CURRENTTOBEST1BIN = "currenttobest1bin"
    CURRENTTOBEST1EXP = "currenttobest1exp"
    RANDTOBEST1BIN = "randtobest1bin"
    RANDTOBEST1EXP = "randtobest1exp"
    ADAPTIVEBIN = "adaptivebin"
    ADAPTIVEEXP = "adaptiveexp"

    @classmethod
    def from_name(cls, name):
        if isinstance(name, cls):
            return name
        key = str(name).strip().lower().replace("-", "").replace("_", "").replace("/", "")
        try:
            return cls(key)
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise InvalidConfig(f"Unknown strategy {name!r} (expected one of: {valid})") from None

    @property
    def mutation(self):
        return self.value[:-3]

    @property
    def crossover(self):
        return self.value[-3:]

    @property
    def adaptive(self):
        return self.mutation == "adaptive"

    @property
    def donors_needed(self):
        """Distinct individuals other than the target that one mutation may draw on."""
        return {"rand2": 5, "best2": 4}.get(self.mutation, 3)


@dataclass
class DEResult:
    x: np.ndarray
    fun: float
    nfev: int
    nit: int
    converged: bool
    cancelled: bool
    message: str


def _evaluate(func, X, vectorized):
    """Energies of every row of X; NaN/inf become +inf so the row never wins."""
    if vectorized:
        energies = np.asarray(func(X), dtype=float).reshape(len(X))
    else:
        energies = np.array([func(x) for x in X], dtype=float)
    bad = ~np.isfinite(energies)
    if np.any(bad):
        logger.debug("%d candidate(s) produced a non-finite loss; treated as worst", np.count_nonzero(bad))
        energies[bad] = np.inf
    return energies


def _pick_donors(rng, size, count):
    """count distinct indices per row, never the row itself."""
    keys = rng.random((size, size))
    np.fill_diagonal(keys, np.inf)
    return np.argsort(keys, axis=1)[:, :count]


def _mutate(strategy, pop, best, donors, F):
    """Build the mutant vectors; F is a column (size, 1)."""
    r = [pop[donors[:, j]] for j in range(donors.shape[1])]
    kind = strategy.mutation
    if kind == "best1":
        return best + F * (r[0] - r[1])
    if kind == "rand1":
        return r[0] + F * (r[1] - r[2])
    if kind == "rand2":
        return r[0] + F * (r[1] - r[2] + r[3] - r[4])
    if kind == "best2":
        return best + F * (r[0] - r[1] + r[2] - r[3])
    if kind == "randtobest1":
        return r[0] + F * (best - r[0]) + F * (r[1] - r[2])
    # currenttobest1 and adaptive
    return pop + F * (best - pop) + F * (r[0] - r[1])


def _crossover_mask(strategy, rng, size, dim, CR):
    """Which trial dimensions come from the mutant; CR is a column (size, 1)."""
    rows = np.arange(size)
    if strategy.crossover == "bin":
        mask = rng.random((size, dim)) < CR
        # at least one dimension always comes from the mutant
        mask[rows, rng.integers(dim, size=size)] = True
        return mask

    # exponential: a run of consecutive dimensions starting at a random index
    start = rng.integers(dim, size=size)
    draws = rng.random((size, dim - 1)) < CR
    run = 1 + np.cumprod(draws, axis=1).sum(axis=1)
    offsets = np.arange(dim)
    mask = np.zeros((size, dim), dtype=bool)
    cols = (start[:, None] + offsets) % dim
    mask[rows[:, None], cols] = offsets[None, :] < run[:, None]
    return mask


def _lehmer_mean(values):
    return float(np.sum(values ** 2) / np.sum(values))


def differential_evolution(func, lower, upper, population=30, maxeval=20000,
                           strategy="currenttobest1bin", F=0.8, CR=0.9,
                           adaptive_weight_f=0.8, adaptive_weight_cr=0.7,
                           tol=1e-3, atol=1e-4, stall_generations=0,
                           seed=None, x0=None, vectorized=False, monitor=None):
    """
    Minimize func over the box [lower, upper] with differential evolution.

    The population is sampled uniformly inside the bounds (x0, if given,
    replaces the first individual). Each generation builds one trial per
    individual, evaluates all trials together, then keeps a trial only if it
    is strictly better than the individual it challenges: on a tie the
    original stays.

    The run stops when the next generation would exceed maxeval evaluations,
    when the population's energies converge
    (std <= atol + tol * |mean|), when the best energy has not improved
    for stall_generations generations (0 disables this), or when the
    monitor reports a cancel/abort. Cancellation is not an error: the best
    individual found so far is returned with cancelled=True.

    With vectorized=True, func receives a 2-D array of candidates and must
    return one energy per row.
    """
    strategy = Strategy.from_name(strategy)
    lower = np.asarray(lower, dtype=float)
    upper = np.asarray(upper, dtype=float)
    if lower.shape != upper.shape or lower.ndim != 1:
        raise InvalidConfig("Bounds must be two 1-D arrays of equal length")
    if np.any(lower >= upper):
        raise InvalidConfig("Every lower bound must be below its upper bound")
    if population < strategy.donors_needed + 1:
        raise InvalidConfig(
            f"Population must be at least {strategy.donors_needed + 1} for strategy {strategy.value}")
    if maxeval < population:
        raise InvalidConfig("maxeval must be at least the population size")

    rng = np.random.default_rng(seed)
    size, dim = int(population), len(lower)
    span = upper - lower

    pop = lower + rng.random((size, dim)) * span
    if x0 is not None:
        pop[0] = np.clip(np.asarray(x0, dtype=float), lower, upper)
    energies = _evaluate(func, pop, vectorized)
    nfev = size

    best_idx = int(np.argmin(energies))
    best_x = pop[best_idx].copy()
    best_e = float(energies[best_idx])
    last_improvement = 0

    mu_f, mu_cr = float(F), float(CR)

    logger.info("DE start: %s, population=%d, dim=%d, maxeval=%d, initial best=%.6g",
                strategy.value, size, dim, maxeval, best_e)

    def finish(nit, converged, cancelled, message):
        logger.info("DE finished after %d generations, %d evaluations: %s (best=%.6g)",
                    nit, nfev, message, best_e)
        return DEResult(x=best_x.copy(), fun=best_e, nfev=nfev, nit=nit, converged=converged,
                        cancelled=cancelled, message=message)

    def convergence_ratio():
        if not np.all(np.isfinite(energies)):
            return 0.0
        spread = float(np.std(energies))
        threshold = atol + tol * abs(float(np.mean(energies)))
        if spread == 0.0:
            return np.inf
        return threshold / spread

    if monitor is not None and monitor.check(0, best_e, best_x, nfev, convergence_ratio()):
        return finish(0, False, True, f"Optimization {monitor.stop_reason} before the first generation")

    nit = 0
    while True:
        if nfev + size > maxeval:
            return finish(nit, False, False, "Maximum number of evaluations reached")
        nit += 1

        if strategy.adaptive:
            F_i = np.clip(rng.normal(mu_f, ADAPTIVE_SIGMA, size), ADAPTIVE_F_MIN, 1.0)
            CR_i = np.clip(rng.normal(mu_cr, ADAPTIVE_SIGMA, size), 0.0, 1.0)
        else:
            F_i = np.full(size, float(F))
            CR_i = np.full(size, float(CR))

        donors = _pick_donors(rng, size, strategy.donors_needed)
        mutants = _mutate(strategy, pop, best_x, donors, F_i[:, None])
        mask = _crossover_mask(strategy, rng, size, dim, CR_i[:, None])
        trials = np.clip(np.where(mask, mutants, pop), lower, upper)

        trial_energies = _evaluate(func, trials, vectorized)
        nfev += size

        improved = trial_energies < energies
        pop[improved] = trials[improved]
        energies[improved] = trial_energies[improved]

        if strategy.adaptive and np.any(improved):
            mu_f = adaptive_weight_f * mu_f + (1 - adaptive_weight_f) * _lehmer_mean(F_i[improved])
            mu_cr = adaptive_weight_cr * mu_cr + (1 - adaptive_weight_cr) * float(np.mean(CR_i[improved]))

        gen_idx = int(np.argmin(energies))
        if energies[gen_idx] < best_e:
            if best_e - energies[gen_idx] > atol + tol * abs(best_e):
                last_improvement = nit
            best_e = float(energies[gen_idx])
            best_x = pop[gen_idx].copy()

        ratio = convergence_ratio()
        logger.debug("DE generation %d: best=%.6g, nfev=%d, improved=%d", nit, best_e, nfev,
                     np.count_nonzero(improved))

        if monitor is not None and monitor.check(nit, best_e, best_x, nfev, ratio):
            return finish(nit, False, True, f"Optimization {monitor.stop_reason}")
        if ratio >= 1.0:
            return finish(nit, True, False, "Population converged")
        if stall_generations and nit - last_improvement >= stall_generations:
            return finish(nit, True, False, f"No improvement for {stall_generations} generations")
