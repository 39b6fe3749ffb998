# src/automatic_eq_optimizer/optimization/refine.py

"""
Local refinement of the differential evolution result.

Runs a derivative-free scipy.optimize.minimize method from the global best,
inside the same bounds and with a hard evaluation budget. Every dim + 1
evaluations count as one refinement iteration: that is where cancellation
is polled and progress is reported, mirroring the generation boundary of
the global search.
"""

import logging
from dataclasses import dataclass

import numpy as np
from scipy.optimize import minimize

logger = logging.getLogger(__name__)


class _StopRefinement(Exception):
    """Raised from inside the objective to leave scipy's loop early."""


@dataclass
class RefineResult:
    x: np.ndarray
    fun: float
    nfev: int
    accepted: bool
    cancelled: bool
    message: str


class _BudgetedObjective:
    """Wraps the objective with an evaluation cap and progress checkpoints."""

    def __init__(self, func, lower, upper, maxeval, monitor, dim):
        self.func = func
        self.lower = lower
        self.upper = upper
        self.maxeval = maxeval
        self.monitor = monitor
        self.period = dim + 1
        self.nfev = 0
        self.best_x = None
        self.best_f = np.inf
        self.stop_message = None

    def __call__(self, x):
        if self.nfev >= self.maxeval:
            self.stop_message = "Local evaluation budget exhausted"
            raise _StopRefinement
        # COBYLA may step slightly outside the box; evaluate the clipped point.
        x = np.clip(np.asarray(x, dtype=float), self.lower, self.upper)
        value = float(self.func(x))
        self.nfev += 1
        if not np.isfinite(value):
            value = np.inf
        if value < self.best_f:
            self.best_f = value
            self.best_x = x.copy()

        if self.monitor is not None and self.nfev % self.period == 0:
            iteration = self.nfev // self.period
            if self.monitor.check(iteration, self.best_f, self.best_x, self.nfev):
                self.stop_message = f"Refinement {self.monitor.stop_reason}"
                raise _StopRefinement
        return value


def local_refine(func, x0, f0, lower, upper, method="COBYLA", maxeval=2000, monitor=None):
    """
    Refine x0 (with known loss f0) and return a RefineResult.

    The refined point is accepted only when its loss is not worse than f0;
    otherwise x0 is returned unchanged with accepted=False.
    """
    lower = np.asarray(lower, dtype=float)
    upper = np.asarray(upper, dtype=float)
    x0 = np.clip(np.asarray(x0, dtype=float), lower, upper)
    wrapped = _BudgetedObjective(func, lower, upper, maxeval, monitor, len(x0))

    # one more than the cap, so the wrapper and not scipy ends the run
    options = {"maxiter": int(maxeval) + 1}
    if method == "COBYLA":
        # initial trust region: a tenth of the smallest box side
        options["rhobeg"] = float(np.min(upper - lower)) / 10.0
    else:
        options["maxfev"] = int(maxeval) + 1

    logger.info("Local refinement (%s) from loss %.6g, budget %d evaluations", method, f0, maxeval)
    try:
        result = minimize(wrapped, x0, method=method, bounds=list(zip(lower, upper)), options=options)
        message = str(result.message)
    except _StopRefinement:
        message = wrapped.stop_message

    cancelled = monitor is not None and monitor.cancelled
    accepted = wrapped.best_x is not None and wrapped.best_f <= f0
    if accepted:
        x, fun = wrapped.best_x, wrapped.best_f
    else:
        x, fun = x0, float(f0)
    logger.info("Local refinement done after %d evaluations: %s (loss %.6g -> %.6g, %s)",
                wrapped.nfev, message, f0, fun, "accepted" if accepted else "rejected")
    return RefineResult(x=x, fun=fun, nfev=wrapped.nfev, accepted=accepted,
                        cancelled=cancelled, message=message)
