# src/automatic_eq_optimizer/core/progress.py

"""
Cooperative cancellation and progress reporting.

The search loops poll the token and call the progress callback only at
generation (or refinement iteration) boundaries, so a cancel request takes
effect after at most one generation's worth of evaluations.

The callback runs synchronously on the optimizing thread. It must return
quickly; nothing here enforces a timeout. Returning False asks the search to
stop, any other return value (including None) lets it continue.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe stop flag shared by the caller and the search loop."""

    def __init__(self):
        self._event = threading.Event()

    def set(self):
        self._event.set()

    cancel = set

    def is_set(self):
        return self._event.is_set()

    def reset(self):
        self._event.clear()

    def __repr__(self):
        return f"CancellationToken(set={self.is_set()})"


@dataclass(frozen=True)
class ProgressUpdate:
    iteration: int
    fitness: float
    params: Optional[np.ndarray] = None
    phase: str = "global"
    nfev: int = 0
    convergence: Optional[float] = None


class ProgressMonitor:
    """
    Bundles the token and the callback for one search phase.

    check() reports an update and tells the loop whether to keep going.
    """

    def __init__(self, callback=None, token=None, phase="global"):
        self.callback = callback
        self.token = token
        self.phase = phase
        self.stop_reason = None

    @property
    def cancelled(self):
        return self.stop_reason is not None

    def should_stop(self):
        if self.stop_reason is None and self.token is not None and self.token.is_set():
            self.stop_reason = "cancelled"
        return self.stop_reason is not None

    def check(self, iteration, fitness, params=None, nfev=0, convergence=None):
        """Deliver a ProgressUpdate; return True if the search must stop."""
        if self.callback is not None:
            update = ProgressUpdate(
                iteration=iteration,
                fitness=float(fitness),
                params=None if params is None else np.array(params, dtype=float),
                phase=self.phase,
                nfev=nfev,
                convergence=convergence,
            )
            if self.callback(update) is False:
                logger.info("Progress callback requested stop at %s iteration %d", self.phase, iteration)
                self.stop_reason = "aborted by progress callback"
        return self.should_stop()
