# src/automatic_eq_optimizer/core/auto_eq.py

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

import numpy as np
from PyQt5.QtCore import QThread, pyqtSignal

from ..errors import InvalidConfig, NumericFailure, OptimizationError
from ..optimization.filters import FilterParameter, decode_params
from ..optimization.loss import build_objective, evaluate_filters, initial_guess
from ..optimization.optimizer import differential_evolution
from ..optimization.refine import local_refine
from ..optimization.score import scorer_for
from .curve import Curve
from .params import OptimizationConfig, validate_params
from .progress import CancellationToken, ProgressMonitor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptimizationResult:
    """
    Outcome of one optimize() call. Built once, never modified.

    A cancelled run is still a success: cancelled=True and the filters are
    the best found before the stop.
    """

    success: bool
    error_message: Optional[str] = None
    filters: Optional[Tuple[FilterParameter, ...]] = None
    filter_params: Optional[Tuple[float, ...]] = None
    objective_value: Optional[float] = None
    preference_score_before: Optional[float] = None
    preference_score_after: Optional[float] = None
    filter_response: Optional[Curve] = None
    deviation_curve: Optional[Curve] = None
    input_curve: Optional[Curve] = None
    cancelled: bool = False
    converged: bool = False
    refined: bool = False
    nfev: int = 0
    iterations: int = 0
    message: str = ""

    @classmethod
    def failure(cls, message):
        return cls(success=False, error_message=message, message=message)

    def to_dict(self):
        """Plain-Python view of the result (lists and floats only)."""

        def curve(c):
            return None if c is None else {"freq": c.freq.tolist(), "spl": c.spl.tolist()}

        return {
            "success": self.success,
            "error_message": self.error_message,
            "filters": None if self.filters is None else [f.to_dict() for f in self.filters],
            "filter_params": None if self.filter_params is None else list(self.filter_params),
            "objective_value": self.objective_value,
            "preference_score_before": self.preference_score_before,
            "preference_score_after": self.preference_score_after,
            "filter_response": curve(self.filter_response),
            "deviation_curve": curve(self.deviation_curve),
            "input_curve": curve(self.input_curve),
            "cancelled": self.cancelled,
            "converged": self.converged,
            "refined": self.refined,
            "nfev": self.nfev,
            "iterations": self.iterations,
            "message": self.message,
        }


def optimize(cfg, progress_callback=None, cancellation_token=None):
    """
    Run one PEQ optimization.

    cfg may be an OptimizationConfig or the flat parameter mapping accepted
    by OptimizationConfig.from_dict. Invalid input never raises: it yields a
    result with success=False and the reason in error_message.

    progress_callback(ProgressUpdate) is called from this thread after
    initialization and after every generation (and every refinement
    iteration); returning False stops the run. Setting cancellation_token
    from any thread stops it at the next such boundary.
    """
    try:
        if isinstance(cfg, Mapping):
            cfg = OptimizationConfig.from_dict(cfg)
        elif not isinstance(cfg, OptimizationConfig):
            raise InvalidConfig(f"Expected an OptimizationConfig or a mapping, got {type(cfg).__name__}")
        validate_params(cfg)
        return _run_pipeline(cfg, progress_callback, cancellation_token)
    except OptimizationError as e:
        logger.error("Optimization failed: %s", e)
        return OptimizationResult.failure(str(e))


def _run_pipeline(cfg, progress_callback, cancellation_token):
    logger.info("Optimizing %d filter(s), model=%s, loss=%s, strategy=%s",
                cfg.num_filters, cfg.peq_model.value, cfg.loss.value, cfg.strategy.value)
    objective = build_objective(cfg)
    lower, upper = objective.bounds

    # --- 1. Global search ---
    monitor = ProgressMonitor(progress_callback, cancellation_token, phase="global")
    de = differential_evolution(
        objective.evaluate_population, lower, upper,
        population=cfg.population, maxeval=cfg.maxeval, strategy=cfg.strategy,
        F=cfg.de_f, CR=cfg.de_cr,
        adaptive_weight_f=cfg.adaptive_weight_f, adaptive_weight_cr=cfg.adaptive_weight_cr,
        tol=cfg.tolerance, atol=cfg.atolerance, stall_generations=cfg.stall_generations,
        seed=cfg.seed, x0=initial_guess(cfg), vectorized=True, monitor=monitor)

    best_x, best_f = de.x, de.fun
    nfev, cancelled, message = de.nfev, de.cancelled, de.message
    refined = False

    # --- 2. Optional local refinement ---
    if cfg.refine and not cancelled:
        refine_monitor = ProgressMonitor(progress_callback, cancellation_token, phase="refine")
        rr = local_refine(objective, best_x, best_f, lower, upper,
                          method=cfg.local_algo.scipy_method, maxeval=cfg.local_maxeval,
                          monitor=refine_monitor)
        best_x, best_f = rr.x, rr.fun
        nfev += rr.nfev
        cancelled = rr.cancelled
        refined = rr.accepted
        message = f"{message}; {rr.message}"

    if not np.isfinite(best_f):
        raise NumericFailure("Every candidate produced a non-finite loss")

    # --- 3. Decode and report ---
    filters = sorted(decode_params(best_x, cfg.peq_model), key=lambda f: f.frequency)
    chain, deviation = evaluate_filters(cfg, best_x)
    freqs = cfg.input_curve.freq

    score_before = score_after = None
    scorer = scorer_for(cfg)
    if scorer is not None:
        score_before = scorer(cfg)
        score_after = scorer(cfg, best_x)

    for i, f in enumerate(filters, start=1):
        logger.info("Filter %d: %s fc=%.1f Hz, gain=%.2f dB, Q=%.2f",
                    i, f.filter_type.value, f.frequency, f.gain, f.q)

    return OptimizationResult(
        success=True,
        filters=tuple(filters),
        filter_params=tuple(float(v) for v in best_x),
        objective_value=float(best_f),
        preference_score_before=score_before,
        preference_score_after=score_after,
        filter_response=Curve(freqs, chain),
        deviation_curve=Curve(freqs, deviation),
        input_curve=cfg.input_curve,
        cancelled=cancelled,
        converged=de.converged,
        refined=refined,
        nfev=nfev,
        iterations=de.nit,
        message=message,
    )


class AutoEQWorker(QThread):
    """
    Runs optimize() off the GUI thread.

    progress_signal carries (iteration, best loss) for every progress update;
    finished_signal carries the OptimizationResult. stop() requests a
    cooperative cancel; the worker still finishes with the best filters found.
    """
    progress_signal = pyqtSignal(int, float)
    finished_signal = pyqtSignal(object)

    def __init__(self, cfg, parent=None):
        super(AutoEQWorker, self).__init__(parent)
        self.cfg = cfg
        self.cancellation_token = CancellationToken()
        self.result = None

    def _on_progress(self, update):
        self.progress_signal.emit(update.iteration, update.fitness)
        return True

    def stop(self):
        logger.info("Stop requested for AutoEQ worker")
        self.cancellation_token.set()

    def run(self):
        self.result = optimize(self.cfg, self._on_progress, self.cancellation_token)
        self.finished_signal.emit(self.result)
