# tests/test_integration.py

import pytest
import numpy as np
from unittest.mock import patch, MagicMock

from automatic_eq_optimizer import (
    CancellationToken, Curve, FilterType, OptimizationConfig, OptimizationResult, optimize,
)
from automatic_eq_optimizer.core.auto_eq import AutoEQWorker
from automatic_eq_optimizer.core.params import (
    EARLY_REFLECTIONS, LISTENING_WINDOW, ON_AXIS, SOUND_POWER,
)
from automatic_eq_optimizer.optimization.filters import FilterParameter, filters_response
from automatic_eq_optimizer.optimization.optimizer import DEResult

SAMPLE_RATE = 48000.0


@pytest.fixture
def dip_curve():
    """
    A flat 0 dB response at 20 points from 20 Hz to 20 kHz with a single,
    one octave wide -6 dB dip at 1 kHz.

    The dip is the exact response of a -6 dB peaking filter, so a +6 dB
    peak at the same frequency and Q corrects it perfectly.
    """
    freqs = np.logspace(np.log10(20), np.log10(20000), 20)
    dip = FilterParameter(FilterType.PEAK, 1000.0, 1.41, -6.0)
    return Curve(freqs, filters_response(freqs, [dip], SAMPLE_RATE))


@pytest.fixture
def dip_cfg(dip_curve):
    return OptimizationConfig(
        input_curve=dip_curve,
        num_filters=1,
        sample_rate=SAMPLE_RATE,
        min_freq=20,
        max_freq=20000,
        min_q=0.5,
        max_q=5,
        smooth=False,
        seed=0,
    )


def test_single_filter_corrects_the_dip(dip_cfg):
    """
    End-to-end run of the whole pipeline: the optimizer should place one
    peak near 1 kHz with about +6 dB of gain and leave almost no residual.
    """
    result = optimize(dip_cfg)

    assert result.success, result.error_message
    assert len(result.filters) == 1

    (band,) = result.filters
    assert band.filter_type is FilterType.PEAK
    assert 850 < band.frequency < 1150
    assert band.gain == pytest.approx(6.0, abs=0.5)
    assert result.objective_value < 0.5

    assert result.nfev <= dip_cfg.maxeval
    assert np.max(np.abs(result.deviation_curve.spl)) < 1.0
    assert result.input_curve == dip_cfg.input_curve
    assert result.preference_score_before is None


def test_runs_are_reproducible(dip_cfg):
    cfg = dip_cfg.with_changes(maxeval=600)
    first, second = optimize(cfg), optimize(cfg)
    assert first.filter_params == second.filter_params
    assert first.objective_value == second.objective_value


def test_progress_is_monotone(dip_cfg):
    updates = []
    result = optimize(dip_cfg.with_changes(maxeval=900), updates.append)
    assert result.success
    assert updates[0].iteration == 0
    fitness = [u.fitness for u in updates]
    assert all(b <= a for a, b in zip(fitness, fitness[1:]))
    assert updates[-1].nfev == result.nfev


def test_cancelled_before_start_still_returns_filters(dip_cfg):
    token = CancellationToken()
    token.cancel()
    result = optimize(dip_cfg.with_changes(num_filters=3), cancellation_token=token)

    assert result.success
    assert result.cancelled
    assert len(result.filters) == 3
    assert result.nfev == dip_cfg.population
    assert result.iterations == 0


def test_callback_abort(dip_cfg):
    result = optimize(dip_cfg, lambda update: update.iteration < 2)
    assert result.success
    assert result.cancelled
    assert result.iterations == 2


def test_filters_are_sorted_by_frequency(dip_cfg):
    result = optimize(dip_cfg.with_changes(num_filters=4, maxeval=1200))
    freqs = [f.frequency for f in result.filters]
    assert freqs == sorted(freqs)


def test_refinement_never_makes_things_worse(dip_cfg):
    cfg = dip_cfg.with_changes(maxeval=300)
    plain = optimize(cfg)
    refined = optimize(cfg.with_changes(refine=True, local_maxeval=200))
    assert refined.success
    assert refined.objective_value <= plain.objective_value
    assert refined.nfev <= plain.nfev + 200


def test_refinement_is_skipped_after_cancel(dip_cfg):
    token = CancellationToken()
    token.set()
    result = optimize(dip_cfg.with_changes(refine=True), cancellation_token=token)
    assert result.cancelled
    assert not result.refined
    assert result.nfev == dip_cfg.population


def test_headphone_run_reports_scores(dip_cfg):
    result = optimize(dip_cfg.with_changes(loss="headphone-flat", maxeval=3000))
    assert result.success
    assert result.preference_score_after > result.preference_score_before


def test_speaker_score_run(dip_curve):
    spin = {name: dip_curve for name in (ON_AXIS, LISTENING_WINDOW, EARLY_REFLECTIONS, SOUND_POWER)}
    cfg = OptimizationConfig(input_curve=dip_curve, spin_curves=spin, loss="speaker-score",
                             num_filters=1, population=10, maxeval=300, seed=1,
                             min_freq=100, max_freq=12000)
    result = optimize(cfg)
    assert result.success
    assert result.objective_value == pytest.approx(-result.preference_score_after)


def test_dict_input(dip_curve):
    result = optimize({
        "captured_frequencies": dip_curve.freq,
        "captured_magnitudes": dip_curve.spl,
        "num_filters": 2,
        "maxeval": 200,
        "seed": 3,
        "output_path": "/tmp/ignored.txt",
    })
    assert result.success
    assert len(result.filters) == 2


UI_CURVE = {"captured_frequencies": [100.0, 1000.0, 10000.0], "captured_magnitudes": [0.0, -3.0, 0.0]}


@pytest.mark.parametrize("params, message", [
    ({}, "No input curve"),
    ({"captured_frequencies": [100, 50], "captured_magnitudes": [0, 0]}, "increasing"),
    (dict(UI_CURVE, num_filters="three"), "three"),
    (dict(UI_CURVE, num_filters=2.5), "whole number"),
    (dict(UI_CURVE, min_q="one"), "one"),
    (dict(UI_CURVE, max_db=[12]), "Invalid optimization parameters"),
    (dict(UI_CURVE, loss="speaker-score",
          spin_curves={ON_AXIS: {"frequency": [100, 1000], "spl": [0, 0]}}), "needs 'freq'"),
    (dict(UI_CURVE, spin_curves=[ON_AXIS]), "Invalid optimization parameters"),
])
def test_bad_dict_input_fails_cleanly(params, message):
    result = optimize(params)
    assert not result.success
    assert message in result.error_message


def test_non_config_input_fails_cleanly():
    result = optimize(None)
    assert not result.success
    assert "NoneType" in result.error_message


def test_numeric_strings_from_the_ui(dip_curve):
    result = optimize({
        "captured_frequencies": dip_curve.freq.tolist(),
        "captured_magnitudes": dip_curve.spl.tolist(),
        "num_filters": "1",
        "population": "30",
        "maxeval": "300",
        "min_q": "1",
        "seed": 0,
    })
    assert result.success, result.error_message
    assert result.nfev <= 300
    assert 1.0 <= result.filters[0].q <= 3.0


def test_ui_gain_limits_allow_cuts(dip_curve):
    """
    The UI sends min_db/max_db as gain magnitudes. A +6 dB peak must still
    be answered with a cut, limited to 3 dB.
    """
    peak = FilterParameter(FilterType.PEAK, 1000.0, 1.41, 6.0)
    freqs = dip_curve.freq
    result = optimize({
        "captured_frequencies": freqs,
        "captured_magnitudes": filters_response(freqs, [peak], SAMPLE_RATE),
        "num_filters": 1,
        "min_db": 1.0,
        "max_db": 3.0,
        "min_q": 0.5,
        "max_q": 5.0,
        "smooth": False,
        "maxeval": 1500,
        "seed": 0,
    })
    assert result.success, result.error_message
    (band,) = result.filters
    assert -3.0 - 1e-9 <= band.gain < 0.0
    assert 700 < band.frequency < 1400


def test_invalid_config_fails_cleanly(dip_cfg):
    result = optimize(dip_cfg.with_changes(min_q=4.0, max_q=2.0))
    assert isinstance(result, OptimizationResult)
    assert not result.success
    assert "Min Q" in result.error_message
    assert result.filters is None


def test_all_candidates_non_finite(dip_cfg):
    broken = DEResult(x=np.zeros(3), fun=np.inf, nfev=30, nit=0, converged=False,
                      cancelled=False, message="Maximum number of evaluations reached")
    with patch("automatic_eq_optimizer.core.auto_eq.differential_evolution", return_value=broken):
        result = optimize(dip_cfg)
    assert not result.success
    assert "non-finite" in result.error_message


def test_result_to_dict(dip_cfg):
    d = optimize(dip_cfg.with_changes(maxeval=200)).to_dict()
    assert d["success"] is True
    assert d["filters"][0]["filter_type"] == "PK"
    assert len(d["filter_response"]["freq"]) == 20


def test_worker_emits_signals(dip_cfg):
    """
    The QThread worker runs the same pipeline and reports through signals.
    run() is called directly so the test needs no event loop.
    """
    worker = AutoEQWorker(dip_cfg.with_changes(maxeval=300))

    mock_progress_slot = MagicMock()
    mock_finished_slot = MagicMock()
    worker.progress_signal.connect(mock_progress_slot)
    worker.finished_signal.connect(mock_finished_slot)

    worker.run()

    mock_progress_slot.assert_called()
    iteration, fitness = mock_progress_slot.call_args_list[0].args
    assert iteration == 0
    assert isinstance(fitness, float)

    mock_finished_slot.assert_called_once()
    result = mock_finished_slot.call_args.args[0]
    assert result is worker.result
    assert result.success


def test_worker_stop(dip_cfg):
    worker = AutoEQWorker(dip_cfg)
    worker.stop()
    worker.run()
    assert worker.result.cancelled
    assert worker.result.success
