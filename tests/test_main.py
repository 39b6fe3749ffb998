# tests/test_main.py

import numpy as np
import pytest

from automatic_eq_optimizer.cli.__main__ import build_parser, load_curve, main
from automatic_eq_optimizer.optimization.filters import (
    FilterParameter, FilterType, filters_response,
)

FREQS = np.logspace(np.log10(20), np.log10(20000), 20)


@pytest.fixture
def dip_file(tmp_path):
    dip = FilterParameter(FilterType.PEAK, 1000.0, 1.41, -6.0)
    path = tmp_path / "measurement.csv"
    np.savetxt(path, np.column_stack([FREQS, filters_response(FREQS, [dip], 48000.0)]),
               delimiter=",", header="frequency,magnitude")
    return path


def test_load_curve_reads_csv(dip_file):
    curve = load_curve(dip_file)
    assert len(curve) == 20
    np.testing.assert_allclose(curve.freq, FREQS)


def test_load_curve_reads_whitespace(tmp_path):
    path = tmp_path / "target.txt"
    path.write_text("# target\n20 1.0\n1000 0.0\n20000 -2.0\n")
    curve = load_curve(path)
    assert curve.interpolate(20000) == -2.0


def test_load_curve_needs_two_columns(tmp_path):
    path = tmp_path / "bad.txt"
    path.write_text("20\n1000\n")
    with pytest.raises(ValueError):
        load_curve(path)


def test_parser_rejects_target_with_harman():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--input", "a.txt", "--target", "b.txt", "--harman"])


def test_main_prints_filters(dip_file, capsys):
    code = main(["--input", str(dip_file), "--filters", "1", "--seed", "0", "--maxeval", "3000",
                 "--no-smooth", "--min-freq", "20", "--max-freq", "20000", "--min-q", "0.5"])
    captured = capsys.readouterr()
    assert code == 0
    assert "Launching Automatic EQ Optimizer..." in captured.out
    assert "Filter 1: PK Fc" in captured.out
    assert "[global] iteration 0" in captured.out


def test_main_with_harman_target_reports_scores(dip_file, capsys):
    code = main(["--input", str(dip_file), "--harman", "--loss", "headphone-score",
                 "--filters", "2", "--seed", "1", "--maxeval", "300"])
    assert code == 0
    assert "Preference score:" in capsys.readouterr().out


def test_main_missing_file(tmp_path, capsys):
    assert main(["--input", str(tmp_path / "nope.txt")]) == 1
    assert "Could not load curves" in capsys.readouterr().out


def test_main_invalid_settings(dip_file, capsys):
    assert main(["--input", str(dip_file), "--filters", "0"]) == 1
    assert "Optimization failed" in capsys.readouterr().out
