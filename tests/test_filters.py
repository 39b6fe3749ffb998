# tests/test_filters.py

import numpy as np
import pytest

from automatic_eq_optimizer.errors import InvalidConfig
from automatic_eq_optimizer.optimization.filters import (
    FilterParameter, FilterType, PeqModel, batch_peq_response, decode_params,
    encode_filters, filters_response, num_filters_for, parameter_bounds, peq_response,
    vector_length,
)

FS = 48000.0


@pytest.fixture
def freqs():
    return np.logspace(np.log10(20), np.log10(20000), 300)


def peak(fc, q, gain):
    return FilterParameter(FilterType.PEAK, fc, q, gain)


class TestPeqModel:

    @pytest.mark.parametrize("model, expected", [
        ("pk", [FilterType.PEAK] * 3),
        ("hp-pk", [FilterType.HIGHPASS, FilterType.PEAK, FilterType.PEAK]),
        ("hp-pk-lp", [FilterType.HIGHPASS, FilterType.PEAK, FilterType.LOWPASS]),
        ("free-pk-free", [None, FilterType.PEAK, None]),
        ("free", [None, None, None]),
    ])
    def test_band_types(self, model, expected):
        assert PeqModel.from_name(model).band_types(3) == expected

    def test_single_band_hp_pk_lp_keeps_the_high_pass(self):
        assert PeqModel.HP_PK_LP.band_types(1) == [FilterType.HIGHPASS]

    def test_unknown_name(self):
        with pytest.raises(InvalidConfig):
            PeqModel.from_name("shelf")

    def test_vector_length(self):
        assert vector_length(4, "pk") == 12
        assert vector_length(4, "free") == 16

    def test_num_filters_for_rejects_bad_length(self):
        with pytest.raises(InvalidConfig):
            num_filters_for(np.zeros(7), "pk")


class TestBounds:

    def test_layout(self):
        lower, upper = parameter_bounds(2, "pk", 20, 20000, 0.5, 4, -12, 12)
        np.testing.assert_allclose(lower, [np.log10(20), 0.5, -12] * 2)
        np.testing.assert_allclose(upper, [np.log10(20000), 4, 12] * 2)

    def test_selector_slot_for_free_bands(self):
        lower, upper = parameter_bounds(1, "free", 20, 20000, 0.5, 4, -12, 12)
        assert len(lower) == 4
        assert lower[3] == 0.0
        assert upper[3] < 3.0


class TestEncoding:

    def test_round_trip_fixed_model(self):
        filters = [FilterParameter(FilterType.HIGHPASS, 40.0, 0.7, 0.0), peak(1000.0, 2.0, -4.5)]
        decoded = decode_params(encode_filters(filters, "hp-pk"), "hp-pk")
        for got, want in zip(decoded, filters):
            assert got.filter_type is want.filter_type
            assert got.frequency == pytest.approx(want.frequency)
            assert got.q == pytest.approx(want.q)
            assert got.gain == pytest.approx(want.gain)

    def test_round_trip_free_model(self):
        filters = [FilterParameter(FilterType.LOWPASS, 12000.0, 0.7, 0.0),
                   peak(300.0, 1.0, 3.0),
                   FilterParameter(FilterType.HIGHPASS, 30.0, 0.5, 0.0)]
        decoded = decode_params(encode_filters(filters, "free"), "free")
        assert [f.filter_type for f in decoded] == [f.filter_type for f in filters]

    def test_encode_rejects_type_mismatch(self):
        with pytest.raises(InvalidConfig):
            encode_filters([peak(100.0, 1.0, 1.0)], "hp-pk")

    def test_pass_filters_decode_without_gain(self):
        x = np.array([np.log10(80.0), 0.7, 6.0, 1.2])  # selector 1 -> high-pass
        (band,) = decode_params(x, "free")
        assert band.filter_type is FilterType.HIGHPASS
        assert band.gain == 0.0

    def test_to_dict(self):
        assert peak(100.0, 1.0, 2.0).to_dict() == {
            "filter_type": "PK", "frequency": 100.0, "q": 1.0, "gain": 2.0}


class TestResponse:

    def test_peak_reaches_its_gain_at_center(self):
        x = encode_filters([peak(1000.0, 1.5, 6.0)], "pk")
        assert peq_response(np.array([1000.0]), x, "pk", FS)[0] == pytest.approx(6.0, abs=1e-9)

    def test_zero_gain_peak_is_transparent(self, freqs):
        x = encode_filters([peak(1000.0, 1.5, 0.0)], "pk")
        np.testing.assert_allclose(peq_response(freqs, x, "pk", FS), 0.0, atol=1e-9)

    def test_high_pass_shape(self, freqs):
        hp = FilterParameter(FilterType.HIGHPASS, 100.0, 0.707, 0.0)
        response = filters_response(freqs, [hp], FS)
        assert response[0] < -20.0
        assert abs(response[-50]) < 0.1

    def test_low_pass_shape(self, freqs):
        lp = FilterParameter(FilterType.LOWPASS, 1000.0, 0.707, 0.0)
        response = filters_response(freqs, [lp], FS)
        assert abs(response[0]) < 0.1
        assert response[-1] < -20.0

    def test_chain_is_sum_of_bands(self, freqs):
        a, b = peak(200.0, 1.0, 4.0), peak(3000.0, 2.0, -3.0)
        np.testing.assert_allclose(
            filters_response(freqs, [a, b], FS),
            filters_response(freqs, [a], FS) + filters_response(freqs, [b], FS))

    def test_batch_matches_single(self, freqs):
        rng = np.random.default_rng(3)
        lower, upper = parameter_bounds(3, "free-pk-free", 20, 20000, 0.5, 4, -12, 12)
        X = lower + rng.random((5, len(lower))) * (upper - lower)
        batch = batch_peq_response(freqs, X, "free-pk-free", FS)
        assert batch.shape == (5, len(freqs))
        for row, x in zip(batch, X):
            np.testing.assert_allclose(row, peq_response(freqs, x, "free-pk-free", FS))

    def test_empty_filter_list(self, freqs):
        assert np.all(filters_response(freqs, [], FS) == 0.0)
