"""
Test Suite: Seed Outlier Removal

Both filter variants only invalidate cells; retained values are unchanged.
"""

import numpy as np

from src_stereo_corr.disparity import DisparityField, OutlierFilter
from src_stereo_corr.disparity.outlier_filter import QUANTILE_VARIANT, THRESHOLD_VARIANT


def field_with_spike(rows=9, cols=9, spike=(4, 4), value=40.0):
    dx = np.full((rows, cols), 2.0)
    dy = np.zeros((rows, cols))
    dx[spike] = value
    return DisparityField.from_components(dx, dy, np.ones((rows, cols), dtype=bool))


class TestVariantSelection:
    def test_quantile_iff_positive_multiple(self, make_settings):
        assert OutlierFilter.select_variant(make_settings()) == THRESHOLD_VARIANT
        assert OutlierFilter.select_variant(make_settings(rm_quantile_multiple=0)) == \
            THRESHOLD_VARIANT
        assert OutlierFilter.select_variant(make_settings(rm_quantile_multiple=2.5)) == \
            QUANTILE_VARIANT


class TestThresholdFilter:
    def setup_method(self):
        self.filter = OutlierFilter()

    def test_removes_isolated_spike(self):
        field = field_with_spike()
        result = self.filter.rm_outliers_using_thresh(field, 1, 1, 2.0, 0.5)

        assert not result.valid[4, 4]
        assert result.count_valid() == field.count_valid() - 1

    def test_retained_values_unchanged(self):
        field = field_with_spike()
        result = self.filter.rm_outliers_using_thresh(field, 1, 1, 2.0, 0.5)
        assert np.array_equal(result.disparity[result.valid], field.disparity[result.valid])

    def test_cell_without_neighbors_removed(self):
        valid = np.zeros((5, 5), dtype=bool)
        valid[2, 2] = True
        field = DisparityField(np.zeros((5, 5, 2)), valid)
        result = self.filter.rm_outliers_using_thresh(field, 1, 1, 2.0, 0.5)
        assert result.count_valid() == 0

    def test_filter_seed_uses_lowres_calibration(self, make_settings):
        result = self.filter.filter_seed(field_with_spike(), make_settings())
        assert not result.valid[4, 4]


class TestQuantileFilter:
    def setup_method(self):
        self.filter = OutlierFilter()

    def test_removes_spike(self):
        rng = np.random.default_rng(0)
        dx = rng.integers(0, 2, size=(12, 12)).astype(float)
        dx[6, 6] = 30.0
        field = DisparityField.from_components(dx, np.zeros((12, 12)), np.ones((12, 12), dtype=bool))

        result = self.filter.rm_outliers_using_quantiles(field, 0.85, 3.0)

        assert not result.valid[6, 6]
        assert result.count_valid() >= field.count_valid() - 5

    def test_smooth_field_untouched(self):
        field = DisparityField.from_components(np.full((6, 6), 4.0), np.zeros((6, 6)),
                                               np.ones((6, 6), dtype=bool))
        result = self.filter.rm_outliers_using_quantiles(field, 0.85, 3.0)
        assert result.count_valid() == 36

    def test_empty_field(self):
        field = DisparityField.invalid(3, 3)
        assert self.filter.rm_outliers_using_quantiles(field, 0.85, 3.0).count_valid() == 0

    def test_quantile_taken_over_whole_field(self):
        dx = np.zeros((12, 12))
        dx[2, 2] = 5.0
        dx[8, 8] = 50.0
        field = DisparityField.from_components(dx, np.zeros((12, 12)),
                                               np.ones((12, 12), dtype=bool))

        result = self.filter.rm_outliers_using_quantiles(field, 1.0, 0.5)

        # Limit is half the largest deviation anywhere, so the small spike stays
        assert not result.valid[8, 8]
        assert result.valid[2, 2]
        assert result.count_valid() == 143
