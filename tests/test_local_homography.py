"""
Test Suite: Local Homographies

Grid layout and lookup, fitting from the seed, persistence and reuse.
"""

import numpy as np

from src_stereo_corr.disparity import (
    BBox,
    DisparityField,
    LocalHomographyStore,
    ResolutionScale,
    homography_grid_shape,
    lookup_homography,
)
from utils.stereo_math import StereoMath


def uniform_field(rows, cols, dx, dy):
    return DisparityField.from_components(np.full((rows, cols), float(dx)),
                                          np.full((rows, cols), float(dy)),
                                          np.ones((rows, cols), dtype=bool))


class TestGrid:
    def test_grid_shape_rounds_up(self):
        assert homography_grid_shape(100, 33, 16) == (7, 3)

    def test_lookup_uses_min_corner_and_clips(self):
        grid = np.zeros((2, 3, 3, 3))
        for row in range(2):
            for col in range(3):
                grid[row, col] = StereoMath.translation(col, row)

        assert np.array_equal(lookup_homography(grid, BBox(20, 5, 40, 10), 16),
                              StereoMath.translation(1, 0))
        assert np.array_equal(lookup_homography(grid, BBox(500, 500, 510, 510), 16),
                              StereoMath.translation(2, 1))


class TestLocalHomographyStore:
    def test_translation_seed_fits_translation(self, make_settings, file_manager):
        store = LocalHomographyStore(make_settings(corr_tile_size=32), file_manager)
        seed = uniform_field(16, 16, 5, 0)

        grid = store.compute(seed, ResolutionScale(2.0, 2.0), (32, 32))

        assert grid.shape == (1, 1, 3, 3)
        assert np.allclose(grid[0, 0], StereoMath.translation(-5, 0), atol=1e-6)

    def test_sparse_tile_gets_identity(self, make_settings, file_manager):
        store = LocalHomographyStore(make_settings(corr_tile_size=32), file_manager)
        valid = np.zeros((16, 16), dtype=bool)
        valid[3, 3] = True
        seed = DisparityField(np.ones((16, 16, 2)), valid)

        grid = store.compute(seed, ResolutionScale(2.0, 2.0), (32, 32))

        assert np.array_equal(grid[0, 0], np.eye(3))

    def test_save_and_reload(self, file_manager):
        grid = np.tile(StereoMath.translation(1.5, -2.25), (2, 3, 1, 1))
        file_manager.save_homographies(grid)

        loaded = file_manager.load_homographies()

        assert loaded.shape == (2, 3, 3, 3)
        assert np.array_equal(loaded, grid)

    def test_matching_cache_reused(self, make_settings, file_manager):
        cached = np.tile(StereoMath.translation(7, 7), (1, 1, 1, 1))
        file_manager.save_homographies(cached)
        store = LocalHomographyStore(make_settings(corr_tile_size=32), file_manager)

        grid = store.load_or_compute(uniform_field(16, 16, 5, 0), ResolutionScale(2.0, 2.0),
                                     (32, 32))

        assert np.array_equal(grid, cached)

    def test_mismatched_cache_recomputed(self, make_settings, file_manager):
        file_manager.save_homographies(np.tile(np.eye(3), (4, 4, 1, 1)))
        store = LocalHomographyStore(make_settings(corr_tile_size=32), file_manager)

        grid = store.load_or_compute(uniform_field(16, 16, 5, 0), ResolutionScale(2.0, 2.0),
                                     (32, 32))

        assert grid.shape == (1, 1, 3, 3)
        assert file_manager.load_homographies().shape == (1, 1, 3, 3)
