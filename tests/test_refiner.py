"""
Test Suite: Per-Tile Search Range Refinement

Validates the range derived from the coarse disparity under a tile, the
fallback to the global range, the spread widening and the homography path.
"""

import numpy as np
import pytest

from src_stereo_corr.disparity import (
    BBox,
    DisparityField,
    ResolutionScale,
    SearchRange,
    TileSearchRangeRefiner,
)
from src_stereo_corr.errors import ConfigurationError
from utils.stereo_math import StereoMath

GLOBAL_RANGE = SearchRange(-50, -50, 50, 50)
SCALE = ResolutionScale(8.0, 8.0)


def single_cell_seed(dx=4.0, dy=-2.0, rows=4, cols=4):
    disparity = np.zeros((rows, cols, 2))
    valid = np.zeros((rows, cols), dtype=bool)
    disparity[1, 1] = (dx, dy)
    valid[1, 1] = True
    return DisparityField(disparity, valid)


def uniform_field(rows, cols, dx, dy):
    return DisparityField.from_components(np.full((rows, cols), float(dx)),
                                          np.full((rows, cols), float(dy)),
                                          np.ones((rows, cols), dtype=bool))


class TestRefineWithoutSeed:
    def test_returns_global_range(self):
        refiner = TileSearchRangeRefiner(GLOBAL_RANGE)
        assert refiner.refine(BBox(0, 0, 16, 16)) == GLOBAL_RANGE

    def test_seed_requires_scale(self):
        with pytest.raises(ValueError):
            TileSearchRangeRefiner(GLOBAL_RANGE, seed=single_cell_seed())


class TestRefineWithSeed:
    def test_single_cell(self):
        refiner = TileSearchRangeRefiner(GLOBAL_RANGE, single_cell_seed(), scale=SCALE)
        rng = refiner.refine(BBox(0, 0, 16, 16))
        assert rng.as_list() == [24, -24, 40, -8]

    def test_no_valid_cell_falls_back(self):
        seed = DisparityField.invalid(4, 4)
        refiner = TileSearchRangeRefiner(GLOBAL_RANGE, seed, scale=SCALE)
        assert refiner.refine(BBox(0, 0, 16, 16)) == GLOBAL_RANGE

    def test_tile_outside_seed_falls_back(self):
        refiner = TileSearchRangeRefiner(GLOBAL_RANGE, single_cell_seed(), scale=SCALE)
        assert refiner.refine(BBox(1000, 1000, 1016, 1016)) == GLOBAL_RANGE

    def test_range_covers_seed_under_tile(self):
        rng = np.random.default_rng(7)
        rows, cols = 12, 16
        dx = rng.integers(-6, 7, size=(rows, cols)).astype(float)
        dy = rng.integers(-3, 4, size=(rows, cols)).astype(float)
        valid = rng.random((rows, cols)) > 0.3
        seed = DisparityField.from_components(dx, dy, valid)
        scale = ResolutionScale(4.0, 4.0)
        refiner = TileSearchRangeRefiner(GLOBAL_RANGE, seed, scale=scale)

        for tile in (BBox(0, 0, 16, 16), BBox(16, 16, 40, 48), BBox(48, 32, 64, 48)):
            region = scale.lowres_region(tile, seed.bbox())
            cells = seed.crop(region)
            expected = SearchRange.from_points(cells.dx[cells.valid] * scale.x,
                                               cells.dy[cells.valid] * scale.y)
            refined = refiner.refine(tile)
            assert refined.contains(expected)
            assert refined == refined.grow_to_int()


class TestSpread:
    def test_spread_widens_range(self):
        seed = single_cell_seed()
        spread = uniform_field(4, 4, 2, 1)
        narrow = TileSearchRangeRefiner(GLOBAL_RANGE, seed, scale=SCALE).refine(BBox(0, 0, 16, 16))
        wide = TileSearchRangeRefiner(GLOBAL_RANGE, seed, spread, SCALE).refine(BBox(0, 0, 16, 16))

        assert wide.as_list() == [8, -32, 56, 0]
        assert wide.contains(narrow)

    def test_larger_spread_never_narrows(self):
        seed = single_cell_seed()
        tile = BBox(0, 0, 16, 16)
        previous = None
        for amount in (0, 1, 3, 6):
            rng = TileSearchRangeRefiner(GLOBAL_RANGE, seed, uniform_field(4, 4, amount, amount),
                                         SCALE).refine(tile)
            if previous is not None:
                assert rng.contains(previous)
            previous = rng

    def test_spread_shape_mismatch(self):
        with pytest.raises(ConfigurationError):
            TileSearchRangeRefiner(GLOBAL_RANGE, single_cell_seed(), uniform_field(3, 4, 1, 1),
                                   SCALE)


class TestLocalHomography:
    def test_identity_grid_matches_plain_refinement(self):
        seed = single_cell_seed()
        homographies = np.tile(np.eye(3), (2, 2, 1, 1))
        plain = TileSearchRangeRefiner(GLOBAL_RANGE, seed, scale=SCALE, tile_size=16)
        warped = TileSearchRangeRefiner(GLOBAL_RANGE, seed, scale=SCALE,
                                        homographies=homographies, tile_size=16)
        assert warped.use_local_homography
        assert warped.refine(BBox(0, 0, 16, 16)) == plain.refine(BBox(0, 0, 16, 16))

    def test_translation_shifts_range(self):
        homographies = StereoMath.translation(3, 0)[None, None]
        refiner = TileSearchRangeRefiner(GLOBAL_RANGE, single_cell_seed(), scale=SCALE,
                                         homographies=homographies, tile_size=16)
        assert refiner.refine(BBox(0, 0, 16, 16)).as_list() == [48, -24, 64, -8]

    def test_spread_with_homography_is_union_of_bounds(self):
        homographies = StereoMath.translation(3, 0)[None, None]
        refiner = TileSearchRangeRefiner(GLOBAL_RANGE, single_cell_seed(),
                                         uniform_field(4, 4, 2, 1), SCALE,
                                         homographies=homographies, tile_size=16)
        # d + s = (6, -1) and d - s = (2, -3), both moved by (3, 0)
        assert refiner.refine(BBox(0, 0, 16, 16)).as_list() == [32, -32, 80, 0]

    def test_fullres_homography_scales_translation(self):
        homographies = StereoMath.translation(3, -1)[None, None]
        refiner = TileSearchRangeRefiner(GLOBAL_RANGE, single_cell_seed(), scale=SCALE,
                                         homographies=homographies, tile_size=16)
        expected = StereoMath.translation(24, -8)
        assert np.allclose(refiner.fullres_homography(BBox(0, 0, 16, 16)), expected)
