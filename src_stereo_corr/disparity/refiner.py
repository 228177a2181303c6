"""
Per-tile search range refinement.

For a full-resolution tile, the refiner looks at the coarse disparity under
the tile's low-resolution footprint and derives a tight search range. Without
a usable seed it falls back to the global search range, so the result is
never empty.
"""

from typing import Optional

import numpy as np

from utils.logger_config import get_logger
from utils.stereo_math import StereoMath
from ..errors import ConfigurationError
from .disparity_data import BBox, DisparityField, ResolutionScale, SearchRange
from .local_homography import lookup_homography


class TileSearchRangeRefiner:
    """
    Turns the coarse disparity into a search range for any output tile.

    Refinement is read-only over its inputs and may be called concurrently.
    """

    def __init__(
        self,
        global_range: SearchRange,
        seed: Optional[DisparityField] = None,
        spread: Optional[DisparityField] = None,
        scale: Optional[ResolutionScale] = None,
        homographies: Optional[np.ndarray] = None,
        tile_size: int = 1024
    ):
        """
        Args:
            global_range: Full-resolution search range used when the seed
                has nothing to say about a tile
            seed: Coarse disparity, or None when seeding is disabled
            spread: Per-cell uncertainty of the seed (optional)
            scale: Full/low resolution ratio, required with a seed
            homographies: Low-resolution homography grid, or None
            tile_size: Side of the homography grid cells at full resolution

        Raises:
            ValueError: If a seed is given without its scale
            ConfigurationError: If the spread does not match the seed
        """
        if seed is not None and scale is None:
            raise ValueError("A resolution scale is required with a seed")
        if seed is not None and spread is not None and spread.shape != seed.shape:
            raise ConfigurationError(f"Spread {spread.shape} does not match seed {seed.shape}")

        self.global_range = global_range
        self.seed = seed
        self.spread = spread
        self.scale = scale
        self.homographies = homographies
        self.tile_size = tile_size
        self.logger = get_logger(__name__)

    @property
    def use_local_homography(self) -> bool:
        return self.homographies is not None

    def lowres_homography(self, bbox: BBox) -> np.ndarray:
        """Homography of the tile in low-resolution coordinates (identity if unused)."""
        if self.homographies is None:
            return np.eye(3)
        return lookup_homography(self.homographies, bbox, self.tile_size)

    def fullres_homography(self, bbox: BBox) -> np.ndarray:
        """Homography of the tile in full-resolution coordinates."""
        matrix = self.lowres_homography(bbox)
        if self.scale is None:
            return matrix
        return StereoMath.scale_homography(matrix, self.scale.x, self.scale.y)

    def refine(self, bbox: BBox) -> SearchRange:
        """
        Compute the full-resolution search range for one tile.

        Args:
            bbox: Tile in full-resolution left-image coordinates

        Returns:
            SearchRange: Integer search range; the global range if the seed
            holds no valid disparity under the tile
        """
        if self.seed is None:
            return self.global_range

        region = self.scale.lowres_region(bbox, self.seed.bbox())
        if region.is_empty():
            return self.global_range

        field = self.seed.crop(region)
        ys, xs = np.nonzero(field.valid)
        if len(xs) == 0:
            return self.global_range

        points = np.column_stack([xs + region.x_min, ys + region.y_min]).astype(np.float64)
        disparities = field.disparity[ys, xs]
        matrix = self.lowres_homography(bbox)

        spread = None
        if self.spread is not None:
            spread_field = self.spread.crop(region)
            spread = np.where(spread_field.valid[ys, xs][:, None],
                              np.abs(spread_field.disparity[ys, xs]), 0.0)

        if spread is not None and self.use_local_homography:
            upper = self._transformed_range(points, disparities + spread, matrix)
            lower = self._transformed_range(points, disparities - spread, matrix)
            if upper is None or lower is None:
                return self.global_range
            search_range = upper.union(lower)
        else:
            search_range = self._transformed_range(points, disparities, matrix)
            if search_range is None:
                return self.global_range
            if spread is not None:
                spread_range = self._spread_range(region)
                if spread_range is not None:
                    search_range = search_range.expand(spread_range.max_x, spread_range.max_y)

        search_range = search_range.grow_to_int().expand(1)
        return search_range.scale(self.scale.x, self.scale.y)

    def _transformed_range(
        self,
        points: np.ndarray,
        disparities: np.ndarray,
        matrix: np.ndarray
    ) -> Optional[SearchRange]:
        """
        Range of the disparities re-expressed as ``H(p + d) - p``.

        Transformed disparities are rounded to integers when a local
        homography is in use. Points sent to infinity are skipped.
        """
        if StereoMath.is_identity(matrix):
            transformed = disparities
        else:
            mapped, usable = StereoMath.apply_homography(points + disparities, matrix)
            transformed = (mapped - points)[usable]
        if self.use_local_homography:
            transformed = np.round(transformed)
        return SearchRange.from_points(transformed[:, 0], transformed[:, 1])

    def _spread_range(self, region: BBox) -> Optional[SearchRange]:
        spread_field = self.spread.crop(region)
        valid = spread_field.valid
        return SearchRange.from_points(np.abs(spread_field.dx[valid]), np.abs(spread_field.dy[valid]))
