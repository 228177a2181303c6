"""
Per-tile homographies fitted to the coarse disparity.

The full-resolution output is divided into a grid of square tiles. For each
tile a homography taking right-image points to left-image points is fitted,
in low-resolution coordinates, to the seed correspondences under the tile.
Warping the right image with it flattens the remaining disparity so the
matcher can search a narrow range.
"""

import math
from typing import Tuple

import cv2
import numpy as np

from config.stereo_settings import StereoSettings
from utils.logger_config import get_logger
from .disparity_data import BBox, DisparityField, ResolutionScale
from .file_manager import DisparityFileManager

RANSAC_REPROJ_THRESHOLD = 3.0


def homography_grid_shape(rows: int, cols: int, tile_size: int) -> Tuple[int, int]:
    """(grid_rows, grid_cols) covering a rows x cols image."""
    return int(math.ceil(rows / tile_size)), int(math.ceil(cols / tile_size))


def lookup_homography(homographies: np.ndarray, bbox: BBox, tile_size: int) -> np.ndarray:
    """Homography of the grid cell that holds the min corner of ``bbox``."""
    grid_rows, grid_cols = homographies.shape[:2]
    row = min(max(bbox.y_min // tile_size, 0), grid_rows - 1)
    col = min(max(bbox.x_min // tile_size, 0), grid_cols - 1)
    return homographies[row, col]


class LocalHomographyStore:
    """Computes, persists and reloads the tile homography grid."""

    def __init__(self, settings: StereoSettings, file_manager: DisparityFileManager):
        self.settings = settings
        self.file_manager = file_manager
        self.tile_size = settings.corr_tile_size
        self.logger = get_logger(__name__)

    def load_or_compute(
        self,
        seed: DisparityField,
        scale: ResolutionScale,
        full_size: Tuple[int, int]
    ) -> np.ndarray:
        """
        Return the homography grid, reusing the persisted one when it fits.

        A missing, malformed or differently shaped artifact causes the whole
        grid to be recomputed and persisted.

        Args:
            seed: Coarse disparity
            scale: Full/low resolution ratio
            full_size: Full-resolution (cols, rows) of the left image

        Returns:
            np.ndarray: Array (grid_rows, grid_cols, 3, 3)
        """
        expected = homography_grid_shape(full_size[1], full_size[0], self.tile_size)

        if not self.settings.crop_left_and_right:
            cached = self.file_manager.load_homographies()
            if cached is not None and cached.shape[:2] == expected:
                self.logger.info(f"Reusing {expected[0]}x{expected[1]} local homographies")
                return cached
            if cached is not None:
                self.logger.info(f"Cached homography grid {cached.shape[:2]} does not match "
                                 f"{expected}; recomputing")

        homographies = self.compute(seed, scale, full_size)
        self.file_manager.save_homographies(homographies)
        return homographies

    def compute(
        self,
        seed: DisparityField,
        scale: ResolutionScale,
        full_size: Tuple[int, int]
    ) -> np.ndarray:
        """
        Fit one homography per tile.

        Tiles with fewer than ``min_homography_points`` valid seed cells, or
        where the fit fails, get the identity.

        Args:
            seed: Coarse disparity
            scale: Full/low resolution ratio
            full_size: Full-resolution (cols, rows) of the left image

        Returns:
            np.ndarray: Array (grid_rows, grid_cols, 3, 3)
        """
        cols, rows = full_size
        grid_rows, grid_cols = homography_grid_shape(rows, cols, self.tile_size)
        homographies = np.tile(np.eye(3), (grid_rows, grid_cols, 1, 1))
        fitted = 0

        for grid_row in range(grid_rows):
            for grid_col in range(grid_cols):
                tile = BBox(grid_col * self.tile_size, grid_row * self.tile_size,
                            min((grid_col + 1) * self.tile_size, cols),
                            min((grid_row + 1) * self.tile_size, rows))
                matrix = self._fit_tile(seed, scale.lowres_region(tile, seed.bbox()))
                if matrix is not None:
                    homographies[grid_row, grid_col] = matrix
                    fitted += 1

        self.logger.info(f"Fitted {fitted} of {grid_rows * grid_cols} local homographies")
        return homographies

    def _fit_tile(self, seed: DisparityField, region: BBox):
        if region.is_empty():
            return None

        field = seed.crop(region)
        ys, xs = np.nonzero(field.valid)
        if len(xs) < self.settings.min_homography_points:
            return None

        left_points = np.column_stack([xs + region.x_min, ys + region.y_min]).astype(np.float64)
        right_points = left_points + field.disparity[ys, xs]

        matrix, _ = cv2.findHomography(right_points, left_points, cv2.RANSAC,
                                       RANSAC_REPROJ_THRESHOLD)
        if matrix is None or not np.all(np.isfinite(matrix)) or np.isclose(matrix[2, 2], 0.0):
            self.logger.debug(f"Homography fit failed for seed region {region}")
            return None
        return matrix / matrix[2, 2]
