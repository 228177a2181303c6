"""
Stereo vision mathematical utilities.

This module provides the projective geometry used by the correlation stages:
homography validation, application to point sets and change of resolution.
"""

import numpy as np
import logging
from typing import Tuple

logger = logging.getLogger(__name__)


class StereoMath:
    """Mathematical utilities for stereo correlation."""

    @staticmethod
    def validate_homography(H: np.ndarray, matrix_name: str = "H") -> bool:
        """
        Validate a 3x3 projective matrix.

        Args:
            H: 3x3 homography
            matrix_name: Name for error messages

        Returns:
            bool: True if valid

        Raises:
            ValueError: If matrix is invalid
        """
        H = np.asarray(H)
        if H.shape != (3, 3):
            raise ValueError(f"{matrix_name} must be 3x3, got {H.shape}")

        if not np.all(np.isfinite(H)):
            raise ValueError(f"{matrix_name} contains NaN or infinite values")

        if np.isclose(np.linalg.det(H), 0.0):
            raise ValueError(f"{matrix_name} is singular")

        return True

    @staticmethod
    def apply_homography(
        points: np.ndarray,
        H: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Apply a homography to an (N, 2) array of points.

        Points whose homogeneous coordinate is exactly zero after the
        transform cannot be normalized; they are reported as not usable
        instead of being divided.

        Args:
            points: (N, 2) array of x, y coordinates
            H: 3x3 homography

        Returns:
            Tuple containing:
                - (N, 2) transformed points (rows of unusable points are NaN)
                - (N,) boolean mask of usable points
        """
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        homogeneous = np.column_stack([points, np.ones(len(points))])
        projected = homogeneous @ np.asarray(H, dtype=np.float64).T

        w = projected[:, 2]
        usable = w != 0
        result = np.full((len(points), 2), np.nan)
        result[usable] = projected[usable, :2] / w[usable, None]

        skipped = int(np.count_nonzero(~usable))
        if skipped:
            logger.debug(f"Skipped {skipped} points at infinity")

        return result, usable

    @staticmethod
    def scale_homography(H: np.ndarray, scale_x: float, scale_y: float) -> np.ndarray:
        """
        Express a homography in coordinates scaled by (scale_x, scale_y).

        Returns ``diag(sx, sy, 1) @ H @ diag(1/sx, 1/sy, 1)``, e.g. to turn a
        low-resolution homography into its full-resolution equivalent.
        """
        upscale = np.diag([scale_x, scale_y, 1.0])
        downscale = np.diag([1.0 / scale_x, 1.0 / scale_y, 1.0])
        return upscale @ np.asarray(H, dtype=np.float64) @ downscale

    @staticmethod
    def translation(dx: float, dy: float) -> np.ndarray:
        """3x3 matrix translating points by (dx, dy)."""
        T = np.eye(3)
        T[0, 2] = dx
        T[1, 2] = dy
        return T

    @staticmethod
    def is_identity(H: np.ndarray, atol: float = 1e-12) -> bool:
        return bool(np.allclose(H, np.eye(3), atol=atol))
