"""
Image processing utilities for stereo correlation.

This module provides image and mask reading, window extraction with
padding, perspective warping and the correlation pre-filters.
"""

import cv2
import numpy as np
from typing import Tuple
from pathlib import Path

from utils.logger_config import get_logger

logger = get_logger(__name__)


class ImageProcessor:
    """Handles common image operations for the correlation stages."""

    @staticmethod
    def read_image(path: Path) -> np.ndarray:
        """
        Read a single-channel image as float32.

        ``.npy`` files are memory-mapped so that tiles can be read lazily;
        every other format is decoded with OpenCV.

        Raises:
            FileNotFoundError: If the file does not exist
            IOError: If the file cannot be decoded
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Image not found: {path}")

        if path.suffix == '.npy':
            image = np.load(path, mmap_mode='r')
        else:
            image = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
            if image is None:
                raise IOError(f"Unable to decode image: {path}")

        if image.ndim == 3:
            image = cv2.cvtColor(np.asarray(image), cv2.COLOR_BGR2GRAY)

        if image.dtype != np.float32 and path.suffix != '.npy':
            image = image.astype(np.float32)

        logger.debug(f"Read image {path.name}: {image.shape[1]}x{image.shape[0]}")
        return image

    @staticmethod
    def read_mask(path: Path) -> np.ndarray:
        """Read a validity mask; any non-zero sample is valid."""
        mask = ImageProcessor.read_image(path)
        return (np.asarray(mask) > 0).astype(np.uint8)

    @staticmethod
    def image_size(path: Path) -> Tuple[int, int]:
        """Return (cols, rows) of an image file."""
        image = ImageProcessor.read_image(path)
        return image.shape[1], image.shape[0]

    @staticmethod
    def extract_window(
        image: np.ndarray,
        x_min: int,
        y_min: int,
        x_max: int,
        y_max: int,
        fill_value: float = 0
    ) -> np.ndarray:
        """
        Copy the window ``[x_min, x_max) x [y_min, y_max)`` out of an image.

        Parts of the window outside the image are filled with ``fill_value``.
        """
        rows, cols = image.shape[:2]
        window = np.full((y_max - y_min, x_max - x_min), fill_value, dtype=image.dtype)

        src_x0, src_y0 = max(x_min, 0), max(y_min, 0)
        src_x1, src_y1 = min(x_max, cols), min(y_max, rows)
        if src_x0 >= src_x1 or src_y0 >= src_y1:
            return window

        window[src_y0 - y_min:src_y1 - y_min, src_x0 - x_min:src_x1 - x_min] = \
            image[src_y0:src_y1, src_x0:src_x1]
        return window

    @staticmethod
    def shift_image(image: np.ndarray, dx: int, dy: int, fill_value=0) -> np.ndarray:
        """
        Return an array whose sample (y, x) is ``image[y + dy, x + dx]``.

        Samples that fall outside the source are set to ``fill_value``.
        """
        rows, cols = image.shape[:2]
        result = np.full_like(image, fill_value)
        src_rows = slice(max(dy, 0), rows + min(dy, 0))
        dst_rows = slice(max(-dy, 0), rows + min(-dy, 0))
        src_cols = slice(max(dx, 0), cols + min(dx, 0))
        dst_cols = slice(max(-dx, 0), cols + min(-dx, 0))
        result[dst_rows, dst_cols] = image[src_rows, src_cols]
        return result

    @staticmethod
    def warp_perspective(
        image: np.ndarray,
        matrix: np.ndarray,
        size: Tuple[int, int],
        is_mask: bool = False
    ) -> np.ndarray:
        """
        Resample ``image`` so that output(p) = image(matrix^-1 p).

        Args:
            image: Source image
            matrix: 3x3 forward transform from source to output coordinates
            size: Output (cols, rows)
            is_mask: Use nearest-neighbour sampling and keep uint8 output

        Returns:
            np.ndarray: Warped image; samples from outside the source are 0
        """
        interpolation = cv2.INTER_NEAREST if is_mask else cv2.INTER_LINEAR
        src = np.array(image, dtype=np.uint8 if is_mask else np.float32, order="C")
        return cv2.warpPerspective(
            src, np.asarray(matrix, dtype=np.float64), (int(size[0]), int(size[1])),
            flags=interpolation,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=0
        )

    @staticmethod
    def subtracted_mean(image: np.ndarray, sigma: float) -> np.ndarray:
        """Subtract a Gaussian-blurred copy of the image from itself."""
        image = np.asarray(image, dtype=np.float32)
        return image - cv2.GaussianBlur(image, (0, 0), sigmaX=sigma)

    @staticmethod
    def laplacian_of_gaussian(image: np.ndarray, sigma: float) -> np.ndarray:
        """Laplacian of a Gaussian-blurred image."""
        image = np.asarray(image, dtype=np.float32)
        blurred = cv2.GaussianBlur(image, (0, 0), sigmaX=sigma)
        return cv2.Laplacian(blurred, cv2.CV_32F)
