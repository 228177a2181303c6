"""
Sparse interest point matching between the two images.

Matches are only used to bound the global search range, so a fast binary
detector is enough: ORB features, brute-force Hamming matching with a ratio
test, and a RANSAC homography to discard outliers.
"""

from pathlib import Path
from typing import Tuple

import cv2
import numpy as np

from utils.logger_config import get_logger
from ..errors import MatchingError
from .file_manager import DisparityFileManager

RATIO_TEST = 0.8
RANSAC_REPROJ_THRESHOLD = 5.0
MIN_HOMOGRAPHY_MATCHES = 4


class InterestPointMatcher:
    """Detects and matches ORB features, persisting the matches as CSV."""

    def __init__(self, file_manager: DisparityFileManager, ip_per_image: int = 2000):
        self.file_manager = file_manager
        self.ip_per_image = ip_per_image
        self.logger = get_logger(__name__)

    def match_images(
        self,
        left_image: np.ndarray,
        right_image: np.ndarray,
        match_path: Path,
        crop_both: bool = False
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Match two images, reusing an existing match file when allowed.

        Args:
            left_image: Left image
            right_image: Right image
            match_path: Where the matches are read from and written to
            crop_both: Both images are re-cropped; never reuse old matches

        Returns:
            Tuple of (left_points, right_points), each (N, 2)

        Raises:
            MatchingError: If no inlier match survives; the match file is
                removed in that case
        """
        if match_path.exists() and not crop_both:
            self.logger.info(f"Reusing interest point matches from {match_path}")
            return self.file_manager.load_matches(match_path)

        left_points, right_points = self._detect_and_match(left_image, right_image)
        inliers = self._ransac_inliers(left_points, right_points)

        if not np.any(inliers):
            self.file_manager.remove_matches(match_path)
            raise MatchingError(f"No inlier interest point matches between the images "
                                f"({len(left_points)} candidate matches)")

        left_points, right_points = left_points[inliers], right_points[inliers]
        self.file_manager.save_matches(match_path, left_points, right_points)
        return left_points, right_points

    def _detect_and_match(
        self,
        left_image: np.ndarray,
        right_image: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        orb = cv2.ORB_create(nfeatures=self.ip_per_image)
        kp1, des1 = orb.detectAndCompute(self._to_uint8(left_image), None)
        kp2, des2 = orb.detectAndCompute(self._to_uint8(right_image), None)
        self.logger.info(f"Keypoints: left={len(kp1)}, right={len(kp2)}")

        if des1 is None or des2 is None or len(kp1) < 2 or len(kp2) < 2:
            return np.empty((0, 2)), np.empty((0, 2))

        matcher = cv2.BFMatcher(cv2.NORM_HAMMING)
        raw_matches = matcher.knnMatch(des1, des2, k=2)
        good = [pair[0] for pair in raw_matches
                if len(pair) == 2 and pair[0].distance < RATIO_TEST * pair[1].distance]
        self.logger.info(f"Good matches: {len(good)}")

        left_points = np.float64([kp1[m.queryIdx].pt for m in good]).reshape(-1, 2)
        right_points = np.float64([kp2[m.trainIdx].pt for m in good]).reshape(-1, 2)
        return left_points, right_points

    def _ransac_inliers(self, left_points: np.ndarray, right_points: np.ndarray) -> np.ndarray:
        if len(left_points) < MIN_HOMOGRAPHY_MATCHES:
            return np.zeros(len(left_points), dtype=bool)

        matrix, mask = cv2.findHomography(right_points, left_points, cv2.RANSAC,
                                          RANSAC_REPROJ_THRESHOLD)
        if matrix is None or mask is None:
            return np.zeros(len(left_points), dtype=bool)

        inliers = mask.ravel().astype(bool)
        self.logger.info(f"RANSAC inliers: {int(inliers.sum())}")
        return inliers

    @staticmethod
    def _to_uint8(image: np.ndarray) -> np.ndarray:
        image = np.array(image, dtype=np.float32)
        return cv2.normalize(image, None, alpha=0, beta=255,
                             norm_type=cv2.NORM_MINMAX, dtype=cv2.CV_8U)
