"""
Estimation of the global (whole image) search range.
"""

from typing import Optional, Tuple

import numpy as np

from config.stereo_settings import StereoSettings, SeedMode
from utils.logger_config import get_logger
from utils.stereo_math import StereoMath
from ..errors import MatchingError
from .disparity_data import SearchRange
from .file_manager import DisparityFileManager
from .interest_points import InterestPointMatcher


class SearchRangeEstimator:
    """
    Determines the initial search range at full resolution.

    In order of priority: the user-defined range; nothing for the seed
    modes that carry their own range; the bounds of the recorded interest
    point matches; an approximation from matching the low-resolution images.
    """

    def __init__(
        self,
        settings: StereoSettings,
        file_manager: DisparityFileManager,
        ip_matcher: Optional[InterestPointMatcher] = None
    ):
        self.settings = settings
        self.file_manager = file_manager
        self.ip_matcher = ip_matcher or InterestPointMatcher(file_manager, settings.ip_per_image)
        self.logger = get_logger(__name__)

    def estimate(self) -> Optional[SearchRange]:
        """
        Returns:
            SearchRange or None: None when the range will come from the seed

        Raises:
            MatchingError: If no usable match bounds the range
        """
        if self.settings.is_search_defined:
            search_range = SearchRange.from_sequence(self.settings.search_range)
            self.logger.info(f"Using user-defined search range: {search_range}")
            return search_range

        if self.settings.seed_mode in (SeedMode.DEM_PROJECTION, SeedMode.EXTERNAL_SUPPLIED):
            self.logger.info("Search range will be derived from the low-resolution disparity")
            return None

        match_path = self.file_manager.match_file_path()
        if match_path.exists():
            left_points, right_points = self.file_manager.load_matches(match_path)
            search_range = self.range_from_matches(
                left_points, right_points,
                self.file_manager.load_alignment('left'),
                self.file_manager.load_alignment('right'),
                self.file_manager.image_size('left'),
                self.file_manager.image_size('right')
            )
        else:
            search_range = self.approximate()

        self.logger.info(f"Detected search range: {search_range}")
        return search_range

    @staticmethod
    def range_from_matches(
        left_points: np.ndarray,
        right_points: np.ndarray,
        align_left: np.ndarray,
        align_right: np.ndarray,
        left_size: Tuple[int, int],
        right_size: Tuple[int, int]
    ) -> SearchRange:
        """
        Bound the disparities of matched points after alignment.

        Points sent to infinity by an alignment matrix, and points that land
        outside ``[0, size]`` of their image, are skipped.

        Args:
            left_points: (N, 2) left match coordinates
            right_points: (N, 2) right match coordinates
            align_left: 3x3 alignment of the left image
            align_right: 3x3 alignment of the right image
            left_size: (cols, rows) of the aligned left image
            right_size: (cols, rows) of the aligned right image

        Returns:
            SearchRange: Bounding box of right - left, rounded outward

        Raises:
            MatchingError: If no match survives
        """
        left, left_ok = StereoMath.apply_homography(left_points, align_left)
        right, right_ok = StereoMath.apply_homography(right_points, align_right)

        keep = (left_ok & right_ok
                & _inside(np.where(left_ok[:, None], left, -1.0), left_size)
                & _inside(np.where(right_ok[:, None], right, -1.0), right_size))
        if not np.any(keep):
            raise MatchingError(f"None of the {len(left_points)} interest point matches "
                                f"is usable for the search range")

        disparity = right[keep] - left[keep]
        return SearchRange.from_points(disparity[:, 0], disparity[:, 1]).grow_to_int()

    def approximate(self) -> SearchRange:
        """
        Approximate the range by matching the low-resolution images.

        The low-resolution disparities are divided by the mean of the four
        low/full size ratios.

        Raises:
            MatchingError: If the images cannot be matched
        """
        fm = self.file_manager
        left_full, left_sub = fm.image_size('left'), fm.image_size('left_sub')
        right_full, right_sub = fm.image_size('right'), fm.image_size('right_sub')
        sub_scale = (left_sub[0] / left_full[0] + left_sub[1] / left_full[1]
                     + right_sub[0] / right_full[0] + right_sub[1] / right_full[1]) / 4.0

        left_image, right_image, _, _ = fm.load_image_pair(low_resolution=True)
        left_points, right_points = self.ip_matcher.match_images(
            left_image, right_image,
            fm.match_file_path(low_resolution=True),
            crop_both=self.settings.crop_left_and_right
        )

        disparity = (right_points - left_points) / sub_scale
        self.logger.debug(f"Approximated from {len(disparity)} matches at scale {sub_scale:.4f}")
        return SearchRange.from_points(disparity[:, 0], disparity[:, 1]).grow_to_int()


def _inside(points: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    return ((points[:, 0] >= 0) & (points[:, 1] >= 0)
            & (points[:, 0] <= size[0]) & (points[:, 1] <= size[1]))
