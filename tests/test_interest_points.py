"""
Test Suite: Interest Point Matching

ORB matching on a shifted pair, the no-inlier failure that removes the
match file, and reuse of an existing match file.
"""

import cv2
import numpy as np
import pytest

from conftest import textured_image, shifted_right_image
from src_stereo_corr.disparity import InterestPointMatcher
from src_stereo_corr.errors import MatchingError


def blank_image(rows=128, cols=128):
    return np.zeros((rows, cols), dtype=np.float32)


class TestMatchImages:
    def setup_method(self):
        left = cv2.GaussianBlur(textured_image(256, 256, seed=3), (0, 0), sigmaX=1.0)
        self.left = left
        self.right = shifted_right_image(left, 7)

    def test_shifted_pair_recovers_shift(self, file_manager):
        matcher = InterestPointMatcher(file_manager, ip_per_image=1000)
        path = file_manager.match_file_path()

        left_points, right_points = matcher.match_images(self.left, self.right, path)

        assert len(left_points) >= 10
        offsets = right_points - left_points
        assert np.median(offsets[:, 0]) == pytest.approx(7.0, abs=0.5)
        assert np.median(offsets[:, 1]) == pytest.approx(0.0, abs=0.5)

        assert path.exists()
        saved_left, saved_right = file_manager.load_matches(path)
        assert np.allclose(saved_left, left_points)
        assert np.allclose(saved_right, right_points)

    def test_no_inliers_raises_and_removes_match_file(self, file_manager):
        matcher = InterestPointMatcher(file_manager)
        path = file_manager.match_file_path()
        file_manager.save_matches(path, np.zeros((1, 2)), np.zeros((1, 2)))

        with pytest.raises(MatchingError):
            matcher.match_images(blank_image(), blank_image(), path, crop_both=True)

        assert not path.exists()

    def test_existing_match_file_reused(self, file_manager):
        matcher = InterestPointMatcher(file_manager)
        path = file_manager.match_file_path(low_resolution=True)
        stored = np.array([[1.0, 2.0], [3.0, 4.0]])
        file_manager.save_matches(path, stored, stored + 5.0)

        left_points, right_points = matcher.match_images(blank_image(), blank_image(), path)

        assert np.allclose(left_points, stored)
        assert np.allclose(right_points, stored + 5.0)

    def test_existing_match_file_recomputed_when_cropping_both(self, file_manager):
        matcher = InterestPointMatcher(file_manager, ip_per_image=1000)
        path = file_manager.match_file_path()
        stale = np.array([[1.0, 2.0], [3.0, 4.0]])
        file_manager.save_matches(path, stale, stale)

        left_points, right_points = matcher.match_images(self.left, self.right, path,
                                                         crop_both=True)

        assert len(left_points) >= 10
        assert np.median(right_points[:, 0] - left_points[:, 0]) == pytest.approx(7.0, abs=0.5)
        saved_left, _ = file_manager.load_matches(path)
        assert len(saved_left) == len(left_points)


class TestRansacInliers:
    def test_too_few_matches_have_no_inliers(self, file_manager):
        matcher = InterestPointMatcher(file_manager)
        points = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0]])

        inliers = matcher._ransac_inliers(points, points + 1.0)

        assert inliers.shape == (3,)
        assert not np.any(inliers)

    def test_outlier_rejected(self, file_manager):
        matcher = InterestPointMatcher(file_manager)
        rng = np.random.default_rng(5)
        left = rng.random((30, 2)) * 200.0
        right = left + np.array([4.0, -2.0])
        right[0] += 60.0

        inliers = matcher._ransac_inliers(left, right)

        assert not inliers[0]
        assert np.all(inliers[1:])
