"""
Matching engines invoked by the correlation stages.

An engine receives a left and a right image window together with their
validity masks and a search range expressed in the coordinates of those
windows, and returns a disparity field the size of the left window. The
stages above never look inside the matching cost; they only size the windows
and the search range.
"""

import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Any, Tuple

import cv2
import numpy as np
from scipy import ndimage

from config.stereo_settings import StereoSettings, CostMode, PrefilterMode
from utils.image_processing import ImageProcessor
from utils.logger_config import get_logger
from ..errors import ConfigurationError
from .disparity_data import DisparityField, SearchRange

CENSUS_MODES = (CostMode.CENSUS_TRANSFORM, CostMode.TERNARY_CENSUS_TRANSFORM)

# Side of the central patch used by the timing probe
PROBE_PATCH_SIZE = 64


@dataclass
class MatchRequest:
    """Everything an engine needs to correlate one pair of windows."""

    left_image: np.ndarray
    right_image: np.ndarray
    left_mask: np.ndarray
    right_mask: np.ndarray
    search_range: SearchRange
    kernel_size: Tuple[int, int]
    cost_mode: CostMode
    prefilter_mode: PrefilterMode = PrefilterMode.NONE
    prefilter_kernel_width: float = 1.5
    corr_timeout: float = 0.0
    seconds_per_op: float = 0.0
    xcorr_threshold: float = -1.0
    max_pyramid_levels: int = 0
    use_sgm: bool = False
    collar_size: int = 0
    blob_filter_area: int = 0


class MatchingEngine(ABC):
    """Base class of the dense matching engines."""

    def __init__(self):
        self.logger = get_logger(__name__)

    @abstractmethod
    def match(self, request: MatchRequest) -> DisparityField:
        """
        Correlate the left window against the right window.

        Args:
            request: Images, masks and matching parameters

        Returns:
            DisparityField: Field shaped like ``request.left_image`` holding
            disparities in window coordinates
        """

    def estimate_operations(self, request: MatchRequest) -> float:
        """Number of kernel evaluations the request costs."""
        rows, cols = request.left_image.shape[:2]
        rng = request.search_range.grow_to_int()
        candidates = (rng.width + 1) * (rng.height + 1)
        kernel_x, kernel_y = request.kernel_size
        return float(rows * cols) * candidates * kernel_x * kernel_y

    def check_time_budget(self, request: MatchRequest) -> None:
        """
        Warn when the predicted runtime exceeds the timeout.

        The budget is soft: a request over budget still runs to completion.
        """
        if request.corr_timeout <= 0 or request.seconds_per_op <= 0:
            return
        predicted = self.estimate_operations(request) * request.seconds_per_op
        if predicted > request.corr_timeout:
            self.logger.warning(f"Predicted correlation time {predicted:.1f}s exceeds the "
                                f"{request.corr_timeout:g}s budget for a "
                                f"{request.left_image.shape[1]}x{request.left_image.shape[0]} "
                                f"window with search range {request.search_range}")

    @staticmethod
    def prefilter(image: np.ndarray, mode: PrefilterMode, kernel_width: float) -> np.ndarray:
        # Copy so that memory-mapped inputs are never handed to OpenCV
        image = np.array(image, dtype=np.float32)
        if mode == PrefilterMode.SUBTRACTED_MEAN:
            return ImageProcessor.subtracted_mean(image, kernel_width)
        if mode == PrefilterMode.LOG:
            return ImageProcessor.laplacian_of_gaussian(image, kernel_width)
        return image

    @staticmethod
    def remove_small_blobs(valid: np.ndarray, min_area: int) -> np.ndarray:
        """Invalidate connected valid regions smaller than ``min_area`` cells."""
        if min_area <= 0 or not valid.any():
            return valid
        labels, count = ndimage.label(valid)
        sizes = np.bincount(labels.ravel(), minlength=count + 1)
        keep = sizes >= min_area
        keep[0] = False
        return keep[labels]

    def get_configuration_info(self) -> Dict[str, Any]:
        return {'engine': type(self).__name__}


class BlockMatchingEngine(MatchingEngine):
    """
    Exhaustive two-dimensional block matching.

    Every integer candidate of the search range is scored with a
    box-filtered cost and the best one wins. The search runs at a single
    level; ``max_pyramid_levels`` does not change the result.
    """

    def match(self, request: MatchRequest) -> DisparityField:
        if request.cost_mode in CENSUS_MODES:
            raise ConfigurationError(f"{request.cost_mode.name} requires the semi-global engine")

        self.check_time_budget(request)

        left = self.prefilter(request.left_image, request.prefilter_mode,
                              request.prefilter_kernel_width)
        right = self.prefilter(request.right_image, request.prefilter_mode,
                               request.prefilter_kernel_width)
        left_valid = np.asarray(request.left_mask) > 0
        right_valid = np.asarray(request.right_mask) > 0
        search_range = request.search_range.grow_to_int()

        dx, dy, valid = self._block_match(left, right, left_valid, right_valid,
                                          search_range, request.kernel_size, request.cost_mode)

        if request.xcorr_threshold >= 0:
            reverse = SearchRange(-search_range.max_x, -search_range.max_y,
                                  -search_range.min_x, -search_range.min_y)
            rev_dx, rev_dy, rev_valid = self._block_match(right, left, right_valid, left_valid,
                                                          reverse, request.kernel_size,
                                                          request.cost_mode)
            valid &= self._cross_check(dx, dy, rev_dx, rev_dy, rev_valid,
                                       request.xcorr_threshold)

        valid = self.remove_small_blobs(valid, request.blob_filter_area)
        return DisparityField.from_components(dx.astype(np.float64), dy.astype(np.float64), valid)

    def _block_match(
        self,
        left: np.ndarray,
        right: np.ndarray,
        left_valid: np.ndarray,
        right_valid: np.ndarray,
        search_range: SearchRange,
        kernel_size: Tuple[int, int],
        cost_mode: CostMode
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        rows, cols = left.shape
        best_cost = np.full((rows, cols), np.inf, dtype=np.float32)
        best_dx = np.zeros((rows, cols), dtype=np.int32)
        best_dy = np.zeros((rows, cols), dtype=np.int32)

        for dy in range(int(search_range.min_y), int(search_range.max_y) + 1):
            for dx in range(int(search_range.min_x), int(search_range.max_x) + 1):
                candidate = ImageProcessor.extract_window(right, dx, dy, dx + cols, dy + rows)
                candidate_valid = ImageProcessor.extract_window(
                    right_valid, dx, dy, dx + cols, dy + rows, fill_value=False)

                cost = self._matching_cost(left, candidate, kernel_size, cost_mode)
                cost[~candidate_valid] = np.inf

                better = cost < best_cost
                best_cost[better] = cost[better]
                best_dx[better] = dx
                best_dy[better] = dy

        valid = left_valid & np.isfinite(best_cost)
        return best_dx, best_dy, valid

    @staticmethod
    def _matching_cost(
        left: np.ndarray,
        right: np.ndarray,
        kernel_size: Tuple[int, int],
        cost_mode: CostMode
    ) -> np.ndarray:
        ksize = (int(kernel_size[0]), int(kernel_size[1]))

        if cost_mode == CostMode.ABSOLUTE_DIFFERENCE:
            return cv2.blur(np.abs(left - right), ksize)
        if cost_mode == CostMode.SQUARED_DIFFERENCE:
            return cv2.blur(np.square(left - right), ksize)

        # Normalized cross correlation, turned into a cost in [0, 2]
        mean_l = cv2.blur(left, ksize)
        mean_r = cv2.blur(right, ksize)
        var_l = np.maximum(cv2.blur(left * left, ksize) - mean_l * mean_l, 0)
        var_r = np.maximum(cv2.blur(right * right, ksize) - mean_r * mean_r, 0)
        cov = cv2.blur(left * right, ksize) - mean_l * mean_r
        denom = np.sqrt(var_l * var_r)
        ncc = np.where(denom > 1e-6, cov / np.maximum(denom, 1e-6), 0.0)
        return (1.0 - ncc).astype(np.float32)

    @staticmethod
    def _cross_check(
        dx: np.ndarray,
        dy: np.ndarray,
        rev_dx: np.ndarray,
        rev_dy: np.ndarray,
        rev_valid: np.ndarray,
        threshold: float
    ) -> np.ndarray:
        """Keep cells whose right-to-left match points back within ``threshold``."""
        rows, cols = dx.shape
        ys, xs = np.indices((rows, cols))
        target_x = xs + dx
        target_y = ys + dy
        rev_rows, rev_cols = rev_valid.shape
        inside = (target_x >= 0) & (target_x < rev_cols) & (target_y >= 0) & (target_y < rev_rows)
        tx = np.clip(target_x, 0, rev_cols - 1)
        ty = np.clip(target_y, 0, rev_rows - 1)

        return (inside & rev_valid[ty, tx]
                & (np.abs(dx + rev_dx[ty, tx]) <= threshold)
                & (np.abs(dy + rev_dy[ty, tx]) <= threshold))


class SGBMEngine(MatchingEngine):
    """
    OpenCV semi-global matching over the horizontal part of the range.

    The right window is aligned on the rounded center of the vertical range
    and that offset is reported as the vertical disparity of every cell.
    """

    def __init__(self, use_fast_mode: bool = True, uniqueness_ratio: int = 1):
        super().__init__()
        self.sgbm_mode = (cv2.STEREO_SGBM_MODE_SGBM_3WAY if use_fast_mode
                          else cv2.STEREO_SGBM_MODE_SGBM)
        self.uniqueness_ratio = uniqueness_ratio

    def match(self, request: MatchRequest) -> DisparityField:
        if request.cost_mode in CENSUS_MODES:
            self.logger.debug(f"{request.cost_mode.name} requested; OpenCV SGBM applies its "
                              f"own pixel cost")

        self.check_time_budget(request)

        rows, cols = request.left_image.shape[:2]
        search_range = request.search_range.grow_to_int()
        offset_y = int(round((search_range.min_y + search_range.max_y) / 2.0))

        left = self.prefilter(request.left_image, request.prefilter_mode,
                              request.prefilter_kernel_width)
        right = self.prefilter(request.right_image, request.prefilter_mode,
                               request.prefilter_kernel_width)
        right = ImageProcessor.extract_window(right, 0, offset_y, cols, offset_y + rows)
        right_valid = ImageProcessor.extract_window(
            np.asarray(request.right_mask) > 0, 0, offset_y, cols, offset_y + rows,
            fill_value=False)

        # SGBM disparity is x_left - x_right, the negative of ours
        min_disparity = -int(search_range.max_x)
        num_disparities = self._round_up_16(int(search_range.width) + 1)
        block_size = self._block_size(request.kernel_size)

        left_u8, right_u8 = self._to_uint8(left, right)
        matcher = self.create_stereo_matcher(min_disparity, num_disparities, block_size,
                                             request.xcorr_threshold)
        raw = matcher.compute(left_u8, right_u8)

        disparity = raw.astype(np.float64) / 16.0
        valid = (raw >= min_disparity * 16) & (np.asarray(request.left_mask) > 0)

        dx = -disparity
        ys, xs = np.indices((rows, cols))
        target_x = np.clip(np.round(xs + dx).astype(np.int64), 0, cols - 1)
        valid &= right_valid[ys, target_x]
        valid &= (dx >= search_range.min_x) & (dx <= search_range.max_x)

        valid = self.remove_small_blobs(valid, request.blob_filter_area)
        dy = np.full((rows, cols), float(offset_y))
        return DisparityField.from_components(np.where(valid, dx, 0.0), dy, valid)

    def create_stereo_matcher(
        self,
        min_disparity: int,
        num_disparities: int,
        block_size: int,
        xcorr_threshold: float
    ) -> cv2.StereoSGBM:
        """
        Create a configured OpenCV StereoSGBM matcher.

        Raises:
            ValueError: If the parameters are invalid
        """
        if num_disparities <= 0 or num_disparities % 16 != 0:
            raise ValueError(f"num_disparities must be positive and divisible by 16, "
                             f"got {num_disparities}")
        if block_size <= 0 or block_size % 2 == 0:
            raise ValueError(f"block_size must be positive and odd, got {block_size}")
        if block_size > 21:
            self.logger.warning(f"Large block_size ({block_size}) may reduce accuracy")

        # P1 penalizes disparity changes of 1, P2 larger jumps (single channel)
        p1 = 8 * block_size * block_size
        p2 = 32 * block_size * block_size
        disp12_max_diff = int(math.ceil(xcorr_threshold)) if xcorr_threshold >= 0 else -1

        stereo = cv2.StereoSGBM_create(
            minDisparity=min_disparity,
            numDisparities=num_disparities,
            blockSize=block_size,
            P1=p1,
            P2=p2,
            disp12MaxDiff=disp12_max_diff,
            uniquenessRatio=self.uniqueness_ratio,
            speckleWindowSize=0,
            speckleRange=0,
            mode=self.sgbm_mode
        )
        self.logger.debug(f"SGBM matcher: minDisp={min_disparity}, numDisp={num_disparities}, "
                          f"blockSize={block_size}, disp12MaxDiff={disp12_max_diff}")
        return stereo

    @staticmethod
    def _round_up_16(value: int) -> int:
        return max(16, ((value + 15) // 16) * 16)

    @staticmethod
    def _block_size(kernel_size: Tuple[int, int]) -> int:
        size = int(max(kernel_size))
        return size if size % 2 == 1 else size + 1

    @staticmethod
    def _to_uint8(left: np.ndarray, right: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Stretch both images with one common linear map onto 0..255."""
        low = float(min(np.min(left), np.min(right)))
        high = float(max(np.max(left), np.max(right)))
        if high <= low:
            return np.zeros(left.shape, np.uint8), np.zeros(right.shape, np.uint8)
        scale = 255.0 / (high - low)
        return (np.clip((left - low) * scale, 0, 255).astype(np.uint8),
                np.clip((right - low) * scale, 0, 255).astype(np.uint8))

    def get_configuration_info(self) -> Dict[str, Any]:
        info = super().get_configuration_info()
        info.update({
            'sgbm_mode': 'SGBM_3WAY' if self.sgbm_mode == cv2.STEREO_SGBM_MODE_SGBM_3WAY else 'SGBM',
            'uniqueness_ratio': self.uniqueness_ratio
        })
        return info


def validate_cost_mode(settings: StereoSettings) -> CostMode:
    """
    Check the cost mode against the engine selection.

    Raises:
        ConfigurationError: For an unknown mode, or a census mode without SGM
    """
    try:
        cost_mode = CostMode(settings.cost_mode)
    except ValueError as e:
        raise ConfigurationError(f"Unknown cost mode: {settings.cost_mode}") from e

    if cost_mode in CENSUS_MODES and not settings.use_sgm:
        raise ConfigurationError(f"{cost_mode.name} is only available with use_sgm enabled")
    return cost_mode


def create_matching_engine(settings: StereoSettings) -> MatchingEngine:
    """Select the engine for the configured settings."""
    validate_cost_mode(settings)
    return SGBMEngine() if settings.use_sgm else BlockMatchingEngine()


def calc_seconds_per_op(
    engine: MatchingEngine,
    cost_mode: CostMode,
    left_image: np.ndarray,
    right_image: np.ndarray,
    kernel_size: Tuple[int, int]
) -> float:
    """
    Time the engine on a small central patch.

    Args:
        engine: Engine to probe
        cost_mode: Cost mode to probe with
        left_image: Left image (any resolution)
        right_image: Right image
        kernel_size: Correlation kernel

    Returns:
        float: Seconds per kernel evaluation
    """
    left = _central_patch(left_image)
    right = _central_patch(right_image)
    request = MatchRequest(
        left_image=left,
        right_image=right,
        left_mask=np.ones(left.shape, dtype=np.uint8),
        right_mask=np.ones(right.shape, dtype=np.uint8),
        search_range=SearchRange(-2, -2, 2, 2),
        kernel_size=kernel_size,
        cost_mode=cost_mode
    )

    start = time.perf_counter()
    engine.match(request)
    elapsed = time.perf_counter() - start

    seconds_per_op = elapsed / max(engine.estimate_operations(request), 1.0)
    get_logger(__name__).debug(f"Timing probe: {seconds_per_op:.3e} s per operation")
    return seconds_per_op


def _central_patch(image: np.ndarray) -> np.ndarray:
    rows, cols = image.shape[:2]
    y0 = max((rows - PROBE_PATCH_SIZE) // 2, 0)
    x0 = max((cols - PROBE_PATCH_SIZE) // 2, 0)
    return np.asarray(image[y0:y0 + PROBE_PATCH_SIZE, x0:x0 + PROBE_PATCH_SIZE],
                      dtype=np.float32)
