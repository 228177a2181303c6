"""
Tile-addressable evaluation of the full-resolution disparity.

Each call to ``evaluate`` computes one output tile on its own: it refines the
search range for the tile, cuts the image windows the engine needs, runs the
engine and masks the result to the region of interest. Nothing is shared
between calls, so tiles may be evaluated concurrently in any order.
"""

from typing import Iterator, Optional, Tuple

import numpy as np

from config.stereo_settings import StereoSettings
from utils.image_processing import ImageProcessor
from utils.logger_config import get_logger
from utils.stereo_math import StereoMath
from .disparity_data import BBox, DisparityField
from .matching_engine import MatchingEngine, MatchRequest
from .refiner import TileSearchRangeRefiner

# Source pixels kept around a warped window for the bilinear neighbours
WARP_MARGIN = 2


class TiledCorrelationDispatcher:
    """Evaluates any full-resolution tile of the output disparity."""

    def __init__(
        self,
        left_image: np.ndarray,
        right_image: np.ndarray,
        left_mask: np.ndarray,
        right_mask: np.ndarray,
        refiner: TileSearchRangeRefiner,
        engine: MatchingEngine,
        settings: StereoSettings,
        seconds_per_op: float = 0.0
    ):
        self.left_image = left_image
        self.right_image = right_image
        self.left_mask = left_mask
        self.right_mask = right_mask
        self.refiner = refiner
        self.engine = engine
        self.settings = settings
        self.seconds_per_op = seconds_per_op

        rows, cols = left_image.shape[:2]
        self.image_bbox = BBox.from_shape(rows, cols)
        self.trans_crop_win = self._region_of_interest(settings.trans_crop_win)
        self.logger = get_logger(__name__)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.image_bbox.shape

    def tiles(self, tile_size: Optional[int] = None) -> Iterator[BBox]:
        """Row-major grid of tiles covering the output."""
        tile_size = tile_size or self.settings.corr_tile_size
        rows, cols = self.shape
        for y in range(0, rows, tile_size):
            for x in range(0, cols, tile_size):
                yield BBox(x, y, min(x + tile_size, cols), min(y + tile_size, rows))

    def evaluate(self, bbox: BBox) -> DisparityField:
        """
        Compute the disparity of one tile.

        Args:
            bbox: Tile in full-resolution left-image coordinates

        Returns:
            DisparityField: Field of exactly the tile's size; cells outside
            the region of interest are invalid
        """
        rows, cols = bbox.shape
        if bbox.intersect(self.trans_crop_win).is_empty():
            return DisparityField.invalid(rows, cols)

        search_range = self.refiner.refine(bbox).grow_to_int()

        # Left window: the tile plus its collar, clipped to the image
        collar = self.settings.corr_collar_size
        left_window = bbox.expand(collar).intersect(self.image_bbox)

        # Right window: the left window displaced over the whole search range
        right_window = BBox(left_window.x_min + int(search_range.min_x),
                            left_window.y_min + int(search_range.min_y),
                            left_window.x_max + int(search_range.max_x),
                            left_window.y_max + int(search_range.max_y))

        left_crop = ImageProcessor.extract_window(self.left_image, *_corners(left_window))
        left_mask_crop = ImageProcessor.extract_window(self.left_mask, *_corners(left_window))
        right_crop, right_mask_crop = self._right_window(bbox, right_window)

        # Disparities relative to the crops
        offset_x = right_window.x_min - left_window.x_min
        offset_y = right_window.y_min - left_window.y_min
        request = MatchRequest(
            left_image=left_crop,
            right_image=right_crop,
            left_mask=left_mask_crop,
            right_mask=right_mask_crop,
            search_range=search_range.shift(-offset_x, -offset_y),
            kernel_size=self.settings.corr_kernel,
            cost_mode=self.settings.cost_mode,
            prefilter_mode=self.settings.pre_filter_mode,
            prefilter_kernel_width=self.settings.slogW,
            corr_timeout=self.settings.corr_timeout,
            seconds_per_op=self.seconds_per_op,
            xcorr_threshold=self.settings.xcorr_threshold,
            max_pyramid_levels=self.settings.corr_max_levels,
            use_sgm=self.settings.use_sgm,
            collar_size=collar,
            blob_filter_area=self.settings.corr_blob_filter_area
        )
        field = self.engine.match(request).shifted(offset_x, offset_y)

        tile = field.crop(bbox.translate(-left_window.x_min, -left_window.y_min))
        tile = tile.masked(self._roi_mask(bbox))
        self.logger.debug(f"Tile {bbox}: search range {search_range}, "
                          f"{tile.count_valid()} of {rows * cols} cells valid")
        return tile

    def _right_window(self, bbox: BBox, window: BBox) -> Tuple[np.ndarray, np.ndarray]:
        if not self.refiner.use_local_homography:
            return (ImageProcessor.extract_window(self.right_image, *_corners(window)),
                    ImageProcessor.extract_window(self.right_mask, *_corners(window)))

        # Resample the right image into the tile's homography frame, then
        # translate so that the window origin lands on (0, 0)
        matrix = StereoMath.translation(-window.x_min, -window.y_min) @ \
            self.refiner.fullres_homography(bbox)
        source = self._warp_source(matrix, window)
        if source.is_empty():
            return (np.zeros(window.shape, dtype=np.float32),
                    np.zeros(window.shape, dtype=np.uint8))

        # Warp from the source crop only; its origin is folded into the matrix
        matrix = matrix @ StereoMath.translation(source.x_min, source.y_min)
        size = (window.width, window.height)
        return (ImageProcessor.warp_perspective(
                    ImageProcessor.extract_window(self.right_image, *_corners(source)),
                    matrix, size),
                ImageProcessor.warp_perspective(
                    ImageProcessor.extract_window(self.right_mask, *_corners(source)),
                    matrix, size, is_mask=True))

    def _warp_source(self, matrix: np.ndarray, window: BBox) -> BBox:
        """Right-image pixels sampled when warping into a window of ``window``'s size."""
        rows, cols = self.right_image.shape[:2]
        right_bbox = BBox.from_shape(rows, cols)

        corners = np.array([[0, 0], [window.width, 0],
                            [0, window.height], [window.width, window.height]], dtype=np.float64)
        inverse = np.linalg.inv(matrix)
        w = np.column_stack([corners, np.ones(len(corners))]) @ inverse[2]
        if not (np.all(w > 0) or np.all(w < 0)):
            # The window straddles the line at infinity of the inverse map
            return right_bbox

        points, _ = StereoMath.apply_homography(corners, inverse)
        source = BBox(int(np.floor(points[:, 0].min())), int(np.floor(points[:, 1].min())),
                      int(np.ceil(points[:, 0].max())), int(np.ceil(points[:, 1].max())))
        return source.expand(WARP_MARGIN).intersect(right_bbox)

    def _roi_mask(self, bbox: BBox) -> np.ndarray:
        """True for the cells of ``bbox`` that lie inside the region of interest."""
        keep = np.zeros(bbox.shape, dtype=bool)
        inside = bbox.intersect(self.trans_crop_win)
        if not inside.is_empty():
            keep[inside.translate(-bbox.x_min, -bbox.y_min).slices()] = True
        return keep

    def _region_of_interest(self, window) -> BBox:
        if window is None or tuple(window) == (0, 0, 0, 0):
            return self.image_bbox
        return BBox.from_xywh(window)


def _corners(bbox: BBox):
    return bbox.x_min, bbox.y_min, bbox.x_max, bbox.y_max
