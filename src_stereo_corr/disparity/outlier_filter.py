"""
Outlier removal for the low-resolution disparity seed.

Both filters only invalidate cells; the values of the cells they keep are
never modified.
"""

import warnings
from typing import Tuple

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from config.stereo_settings import StereoSettings
from utils.image_processing import ImageProcessor
from utils.logger_config import get_logger
from .disparity_data import DisparityField

THRESHOLD_VARIANT = 'threshold'
QUANTILE_VARIANT = 'quantile'


class OutlierFilter:
    """Removes seed cells that disagree with their neighborhood."""

    def __init__(self):
        self.logger = get_logger(__name__)

    @staticmethod
    def select_variant(settings: StereoSettings) -> str:
        """The quantile filter runs iff a positive quantile multiple is configured."""
        return QUANTILE_VARIANT if settings.rm_quantile_multiple > 0 else THRESHOLD_VARIANT

    def filter_seed(self, field: DisparityField, settings: StereoSettings) -> DisparityField:
        """
        Apply the configured filter variant with its low-resolution calibration.

        Args:
            field: Seed disparity as returned by the matching engine
            settings: Correlation settings

        Returns:
            DisparityField: Filtered copy of the seed
        """
        if self.select_variant(settings) == QUANTILE_VARIANT:
            return self.rm_outliers_using_quantiles(
                field,
                settings.rm_quantile_percentile,
                settings.rm_quantile_multiple
            )

        half_kernel_x, half_kernel_y = settings.lowres_rm_half_kernel
        return self.rm_outliers_using_thresh(
            field,
            half_kernel_x, half_kernel_y,
            settings.rm_threshold * settings.lowres_rm_threshold_factor,
            (settings.rm_min_matches / 100.0) * settings.lowres_rm_min_matches_factor
        )

    def rm_outliers_using_thresh(
        self,
        field: DisparityField,
        half_kernel_x: int,
        half_kernel_y: int,
        threshold: float,
        min_matches_fraction: float
    ) -> DisparityField:
        """
        Invalidate cells that too few neighbors agree with.

        A neighbor agrees when both its disparity components differ from the
        center cell's by less than ``threshold``. A cell is kept when at least
        ``min_matches_fraction`` of its valid neighbors agree; a cell without
        any valid neighbor is removed unless the fraction is not positive.

        Args:
            field: Input disparity
            half_kernel_x: Half window width
            half_kernel_y: Half window height
            threshold: Agreement tolerance in disparity units
            min_matches_fraction: Required share of agreeing neighbors

        Returns:
            DisparityField: Filtered copy
        """
        valid = field.valid
        dx = np.where(valid, field.dx, 0.0)
        dy = np.where(valid, field.dy, 0.0)

        neighbors = np.zeros(field.shape, dtype=np.int32)
        matched = np.zeros(field.shape, dtype=np.int32)

        for off_y in range(-half_kernel_y, half_kernel_y + 1):
            for off_x in range(-half_kernel_x, half_kernel_x + 1):
                if off_x == 0 and off_y == 0:
                    continue
                n_valid = ImageProcessor.shift_image(valid, off_x, off_y, False)
                n_dx = ImageProcessor.shift_image(dx, off_x, off_y, 0.0)
                n_dy = ImageProcessor.shift_image(dy, off_x, off_y, 0.0)

                neighbors += n_valid
                matched += (n_valid
                            & (np.abs(n_dx - dx) < threshold)
                            & (np.abs(n_dy - dy) < threshold))

        keep = matched >= min_matches_fraction * neighbors
        if min_matches_fraction > 0:
            keep &= neighbors > 0

        result = field.masked(keep)
        self._log_removed(THRESHOLD_VARIANT, field, result)
        return result

    def rm_outliers_using_quantiles(
        self,
        field: DisparityField,
        percentile: float,
        multiple: float,
        half_kernel: Tuple[int, int] = (1, 1),
        min_deviation: float = 1.0
    ) -> DisparityField:
        """
        Invalidate cells that deviate unusually far from their local median.

        The deviation of a cell is the larger component of its distance to
        the median of the valid cells in its window. A cell is an outlier
        when its deviation exceeds ``multiple`` times the ``percentile``
        quantile of all deviations and also exceeds ``min_deviation`` (the
        seed is integer valued, so one unit is quantization). The
        quantile is taken once over the whole field rather than per window,
        so a uniformly noisy neighborhood is judged against the field as a
        whole.

        Args:
            field: Input disparity
            percentile: Quantile in (0, 1] of the deviation distribution
            multiple: Multiple of that quantile tolerated
            half_kernel: Half window size (x, y) of the neighborhood
            min_deviation: Deviations up to this value are always tolerated

        Returns:
            DisparityField: Filtered copy
        """
        if field.count_valid() == 0:
            return field.copy()

        half_x, half_y = half_kernel
        window = (2 * half_y + 1, 2 * half_x + 1)

        deviation = np.zeros(field.shape)
        for component in (field.dx, field.dy):
            values = np.where(field.valid, component, np.nan)
            padded = np.pad(values, ((half_y, half_y), (half_x, half_x)),
                            mode='constant', constant_values=np.nan)
            with warnings.catch_warnings():
                # windows around invalid cells may hold no valid sample
                warnings.simplefilter('ignore', RuntimeWarning)
                median = np.nanmedian(sliding_window_view(padded, window), axis=(2, 3))
            deviation = np.maximum(deviation, np.nan_to_num(np.abs(values - median)))

        limit = multiple * float(np.quantile(deviation[field.valid], percentile))
        outlier = field.valid & (deviation > limit) & (deviation > min_deviation)

        result = field.masked(~outlier)
        self._log_removed(QUANTILE_VARIANT, field, result)
        return result

    def _log_removed(self, variant: str, before: DisparityField, after: DisparityField) -> None:
        removed = before.count_valid() - after.count_valid()
        self.logger.debug(f"Outlier removal ({variant}): removed {removed} of "
                          f"{before.count_valid()} valid cells")

