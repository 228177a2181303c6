"""
Immutable correlation settings shared by every stage.

The JSON configuration is parsed once by ``Config`` and frozen into a
``StereoSettings`` instance, which is then passed explicitly to each
component instead of being looked up from a global object.
"""

from dataclasses import dataclass, asdict
from enum import IntEnum
from typing import Optional, Tuple, Dict, Any


class SeedMode(IntEnum):
    """How the low-resolution disparity seed is obtained."""
    NONE = 0
    LOWRES_CORRELATION = 1
    DEM_PROJECTION = 2
    EXTERNAL_SUPPLIED = 3


class CostMode(IntEnum):
    ABSOLUTE_DIFFERENCE = 0
    SQUARED_DIFFERENCE = 1
    CROSS_CORRELATION = 2
    CENSUS_TRANSFORM = 3
    TERNARY_CENSUS_TRANSFORM = 4


class PrefilterMode(IntEnum):
    NONE = 0
    SUBTRACTED_MEAN = 1
    LOG = 2


@dataclass(frozen=True)
class StereoSettings:
    """
    Frozen view of the correlation configuration.

    Windows are stored as ``(x, y, width, height)`` tuples and search ranges
    as ``(min_x, min_y, max_x, max_y)`` tuples; components convert them to
    their own box types.
    """

    out_prefix: str

    # Seeding and search range
    seed_mode: SeedMode = SeedMode.LOWRES_CORRELATION
    search_range: Optional[Tuple[float, float, float, float]] = None
    seed_percent_pad: float = 0.25

    # Correlation
    corr_kernel: Tuple[int, int] = (21, 21)
    cost_mode: CostMode = CostMode.CROSS_CORRELATION
    use_sgm: bool = False
    pre_filter_mode: PrefilterMode = PrefilterMode.LOG
    slogW: float = 1.5
    xcorr_threshold: float = 2.0
    corr_max_levels: int = 5
    corr_timeout: int = 900
    lowres_timeout_factor: int = 5
    corr_tile_size: int = 1024
    corr_collar_size: int = 512
    corr_blob_filter_area: int = 0

    # Outlier removal on the seed
    rm_threshold: float = 3.0
    rm_min_matches: float = 60.0
    rm_quantile_percentile: float = 0.85
    rm_quantile_multiple: float = -1.0
    lowres_rm_half_kernel: Tuple[int, int] = (1, 1)
    lowres_rm_threshold_factor: float = 2.0 / 3.0
    lowres_rm_min_matches_factor: float = 0.5 / 0.6

    # Local homography
    use_local_homography: bool = False
    min_homography_points: int = 4

    # Crop windows
    left_image_crop_win: Optional[Tuple[int, int, int, int]] = None
    right_image_crop_win: Optional[Tuple[int, int, int, int]] = None
    trans_crop_win: Optional[Tuple[int, int, int, int]] = None

    # Stage control
    skip_low_res_disparity_comp: bool = False
    compute_low_res_disparity_only: bool = False
    num_threads: int = 4

    # Inputs and outputs
    image_extension: str = ".tif"
    save_preview: bool = False
    ip_per_image: int = 2000

    @property
    def crop_left_and_right(self) -> bool:
        """True when both image crop windows are set (caches must be rebuilt)."""
        return (_is_set(self.left_image_crop_win)
                and _is_set(self.right_image_crop_win))

    @property
    def is_search_defined(self) -> bool:
        return self.search_range is not None

    def summary(self) -> Dict[str, Any]:
        """Plain-JSON summary used in output metadata."""
        data = asdict(self)
        for key in ('seed_mode', 'cost_mode', 'pre_filter_mode'):
            data[key] = getattr(self, key).name
        return data


def _is_set(window: Optional[Tuple[int, int, int, int]]) -> bool:
    return window is not None and tuple(window) != (0, 0, 0, 0)
