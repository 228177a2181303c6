"""
Production and caching of the coarse (low-resolution) disparity seed.

The seed is computed once per run, or reused from ``<out_prefix>-D_sub.npz``
when a readable copy exists and the images are not being re-cropped. It is
immutable once produced.
"""

from abc import ABC, abstractmethod
from typing import Optional, Tuple

import numpy as np

from config.stereo_settings import StereoSettings, SeedMode, CostMode, PrefilterMode
from utils.logger_config import get_logger
from ..errors import ConfigurationError
from .disparity_data import DisparityField, ResolutionScale, SearchRange
from .file_manager import DisparityFileManager
from .matching_engine import MatchingEngine, MatchRequest, calc_seconds_per_op
from .outlier_filter import OutlierFilter, QUANTILE_VARIANT


class DemDisparityProvider(ABC):
    """Source of a seed obtained by projecting a terrain model into both images."""

    @abstractmethod
    def project_dem(
        self,
        left_sub: np.ndarray,
        right_sub: np.ndarray,
        scale: ResolutionScale
    ) -> Tuple[DisparityField, DisparityField]:
        """
        Project the terrain model and derive the low-resolution disparity.

        Args:
            left_sub: Low-resolution left image
            right_sub: Low-resolution right image
            scale: Full/low resolution ratio

        Returns:
            Tuple containing:
                - Seed disparity at low resolution
                - Its spread, of the same size
        """


class CoarseDisparityProducer:
    """Obtains the low-resolution disparity seed according to the seed mode."""

    def __init__(
        self,
        settings: StereoSettings,
        file_manager: DisparityFileManager,
        engine: MatchingEngine,
        dem_provider: Optional[DemDisparityProvider] = None,
        outlier_filter: Optional[OutlierFilter] = None
    ):
        self.settings = settings
        self.file_manager = file_manager
        self.engine = engine
        self.dem_provider = dem_provider
        self.outlier_filter = outlier_filter or OutlierFilter()
        self.logger = get_logger(__name__)

    def needs_rebuild(self) -> bool:
        """
        True when the cached seed cannot be reused.

        That is the case when both image crop windows are set, or when the
        cached artifact is missing, unreadable or corrupt.
        """
        if self.settings.crop_left_and_right:
            return True
        return self.file_manager.load_seed() is None

    def ensure_seed(
        self,
        left_sub: np.ndarray,
        right_sub: np.ndarray,
        left_mask_sub: np.ndarray,
        right_mask_sub: np.ndarray,
        scale: ResolutionScale,
        search_range: Optional[SearchRange]
    ) -> Optional[DisparityField]:
        """
        Return the seed, reusing the cached one when allowed.

        Args:
            left_sub: Low-resolution left image
            right_sub: Low-resolution right image
            left_mask_sub: Low-resolution left validity mask
            right_mask_sub: Low-resolution right validity mask
            scale: Full/low resolution ratio
            search_range: Full-resolution global search range

        Returns:
            DisparityField or None: None when seeding is disabled
        """
        if self.settings.seed_mode == SeedMode.NONE:
            return None

        if not self.needs_rebuild():
            self.logger.info(f"Using cached low-resolution disparity: "
                             f"{self.file_manager.artifact_path('seed')}")
            return self.file_manager.load_seed()

        return self.produce(left_sub, right_sub, left_mask_sub, right_mask_sub,
                            scale, search_range)

    def produce(
        self,
        left_sub: np.ndarray,
        right_sub: np.ndarray,
        left_mask_sub: np.ndarray,
        right_mask_sub: np.ndarray,
        scale: ResolutionScale,
        search_range: Optional[SearchRange]
    ) -> DisparityField:
        """
        Produce (and persist) a new seed according to the seed mode.

        Raises:
            ConfigurationError: If the mode lacks what it needs (a search
                range, a DEM provider or an externally supplied seed)
        """
        mode = self.settings.seed_mode

        if mode == SeedMode.LOWRES_CORRELATION:
            seed = self._correlate_lowres(left_sub, right_sub, left_mask_sub, right_mask_sub,
                                          scale, search_range)
            self.file_manager.save_seed(seed)

        elif mode == SeedMode.DEM_PROJECTION:
            if self.dem_provider is None:
                raise ConfigurationError("Seed mode DEM_PROJECTION requires a DEM disparity provider")
            seed, spread = self.dem_provider.project_dem(left_sub, right_sub, scale)
            self.file_manager.save_seed(seed)
            self.file_manager.save_spread(spread)

        elif mode == SeedMode.EXTERNAL_SUPPLIED:
            seed = self.file_manager.load_seed()
            if seed is None:
                raise ConfigurationError(
                    f"Seed mode EXTERNAL_SUPPLIED requires a readable "
                    f"{self.file_manager.artifact_path('seed')}")

        else:
            raise ConfigurationError(f"Cannot produce a seed in mode {SeedMode(mode).name}")

        self.logger.info(f"Low-resolution disparity ({SeedMode(mode).name}): "
                         f"{seed.count_valid()} of {seed.rows * seed.cols} cells valid")
        return seed

    def lowres_search_range(self, search_range: SearchRange, scale: ResolutionScale) -> SearchRange:
        """Scale the global range to low resolution and pad it by ``seed_percent_pad``."""
        lowres = search_range.scale(1.0 / scale.x, 1.0 / scale.y)
        pad_x = int(lowres.width * self.settings.seed_percent_pad / 2.0)
        pad_y = int(lowres.height * self.settings.seed_percent_pad / 2.0)
        return lowres.expand(pad_x, pad_y)

    def _correlate_lowres(
        self,
        left_sub: np.ndarray,
        right_sub: np.ndarray,
        left_mask_sub: np.ndarray,
        right_mask_sub: np.ndarray,
        scale: ResolutionScale,
        search_range: Optional[SearchRange]
    ) -> DisparityField:
        if search_range is None:
            raise ConfigurationError("Low-resolution correlation requires a global search range")

        settings = self.settings
        lowres_range = self.lowres_search_range(search_range, scale)
        self.logger.debug(f"D_sub search range: {lowres_range} px")

        # Cross correlation is used at low resolution whatever the configured metric
        cost_mode = CostMode.CROSS_CORRELATION
        timeout = settings.lowres_timeout_factor * settings.corr_timeout
        seconds_per_op = 0.0
        if timeout > 0:
            seconds_per_op = calc_seconds_per_op(self.engine, cost_mode, left_sub, right_sub,
                                                 settings.corr_kernel)

        rows, cols = left_sub.shape[:2]
        if self.outlier_filter.select_variant(settings) == QUANTILE_VARIANT:
            collar_size = 0
            blob_filter_area = 0
        else:
            single_tile = settings.corr_tile_size > cols and settings.corr_tile_size > rows
            collar_size = 0 if single_tile else settings.corr_collar_size
            blob_filter_area = int(round(settings.corr_blob_filter_area * scale.mean_downscale))

        request = MatchRequest(
            left_image=left_sub,
            right_image=right_sub,
            left_mask=left_mask_sub,
            right_mask=right_mask_sub,
            search_range=lowres_range,
            kernel_size=settings.corr_kernel,
            cost_mode=cost_mode,
            prefilter_mode=PrefilterMode.LOG,
            prefilter_kernel_width=settings.slogW,
            corr_timeout=timeout,
            seconds_per_op=seconds_per_op,
            xcorr_threshold=settings.xcorr_threshold,
            max_pyramid_levels=settings.corr_max_levels,
            use_sgm=settings.use_sgm,
            collar_size=collar_size,
            blob_filter_area=blob_filter_area
        )
        raw = self.engine.match(request)

        # The seed holds integer disparities
        raw = DisparityField(np.round(raw.disparity), raw.valid)
        return self.outlier_filter.filter_seed(raw, settings)

    def load_spread(self, seed: Optional[DisparityField]) -> Optional[DisparityField]:
        """
        Load the seed spread according to the seed mode.

        Returns:
            DisparityField or None: None when no spread applies

        Raises:
            ConfigurationError: If the spread is mandatory but missing, or
                its size differs from the seed's
        """
        mode = self.settings.seed_mode
        if mode == SeedMode.NONE or seed is None:
            return None

        spread = self.file_manager.load_spread()
        if spread is None:
            if mode in (SeedMode.DEM_PROJECTION, SeedMode.EXTERNAL_SUPPLIED):
                raise ConfigurationError(
                    f"Seed mode {SeedMode(mode).name} requires a readable "
                    f"{self.file_manager.artifact_path('spread')}")
            return None

        if spread.rows != seed.rows or spread.cols != seed.cols:
            raise ConfigurationError(f"D_sub ({seed.cols}x{seed.rows}) and D_sub_spread "
                                     f"({spread.cols}x{spread.rows}) must have equal sizes")
        return spread

    @staticmethod
    def seed_search_range(seed: Optional[DisparityField],
                          scale: ResolutionScale) -> Optional[SearchRange]:
        """Global full-resolution range implied by the seed, or None."""
        if seed is None:
            return None
        lowres = seed.disparity_range()
        if lowres is None:
            return None
        return lowres.scale(scale.x, scale.y)
