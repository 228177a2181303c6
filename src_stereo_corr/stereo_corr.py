"""
Seeded stereo correlation driver.

Stage 1 establishes the global search range, the low-resolution disparity
seed and, optionally, the local homographies. The correlation stage then
evaluates the full-resolution disparity tile by tile, each tile searching
only the range the seed allows.
"""

from typing import Dict, Any, Optional

import numpy as np

from config.stereo_settings import StereoSettings, SeedMode
from utils.visualizer import DisparityChartGenerator
from .base import BaseProcessor
from .errors import ConfigurationError
from .disparity import (
    CoarseDisparityProducer,
    DemDisparityProvider,
    DisparityField,
    DisparityFileManager,
    DisparityProcessor,
    InterestPointMatcher,
    LocalHomographyStore,
    MatchingEngine,
    ResolutionScale,
    SearchRange,
    SearchRangeEstimator,
    TileSearchRangeRefiner,
    TiledCorrelationDispatcher,
    calc_seconds_per_op,
    create_matching_engine,
    validate_cost_mode,
)


class StereoCorrelator(BaseProcessor):
    """Runs the correlation stages for one stereo pair."""

    def __init__(
        self,
        settings: StereoSettings,
        engine: Optional[MatchingEngine] = None,
        dem_provider: Optional[DemDisparityProvider] = None,
        ip_matcher: Optional[InterestPointMatcher] = None,
        file_manager: Optional[DisparityFileManager] = None
    ):
        """
        Args:
            settings: Immutable correlation settings
            engine: Matching engine; selected from the settings if omitted
            dem_provider: Seed source for the DEM_PROJECTION mode
            ip_matcher: Interest point matcher used to approximate the range
            file_manager: Artifact manager; built from ``out_prefix`` if omitted

        Raises:
            ConfigurationError: If no engine is given and the cost mode does
                not fit the engine selection
        """
        super().__init__(settings, 'stereo_correlation')
        self.file_manager = file_manager or DisparityFileManager(settings.out_prefix,
                                                                 settings.image_extension)
        self.engine = engine or create_matching_engine(settings)
        self.producer = CoarseDisparityProducer(settings, self.file_manager, self.engine,
                                                dem_provider)
        self.estimator = SearchRangeEstimator(settings, self.file_manager, ip_matcher)
        self.homography_store = LocalHomographyStore(settings, self.file_manager)
        self.disparity_processor = DisparityProcessor()

        self.global_range: Optional[SearchRange] = None
        self.seed: Optional[DisparityField] = None
        self.homographies: Optional[np.ndarray] = None
        self.output: Optional[DisparityField] = None

    def stereo_correlation(self) -> Dict[str, Any]:
        """
        Full run: stage 1, then tiled correlation and output writing.

        Raises:
            StageError: Naming the stage that failed
        """
        return self.run()

    def lowres_correlation(self) -> Dict[str, Any]:
        """
        Stage 1: global search range, seed and local homographies.

        Returns:
            Dict[str, Any]: Stage summary
        """
        self.global_range = self.estimator.estimate()

        if self.settings.seed_mode != SeedMode.NONE:
            self.file_manager.setup_output_directory()
            scale = self.resolution_scale()
            left_sub, right_sub, left_mask_sub, right_mask_sub = \
                self.file_manager.load_image_pair(low_resolution=True)
            self.seed = self.producer.ensure_seed(left_sub, right_sub, left_mask_sub,
                                                  right_mask_sub, scale, self.global_range)

            if self.seed is not None and self.settings.use_local_homography:
                self.homographies = self.homography_store.load_or_compute(
                    self.seed, scale, self.file_manager.image_size('left'))

        self.read_search_range()
        return {
            'search_range': self.global_range.as_list() if self.global_range else None,
            'seed_valid_cells': self.seed.count_valid() if self.seed is not None else None
        }

    def read_search_range(self) -> Optional[SearchRange]:
        """
        Replace the global search range by the one implied by the seed.

        Without a seed the current range (or the configured one) is kept.
        """
        if self.global_range is None and self.settings.is_search_defined:
            self.global_range = SearchRange.from_sequence(self.settings.search_range)

        if self.settings.seed_mode == SeedMode.NONE:
            return self.global_range

        seed = self.seed if self.seed is not None else self.file_manager.load_seed()
        if seed is None:
            return self.global_range
        self.seed = seed

        seed_range = self.producer.seed_search_range(seed, self.resolution_scale())
        if seed_range is not None:
            self.global_range = seed_range
            self.logger.info(f"Refined search range from the seed: {seed_range}")
        return self.global_range

    def build_dispatcher(self) -> TiledCorrelationDispatcher:
        """
        Load the full-resolution inputs and assemble the tile dispatcher.

        Raises:
            ConfigurationError: For an invalid cost mode, a missing search
                range, or a missing/mismatched spread
        """
        settings = self.settings
        cost_mode = validate_cost_mode(settings)
        left, right, left_mask, right_mask = self.file_manager.load_image_pair()

        seed = spread = scale = homographies = None
        if settings.seed_mode != SeedMode.NONE:
            seed = self.seed if self.seed is not None else self.file_manager.load_seed()
            if seed is not None:
                scale = self.resolution_scale()
                spread = self.producer.load_spread(seed)
                if settings.use_local_homography:
                    homographies = self.homographies
                    if homographies is None:
                        homographies = self.homography_store.load_or_compute(
                            seed, scale, (left.shape[1], left.shape[0]))
            else:
                self.logger.warning("No low-resolution disparity available; "
                                    "every tile uses the global search range")

        if self.global_range is None:
            raise ConfigurationError("No search range is available: define search_range or "
                                     "provide a low-resolution disparity")

        refiner = TileSearchRangeRefiner(self.global_range, seed, spread, scale,
                                         homographies, settings.corr_tile_size)

        seconds_per_op = 0.0
        if settings.corr_timeout > 0:
            seconds_per_op = calc_seconds_per_op(self.engine, cost_mode, left, right,
                                                 settings.corr_kernel)

        self.logger.info(f"Kernel size: {settings.corr_kernel}, "
                         f"{'refined search' if seed is not None else 'search range'}: "
                         f"{self.global_range}, cost mode: {cost_mode.name}")
        return TiledCorrelationDispatcher(left, right, left_mask, right_mask, refiner,
                                          self.engine, settings, seconds_per_op)

    def resolution_scale(self) -> ResolutionScale:
        return ResolutionScale.from_sizes(self.file_manager.image_size('left'),
                                          self.file_manager.image_size('left_sub'))

    def _execute_processing_pipeline(self) -> Dict[str, Any]:
        results: Dict[str, Any] = {}
        self.output = None

        # Without a seed, stage 1 is the only source of a search range
        if not self.settings.skip_low_res_disparity_comp or self.settings.seed_mode == SeedMode.NONE:
            results['lowres'] = self.run_stage('lowres_correlation', self.lowres_correlation)

        if self.settings.compute_low_res_disparity_only:
            return results

        self.run_stage('read_search_range', self.read_search_range)
        dispatcher = self.run_stage('build_dispatcher', self.build_dispatcher)

        rows, cols = dispatcher.shape
        self.output = self.run_stage(
            'correlation',
            self.file_manager.write_tiled_disparity,
            rows, cols, dispatcher.tiles(), dispatcher.evaluate, self.settings.num_threads
        )

        results['search_range'] = self.global_range.as_list()
        results['quality'] = self.disparity_processor.assess_disparity_quality(self.output)
        return results

    def _save_processing_results(self, processing_results: Dict[str, Any]) -> None:
        if self.output is None:
            return

        metadata = self.disparity_processor.create_disparity_metadata(
            self.output,
            self.settings.summary(),
            processing_results.get('quality'),
            self.file_manager.load_georeference()
        )
        metadata['processing'] = self._create_comprehensive_metadata(
            {key: value for key, value in processing_results.items() if key != 'quality'})
        metadata['file_operations'] = self.file_manager.get_processing_statistics()
        self.file_manager.save_metadata(metadata)

        if self.settings.save_preview:
            DisparityChartGenerator().create_disparity(
                self.output.dx, self.output.valid,
                self.file_manager.artifact_path('preview'),
                title="Horizontal disparity"
            )

    def _get_processor_specific_config(self) -> Dict[str, Any]:
        return {
            'seed_mode': self.settings.seed_mode.name,
            'engine': self.engine.get_configuration_info(),
            'use_local_homography': self.settings.use_local_homography
        }

    def _is_processing_ready(self) -> bool:
        return self.file_manager.artifact_path('left').exists()
