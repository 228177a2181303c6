"""
Disparity computation for seeded stereo correlation.

This package contains the data model, the matching engines, the seed
producer and its outlier filters, the local homographies, the search range
estimation and refinement, and the tiled dispatcher.
"""

from .disparity_data import BBox, DisparityField, ResolutionScale, SearchRange
from .matching_engine import (
    MatchingEngine,
    MatchRequest,
    BlockMatchingEngine,
    SGBMEngine,
    calc_seconds_per_op,
    create_matching_engine,
    validate_cost_mode,
)
from .outlier_filter import OutlierFilter
from .file_manager import DisparityFileManager
from .disparity_processor import DisparityProcessor
from .lowres_producer import CoarseDisparityProducer, DemDisparityProvider
from .local_homography import LocalHomographyStore, homography_grid_shape, lookup_homography
from .interest_points import InterestPointMatcher
from .search_range import SearchRangeEstimator
from .refiner import TileSearchRangeRefiner
from .dispatcher import TiledCorrelationDispatcher

__all__ = [
    'BBox',
    'DisparityField',
    'ResolutionScale',
    'SearchRange',
    'MatchingEngine',
    'MatchRequest',
    'BlockMatchingEngine',
    'SGBMEngine',
    'calc_seconds_per_op',
    'create_matching_engine',
    'validate_cost_mode',
    'OutlierFilter',
    'DisparityFileManager',
    'DisparityProcessor',
    'CoarseDisparityProducer',
    'DemDisparityProvider',
    'LocalHomographyStore',
    'homography_grid_shape',
    'lookup_homography',
    'InterestPointMatcher',
    'SearchRangeEstimator',
    'TileSearchRangeRefiner',
    'TiledCorrelationDispatcher',
]
