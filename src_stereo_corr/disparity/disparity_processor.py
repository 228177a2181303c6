"""
Disparity field analysis utilities.

This module handles quality assessment of disparity fields and the assembly
of the metadata written next to the output disparity.
"""

from typing import Dict, Any, Optional

from utils.logger_config import get_logger
from .disparity_data import DisparityField


class DisparityProcessor:
    """Handles analysis of disparity fields."""

    def __init__(self):
        self.logger = get_logger(__name__)

    def assess_disparity_quality(self, field: DisparityField) -> Dict[str, Any]:
        """
        Assess the quality of a disparity field.

        Args:
            field: Disparity field

        Returns:
            Dict[str, Any]: Quality assessment metrics
        """
        total_pixels = field.rows * field.cols
        valid_pixels = field.count_valid()
        validity_ratio = valid_pixels / total_pixels if total_pixels else 0.0

        quality_metrics = {
            'total_pixels': int(total_pixels),
            'valid_pixels': int(valid_pixels),
            'validity_ratio': float(validity_ratio),
            'coverage_percentage': float(100 * validity_ratio)
        }

        if valid_pixels > 0:
            quality_metrics['disparity_range'] = {
                name: {
                    'min': float(values.min()),
                    'max': float(values.max()),
                    'mean': float(values.mean()),
                    'std': float(values.std())
                }
                for name, values in (('dx', field.dx[field.valid]), ('dy', field.dy[field.valid]))
            }

            if validity_ratio > 0.8:
                quality_level = 'excellent'
            elif validity_ratio > 0.6:
                quality_level = 'good'
            elif validity_ratio > 0.4:
                quality_level = 'fair'
            else:
                quality_level = 'poor'
            quality_metrics['quality_level'] = quality_level
        else:
            quality_metrics.update({
                'disparity_range': None,
                'quality_level': 'failed'
            })

        self.logger.info(f"Disparity quality assessment: "
                         f"{quality_metrics['quality_level']} "
                         f"({quality_metrics['coverage_percentage']:.1f}% coverage)")

        return quality_metrics

    def create_disparity_metadata(
        self,
        field: DisparityField,
        parameters: Dict[str, Any],
        quality_metrics: Optional[Dict[str, Any]] = None,
        georeference: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Create metadata for the output disparity.

        Args:
            field: Output disparity
            parameters: Settings summary of the run
            quality_metrics: Result of ``assess_disparity_quality``
            georeference: Georeference of the left image, passed through

        Returns:
            Dict[str, Any]: Metadata
        """
        metadata = {
            'disparity_info': {
                'shape': [field.rows, field.cols],
                'convention': 'right - left',
                'components': ['dx', 'dy']
            },
            'parameters': parameters,
            'quality_assessment': quality_metrics or self.assess_disparity_quality(field)
        }
        if georeference is not None:
            metadata['georeference'] = georeference
        return metadata
