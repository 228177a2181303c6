"""
Base processor class for the correlation stages.

A processor runs a pipeline of named stages. Each stage is announced with a
timestamped banner and timed; a failure inside a stage is re-raised as a
``StageError`` naming that stage.
"""

import datetime
import time
from typing import Dict, Any, Callable
from abc import ABC, abstractmethod

from config.stereo_settings import StereoSettings
from utils.logger_config import get_logger, log_stage_banner
from ..errors import StageError


class BaseProcessor(ABC):
    """
    Base class for stage-driven processing.

    Provides common functionality for:
    - Stage execution with banners, timing and error wrapping
    - Processing state and metadata assembly

    Subclasses implement the pipeline itself and the saving of its results.
    """

    def __init__(self, settings: StereoSettings, processing_type: str):
        """
        Initialize base processor.

        Args:
            settings: Immutable correlation settings
            processing_type: Type of processing (e.g. 'stereo_correlation')
        """
        self.settings = settings
        self.processing_type = processing_type
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}")

        self.processing_results: Dict[str, Any] = {}
        self.stage_timings: Dict[str, float] = {}
        self.current_stage = None

        self.logger.info(f"{self.__class__.__name__} initialized for {processing_type} processing")

    def run(self) -> Dict[str, Any]:
        """
        Main entry point: execute the pipeline and save its results.

        Returns:
            Dict[str, Any]: Processing results

        Raises:
            StageError: If any stage fails
        """
        self.processing_results = {
            'processing_type': self.processing_type,
            'timestamp': datetime.datetime.now().isoformat()
        }
        self.stage_timings = {}
        self.logger.debug(f"Processing setup: {self.get_processing_info()}")
        if not self._is_processing_ready():
            self.logger.warning(f"Inputs for {self.processing_type} are incomplete")

        results = self._execute_processing_pipeline()
        self.processing_results.update(results or {})
        self.processing_results['stage_timings'] = dict(self.stage_timings)

        self.run_stage('save_results', self._save_processing_results, self.processing_results)
        return self.processing_results

    def run_stage(self, stage_name: str, func: Callable, *args, **kwargs) -> Any:
        """
        Run one stage.

        Args:
            stage_name: Name reported in banners and errors
            func: Stage callable
            *args: Positional arguments for ``func``
            **kwargs: Keyword arguments for ``func``

        Returns:
            Any: Whatever ``func`` returns

        Raises:
            StageError: Wrapping any exception raised by ``func``
        """
        self.current_stage = stage_name
        log_stage_banner(self.logger, f"Stage '{stage_name}' started")
        start = time.perf_counter()

        try:
            result = func(*args, **kwargs)
        except StageError:
            raise
        except Exception as e:
            self.logger.error(f"Stage '{stage_name}' failed: {e}")
            raise StageError(stage_name, e) from e
        finally:
            self.current_stage = None

        elapsed = time.perf_counter() - start
        self.stage_timings[stage_name] = elapsed
        log_stage_banner(self.logger, f"Stage '{stage_name}' finished in {elapsed:.2f}s")
        return result

    def _create_comprehensive_metadata(self, processing_results: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create comprehensive metadata for the processing.

        Args:
            processing_results: Results from processing operations

        Returns:
            Dict[str, Any]: Comprehensive metadata
        """
        return {
            'processing_type': self.processing_type,
            'configuration': self._extract_relevant_config(),
            'processing_results': processing_results
        }

    def _extract_relevant_config(self) -> Dict[str, Any]:
        base_config = {'out_prefix': self.settings.out_prefix}
        base_config.update(self._get_processor_specific_config())
        return base_config

    def get_processing_info(self) -> Dict[str, Any]:
        """
        Get comprehensive information about current processing setup.

        Returns:
            Dict[str, Any]: Processing information
        """
        return {
            'processing_type': self.processing_type,
            'current_stage': self.current_stage,
            'configuration': self._extract_relevant_config(),
            'processing_ready': self._is_processing_ready()
        }

    @abstractmethod
    def _execute_processing_pipeline(self) -> Dict[str, Any]:
        """
        Execute the stages of the pipeline.

        Returns:
            Dict[str, Any]: Processing results
        """
        pass

    @abstractmethod
    def _save_processing_results(self, processing_results: Dict[str, Any]) -> None:
        """
        Save processing results using the appropriate file manager.

        Args:
            processing_results: Results from processing
        """
        pass

    @abstractmethod
    def _get_processor_specific_config(self) -> Dict[str, Any]:
        pass

    @abstractmethod
    def _is_processing_ready(self) -> bool:
        pass
