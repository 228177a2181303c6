"""
Base file management for the correlation artifacts.

Every artifact of a run lives next to the others under one output prefix,
``<out_prefix><suffix>``; subclasses declare which suffixes they own.
"""

from pathlib import Path
from typing import Dict, Any
from abc import ABC, abstractmethod

from utils.file_operations import PathManager, DataSaver
from utils.logger_config import get_logger


class BaseFileManager(ABC):
    """
    Base class for artifact file management.

    Provides common functionality for:
    - Artifact path resolution from the output prefix
    - Metadata saving
    - Operation statistics

    Subclasses declare their artifacts and implement the typed load/save
    operations.
    """

    def __init__(self, out_prefix: str):
        """
        Initialize base file manager.

        Args:
            out_prefix: Path prefix shared by all artifacts of the run
        """
        self.out_prefix = str(out_prefix)
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}")

        self.processing_stats = {
            'total_operations': 0,
            'successful_operations': 0,
            'failed_operations': 0
        }

    def artifact_path(self, key: str) -> Path:
        """
        Resolve the path of a named artifact.

        Raises:
            KeyError: If the artifact is not declared by this manager
        """
        suffixes = self.get_artifact_suffixes()
        if key not in suffixes:
            raise KeyError(f"Unknown artifact '{key}'; known: {sorted(suffixes)}")
        return PathManager.prefixed_path(self.out_prefix, suffixes[key])

    def setup_output_directory(self) -> Path:
        """Create the directory that holds the prefixed artifacts."""
        directory = PathManager.prefixed_path(self.out_prefix, "").parent
        return PathManager.ensure_directory_exists(directory)

    def save_metadata(self, metadata: Dict[str, Any], key: str = 'metadata') -> bool:
        """
        Save metadata as JSON under the artifact ``key``.

        Args:
            metadata: Metadata dictionary to save
            key: Artifact name

        Returns:
            bool: True if successful
        """
        path = self.artifact_path(key)
        success = DataSaver.save_json_data(metadata, path.parent, path.name)
        self.record_operation(success)

        if success:
            self.logger.debug(f"Saved metadata to {path}")
        else:
            self.logger.error(f"Failed to save metadata to {path}")
        return success

    def record_operation(self, success: bool) -> None:
        self.processing_stats['total_operations'] += 1
        if success:
            self.processing_stats['successful_operations'] += 1
        else:
            self.processing_stats['failed_operations'] += 1

    def get_processing_statistics(self) -> Dict[str, Any]:
        """
        Get current processing statistics.

        Returns:
            Dict[str, Any]: Processing statistics
        """
        stats = self.processing_stats.copy()
        if stats['total_operations'] > 0:
            stats['success_rate'] = stats['successful_operations'] / stats['total_operations']
        else:
            stats['success_rate'] = 0

        return stats

    @abstractmethod
    def get_artifact_suffixes(self) -> Dict[str, str]:
        """
        Map artifact names to their suffixes.

        Returns:
            Dict[str, str]: Artifact name to suffix (appended to the prefix)
        """
        pass
