"""
Base classes for the stereo correlation stages.

This package provides the stage driver and the artifact file manager that
the correlation modules build on.
"""

from .file_manager import BaseFileManager
from .processor import BaseProcessor

__all__ = ['BaseFileManager', 'BaseProcessor']
