"""
File operation utilities for the stereo correlation stages.

This module provides path management and structured saving/loading of the
arrays, matrices and metadata that the stages exchange through the disk.
"""

import json
import numpy as np
import logging
from typing import Dict, Any, Optional
from pathlib import Path
import shutil

logger = logging.getLogger(__name__)


class PathManager:
    """Manages paths and directory operations for correlation artifacts."""

    @staticmethod
    def ensure_directory_exists(path: Path, clear_if_exists: bool = False) -> Path:
        """
        Ensure directory exists, optionally clearing it if it already exists.

        Args:
            path: Directory path to create
            clear_if_exists: Whether to clear directory if it already exists

        Returns:
            Path: The created/validated directory path
        """
        if clear_if_exists and path.exists():
            shutil.rmtree(path)

        path.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Ensured directory exists: {path}")

        return path

    @staticmethod
    def prefixed_path(out_prefix: str, suffix: str) -> Path:
        """Build an artifact path such as ``<out_prefix>-D_sub.npz``."""
        return Path(f"{out_prefix}{suffix}")

    @staticmethod
    def remove_if_exists(path: Path) -> bool:
        """Delete a file if present. Returns True if something was removed."""
        if path.exists():
            path.unlink()
            logger.debug(f"Removed file: {path}")
            return True
        return False


class DataSaver:
    """Handles saving of arrays, matrices and metadata in standard formats."""

    @staticmethod
    def save_arrays(path: Path, **arrays: np.ndarray) -> Path:
        """
        Save named arrays into one compressed ``.npz`` archive.

        The archive is written to a temporary name first and renamed, so a
        reader never observes a half-written artifact.

        Raises:
            OSError: If the file cannot be written
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp.npz")
        np.savez_compressed(tmp_path, **arrays)
        tmp_path.replace(path)
        logger.debug(f"Saved arrays {sorted(arrays)} to {path}")
        return path

    @staticmethod
    def save_matrix(path: Path, matrix: np.ndarray, header: str = "") -> Path:
        """Save a 2-D matrix as text with full float precision."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        np.savetxt(path, np.atleast_2d(matrix), fmt='%.17g', header=header)
        logger.debug(f"Saved matrix {np.shape(matrix)} to {path}")
        return path

    @staticmethod
    def save_json_data(
        data: Dict[str, Any],
        output_path: Path,
        filename: str,
        indent: int = 2
    ) -> bool:
        """
        Save dictionary data as JSON.

        Args:
            data: Data to save
            output_path: Output directory
            filename: Output filename (with extension)
            indent: JSON indentation

        Returns:
            bool: True if successful
        """
        try:
            output_path.mkdir(parents=True, exist_ok=True)
            full_path = output_path / filename

            with open(full_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False, indent=indent, default=_json_default)

            logger.debug(f"Saved JSON to {full_path}")
            return True

        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save JSON {filename}: {e}")
            return False


class DataLoader:
    """Loads artifacts written by ``DataSaver``."""

    @staticmethod
    def load_arrays(path: Path, *names: str) -> Dict[str, np.ndarray]:
        """
        Load named arrays from an ``.npz`` archive.

        Raises:
            OSError: If the file is missing or not a readable archive
            KeyError: If a requested array is absent
        """
        with np.load(path, allow_pickle=False) as archive:
            return {name: np.array(archive[name]) for name in names}

    @staticmethod
    def load_matrix(path: Path) -> np.ndarray:
        """Load a text matrix written by ``DataSaver.save_matrix``."""
        return np.atleast_2d(np.loadtxt(path, dtype=np.float64))

    @staticmethod
    def read_header(path: Path) -> str:
        """Return the first comment line of a text artifact (without '#')."""
        with open(path, 'r', encoding='utf-8') as f:
            first = f.readline()
        return first[1:].strip() if first.startswith('#') else ""

    @staticmethod
    def load_json_data(path: Path) -> Optional[Dict[str, Any]]:
        """Load JSON data, returning None if the file is absent."""
        if not path.exists():
            return None
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)


def _json_default(value: Any) -> Any:
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
