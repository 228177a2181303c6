"""
File management utilities for disparity processing.

This module handles every artifact the correlation stages exchange through
the disk: input images and masks, alignment matrices, the match file, the
coarse disparity seed and its spread, the local homography grid and the
final tiled disparity.
"""

import zipfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, Any, Callable, Iterable, Optional, Tuple

import numpy as np
import pandas as pd

from utils.file_operations import DataSaver, DataLoader, PathManager
from utils.image_processing import ImageProcessor
from utils.stereo_math import StereoMath
from ..base import BaseFileManager
from .disparity_data import BBox, DisparityField

IMAGE_SUFFIXES = {
    'left': '-L',
    'right': '-R',
    'left_mask': '-lMask',
    'right_mask': '-rMask',
    'left_sub': '-L_sub',
    'right_sub': '-R_sub',
    'left_mask_sub': '-lMask_sub',
    'right_mask_sub': '-rMask_sub',
}

ARTIFACT_SUFFIXES = {
    'align_left': '-align-L.txt',
    'align_right': '-align-R.txt',
    'match': '-L__R.match.csv',
    'match_sub': '-L_sub__R_sub.match.csv',
    'seed': '-D_sub.npz',
    'spread': '-D_sub_spread.npz',
    'local_hom': '-local_hom.txt',
    'disparity': '-D.npz',
    'metadata': '-D-metadata.json',
    'preview': '-D-preview.png',
    'georef': '-L.georef.json',
}

MATCH_COLUMNS = ['x1', 'y1', 'x2', 'y2']

# Exceptions that mean "the cached artifact is unusable"
_CORRUPT_ARTIFACT_ERRORS = (OSError, KeyError, ValueError, zipfile.BadZipFile)


class DisparityFileManager(BaseFileManager):
    """Manages file operations for disparity processing."""

    def __init__(self, out_prefix: str, image_extension: str = ".tif"):
        """
        Initialize disparity file manager.

        Args:
            out_prefix: Path prefix shared by all artifacts of the run
            image_extension: Extension of the input images and masks
        """
        self.image_extension = image_extension
        self._image_sizes: Dict[str, Tuple[int, int]] = {}
        super().__init__(out_prefix)

    def get_artifact_suffixes(self) -> Dict[str, str]:
        suffixes = {key: suffix + self.image_extension for key, suffix in IMAGE_SUFFIXES.items()}
        suffixes.update(ARTIFACT_SUFFIXES)
        return suffixes

    # ------------------------------------------------------------------
    # Input images
    # ------------------------------------------------------------------

    def load_image_pair(self, low_resolution: bool = False) -> Tuple[np.ndarray, ...]:
        """
        Load left/right images and masks at full or low resolution.

        A missing mask means the whole image is valid.

        Returns:
            Tuple of (left, right, left_mask, right_mask)

        Raises:
            FileNotFoundError: If an image is missing
        """
        suffix = '_sub' if low_resolution else ''
        left = ImageProcessor.read_image(self.artifact_path('left' + suffix))
        right = ImageProcessor.read_image(self.artifact_path('right' + suffix))
        left_mask = self._load_mask('left_mask' + suffix, left.shape)
        right_mask = self._load_mask('right_mask' + suffix, right.shape)

        self.logger.info(f"Loaded {'low' if low_resolution else 'full'}-resolution pair: "
                         f"left {left.shape[1]}x{left.shape[0]}, "
                         f"right {right.shape[1]}x{right.shape[0]}")
        return left, right, left_mask, right_mask

    def image_size(self, key: str) -> Tuple[int, int]:
        """(cols, rows) of an input image artifact, read once per run."""
        if key not in self._image_sizes:
            self._image_sizes[key] = ImageProcessor.image_size(self.artifact_path(key))
        return self._image_sizes[key]

    def _load_mask(self, key: str, shape: Tuple[int, ...]) -> np.ndarray:
        path = self.artifact_path(key)
        if not path.exists():
            self.logger.debug(f"No mask at {path}; treating all pixels as valid")
            return np.ones(shape[:2], dtype=np.uint8)
        mask = ImageProcessor.read_mask(path)
        if mask.shape != tuple(shape[:2]):
            raise ValueError(f"Mask {path.name} is {mask.shape}, image is {shape[:2]}")
        return mask

    # ------------------------------------------------------------------
    # Disparity fields
    # ------------------------------------------------------------------

    def load_seed(self) -> Optional[DisparityField]:
        """Load the coarse disparity; None when missing or corrupt."""
        return self.load_field(self.artifact_path('seed'))

    def load_spread(self) -> Optional[DisparityField]:
        """Load the coarse disparity spread; None when missing or corrupt."""
        return self.load_field(self.artifact_path('spread'))

    def save_seed(self, field: DisparityField) -> None:
        self.save_field(self.artifact_path('seed'), field)

    def save_spread(self, field: DisparityField) -> None:
        self.save_field(self.artifact_path('spread'), field)

    def load_field(self, path) -> Optional[DisparityField]:
        """
        Load a disparity field written by ``save_field``.

        Returns:
            DisparityField or None: None if the file is absent or unreadable
        """
        if not path.exists():
            self.logger.debug(f"No cached field at {path}")
            return None
        try:
            arrays = DataLoader.load_arrays(path, 'disparity', 'valid')
            return DisparityField(arrays['disparity'], arrays['valid'])
        except _CORRUPT_ARTIFACT_ERRORS as e:
            self.logger.info(f"Ignoring unreadable field {path.name}: {e}")
            return None

    def save_field(self, path, field: DisparityField) -> None:
        DataSaver.save_arrays(path, disparity=field.disparity.astype(np.float32), valid=field.valid)
        self.record_operation(True)
        self.logger.info(f"Saved {field.cols}x{field.rows} disparity field to {path}")

    # ------------------------------------------------------------------
    # Local homographies
    # ------------------------------------------------------------------

    def load_homographies(self) -> Optional[np.ndarray]:
        """
        Load the homography grid as an array (grid_rows, grid_cols, 3, 3).

        Returns:
            np.ndarray or None: None if the artifact is missing or malformed
        """
        path = self.artifact_path('local_hom')
        if not path.exists():
            return None
        try:
            header = DataLoader.read_header(path).split()
            grid_rows, grid_cols = int(header[-2]), int(header[-1])
            matrices = DataLoader.load_matrix(path)
            return matrices.reshape(grid_rows, grid_cols, 3, 3)
        except (OSError, ValueError, IndexError) as e:
            self.logger.info(f"Ignoring unreadable homography grid {path.name}: {e}")
            return None

    def save_homographies(self, homographies: np.ndarray) -> None:
        grid_rows, grid_cols = homographies.shape[:2]
        path = self.artifact_path('local_hom')
        DataSaver.save_matrix(path, homographies.reshape(grid_rows * grid_cols, 9),
                              header=f"local homography grid {grid_rows} {grid_cols}")
        self.record_operation(True)
        self.logger.info(f"Saved {grid_rows}x{grid_cols} local homographies to {path}")

    # ------------------------------------------------------------------
    # Alignment and interest point matches
    # ------------------------------------------------------------------

    def load_alignment(self, side: str) -> np.ndarray:
        """
        Load the alignment matrix of ``side`` ('left' or 'right').

        Returns:
            np.ndarray: 3x3 matrix; identity when the artifact is absent
        """
        path = self.artifact_path(f'align_{side}')
        if not path.exists():
            return np.eye(3)
        matrix = DataLoader.load_matrix(path)
        StereoMath.validate_homography(matrix, path.name)
        return matrix

    def match_file_path(self, low_resolution: bool = False) -> Path:
        return self.artifact_path('match_sub' if low_resolution else 'match')

    def save_matches(self, path: Path, left_points: np.ndarray, right_points: np.ndarray) -> None:
        frame = pd.DataFrame(np.column_stack([left_points, right_points]), columns=MATCH_COLUMNS)
        path.parent.mkdir(parents=True, exist_ok=True)
        frame.to_csv(path, index=False)
        self.record_operation(True)
        self.logger.info(f"Saved {len(frame)} interest point matches to {path}")

    def load_matches(self, path: Path) -> Tuple[np.ndarray, np.ndarray]:
        """
        Load matched points as (left_points, right_points), each (N, 2).

        Raises:
            FileNotFoundError: If the match file is missing
            ValueError: If columns are missing
        """
        frame = pd.read_csv(path)
        missing = [c for c in MATCH_COLUMNS if c not in frame.columns]
        if missing:
            raise ValueError(f"Match file {path.name} lacks columns {missing}")
        return (frame[['x1', 'y1']].to_numpy(dtype=np.float64),
                frame[['x2', 'y2']].to_numpy(dtype=np.float64))

    def remove_matches(self, path: Path) -> bool:
        return PathManager.remove_if_exists(path)

    def load_georeference(self) -> Optional[Dict[str, Any]]:
        """Georeference of the left image, passed through to the output metadata."""
        return DataLoader.load_json_data(self.artifact_path('georef'))

    # ------------------------------------------------------------------
    # Tiled output
    # ------------------------------------------------------------------

    def write_tiled_disparity(
        self,
        rows: int,
        cols: int,
        tiles: Iterable[BBox],
        evaluate: Callable[[BBox], DisparityField],
        num_threads: int = 1
    ) -> DisparityField:
        """
        Evaluate tiles concurrently and assemble and save the full disparity.

        Each tile is written into the output exactly once, in completion
        order.

        Args:
            rows: Output height
            cols: Output width
            tiles: Non-overlapping tiles covering the output
            evaluate: Callable producing the field of one tile
            num_threads: Worker count

        Returns:
            DisparityField: The assembled disparity

        Raises:
            RuntimeError: If two tiles cover the same pixel
        """
        output = DisparityField.invalid(rows, cols)
        written = np.zeros((rows, cols), dtype=bool)
        tiles = list(tiles)

        with ThreadPoolExecutor(max_workers=max(1, num_threads)) as executor:
            futures = {executor.submit(evaluate, tile): tile for tile in tiles}
            for done, future in enumerate(as_completed(futures), start=1):
                tile = futures[future]
                field = future.result()
                region = tile.slices()
                if written[region].any():
                    raise RuntimeError(f"Tile {tile} overlaps an already written tile")
                output.disparity[region] = field.disparity
                output.valid[region] = field.valid
                written[region] = True
                self.logger.debug(f"Wrote tile {done}/{len(tiles)}: {tile}")

        self.save_field(self.artifact_path('disparity'), output)
        return output
