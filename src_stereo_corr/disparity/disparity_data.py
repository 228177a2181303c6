"""
Data structures exchanged by the correlation stages.

Pixel regions are integer half-open boxes (``BBox``); candidate disparity
offsets are closed floating boxes (``SearchRange``). A disparity is the
offset ``right - left`` between corresponding pixels.
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple, Sequence

import numpy as np


@dataclass(frozen=True)
class BBox:
    """Pixel region ``[x_min, x_max) x [y_min, y_max)``."""

    x_min: int
    y_min: int
    x_max: int
    y_max: int

    @classmethod
    def from_xywh(cls, window: Sequence[int]) -> 'BBox':
        x, y, width, height = (int(v) for v in window)
        return cls(x, y, x + width, y + height)

    @classmethod
    def from_shape(cls, rows: int, cols: int) -> 'BBox':
        return cls(0, 0, int(cols), int(rows))

    @property
    def width(self) -> int:
        return self.x_max - self.x_min

    @property
    def height(self) -> int:
        return self.y_max - self.y_min

    @property
    def shape(self) -> Tuple[int, int]:
        """(rows, cols) of an array covering this box."""
        return max(self.height, 0), max(self.width, 0)

    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def intersect(self, other: 'BBox') -> 'BBox':
        return BBox(max(self.x_min, other.x_min), max(self.y_min, other.y_min),
                    min(self.x_max, other.x_max), min(self.y_max, other.y_max))

    def expand(self, margin: int) -> 'BBox':
        return BBox(self.x_min - margin, self.y_min - margin,
                    self.x_max + margin, self.y_max + margin)

    def translate(self, dx: int, dy: int) -> 'BBox':
        return BBox(self.x_min + dx, self.y_min + dy, self.x_max + dx, self.y_max + dy)

    def contains(self, other: 'BBox') -> bool:
        return (self.x_min <= other.x_min and self.y_min <= other.y_min
                and other.x_max <= self.x_max and other.y_max <= self.y_max)

    def slices(self) -> Tuple[slice, slice]:
        """Row and column slices selecting this box from an array."""
        return slice(self.y_min, self.y_max), slice(self.x_min, self.x_max)

    def __str__(self) -> str:
        return f"({self.x_min}, {self.y_min}) -> ({self.x_max}, {self.y_max})"


@dataclass(frozen=True)
class SearchRange:
    """Closed box of candidate disparities, normalized so that min <= max."""

    min_x: float
    min_y: float
    max_x: float
    max_y: float

    def __post_init__(self):
        if self.min_x > self.max_x:
            lo, hi = self.max_x, self.min_x
            object.__setattr__(self, 'min_x', lo)
            object.__setattr__(self, 'max_x', hi)
        if self.min_y > self.max_y:
            lo, hi = self.max_y, self.min_y
            object.__setattr__(self, 'min_y', lo)
            object.__setattr__(self, 'max_y', hi)

    @classmethod
    def from_sequence(cls, values: Sequence[float]) -> 'SearchRange':
        """Build from ``[min_x, min_y, max_x, max_y]``."""
        min_x, min_y, max_x, max_y = (float(v) for v in values)
        return cls(min_x, min_y, max_x, max_y)

    @classmethod
    def from_points(cls, dx: np.ndarray, dy: np.ndarray) -> Optional['SearchRange']:
        """Bounding box of disparity samples, or None if there are none."""
        dx = np.asarray(dx, dtype=np.float64).ravel()
        dy = np.asarray(dy, dtype=np.float64).ravel()
        if dx.size == 0:
            return None
        return cls(float(dx.min()), float(dy.min()), float(dx.max()), float(dy.max()))

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    def grow_to_int(self) -> 'SearchRange':
        """Round outward: floor the min corner, ceil the max corner."""
        return SearchRange(float(math.floor(self.min_x)), float(math.floor(self.min_y)),
                           float(math.ceil(self.max_x)), float(math.ceil(self.max_y)))

    def expand(self, amount_x: float, amount_y: Optional[float] = None) -> 'SearchRange':
        amount_y = amount_x if amount_y is None else amount_y
        return SearchRange(self.min_x - amount_x, self.min_y - amount_y,
                           self.max_x + amount_x, self.max_y + amount_y)

    def union(self, other: 'SearchRange') -> 'SearchRange':
        return SearchRange(min(self.min_x, other.min_x), min(self.min_y, other.min_y),
                           max(self.max_x, other.max_x), max(self.max_y, other.max_y))

    def scale(self, scale_x: float, scale_y: float) -> 'SearchRange':
        """Multiply by per-axis factors, flooring the min and ceiling the max."""
        return SearchRange(float(math.floor(self.min_x * scale_x)),
                           float(math.floor(self.min_y * scale_y)),
                           float(math.ceil(self.max_x * scale_x)),
                           float(math.ceil(self.max_y * scale_y)))

    def shift(self, dx: float, dy: float) -> 'SearchRange':
        return SearchRange(self.min_x + dx, self.min_y + dy, self.max_x + dx, self.max_y + dy)

    def contains(self, other: 'SearchRange') -> bool:
        return (self.min_x <= other.min_x and self.min_y <= other.min_y
                and other.max_x <= self.max_x and other.max_y <= self.max_y)

    def as_list(self):
        return [self.min_x, self.min_y, self.max_x, self.max_y]

    def __str__(self) -> str:
        return f"({self.min_x:g}, {self.min_y:g}) -> ({self.max_x:g}, {self.max_y:g})"


@dataclass(frozen=True)
class ResolutionScale:
    """Per-axis ratio between full-resolution and low-resolution extents."""

    x: float
    y: float

    @classmethod
    def from_sizes(cls, full_size: Tuple[int, int], low_size: Tuple[int, int]) -> 'ResolutionScale':
        """
        Derive the scale from measured (cols, rows) sizes.

        Raises:
            ValueError: If a size is not positive
        """
        if min(full_size) <= 0 or min(low_size) <= 0:
            raise ValueError(f"Image sizes must be positive: full={full_size}, low={low_size}")
        return cls(float(full_size[0]) / float(low_size[0]),
                   float(full_size[1]) / float(low_size[1]))

    @property
    def mean_downscale(self) -> float:
        """Mean of the low/full ratios."""
        return (1.0 / self.x + 1.0 / self.y) / 2.0

    def lowres_region(self, bbox: BBox, extent: BBox) -> BBox:
        """
        Low-resolution footprint of a full-resolution box.

        The corners are rounded outward, the result is grown by one
        low-resolution pixel and then clipped to ``extent``.
        """
        footprint = BBox(int(math.floor(bbox.x_min / self.x)), int(math.floor(bbox.y_min / self.y)),
                         int(math.ceil(bbox.x_max / self.x)), int(math.ceil(bbox.y_max / self.y)))
        return footprint.expand(1).intersect(extent)


@dataclass
class DisparityField:
    """
    Grid of optional disparity vectors.

    ``disparity[..., 0]`` holds dx and ``disparity[..., 1]`` holds dy;
    ``valid`` marks the cells that carry a correspondence. Values in invalid
    cells are meaningless.
    """

    disparity: np.ndarray
    valid: np.ndarray

    def __post_init__(self):
        self.disparity = np.asarray(self.disparity, dtype=np.float64)
        self.valid = np.asarray(self.valid, dtype=bool)
        if self.disparity.ndim != 3 or self.disparity.shape[2] != 2:
            raise ValueError(f"disparity must have shape (rows, cols, 2), got {self.disparity.shape}")
        if self.valid.shape != self.disparity.shape[:2]:
            raise ValueError(f"valid mask shape {self.valid.shape} does not match "
                             f"disparity shape {self.disparity.shape[:2]}")

    @classmethod
    def invalid(cls, rows: int, cols: int) -> 'DisparityField':
        return cls(np.zeros((rows, cols, 2)), np.zeros((rows, cols), dtype=bool))

    @classmethod
    def from_components(cls, dx: np.ndarray, dy: np.ndarray, valid: np.ndarray) -> 'DisparityField':
        return cls(np.stack([dx, dy], axis=-1), valid)

    @property
    def shape(self) -> Tuple[int, int]:
        """(rows, cols)"""
        return self.valid.shape

    @property
    def rows(self) -> int:
        return self.valid.shape[0]

    @property
    def cols(self) -> int:
        return self.valid.shape[1]

    @property
    def dx(self) -> np.ndarray:
        return self.disparity[..., 0]

    @property
    def dy(self) -> np.ndarray:
        return self.disparity[..., 1]

    def bbox(self) -> BBox:
        return BBox.from_shape(self.rows, self.cols)

    def count_valid(self) -> int:
        return int(np.count_nonzero(self.valid))

    def crop(self, bbox: BBox) -> 'DisparityField':
        rows, cols = bbox.slices()
        return DisparityField(self.disparity[rows, cols].copy(), self.valid[rows, cols].copy())

    def copy(self) -> 'DisparityField':
        return DisparityField(self.disparity.copy(), self.valid.copy())

    def shifted(self, dx: float, dy: float) -> 'DisparityField':
        """Add a constant offset to every valid disparity."""
        disparity = self.disparity.copy()
        disparity[self.valid] += np.array([dx, dy])
        return DisparityField(disparity, self.valid.copy())

    def masked(self, keep: np.ndarray) -> 'DisparityField':
        """Return a copy where cells with ``keep == False`` become invalid."""
        return DisparityField(self.disparity.copy(), self.valid & np.asarray(keep, dtype=bool))

    def disparity_range(self) -> Optional[SearchRange]:
        """Bounding box of the valid disparities, or None if none is valid."""
        return SearchRange.from_points(self.dx[self.valid], self.dy[self.valid])
