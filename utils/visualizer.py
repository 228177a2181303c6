"""
Preview rendering for disparity results.

Draws one disparity component as a color-coded chart with a color bar;
invalid cells are shown in black.
"""

import matplotlib.pyplot as plt
import numpy as np
from mpl_toolkits.axes_grid1 import make_axes_locatable
from pathlib import Path
from typing import Optional

from utils.logger_config import get_logger

logger = get_logger(__name__)


class DisparityChartGenerator:
    """Renders disparity previews with matplotlib."""

    def __init__(self, xlabel: str = "pixel", ylabel: str = "pixel",
                 figsize=(12, 8), dpi: int = 100, fontsize: int = 12):
        self.xlabel = xlabel
        self.ylabel = ylabel
        self.figsize = figsize
        self.dpi = dpi
        self.fontsize = fontsize
        self.pad_inches = 0.3

    def create_disparity(
        self,
        values: np.ndarray,
        valid: np.ndarray,
        save_path: Path,
        title: Optional[str] = None
    ) -> Path:
        """
        Save a chart of ``values`` where ``valid`` is set.

        Args:
            values: 2-D disparity component
            valid: Boolean validity of each cell
            save_path: Output image path
            title: Optional chart title

        Returns:
            Path: The written file
        """
        masked = np.ma.masked_array(np.asarray(values, dtype=np.float64), mask=~np.asarray(valid))

        fig, ax = plt.subplots(1, 1, figsize=self.figsize, dpi=self.dpi)
        ax.set_xlabel(self.xlabel, fontsize=self.fontsize)
        ax.set_ylabel(self.ylabel, fontsize=self.fontsize)
        ax.tick_params(axis='both', which='major', labelsize=self.fontsize)
        if title:
            ax.set_title(title, fontsize=self.fontsize)

        cmap_ = plt.get_cmap('jet_r').copy()
        cmap_.set_bad(color="black")

        if masked.count() > 0:
            vmin, vmax = float(masked.min()), float(masked.max())
        else:
            vmin, vmax = 0.0, 1.0
        im1 = ax.imshow(masked, cmap=cmap_, vmin=vmin, vmax=vmax)

        divider = make_axes_locatable(ax)
        cax = divider.append_axes("right", size="5%", pad=self.pad_inches)
        cbar = fig.colorbar(im1, cax=cax)
        cbar.ax.tick_params(labelsize=self.fontsize)

        save_path = Path(save_path)
        save_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(save_path, bbox_inches='tight', pad_inches=self.pad_inches)
        plt.close(fig)

        logger.info(f"Saved disparity preview to {save_path}")
        return save_path
