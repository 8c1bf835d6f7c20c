"""Per-group pseudobulk visualization.

Renders one figure per group: library sizes per pseudobulk sample next to
a heatmap of the most abundant features. Terminal consumer only; nothing
here feeds back into the pipeline.
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Sequence

import numpy as np
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from pbulk.contracts import StageError
from pbulk.core.table import Table
from pbulk.setup_directories import get_plot_path, group_file_names

if TYPE_CHECKING:
    from pbulk.pipeline.runner import GroupedResult
    from pbulk.schemas import InternalConfig

__all__ = ['GroupPlotter']

logger = logging.getLogger(__name__)


class GroupPlotter:
    """Generates per-group summary figures from grouped pipeline results.

    **Left Panel**: Library size (row total over value columns) of every
    pseudobulk sample in the group.

    **Right Panel**: Heatmap of the ``top_features`` value columns with the
    largest totals, samples as rows.

    All appearance settings (DPI, figure size, format, colormap) come from
    ``config.visualization``.

    Example usage::

        plotter = GroupPlotter(config)
        paths = plotter.plot_grouped(result, output_dirs)
    """

    def __init__(self, config: "InternalConfig"):
        viz = config.visualization
        self.config = config
        self.dpi = viz.dpi
        self.figsize = tuple(viz.figsize)
        self.output_format = viz.output_format
        self.top_features = viz.top_features
        self.cmap = viz.cmap
        self.sample_key = config.aggregator.sample_key

        logger.debug("GroupPlotter initialized (format=%s, dpi=%d)", self.output_format, self.dpi)

    def _row_labels(self, table: Table) -> List[str]:
        frame = table.frame
        if self.sample_key in frame.columns:
            return [str(v) for v in frame[self.sample_key]]
        return [str(i) for i in frame.index]

    def _top_features(self, table: Table) -> List[str]:
        values = list(table.values)
        if not values:
            return []
        totals = table.frame.loc[:, values].sum(axis=0)
        return list(totals.sort_values(ascending=False, kind="mergesort").index[: self.top_features])

    def _plot_library_sizes(self, ax: plt.Axes, table: Table, labels: Sequence[str]) -> None:
        values = list(table.values)
        sizes = table.frame.loc[:, values].sum(axis=1).to_numpy() if values else np.zeros(len(labels))
        ax.bar(np.arange(len(labels)), sizes, color='#4C72B0')
        ax.set_xticks(np.arange(len(labels)))
        ax.set_xticklabels(labels, rotation=90, fontsize=8)
        ax.set_ylabel('Library size')
        ax.grid(True, axis='y', alpha=0.2, linestyle=':', linewidth=0.5)

    def _plot_heatmap(self, ax: plt.Axes, table: Table, labels: Sequence[str]) -> None:
        features = self._top_features(table)
        if not features:
            ax.text(0.5, 0.5, 'no features', ha='center', va='center', transform=ax.transAxes)
            ax.set_axis_off()
            return
        data = table.frame.loc[:, features].to_numpy(dtype=float)
        im = ax.imshow(data, aspect='auto', cmap=self.cmap, interpolation='nearest')
        ax.set_xticks(np.arange(len(features)))
        ax.set_xticklabels(features, rotation=90, fontsize=8)
        ax.set_yticks(np.arange(len(labels)))
        ax.set_yticklabels(labels, fontsize=8)
        plt.colorbar(im, ax=ax, fraction=0.046, pad=0.04)

    def _save_figure(self, fig: plt.Figure, output_path: Path) -> Path:
        """Save figure in configured format."""
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_file = output_path.with_suffix(f'.{self.output_format}')
        fig.savefig(output_file, dpi=self.dpi, bbox_inches='tight', format=self.output_format)
        return output_file

    def plot_table(self, table: Table, title: str, output_path: Path) -> Optional[Path]:
        """Plot one group's table.

        Parameters
        ----------
        table : Table
            Result table of one partition.
        title : str
            Figure title, usually the group value.
        output_path : Path
            Target path; the suffix is replaced by the configured format.

        Returns
        -------
        Path or None
            Saved file, or None for an empty table.
        """
        if table.is_empty:
            logger.info("Not plotting empty group %s", title)
            return None

        labels = self._row_labels(table)
        fig, (ax1, ax2) = plt.subplots(1, 2, figsize=self.figsize, dpi=self.dpi)
        try:
            self._plot_library_sizes(ax1, table, labels)
            self._plot_heatmap(ax2, table, labels)
            fig.suptitle(f'{title} (n={table.n_rows})', fontsize=12, fontweight='bold')
            saved = self._save_figure(fig, Path(output_path))
        finally:
            plt.close(fig)

        logger.debug("Plot saved: %s", saved)
        return saved

    def plot_grouped(self, result: "GroupedResult", output_dirs) -> List[Path]:
        """Save one figure per successful group; failed groups are skipped.

        Parameters
        ----------
        result : GroupedResult
            Output of the grouped runner.
        output_dirs : dict
            Output directories from setup_output_directories().

        Returns
        -------
        list of Path
            Saved figures in group order, named like the group tables.
        """
        names = group_file_names(result)
        saved = []
        for group, outcome in result.items():
            if isinstance(outcome, StageError):
                logger.info("Not plotting failed group %r", group)
                continue
            output_path = get_plot_path(output_dirs, names[group], self.output_format)
            path = self.plot_table(outcome, str(group), output_path)
            if path is not None:
                saved.append(path)
        logger.info("Saved %d plot(s) to %s", len(saved), output_dirs["plots"])
        return saved
