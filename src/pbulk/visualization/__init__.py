"""Visualization of grouped pseudobulk results."""

from pbulk.visualization.plotter import GroupPlotter

__all__ = ['GroupPlotter']
