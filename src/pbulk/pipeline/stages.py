"""Pipeline stages: typed ``Table -> Table`` units.

A stage is a named function from Table to Table. The grouped runner applies
an ordered list of stages to every partition. Statistical methods (DESeq2,
TMM, PCA, ...) plug in as stages supplied by the caller; this module only
ships generic filtering and scaling stages used to prepare pseudobulk
counts for them.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, List

import numpy as np

from pbulk.contracts import ContractViolation, require
from pbulk.core.table import Table

if TYPE_CHECKING:
    from pbulk.schemas import InternalConfig

__all__ = [
    'Stage',
    'as_stage',
    'filter_features',
    'filter_rows',
    'normalize_cpm',
    'log_transform',
    'build_stages',
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Stage:
    """Named ``Table -> Table`` transformation."""

    name: str
    func: Callable[[Table], Table]

    def __call__(self, table: Table) -> Table:
        return self.func(table)


def as_stage(obj: Any) -> Stage:
    """Wrap a plain callable as a Stage named after it.

    Raises
    ------
    TypeError
        If ``obj`` is neither a Stage nor callable.
    """
    if isinstance(obj, Stage):
        return obj
    if callable(obj):
        name = getattr(obj, "__name__", type(obj).__name__)
        return Stage(name=name, func=obj)
    raise TypeError(f"Stage must be callable, got {type(obj).__name__}")


def _library_sizes(table: Table):
    return table.frame.loc[:, list(table.values)].sum(axis=1)


def filter_features(min_total: float) -> Stage:
    """Drop value columns whose total over the table is below ``min_total``.

    This is the "abundant features" filter applied per cell type before
    differential testing.
    """
    def _filter_features(table: Table) -> Table:
        values = list(table.values)
        totals = table.frame.loc[:, values].sum(axis=0)
        keep = set(totals.index[totals >= min_total])
        dropped = len(values) - len(keep)
        if dropped:
            logger.debug("filter_features: dropped %d of %d features below %s",
                         dropped, len(values), min_total)
        return table.select_values([v for v in values if v in keep]).copy()

    return Stage(name=f"filter_features(min_total={min_total})", func=_filter_features)


def filter_rows(min_total: float) -> Stage:
    """Drop rows (pseudobulk samples) with library size below ``min_total``."""
    def _filter_rows(table: Table) -> Table:
        mask = (_library_sizes(table) >= min_total).to_numpy()
        frame = table.frame.loc[mask].reset_index(drop=True)
        logger.debug("filter_rows: kept %d of %d rows", len(frame), table.n_rows)
        return table.with_frame(frame)

    return Stage(name=f"filter_rows(min_total={min_total})", func=_filter_rows)


def normalize_cpm(scale: float = 1e6) -> Stage:
    """Scale each row's values to counts per ``scale`` of the row total.

    Rows with a zero library size stay all-zero.
    """
    require(scale > 0, f"normalize_cpm: scale must be positive, got {scale}")

    def _normalize_cpm(table: Table) -> Table:
        values = list(table.values)
        frame = table.frame.copy()
        lib = _library_sizes(table).replace(0, np.nan)
        scaled = frame.loc[:, values].astype(float).div(lib, axis=0) * scale
        frame[values] = scaled.fillna(0.0)
        return table.with_frame(frame)

    return Stage(name=f"normalize_cpm(scale={scale:g})", func=_normalize_cpm)


def log_transform(pseudocount: float = 1.0, base: float = 2.0) -> Stage:
    """Apply ``log_base(x + pseudocount)`` to every value column."""
    require(pseudocount > 0, f"log_transform: pseudocount must be positive, got {pseudocount}")
    require(base > 1, f"log_transform: base must be > 1, got {base}")

    def _log_transform(table: Table) -> Table:
        values = list(table.values)
        frame = table.frame.copy()
        shifted = frame.loc[:, values].astype(float) + pseudocount
        if (shifted <= 0).to_numpy().any():
            raise ContractViolation(
                "log_transform: values below -pseudocount cannot be log transformed"
            )
        frame[values] = np.log(shifted) / np.log(base)
        return table.with_frame(frame)

    return Stage(name=f"log_transform(base={base:g})", func=_log_transform)


def build_stages(config: "InternalConfig") -> List[Stage]:
    """Build the default stage list from ``config.stages``.

    Order: row filter, feature filter, CPM scaling, log transform. Disabled
    steps are left out.
    """
    cfg = config.stages
    stages = []
    if cfg.min_library_size is not None:
        stages.append(filter_rows(cfg.min_library_size))
    if cfg.min_feature_total is not None:
        stages.append(filter_features(cfg.min_feature_total))
    if cfg.normalize:
        stages.append(normalize_cpm(cfg.cpm_scale))
    if cfg.log_transform:
        stages.append(log_transform(cfg.pseudocount, cfg.log_base))
    logger.info("Stages: %s", [s.name for s in stages] or "identity")
    return stages
