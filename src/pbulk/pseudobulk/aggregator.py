"""Pseudobulk aggregation of per-cell observation tables.

Groups per-cell rows by one or more key fields (typically sample and cell
type) and reduces every value field within each group, producing one
pseudobulk profile per key combination.
"""

import logging
from typing import TYPE_CHECKING, Callable, Iterable, Optional, Sequence, Union

import numpy as np
import pandas as pd

from pbulk.contracts import (
    EmptyInputError,
    SchemaError,
    assert_aggregated,
    assert_columns,
    assert_observation_fields,
    assert_observations,
    require,
)
from pbulk.core.table import Table

if TYPE_CHECKING:
    from pbulk.schemas import InternalConfig

__all__ = ['REDUCERS', 'aggregate', 'PseudobulkAggregator']

logger = logging.getLogger(__name__)

Reducer = Union[str, Callable[[Sequence[float]], float]]

# Named reducers map to pandas groupby aggregations
REDUCERS = ("sum", "mean", "median", "max", "min")


def _resolve_value_fields(observations: Table, value_fields: Optional[Iterable[str]],
                          reserved: Iterable[str]) -> list:
    if value_fields is None:
        reserved = set(reserved)
        return [v for v in observations.values if v not in reserved]
    if isinstance(value_fields, (set, frozenset)):
        # Sets carry no order; sort for a stable column layout
        return sorted(value_fields)
    return list(value_fields)


def _reduce(grouped, reducer: Reducer) -> pd.DataFrame:
    if isinstance(reducer, str):
        if reducer not in REDUCERS:
            raise ValueError(f"Unknown reducer '{reducer}'. Supported: {list(REDUCERS)}")
        return grouped.agg(reducer)
    if not callable(reducer):
        raise TypeError(f"reducer must be a name or a callable, got {type(reducer).__name__}")
    return grouped.agg(lambda values: reducer(values.tolist()))


def aggregate(
    observations: Union[Table, pd.DataFrame],
    group_keys: Sequence[str],
    value_fields: Optional[Iterable[str]] = None,
    reducer: Reducer = "sum",
    default: Optional[Table] = None,
    min_count: int = 1,
    count_column: Optional[str] = None,
    carry_fields: Sequence[str] = (),
) -> Table:
    """Aggregate observations into one row per group key combination.

    Parameters
    ----------
    observations : Table or pd.DataFrame
        Per-cell table. DataFrames are wrapped with an inferred schema.
    group_keys : sequence of str
        Ordered grouping fields, e.g. ``["sample_id", "cell_type"]``.
    value_fields : iterable of str, optional
        Numeric fields to reduce. Defaults to every VALUE column of
        ``observations`` that is not a group key, carried field or the
        count column.
    reducer : str or callable, optional
        One of ``REDUCERS`` or a function mapping a list of numbers to a
        number (default "sum").
    default : Table, optional
        Returned (as a copy) when ``observations`` has no rows. Without it,
        an empty input raises EmptyInputError.
    min_count : int, optional
        Drop groups with fewer source rows (default 1: keep all).
    count_column : str, optional
        If given, add a column with the number of source rows per group.
    carry_fields : sequence of str, optional
        Metadata fields that are constant within each group (e.g. the
        treatment condition of a sample). Carried into the result as META.

    Returns
    -------
    Table
        Group keys (tagged KEY, values verbatim), reduced value fields
        (tagged VALUE), then carried metadata and the optional count column
        (tagged META). Rows follow the sorted order of key tuples.

    Raises
    ------
    SchemaError
        If a field is missing, a value field is not numeric, no group key is
        given, a key holds nulls or mixed value types, or a carried field
        varies within a group.
    EmptyInputError
        If there are no rows and no ``default``.

    Examples
    --------
    >>> pb = aggregate(cells, ["sample_id", "cell_type"], ["CD3E", "MS4A1"])
    >>> pb.keys
    ('sample_id', 'cell_type')
    """
    if isinstance(observations, pd.DataFrame):
        observations = Table(observations)

    group_keys = list(group_keys)
    carry_fields = list(carry_fields)
    reserved = [*group_keys, *carry_fields, *([count_column] if count_column else [])]
    value_fields = _resolve_value_fields(observations, value_fields, reserved)
    assert_observation_fields(observations, group_keys, value_fields)

    assert_columns(observations, carry_fields, role="carried")
    taken = set(group_keys) | set(value_fields)
    require(
        not taken & set(carry_fields),
        f"Schema contract violated: carried fields {sorted(taken & set(carry_fields))} "
        f"are already keys or values",
        SchemaError,
    )

    if count_column is not None:
        require(
            count_column not in taken and count_column not in carry_fields,
            f"Schema contract violated: count column '{count_column}' collides with an existing field",
            SchemaError,
        )

    if observations.is_empty:
        if default is not None:
            logger.info("No observations to aggregate, returning configured default")
            return default.copy()
        raise EmptyInputError(
            f"No observations to aggregate by {group_keys} and no default configured"
        )

    # Value dtypes are only checked once there are rows
    assert_observations(observations, group_keys, value_fields)

    grouped = observations.frame.groupby(group_keys, sort=True, observed=True)
    counts = grouped.size()

    if value_fields:
        reduced = _reduce(grouped[value_fields], reducer)
    else:
        reduced = pd.DataFrame(index=counts.index)

    keep = (counts >= min_count).to_numpy()
    n_dropped = int((~keep).sum())
    if n_dropped:
        logger.info("Dropped %d of %d groups with fewer than %d rows",
                    n_dropped, len(counts), min_count)

    frame = reduced.loc[keep].reset_index()
    frame = frame.loc[:, [*group_keys, *value_fields]].copy()

    meta = []
    for field in carry_fields:
        n_levels = grouped[field].nunique(dropna=False)
        varying = n_levels[n_levels > 1]
        require(
            varying.empty,
            f"Schema contract violated: carried field '{field}' varies within "
            f"{len(varying)} group(s)",
            SchemaError,
        )
        frame[field] = grouped[field].first().to_numpy()[keep]
        meta.append(field)

    if count_column is not None:
        frame[count_column] = counts.to_numpy()[keep].astype(np.int64)
        meta.append(count_column)

    schema = observations.schema.project(group_keys, value_fields, meta=meta)
    result = Table(frame, schema)
    assert_aggregated(result, group_keys)

    logger.debug("Aggregated %d rows into %d groups", observations.n_rows, result.n_rows)
    return result


class PseudobulkAggregator:
    """Config-driven pseudobulk aggregation by sample and cell type.

    Reads the grouping keys, reducer and filters from
    ``config.aggregator`` and delegates to :func:`aggregate`.

    Example usage::

        aggregator = PseudobulkAggregator(config)
        pseudobulk = aggregator.aggregate(cells)
    """

    def __init__(self, config: "InternalConfig"):
        agg = config.aggregator
        self.config = config
        self.sample_key = agg.sample_key
        self.celltype_key = agg.celltype_key
        self.reducer = agg.reducer
        self.min_cells = agg.min_cells
        self.count_column = agg.count_column
        self.value_fields = agg.value_fields
        self.carry_fields = agg.carry_fields

    @property
    def group_keys(self) -> tuple[str, str]:
        return (self.sample_key, self.celltype_key)

    def aggregate(self, observations: Union[Table, pd.DataFrame],
                  default: Optional[Table] = None) -> Table:
        """Aggregate per-cell observations into pseudobulk samples."""
        if isinstance(observations, pd.DataFrame):
            observations = Table.from_frame(observations, keys=self.group_keys)

        logger.info("Aggregating %d cells by %s (reducer=%s, min_cells=%d)",
                    observations.n_rows, list(self.group_keys),
                    self.reducer, self.min_cells)

        result = aggregate(
            observations,
            group_keys=self.group_keys,
            value_fields=self.value_fields,
            reducer=self.reducer,
            default=default,
            min_count=self.min_cells,
            count_column=self.count_column,
            carry_fields=self.carry_fields,
        )

        logger.info("Pseudobulk: %d samples x %d features",
                    result.n_rows, len(result.values))
        return result
