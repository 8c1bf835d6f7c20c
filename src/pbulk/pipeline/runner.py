"""Per-group pipeline runner (split-apply-combine).

Splits a table by one key column (typically cell type), runs an ordered list
of stages on every partition independently and collects the results into a
mapping keyed by partition value.

Every partition works on a private deep copy of its rows, so a stage
running on one cell type can never observe or mutate another cell type's
data. That isolation is also what makes the optional thread pool safe:
there is no shared mutable state between partitions and no locking.
"""

import logging
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Dict, Iterable, Iterator, List, Literal, Optional, Sequence, Tuple, Union

import pandas as pd

from pbulk.contracts import (
    FailurePolicy,
    StageError,
    assert_columns,
    assert_key_types,
    assert_keys_not_null,
    assert_stage_output,
)
from pbulk.core.table import Table
from pbulk.pipeline.stages import Stage, as_stage

if TYPE_CHECKING:
    from pbulk.schemas import InternalConfig

__all__ = ['GroupedResult', 'split_partitions', 'run_partition', 'run_grouped', 'GroupedRunner']

logger = logging.getLogger(__name__)

EmptyPartitions = Literal["skip", "keep"]


class GroupedResult(Mapping):
    """Read-only mapping from partition key to Table or StageError.

    Entries keep partition order (sorted split key values, or category order
    for categorical split columns). In fail-fast runs every entry is a
    Table; in best-effort runs failed partitions map to their StageError.

    Example usage::

        result = run_grouped(pseudobulk, "cell_type", stages,
                             policy=FailurePolicy.BEST_EFFORT)
        for cell_type, table in result.tables.items():
            ...
        for cell_type, err in result.failures.items():
            logger.warning("%s failed: %s", cell_type, err)
    """

    def __init__(self, entries: Iterable[Tuple[Any, Union[Table, StageError]]],
                 split_key: Optional[str] = None):
        self._entries: Dict[Any, Union[Table, StageError]] = dict(entries)
        self.split_key = split_key

    def __getitem__(self, key: Any) -> Union[Table, StageError]:
        return self._entries[key]

    def __iter__(self) -> Iterator[Any]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return (
            f"GroupedResult(split_key={self.split_key!r}, "
            f"ok={len(self.tables)}, failed={len(self.failures)})"
        )

    @property
    def tables(self) -> Dict[Any, Table]:
        """Successful partitions only."""
        return {k: v for k, v in self._entries.items() if isinstance(v, Table)}

    @property
    def failures(self) -> Dict[Any, StageError]:
        """Side channel of per-partition failures (best-effort runs)."""
        return {k: v for k, v in self._entries.items() if isinstance(v, StageError)}

    @property
    def ok(self) -> bool:
        return not self.failures

    def raise_for_failures(self) -> None:
        """Raise the first recorded StageError, if any."""
        for err in self.failures.values():
            raise err


def split_partitions(table: Table, split_key: str,
                     empty_partitions: EmptyPartitions = "skip") -> List[Tuple[Any, Table]]:
    """Split ``table`` into private per-value partitions.

    Parameters
    ----------
    table : Table
        Table to split.
    split_key : str
        Column whose distinct values define the partitions.
    empty_partitions : {"skip", "keep"}
        Unused levels of a categorical split column (e.g. a cell type
        removed by an upstream filter) are omitted with "skip" or returned
        as empty partitions with "keep".

    Returns
    -------
    list of (key, Table)
        Partitions in sorted key order (category order for categoricals).
        Each Table is a deep copy with a fresh RangeIndex.

    Raises
    ------
    SchemaError
        If ``split_key`` is not a column, holds nulls or mixes value types.
    """
    assert_columns(table, [split_key], role="split key")
    assert_keys_not_null(table, [split_key])
    assert_key_types(table, [split_key])
    if empty_partitions not in ("skip", "keep"):
        raise ValueError(f"empty_partitions must be 'skip' or 'keep', got {empty_partitions!r}")

    frame = table.frame
    column = frame[split_key]
    if isinstance(column.dtype, pd.CategoricalDtype):
        levels = list(column.cat.categories)
    else:
        levels = sorted(pd.unique(column))

    partitions = []
    for level in levels:
        part = frame.loc[(column == level).to_numpy()]
        if part.empty and empty_partitions == "skip":
            logger.info("Skipping empty partition %s=%r", split_key, level)
            continue
        private = part.reset_index(drop=True).copy(deep=True)
        partitions.append((level, Table(private, table.schema)))
    return partitions


def run_partition(key: Any, table: Table, stages: Sequence[Stage]) -> Table:
    """Apply ``stages`` in order to one partition.

    Raises
    ------
    StageError
        If a stage raises or returns something other than a Table.
    """
    current = table
    for index, stage in enumerate(stages):
        try:
            output = stage(current)
        except Exception as exc:
            raise StageError(key, index, exc, stage.name) from exc
        current = assert_stage_output(output, key, index, stage.name)
    # Stages may hand back shared objects; the caller always gets its own copy
    return current.copy()


def run_grouped(
    table: Union[Table, pd.DataFrame],
    split_key: str,
    stages: Sequence[Any] = (),
    policy: Union[FailurePolicy, str] = FailurePolicy.FAIL_FAST,
    max_workers: int = 1,
    empty_partitions: EmptyPartitions = "skip",
) -> GroupedResult:
    """Run an ordered stage list independently on every partition.

    Parameters
    ----------
    table : Table or pd.DataFrame
        Aggregated table to split.
    split_key : str
        Column defining the partitions (e.g. "cell_type").
    stages : sequence of Stage or callable
        Ordered ``Table -> Table`` functions. Empty means identity.
    policy : FailurePolicy or str
        FAIL_FAST raises the first StageError (in partition order);
        BEST_EFFORT records failures in the result instead.
    max_workers : int
        Partitions run on a thread pool when > 1. Output order does not
        depend on completion order.
    empty_partitions : {"skip", "keep"}
        Handling of unused categorical levels. Kept empty partitions
        are returned as-is without running stages.

    Returns
    -------
    GroupedResult

    Raises
    ------
    SchemaError
        If ``split_key`` is missing (before any stage runs).
    StageError
        Under FAIL_FAST, when any partition fails.

    Examples
    --------
    >>> result = run_grouped(pb, "cell_type", [filter_features(10), normalize_cpm()])
    >>> sorted(result)
    ['B', 'NK', 'T']
    """
    if isinstance(table, pd.DataFrame):
        table = Table(table)
    policy = FailurePolicy(policy)
    if max_workers < 1:
        raise ValueError(f"max_workers must be >= 1, got {max_workers}")
    stages = [as_stage(s) for s in stages]

    partitions = split_partitions(table, split_key, empty_partitions)
    logger.info("Running %d stage(s) on %d partition(s) of '%s' (policy=%s, workers=%d)",
                len(stages), len(partitions), split_key, policy.value, max_workers)

    if max_workers == 1 or len(partitions) <= 1:
        outcomes = _run_serial(partitions, stages, policy)
    else:
        outcomes = _run_parallel(partitions, stages, policy, max_workers)

    result = GroupedResult(outcomes, split_key=split_key)
    for key, err in result.failures.items():
        logger.warning("Partition %s=%r failed: %s", split_key, key, err)
    logger.info("Grouped run complete: %d ok, %d failed",
                len(result.tables), len(result.failures))
    return result


def _run_one(key: Any, part: Table, stages: Sequence[Stage]) -> Table:
    if part.is_empty:
        # Empty partitions only exist when kept on purpose; stages never see them
        return part.copy()
    return run_partition(key, part, stages)


def _run_serial(partitions, stages, policy) -> List[Tuple[Any, Union[Table, StageError]]]:
    outcomes = []
    for key, part in partitions:
        try:
            outcomes.append((key, _run_one(key, part, stages)))
        except StageError as err:
            if policy == FailurePolicy.FAIL_FAST:
                logger.error("Aborting grouped run: %s", err)
                raise
            outcomes.append((key, err))
    return outcomes


def _run_parallel(partitions, stages, policy, max_workers) -> List[Tuple[Any, Union[Table, StageError]]]:
    outcomes = []
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pbulk-partition") as pool:
        futures = [(key, pool.submit(_run_one, key, part, stages)) for key, part in partitions]
        for position, (key, future) in enumerate(futures):
            try:
                outcomes.append((key, future.result()))
            except StageError as err:
                if policy == FailurePolicy.FAIL_FAST:
                    # Pending partitions are cancelled; running ones finish and are discarded
                    for _, pending in futures[position + 1:]:
                        pending.cancel()
                    logger.error("Aborting grouped run: %s", err)
                    raise
                outcomes.append((key, err))
    return outcomes


class GroupedRunner:
    """Config-driven per-group pipeline runner.

    Reads the split key, failure policy, worker count and empty-partition
    handling from ``config.runner``.

    Example usage::

        runner = GroupedRunner(config)
        result = runner.run(pseudobulk, build_stages(config))
    """

    def __init__(self, config: "InternalConfig"):
        runner = config.runner
        self.config = config
        self.split_key = runner.split_key
        self.policy = FailurePolicy(runner.failure_policy)
        self.max_workers = runner.max_workers
        self.empty_partitions = runner.empty_partitions

    def run(self, table: Table, stages: Sequence[Any] = ()) -> GroupedResult:
        """Run ``stages`` on every partition of ``table``."""
        return run_grouped(
            table,
            self.split_key,
            stages,
            policy=self.policy,
            max_workers=self.max_workers,
            empty_partitions=self.empty_partitions,
        )
