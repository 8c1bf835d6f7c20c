"""Table contracts.

Enforce the structural guarantees the aggregator and the grouped runner rely
on: named columns exist, key columns are non-null, value columns are numeric,
aggregated tables hold one row per group, and stages hand back a Table.

We do NOT validate the scientific content of values. Stages own that.
"""

from typing import TYPE_CHECKING, Any, Iterable, Sequence

from pandas.api.types import is_bool_dtype, is_numeric_dtype

from pbulk.contracts.base import require
from pbulk.contracts.failure import ContractViolation, SchemaError, StageError

if TYPE_CHECKING:
    from pbulk.core.table import Table


def assert_columns(table: "Table", names: Iterable[str], role: str = "field") -> None:
    """Require every name in ``names`` to be a column of ``table``.

    Raises
    ------
    SchemaError
        Listing all missing names, not just the first.
    """
    names = list(names)
    missing = [name for name in names if name not in table.columns]
    require(
        not missing,
        f"Schema contract violated: missing {role} column(s) {missing} "
        f"(available: {list(table.columns)})",
        SchemaError,
    )


def assert_numeric(table: "Table", names: Iterable[str]) -> None:
    """Require the named columns to hold numeric (non-boolean) data."""
    frame = table.frame
    for name in names:
        dtype = frame[name].dtype
        require(
            is_numeric_dtype(dtype) and not is_bool_dtype(dtype),
            f"Schema contract violated: value column '{name}' has dtype {dtype}, expected numeric",
            SchemaError,
        )


def assert_keys_not_null(table: "Table", keys: Iterable[str]) -> None:
    """Require every row to carry a value for every grouping key."""
    frame = table.frame
    for key in keys:
        n_null = int(frame[key].isna().sum())
        require(
            n_null == 0,
            f"Schema contract violated: {n_null} row(s) have a null '{key}' key",
            SchemaError,
        )


def assert_key_types(table: "Table", keys: Iterable[str]) -> None:
    """Require each key column to hold values of a single type.

    Group order is the sorted order of key values, which is undefined for
    e.g. a mix of strings and integers.
    """
    frame = table.frame
    for key in keys:
        column = frame[key]
        if column.dtype != object:
            continue
        kinds = sorted({type(v).__name__ for v in column})
        require(
            len(kinds) <= 1,
            f"Schema contract violated: key '{key}' mixes value types {kinds}",
            SchemaError,
        )


def assert_observation_fields(table: "Table", group_keys: Sequence[str],
                              value_fields: Sequence[str]) -> None:
    """Require the grouping keys and value fields to exist and not overlap."""
    require(
        len(group_keys) > 0,
        "Schema contract violated: at least one group key is required",
        SchemaError,
    )
    assert_columns(table, group_keys, role="group key")
    assert_columns(table, value_fields, role="value")
    overlap = sorted(set(group_keys) & set(value_fields))
    require(
        not overlap,
        f"Schema contract violated: {overlap} used both as group key and value",
        SchemaError,
    )


def assert_observations(table: "Table", group_keys: Sequence[str],
                        value_fields: Sequence[str]) -> None:
    """Enforce the observation table contract before aggregation.

    Called on entry to aggregate(). Verifies grouping keys and value
    fields exist and value fields are numeric. Keys must be non-null and
    hold one value type each.
    """
    assert_observation_fields(table, group_keys, value_fields)
    assert_numeric(table, value_fields)
    assert_keys_not_null(table, group_keys)
    assert_key_types(table, group_keys)


def assert_aggregated(table: "Table", group_keys: Sequence[str]) -> None:
    """Enforce the aggregated table contract.

    Called after aggregation. The mapping from key combination to row must
    be unique: no duplicate group rows.
    """
    assert_columns(table, group_keys, role="group key")
    n_dupes = int(table.frame.duplicated(subset=list(group_keys)).sum())
    require(
        n_dupes == 0,
        f"Aggregation contract violated: {n_dupes} duplicate group row(s) for keys {list(group_keys)}",
    )


def assert_stage_output(result: Any, partition_key: Any, stage_index: int,
                        stage_name: str) -> "Table":
    """Enforce the stage contract ``Table -> Table``.

    Raises
    ------
    StageError
        Wrapping a ContractViolation when the stage returned something else.
    """
    from pbulk.core.table import Table

    if not isinstance(result, Table):
        cause = ContractViolation(
            f"Stage contract violated: '{stage_name}' returned "
            f"{type(result).__name__}, expected Table"
        )
        raise StageError(partition_key, stage_index, cause, stage_name)
    return result
