"""Statically-shaped table abstraction.

A Table pairs a pandas DataFrame with a TableSchema that tags every column
as a grouping key, a numeric value or free metadata. The schema is checked
when the Table is built, so the aggregator and runner can rely on named,
typed columns instead of duck-typed column access.
"""

from enum import Enum
from typing import Iterable, Optional, Sequence

import pandas as pd
from pandas.api.types import is_bool_dtype, is_numeric_dtype
from pydantic import BaseModel, ConfigDict, model_validator

from pbulk.contracts import SchemaError, assert_columns, assert_numeric, require

__all__ = ['ColumnKind', 'ColumnSpec', 'TableSchema', 'Table']


class ColumnKind(str, Enum):
    """Role of a column in a Table."""
    KEY = "key"        # Categorical grouping field
    VALUE = "value"    # Numeric feature (e.g. transcript counts)
    META = "meta"      # Anything else, carried along untouched


class ColumnSpec(BaseModel):
    """Name and role of one column."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    name: str
    kind: ColumnKind = ColumnKind.META


class TableSchema(BaseModel):
    """Ordered column specs of a Table.

    Column names are kept verbatim (no whitespace stripping) because they
    have to match DataFrame labels exactly.
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    columns: tuple[ColumnSpec, ...] = ()

    @model_validator(mode="after")
    def check_unique_names(self):
        """Column names must be unique."""
        names = [c.name for c in self.columns]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"Duplicate column names in schema: {dupes}")
        return self

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns)

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns if c.kind == ColumnKind.KEY)

    @property
    def values(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns if c.kind == ColumnKind.VALUE)

    def kind_of(self, name: str) -> ColumnKind:
        """Return the kind of column ``name``."""
        for spec in self.columns:
            if spec.name == name:
                return ColumnKind(spec.kind)
        raise SchemaError(f"Schema contract violated: unknown column '{name}'")

    def require(self, names: Iterable[str], role: str = "field") -> None:
        """Raise SchemaError naming every entry of ``names`` absent from the schema."""
        missing = [n for n in names if n not in self.names]
        require(
            not missing,
            f"Schema contract violated: missing {role} column(s) {missing}",
            SchemaError,
        )

    def project(self, keys: Sequence[str], values: Sequence[str],
                meta: Sequence[str] = ()) -> "TableSchema":
        """Schema of a table holding ``keys``, then ``values``, then ``meta``."""
        self.require(keys, role="group key")
        self.require(values, role="value")
        return TableSchema(columns=(
            *(ColumnSpec(name=k, kind=ColumnKind.KEY) for k in keys),
            *(ColumnSpec(name=v, kind=ColumnKind.VALUE) for v in values),
            *(ColumnSpec(name=m, kind=ColumnKind.META) for m in meta),
        ))

    @classmethod
    def infer(cls, frame: pd.DataFrame, keys: Sequence[str] = (),
              values: Optional[Sequence[str]] = None) -> "TableSchema":
        """Infer a schema from a DataFrame.

        Parameters
        ----------
        frame : pd.DataFrame
            Source frame.
        keys : sequence of str
            Columns to tag as grouping keys.
        values : sequence of str, optional
            Columns to tag as values. If None, every remaining numeric
            (non-boolean) column is a value.
        """
        specs = []
        for name in frame.columns:
            if name in keys:
                kind = ColumnKind.KEY
            elif values is not None:
                kind = ColumnKind.VALUE if name in values else ColumnKind.META
            elif _is_value_dtype(frame[name].dtype):
                kind = ColumnKind.VALUE
            else:
                kind = ColumnKind.META
            specs.append(ColumnSpec(name=name, kind=kind))
        return cls(columns=tuple(specs))


def _is_value_dtype(dtype) -> bool:
    return is_numeric_dtype(dtype) and not is_bool_dtype(dtype)


class Table:
    """DataFrame with an explicit, validated schema.

    Observation tables (one row per cell), aggregated pseudobulk tables (one
    row per sample/cell type) and stage outputs are all Tables.

    Parameters
    ----------
    frame : pd.DataFrame
        Data. Column labels must be unique strings.
    schema : TableSchema, optional
        Column roles. Inferred from dtypes when omitted. Frame columns the
        schema does not mention are added as META.

    Raises
    ------
    SchemaError
        If a schema column is missing from the frame or a VALUE column is
        not numeric.

    Examples
    --------
    >>> obs = Table.from_frame(df, keys=["sample_id", "cell_type"])
    >>> obs.keys
    ('sample_id', 'cell_type')
    """

    def __init__(self, frame: pd.DataFrame, schema: Optional[TableSchema] = None):
        if not isinstance(frame, pd.DataFrame):
            raise TypeError(f"Table expects a pandas DataFrame, got {type(frame).__name__}")

        labels = list(frame.columns)
        bad = [c for c in labels if not isinstance(c, str)]
        require(not bad, f"Schema contract violated: non-string column labels {bad}", SchemaError)
        dupes = sorted({c for c in labels if labels.count(c) > 1})
        require(not dupes, f"Schema contract violated: duplicate column labels {dupes}", SchemaError)

        if schema is None:
            schema = TableSchema.infer(frame)
        else:
            extra = [c for c in labels if c not in schema.names]
            if extra:
                schema = TableSchema(columns=(
                    *schema.columns,
                    *(ColumnSpec(name=c, kind=ColumnKind.META) for c in extra),
                ))

        self._frame = frame
        self._schema = schema

        assert_columns(self, schema.names, role="schema")
        assert_numeric(self, schema.values)

    @classmethod
    def from_frame(cls, frame: pd.DataFrame, keys: Sequence[str] = (),
                   values: Optional[Sequence[str]] = None) -> "Table":
        """Build a Table tagging ``keys`` as KEY and ``values`` as VALUE."""
        keys = tuple(keys)
        missing = [k for k in keys if k not in frame.columns]
        require(not missing, f"Schema contract violated: missing group key column(s) {missing}", SchemaError)
        if values is not None:
            values = tuple(values)
            missing = [v for v in values if v not in frame.columns]
            require(not missing, f"Schema contract violated: missing value column(s) {missing}", SchemaError)
        return cls(frame, TableSchema.infer(frame, keys=keys, values=values))

    @property
    def frame(self) -> pd.DataFrame:
        """Underlying DataFrame (not a copy)."""
        return self._frame

    @property
    def schema(self) -> TableSchema:
        return self._schema

    @property
    def keys(self) -> tuple[str, ...]:
        return self._schema.keys

    @property
    def values(self) -> tuple[str, ...]:
        return self._schema.values

    @property
    def columns(self) -> tuple[str, ...]:
        return tuple(self._frame.columns)

    @property
    def n_rows(self) -> int:
        return len(self._frame)

    @property
    def is_empty(self) -> bool:
        return len(self._frame) == 0

    def __len__(self) -> int:
        return len(self._frame)

    def __repr__(self) -> str:
        return (
            f"Table(rows={self.n_rows}, keys={list(self.keys)}, "
            f"values={len(self.values)}, columns={len(self.columns)})"
        )

    def copy(self) -> "Table":
        """Deep copy: the new Table shares no data with this one."""
        return Table(self._frame.copy(deep=True), self._schema)

    def equals(self, other: object) -> bool:
        """Value equality: same schema and same data, index ignored."""
        if not isinstance(other, Table):
            return False
        if self._schema != other._schema:
            return False
        left = self._frame.reset_index(drop=True)
        right = other._frame.reset_index(drop=True)
        return left.equals(right)

    def with_frame(self, frame: pd.DataFrame) -> "Table":
        """New Table over ``frame`` keeping the roles of surviving columns.

        Columns that are new in ``frame`` get inferred roles. Used by stages
        that reshape or rescale a table.
        """
        known = dict((c.name, c.kind) for c in self._schema.columns)
        specs = []
        for name in frame.columns:
            if name in known:
                specs.append(ColumnSpec(name=name, kind=known[name]))
            else:
                kind = ColumnKind.VALUE if _is_value_dtype(frame[name].dtype) else ColumnKind.META
                specs.append(ColumnSpec(name=name, kind=kind))
        return Table(frame, TableSchema(columns=tuple(specs)))

    def select_values(self, names: Sequence[str]) -> "Table":
        """Keep all non-value columns and only the value columns in ``names``."""
        self._schema.require(names, role="value")
        keep = set(names)
        cols = [c for c in self.columns if c not in self.values or c in keep]
        return self.with_frame(self._frame.loc[:, cols])
