"""Core data model for pbulk.

This module provides the Table abstraction shared by the aggregator,
the grouped runner and every stage.
"""

from pbulk.core.table import ColumnKind, ColumnSpec, Table, TableSchema

__all__ = ['Table', 'TableSchema', 'ColumnSpec', 'ColumnKind']
