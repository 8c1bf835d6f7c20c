"""Pipeline contracts: fail-fast enforcement of table invariants.

Contracts fail immediately and loudly when a table does not have the shape
the next step relies on.

Key principle:
- Pydantic validates config correctness
- Contracts validate table shape at the aggregator and runner boundaries
- Stages own the science and its edge cases
"""

from pbulk.contracts.failure import (
    ContractViolation,
    EmptyInputError,
    FailurePolicy,
    SchemaError,
    StageError,
)
from pbulk.contracts.base import require
from pbulk.contracts.table import (
    assert_aggregated,
    assert_columns,
    assert_key_types,
    assert_keys_not_null,
    assert_numeric,
    assert_observation_fields,
    assert_observations,
    assert_stage_output,
)

__all__ = [
    "ContractViolation",
    "SchemaError",
    "EmptyInputError",
    "StageError",
    "FailurePolicy",
    "require",
    "assert_columns",
    "assert_numeric",
    "assert_keys_not_null",
    "assert_key_types",
    "assert_observation_fields",
    "assert_observations",
    "assert_aggregated",
    "assert_stage_output",
]
