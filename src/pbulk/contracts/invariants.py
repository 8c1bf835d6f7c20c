"""Formal pipeline invariants.

This file documents what each step MUST produce. Use it as a reviewer anchor
and system reference; the enforcing code lives in contracts.table.
"""

PIPELINE_INVARIANTS = {
    "observations": [
        "Every group key and value field named by the caller is a column",
        "Value fields are numeric (booleans rejected)",
        "Group keys are non-null in every row",
        "At least one row, unless a default table is configured",
    ],

    "aggregation": [
        "One row per distinct combination of group key values",
        "Group key values preserved verbatim",
        "Each value field replaced by the reducer output for its partition",
        "Row order is the sorted order of key tuples (stable for equal input)",
        "Inputs are never mutated",
    ],

    "partitioning": [
        "One partition per distinct split key value",
        "Each partition owns a private deep copy of its rows",
        "Unused categorical levels are skipped or kept empty per config",
    ],

    "stages": [
        "Each stage receives a Table and returns a Table",
        "Stages run in list order; each sees the previous stage's output",
        "A raising stage becomes StageError(partition_key, stage_index, cause)",
    ],

    "result": [
        "Entries are ordered like the partitions, never by completion time",
        "Fail-fast raises the first StageError in partition order",
        "Best-effort keeps successes and records failures per partition",
        "Returned tables share no data with each other",
    ],
}

# Which steps are optional vs required
STAGE_REQUIREMENTS = {
    "observations": "REQUIRED",
    "aggregation": "REQUIRED",
    "partitioning": "REQUIRED",
    "stages": "OPTIONAL",     # Empty stage list is the identity
    "result": "REQUIRED",
}
