"""Centralized failure policy and error types for pipeline contracts.

All contract errors derive from ContractViolation, allowing callers to
handle pipeline bugs uniformly while still distinguishing the three kinds
the aggregator and runner raise.
"""

from enum import Enum
from typing import Any, Optional


class FailurePolicy(str, Enum):
    """How the grouped runner propagates stage failures.

    FAIL_FAST (default): Abort the whole run on the first stage failure
    BEST_EFFORT: Run every partition, record failures next to the results
    """
    FAIL_FAST = "fail_fast"
    BEST_EFFORT = "best_effort"


class ContractViolation(RuntimeError):
    """Raised when a pipeline contract is violated.

    Key distinction:
    - ValueError / ValidationError: User/config error (handled by Pydantic)
    - ContractViolation: Table does not have the shape a stage promised
    - StageError: An externally supplied stage failed on one partition
    """
    pass


class SchemaError(ContractViolation):
    """A named field is missing, has the wrong type, or holds null keys."""
    pass


class EmptyInputError(ContractViolation):
    """There are no rows to aggregate and no default was configured."""
    pass


class StageError(ContractViolation):
    """A pipeline stage failed for one partition.

    Parameters
    ----------
    partition_key : Any
        Value of the split key identifying the failed partition.
    stage_index : int
        Position of the failing stage in the stage list (0-based).
    cause : BaseException
        The exception raised by the stage (also chained as ``__cause__``).
    stage_name : str, optional
        Human-readable stage name for logs and reports.
    """

    def __init__(self, partition_key: Any, stage_index: int,
                 cause: BaseException, stage_name: Optional[str] = None):
        self.partition_key = partition_key
        self.stage_index = stage_index
        self.stage_name = stage_name
        self.cause = cause
        label = f"{stage_index}" if stage_name is None else f"{stage_index} ({stage_name})"
        super().__init__(
            f"Stage {label} failed for partition {partition_key!r}: "
            f"{type(cause).__name__}: {cause}"
        )
        self.__cause__ = cause

    def __reduce__(self):
        return (
            self.__class__,
            (self.partition_key, self.stage_index, self.cause, self.stage_name),
        )
