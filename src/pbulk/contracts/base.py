"""Base contract enforcement utilities.

The require() function is the single enforcement mechanism for all contracts.
It enforces semantic invariants at stage boundaries of the pipeline.
"""

from typing import Type

from pbulk.contracts.failure import ContractViolation


def require(condition: bool, message: str,
            error: Type[ContractViolation] = ContractViolation) -> None:
    """Enforce a pipeline contract.

    Called at the aggregator and runner boundaries to verify a table has the
    shape the next step relies on. It is fail-fast: no recovery,
    no fallback, no silence.

    Parameters
    ----------
    condition : bool
        The invariant that must be true.

    message : str
        Error message explaining the contract violation.

    error : type, optional
        ContractViolation subclass to raise (default ContractViolation).

    Raises
    ------
    ContractViolation
        If condition is False.

    Examples
    --------
    >>> require("sample_id" in table.columns, "missing 'sample_id'", SchemaError)
    >>> require(table.n_rows > 0, "nothing to aggregate", EmptyInputError)
    """
    if not condition:
        raise error(message)
