"""Tests for pipeline contracts.

These tests verify that contracts are enforced at the aggregator and runner
boundaries. They test contract violations directly.
"""

import pickle

import pytest
import pandas as pd

pytestmark = pytest.mark.unit

from pbulk.contracts import (
    ContractViolation,
    EmptyInputError,
    FailurePolicy,
    SchemaError,
    StageError,
    assert_aggregated,
    assert_columns,
    assert_key_types,
    assert_keys_not_null,
    assert_numeric,
    assert_observation_fields,
    assert_observations,
    assert_stage_output,
    require,
)
from pbulk.contracts.invariants import PIPELINE_INVARIANTS, STAGE_REQUIREMENTS
from pbulk.core.table import Table


def _table(**columns):
    return Table(pd.DataFrame(columns))


class TestRequire:
    """Test the single enforcement helper."""

    def test_passes_silently(self):
        require(True, "never raised")

    def test_raises_contract_violation_by_default(self):
        with pytest.raises(ContractViolation, match="broken"):
            require(False, "broken")

    def test_raises_requested_subclass(self):
        with pytest.raises(EmptyInputError):
            require(False, "nothing here", EmptyInputError)


class TestErrorHierarchy:
    """All contract errors share one base."""

    @pytest.mark.parametrize("cls", [SchemaError, EmptyInputError, StageError])
    def test_subclasses_contract_violation(self, cls):
        assert issubclass(cls, ContractViolation)

    def test_stage_error_carries_context(self):
        cause = ValueError("bad counts")
        err = StageError("T", 2, cause, "normalize")

        assert err.partition_key == "T"
        assert err.stage_index == 2
        assert err.stage_name == "normalize"
        assert err.cause is cause
        assert err.__cause__ is cause
        assert "Stage 2 (normalize) failed for partition 'T'" in str(err)
        assert "ValueError: bad counts" in str(err)

    def test_stage_error_without_name(self):
        err = StageError(3, 0, KeyError("x"))
        assert str(err).startswith("Stage 0 failed for partition 3")

    def test_stage_error_pickles(self):
        err = pickle.loads(pickle.dumps(StageError("B", 1, RuntimeError("boom"), "s")))
        assert err.partition_key == "B"
        assert err.stage_index == 1
        assert isinstance(err.cause, RuntimeError)

    def test_failure_policy_values(self):
        assert FailurePolicy("fail_fast") is FailurePolicy.FAIL_FAST
        assert FailurePolicy("best_effort") is FailurePolicy.BEST_EFFORT


class TestColumnContracts:
    """Column presence, dtype and null checks."""

    def test_missing_columns_listed(self):
        t = _table(a=[1], b=[2])
        with pytest.raises(SchemaError, match=r"\['c', 'd'\]"):
            assert_columns(t, ["a", "c", "d"], role="value")

    def test_numeric_accepts_int_and_float(self):
        assert_numeric(_table(a=[1, 2], b=[0.5, 1.5]), ["a", "b"])

    def test_numeric_rejects_strings(self):
        t = Table(pd.DataFrame({"a": ["x", "y"]}))
        with pytest.raises(SchemaError, match="'a' has dtype"):
            assert_numeric(t, ["a"])

    def test_numeric_rejects_booleans(self):
        t = Table(pd.DataFrame({"flag": [True, False]}))
        with pytest.raises(SchemaError, match="expected numeric"):
            assert_numeric(t, ["flag"])

    def test_null_keys_counted(self):
        t = Table(pd.DataFrame({"k": ["a", None, None], "v": [1, 2, 3]}))
        with pytest.raises(SchemaError, match="2 row"):
            assert_keys_not_null(t, ["k"])

    def test_mixed_key_types_rejected(self):
        t = Table(pd.DataFrame({"k": ["a", 1, "b"], "v": [1, 2, 3]}))
        with pytest.raises(SchemaError, match=r"\['int', 'str'\]"):
            assert_key_types(t, ["k"])

    def test_uniform_key_types_pass(self):
        t = Table(pd.DataFrame({"k": ["a", "b"], "n": [1, 2], "v": [1.0, 2.0]}))
        assert_key_types(t, ["k", "n"])


class TestObservationContract:
    """Contract checked on entry to aggregation."""

    def test_valid_observations_pass(self, cells_table):
        assert_observations(cells_table, ["sample_id", "cell_type"], ["CD3E", "GNLY"])

    def test_requires_a_group_key(self, cells_table):
        with pytest.raises(SchemaError, match="at least one group key"):
            assert_observations(cells_table, [], ["CD3E"])

    def test_key_and_value_overlap_rejected(self, cells_table):
        with pytest.raises(SchemaError, match="both as group key and value"):
            assert_observations(cells_table, ["sample_id", "CD3E"], ["CD3E"])

    def test_field_check_ignores_value_dtypes(self):
        t = Table(pd.DataFrame({"g": pd.Series([], dtype=object), "v": pd.Series([], dtype=object)}))
        assert_observation_fields(t, ["g"], ["v"])
        with pytest.raises(SchemaError, match="expected numeric"):
            assert_observations(t, ["g"], ["v"])


class TestAggregatedContract:

    def test_unique_rows_pass(self, pseudobulk):
        assert_aggregated(pseudobulk, ["sample_id", "cell_type"])

    def test_duplicate_group_rows_fail(self):
        t = Table(pd.DataFrame({"k": ["a", "a"], "v": [1, 2]}))
        with pytest.raises(ContractViolation, match="1 duplicate group row"):
            assert_aggregated(t, ["k"])


class TestStageOutputContract:

    def test_table_passes_through(self, pseudobulk):
        assert assert_stage_output(pseudobulk, "T", 0, "noop") is pseudobulk

    def test_non_table_becomes_stage_error(self, pseudobulk):
        with pytest.raises(StageError) as excinfo:
            assert_stage_output(pseudobulk.frame, "T", 4, "returns_frame")

        err = excinfo.value
        assert err.partition_key == "T"
        assert err.stage_index == 4
        assert isinstance(err.cause, ContractViolation)
        assert "returned DataFrame, expected Table" in str(err.cause)


class TestInvariantRegistry:
    """The documented invariants stay in step with the enforced steps."""

    def test_every_step_has_a_requirement_level(self):
        assert set(PIPELINE_INVARIANTS) == set(STAGE_REQUIREMENTS)

    def test_only_stages_are_optional(self):
        optional = {k for k, v in STAGE_REQUIREMENTS.items() if v == "OPTIONAL"}
        assert optional == {"stages"}

    def test_invariants_are_non_empty_strings(self):
        for step, rules in PIPELINE_INVARIANTS.items():
            assert rules, step
            assert all(isinstance(r, str) and r for r in rules)
