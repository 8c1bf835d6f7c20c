"""Tests for the built-in per-group stages."""

import pytest
import numpy as np
import pandas as pd

pytestmark = pytest.mark.unit

from pbulk.contracts import ContractViolation
from pbulk.core.table import ColumnKind, Table
from pbulk.pipeline.stages import (
    Stage,
    as_stage,
    build_stages,
    filter_features,
    filter_rows,
    log_transform,
    normalize_cpm,
)
from pbulk.schemas import resolve_config


@pytest.fixture
def keyed_counts():
    frame = pd.DataFrame({
        "sample_id": ["s1", "s2", "s3"],
        "cell_type": ["T", "T", "T"],
        "A": [10, 0, 30],
        "B": [0, 0, 1],
        "C": [90, 0, 69],
        "n_cells": [12, 3, 40],
    })
    return Table.from_frame(frame, keys=["sample_id", "cell_type"], values=["A", "B", "C"])


class TestStageWrapping:

    def test_stage_is_callable(self, keyed_counts):
        stage = Stage(name="identity", func=lambda t: t)
        assert stage(keyed_counts) is keyed_counts

    def test_as_stage_keeps_stages(self):
        stage = Stage(name="x", func=lambda t: t)
        assert as_stage(stage) is stage

    def test_as_stage_names_functions(self):
        def drop_nothing(table):
            return table

        assert as_stage(drop_nothing).name == "drop_nothing"

    def test_as_stage_rejects_non_callables(self):
        with pytest.raises(TypeError, match="Stage must be callable"):
            as_stage("normalize")


class TestFilterStages:

    def test_filter_features_drops_low_totals(self, keyed_counts):
        out = filter_features(5)(keyed_counts)

        assert out.values == ("A", "C")
        assert "B" not in out.columns
        assert out.keys == ("sample_id", "cell_type")
        assert "n_cells" in out.columns

    def test_filter_features_keeps_everything_at_zero(self, keyed_counts):
        assert filter_features(0)(keyed_counts).values == ("A", "B", "C")

    def test_filter_rows_drops_small_libraries(self, keyed_counts):
        out = filter_rows(50)(keyed_counts)

        assert out.frame["sample_id"].tolist() == ["s1", "s3"]
        assert list(out.frame.index) == [0, 1]

    def test_filters_do_not_touch_input(self, keyed_counts):
        before = keyed_counts.frame.copy(deep=True)
        filter_rows(50)(keyed_counts)
        filter_features(5)(keyed_counts)
        pd.testing.assert_frame_equal(keyed_counts.frame, before)


class TestScalingStages:

    def test_cpm_rows_sum_to_scale(self, keyed_counts):
        out = normalize_cpm(100)(keyed_counts)
        totals = out.frame.loc[:, ["A", "B", "C"]].sum(axis=1)

        assert totals.tolist() == pytest.approx([100.0, 0.0, 100.0])
        assert out.frame.loc[0, "A"] == pytest.approx(10.0)

    def test_cpm_zero_library_stays_zero(self, keyed_counts):
        out = normalize_cpm()(keyed_counts)
        assert out.frame.loc[1, ["A", "B", "C"]].tolist() == [0.0, 0.0, 0.0]

    def test_cpm_leaves_meta_alone(self, keyed_counts):
        out = normalize_cpm()(keyed_counts)

        assert out.frame["n_cells"].tolist() == [12, 3, 40]
        assert out.schema.kind_of("n_cells") == ColumnKind.META

    def test_cpm_rejects_bad_scale(self):
        with pytest.raises(ContractViolation, match="scale must be positive"):
            normalize_cpm(0)

    def test_log2(self, keyed_counts):
        out = log_transform()(keyed_counts)

        assert out.frame.loc[0, "A"] == pytest.approx(np.log2(11))
        assert out.frame.loc[1, "A"] == pytest.approx(0.0)

    def test_log10_with_pseudocount(self, keyed_counts):
        out = log_transform(pseudocount=10, base=10)(keyed_counts)
        assert out.frame.loc[0, "C"] == pytest.approx(2.0)

    def test_log_rejects_values_below_pseudocount(self):
        t = Table(pd.DataFrame({"k": ["a"], "x": [-2.0]}))
        with pytest.raises(ContractViolation, match="cannot be log transformed"):
            log_transform(pseudocount=1)(t)

    @pytest.mark.parametrize("kwargs", [{"pseudocount": 0}, {"base": 1}])
    def test_log_rejects_bad_parameters(self, kwargs):
        with pytest.raises(ContractViolation):
            log_transform(**kwargs)


class TestBuildStages:

    def test_default_is_feature_filter_only(self, internal_config):
        stages = build_stages(internal_config)
        assert [s.name for s in stages] == ["filter_features(min_total=10.0)"]

    def test_full_stage_list_in_order(self, make_config):
        config = make_config(
            MIN_LIBRARY_SIZE=100,
            NORMALIZE=True,
            LOG_TRANSFORM=True,
            stages={"log_base": 10, "cpm_scale": 1e4},
        )
        names = [s.name for s in build_stages(config)]

        assert names == [
            "filter_rows(min_total=100.0)",
            "filter_features(min_total=10.0)",
            "normalize_cpm(scale=10000)",
            "log_transform(base=10)",
        ]

    def test_disabling_feature_filter_gives_identity(self, param_config):
        param_config.stages.min_feature_total = None
        assert build_stages(resolve_config(param_config)) == []
