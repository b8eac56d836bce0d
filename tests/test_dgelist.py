"""Tests for the DGECounts composite and counts-per-million scaling."""

import numpy as np
import pandas as pd
import pytest

from countnorm.core.dgelist import (
    DGECounts,
    build_composite,
    compute_norm_factors,
    counts_per_million,
)
from countnorm.exceptions import ConfigError


class TestBuildComposite:
    def test_defaults(self, counts):
        dge = build_composite(counts)

        assert isinstance(dge, DGECounts)
        assert dge.shape == (10, 6)
        assert list(dge.samples.index) == list(counts.columns)
        np.testing.assert_array_equal(dge.lib_size.to_numpy(), counts.sum(axis=0).to_numpy())
        np.testing.assert_array_equal(dge.norm_factors.to_numpy(), np.ones(6))
        assert set(dge.samples["group"]) == {"1"}

    def test_custom_group_and_lib_size(self, counts, design):
        dge = build_composite(counts, group=design["group"], lib_size=np.full(6, 1e6))
        assert list(dge.samples["group"]) == list(design["group"])
        assert (dge.lib_size == 1e6).all()

    def test_wrong_length(self, counts):
        with pytest.raises(ConfigError, match="norm_factors"):
            build_composite(counts, norm_factors=[1.0, 1.0])

    @pytest.mark.parametrize("bad", [-1, np.nan, np.inf])
    def test_invalid_counts(self, counts, bad):
        counts = counts.astype(float)
        counts.iloc[2, 3] = bad
        with pytest.raises(ValueError):
            build_composite(counts)

    def test_remove_zeros(self, sparse_counts):
        dge = build_composite(sparse_counts, remove_zeros=True)
        assert "absent" not in dge.counts.index
        assert dge.n_genes == 5

    def test_gene_annotation(self, counts):
        genes = pd.DataFrame({"symbol": [f"SYM{i}" for i in range(10)]})
        dge = build_composite(counts, genes=genes)
        assert list(dge.genes.index) == list(counts.index)

    def test_gene_annotation_length(self, counts):
        with pytest.raises(ConfigError):
            build_composite(counts, genes=pd.DataFrame({"symbol": ["A"]}))


class TestComputeNormFactors:
    def test_returns_new_composite(self, counts):
        dge = build_composite(counts)
        normalized = compute_norm_factors(dge, method="TMM")

        assert normalized is not dge
        np.testing.assert_array_equal(dge.norm_factors.to_numpy(), np.ones(6))
        assert np.prod(normalized.norm_factors) == pytest.approx(1.0)
        pd.testing.assert_frame_equal(normalized.counts, dge.counts)

    def test_method_shortcut(self, counts):
        dge = build_composite(counts)
        pd.testing.assert_frame_equal(
            dge.calc_norm_factors("RLE").samples,
            compute_norm_factors(dge, method="RLE").samples,
        )

    def test_unknown_method(self, counts):
        with pytest.raises(ConfigError):
            compute_norm_factors(build_composite(counts), method="DESeq")

    def test_effective_lib_sizes(self, counts):
        dge = build_composite(counts, norm_factors=np.linspace(0.5, 1.5, 6))
        expected = dge.lib_size * dge.norm_factors
        np.testing.assert_allclose(dge.effective_lib_sizes.to_numpy(), expected.to_numpy())


class TestCountsPerMillion:
    def test_columns_sum_to_a_million(self, counts):
        cpm = counts_per_million(build_composite(counts))
        np.testing.assert_allclose(cpm.sum(axis=0).to_numpy(), np.full(6, 1e6))
        assert list(cpm.index) == list(counts.index)
        assert list(cpm.columns) == list(counts.columns)

    def test_plain_table(self, counts):
        pd.testing.assert_frame_equal(
            counts_per_million(counts),
            counts_per_million(build_composite(counts)),
        )

    def test_uses_effective_lib_sizes(self, counts):
        factors = np.array([0.5, 2.0, 1.0, 1.0, 1.0, 1.0])
        dge = build_composite(counts, norm_factors=factors)

        cpm = counts_per_million(dge, normalized_lib_sizes=True)
        raw = counts_per_million(dge, normalized_lib_sizes=False)

        np.testing.assert_allclose(cpm["lib_1"].to_numpy(), raw["lib_1"].to_numpy() * 2)
        np.testing.assert_allclose(cpm["lib_2"].to_numpy(), raw["lib_2"].to_numpy() / 2)
        np.testing.assert_allclose(cpm["lib_3"].to_numpy(), raw["lib_3"].to_numpy())

    def test_log_cpm_prior(self):
        counts = pd.DataFrame({"a": [0, 10, 90], "b": [0, 30, 270]}, index=["x", "y", "z"])
        log_cpm = counts_per_million(build_composite(counts), log=True, prior_count=2)

        lib_size = np.array([100.0, 300.0])
        prior = lib_size / lib_size.mean() * 2
        expected = np.log2((0 + prior) / (lib_size + 2 * prior) * 1e6)
        np.testing.assert_allclose(log_cpm.loc["x"].to_numpy(), expected)
        # Proportional libraries keep identical log-CPM with a scaled prior
        np.testing.assert_allclose(log_cpm["a"].to_numpy(), log_cpm["b"].to_numpy())


class TestConversion:
    def test_copy_is_independent(self, counts):
        dge = build_composite(counts)
        clone = dge.copy()
        clone.counts.iloc[0, 0] = -5
        clone.samples.loc["lib_1", "norm_factors"] = 3.0
        assert dge.counts.iloc[0, 0] != -5
        assert dge.samples.loc["lib_1", "norm_factors"] == 1.0

    def test_to_anndata(self, counts, design):
        dge = build_composite(counts, group=design["group"]).calc_norm_factors()
        adata = dge.to_anndata()

        assert adata.shape == (6, 10)
        assert list(adata.obs_names) == list(counts.columns)
        assert list(adata.var_names) == list(counts.index)
        assert {"group", "lib_size", "norm_factors"} <= set(adata.obs.columns)
        np.testing.assert_array_equal(adata.X, counts.T.to_numpy(dtype=float))
