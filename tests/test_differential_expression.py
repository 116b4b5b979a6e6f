from __future__ import annotations

import logging

import numpy as np
import pandas as pd
import pytest

from snakemake_wrapper.scripts.differential_expression import (
    aggregate_pseudobulk,
    run_differential_expression,
    select_significant,
    subset_to_contrast,
    summarize_de,
)

from conftest import DOWN_GENES, UP_GENES


def _de_table() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "baseMean": [10.0] * 6,
            "log2FoldChange": [2.0, -1.0, 0.5, 0.6, -3.0, np.nan],
            "pvalue": [1e-6, 1e-4, 1e-5, 0.2, 1e-3, np.nan],
            "padj": [1e-5, 0.01, 1e-4, 0.05, 0.049, np.nan],
        },
        index=["A", "B", "C", "D", "E", "F"],
    )


def test_select_significant_applies_both_thresholds():
    results = _de_table()
    significant = select_significant(results)

    # C: |lfc| == 0.5 is not > 0.5; D: padj == 0.05 is not < 0.05; F: missing values
    assert significant.index.tolist() == ["A", "B", "E"]
    assert set(significant.index) <= set(results.index)
    assert (significant["padj"] < 0.05).all()
    assert (significant["log2FoldChange"].abs() > 0.5).all()
    assert significant["direction"].tolist() == ["up", "down", "down"]


def test_select_significant_empty_and_missing_columns():
    results = _de_table()
    assert select_significant(results, padj_threshold=1e-9).empty

    with pytest.raises(KeyError):
        select_significant(results.drop(columns=["padj"]))


def test_summarize_de():
    results = _de_table()
    summary = summarize_de(results, select_significant(results))
    assert summary == {"n_genes_tested": 6, "n_significant": 3, "n_up": 1, "n_down": 2}


def test_subset_to_contrast_orders_reference_first(drugseq_adata):
    adata = drugseq_adata.copy()
    adata.obs["condition"] = adata.obs["condition"].astype(str)
    adata.obs.iloc[0, adata.obs.columns.get_loc("condition")] = "Other"

    sub = subset_to_contrast(adata, "condition", "Drug", "Control")
    assert sub.n_obs == adata.n_obs - 1
    assert list(sub.obs["condition"].cat.categories) == ["Control", "Drug"]

    with pytest.raises(ValueError, match="not found"):
        subset_to_contrast(adata, "condition", "Drug", "Vehicle")
    with pytest.raises(KeyError):
        subset_to_contrast(adata, "treatment", "Drug", "Control")


def test_aggregate_pseudobulk_sums_counts():
    counts = pd.DataFrame({"g1": [1, 2, 3, 4], "g2": [0, 1, 0, 1]}, index=list("abcd"))
    meta = pd.DataFrame(
        {"plate": ["p1", "p1", "p2", "p2"], "condition": ["Drug", "Drug", "Control", "Control"]},
        index=list("abcd"),
    )
    pb_counts, pb_meta = aggregate_pseudobulk(counts, meta, "plate", "condition")
    assert pb_counts.loc["p1__Drug", "g1"] == 3
    assert pb_counts.loc["p2__Control", "g2"] == 1
    assert pb_meta.loc["p1__Drug", "condition"] == "Drug"
    assert pb_meta["n_cells"].tolist() == [2, 2]


def test_wilcoxon_recovers_drug_effect(drugseq_adata):
    results = run_differential_expression(drugseq_adata, {"method": "wilcoxon"})
    assert set(results.index) == set(drugseq_adata.var_names)
    assert results.index.name == "gene"
    assert results["padj"].is_monotonic_increasing
    assert results["padj"].notna().all()

    significant = select_significant(results)
    up = significant.index[significant["direction"] == "up"]
    down = significant.index[significant["direction"] == "down"]
    assert set(UP_GENES) <= set(up)
    assert set(DOWN_GENES) <= set(down)
    assert "pct_test" in results.columns


def test_too_few_cells_per_group(drugseq_adata):
    adata = drugseq_adata[[0, 1, 30]].copy()
    with pytest.raises(ValueError, match="Too few samples"):
        run_differential_expression(adata, {"method": "wilcoxon"})


def test_unknown_method(drugseq_adata):
    with pytest.raises(ValueError, match="Unknown DE method"):
        run_differential_expression(drugseq_adata, {"method": "edger"})


def test_deseq2_recovers_drug_effect(drugseq_adata):
    pytest.importorskip("pydeseq2")
    results = run_differential_expression(drugseq_adata, {"method": "deseq2"})
    assert {"baseMean", "log2FoldChange", "pvalue", "padj"} <= set(results.columns)

    significant = select_significant(results)
    assert set(UP_GENES) <= set(significant.index[significant["direction"] == "up"])
    assert (results.loc[UP_GENES, "log2FoldChange"] > 1.5).all()


def test_deseq2_pseudobulk_with_shrinkage(drugseq_adata, caplog):
    pytest.importorskip("pydeseq2")
    caplog.set_level(logging.INFO)
    adata = drugseq_adata.copy()
    adata.obs["plate"] = [f"P{i % 3 + 1}" for i in range(adata.n_obs)]

    results = run_differential_expression(
        adata, {"method": "deseq2", "pseudobulk_key": "plate", "shrink_lfc": True}
    )
    assert results.index.name == "gene"
    assert results["padj"].is_monotonic_increasing

    significant = select_significant(results)
    assert set(UP_GENES) <= set(significant.index[significant["direction"] == "up"])
    assert "Aggregated 60 cells into 6 pseudobulk samples" in caplog.text
    assert "LFC shrinkage failed" not in caplog.text
