from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from snakemake_wrapper.scripts.ligand_activity import (
    ACTIVITY_COLUMNS,
    load_ligand_target_matrix,
    predict_ligand_activities,
    run_ligand_activity,
    score_ligand,
)

from conftest import DOWN_GENES, UP_GENES


def test_score_ligand_perfect_and_constant():
    response = np.array([1, 1, 0, 0, 0])
    perfect = score_ligand(np.array([0.9, 0.8, 0.1, 0.0, 0.0]), response)
    assert perfect["auroc"] == pytest.approx(1.0)
    assert perfect["aupr"] == pytest.approx(1.0)
    assert perfect["aupr_corrected"] == pytest.approx(0.6)
    assert perfect["pearson"] > 0.9

    flat = score_ligand(np.zeros(5), response)
    assert flat == {"auroc": 0.5, "aupr": pytest.approx(0.4), "aupr_corrected": 0.0, "pearson": 0.0}


def test_predict_ranks_informative_ligand_first(ligand_target_matrix):
    geneset = UP_GENES + DOWN_GENES
    background = list(ligand_target_matrix.index)
    activities = predict_ligand_activities(geneset, background, ligand_target_matrix)

    assert activities.columns.tolist() == ACTIVITY_COLUMNS
    assert activities["test_ligand"].iloc[0] == "GENE20"
    assert activities["rank"].tolist() == [1, 2, 3]
    assert activities["aupr_corrected"].is_monotonic_decreasing
    assert activities.set_index("test_ligand").loc["GENE22", "auroc"] == 0.5


def test_predict_degenerate_gene_sets(ligand_target_matrix):
    background = list(ligand_target_matrix.index)
    assert predict_ligand_activities(["NOT_IN_PRIOR"], background, ligand_target_matrix).empty
    assert predict_ligand_activities(background, background, ligand_target_matrix).empty
    assert predict_ligand_activities(UP_GENES, background, ligand_target_matrix, ligands=["XYZ"]).empty


def test_load_matrix_skips_when_unset_or_missing(tmp_path: Path, caplog):
    assert load_ligand_target_matrix(None) is None
    assert load_ligand_target_matrix(str(tmp_path / "absent.tsv")) is None
    assert "not found" in caplog.text


def test_load_gzipped_matrix(tmp_path: Path, ligand_target_matrix):
    path = tmp_path / "ligand_target_matrix.tsv.gz"
    ligand_target_matrix.to_csv(path, sep="\t", compression="gzip")
    loaded = load_ligand_target_matrix(str(path))
    assert loaded.shape == ligand_target_matrix.shape
    assert np.allclose(loaded.to_numpy(), ligand_target_matrix.to_numpy())


def test_run_ligand_activity(tmp_path: Path, drugseq_adata, ligand_target_matrix):
    path = tmp_path / "prior.csv"
    ligand_target_matrix.to_csv(path)
    significant = pd.DataFrame(
        {"log2FoldChange": [2.0] * len(UP_GENES) + [-2.0] * len(DOWN_GENES), "padj": 1e-4},
        index=UP_GENES + DOWN_GENES,
    )
    significant["direction"] = np.where(significant["log2FoldChange"] > 0, "up", "down")

    assert run_ligand_activity(drugseq_adata, significant, {"ligand_target_matrix": None}) is None

    activities = run_ligand_activity(drugseq_adata, significant, {"ligand_target_matrix": str(path)})
    assert activities["test_ligand"].iloc[0] == "GENE20"

    empty = run_ligand_activity(drugseq_adata, significant.iloc[0:0], {"ligand_target_matrix": str(path)})
    assert empty.empty
    assert empty.columns.tolist() == ACTIVITY_COLUMNS
