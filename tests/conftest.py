from __future__ import annotations

import os

import anndata as ad
import matplotlib
import numpy as np
import pandas as pd
import pytest
import scipy.sparse as sp

os.environ.setdefault("MPLBACKEND", "Agg")
matplotlib.use("Agg", force=True)

N_PER_GROUP = 30
UP_GENES = [f"GENE{i}" for i in range(8)]
DOWN_GENES = [f"GENE{i}" for i in range(8, 12)]
MITO_GENES = ["MT-CO1", "MT-ND1", "MT-ATP6"]
GENES = MITO_GENES + [f"GENE{i}" for i in range(197)]


def make_counts(seed: int = 0) -> pd.DataFrame:
    """Cells x genes Poisson counts with a strong Drug effect on a gene block."""
    rng = np.random.default_rng(seed)
    genes = GENES
    cells = [f"Drug_{i:02d}" for i in range(N_PER_GROUP)] + [
        f"DMSO_{i:02d}" for i in range(N_PER_GROUP)
    ]

    means = pd.DataFrame(8.0, index=cells, columns=genes)
    means.loc[:, MITO_GENES] = 3.0
    drug = [c for c in cells if c.startswith("Drug")]
    means.loc[drug, UP_GENES] = 40.0
    means.loc[drug, DOWN_GENES] = 0.5

    counts = rng.poisson(means.to_numpy())
    return pd.DataFrame(counts, index=cells, columns=genes)


def make_adata(seed: int = 0) -> ad.AnnData:
    counts = make_counts(seed)
    adata = ad.AnnData(
        X=sp.csr_matrix(counts.to_numpy().astype(np.int64)),
        obs=pd.DataFrame(index=counts.index),
        var=pd.DataFrame(index=counts.columns),
    )
    adata.obs["condition"] = pd.Categorical(
        np.where(adata.obs_names.str.startswith("Drug"), "Drug", "Control")
    )
    return adata


LENIENT_QC = {
    "min_genes": 5,
    "max_genes": None,
    "min_counts": 10,
    "max_counts": None,
    "max_mito_pct": 50,
    "min_log10_genes_per_umi": None,
    "min_cells": 3,
}


@pytest.fixture
def lenient_qc() -> dict:
    """QC thresholds loose enough for the small synthetic dataset."""
    return dict(LENIENT_QC)


@pytest.fixture
def counts_df() -> pd.DataFrame:
    return make_counts()


@pytest.fixture
def drugseq_adata() -> ad.AnnData:
    return make_adata()


@pytest.fixture
def counts_table(tmp_path, counts_df) -> str:
    """Genes x cells CSV as produced by plate-based DRUG-seq quantification."""
    path = tmp_path / "counts.csv"
    counts_df.T.rename_axis("gene").to_csv(path)
    return str(path)


@pytest.fixture
def ligand_target_matrix() -> pd.DataFrame:
    """Targets x ligands prior: LIG_UP regulates exactly the up-regulated block."""
    genes = GENES
    rng = np.random.default_rng(1)
    matrix = pd.DataFrame(
        {
            "GENE20": [1.0 if g in UP_GENES + DOWN_GENES else 0.0 for g in genes],
            "GENE21": rng.random(len(genes)),
            "GENE22": 0.0,
        },
        index=genes,
    )
    return matrix
