from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd

from snakemake_wrapper.scripts.pathway_enrichment import empty_enrichment_table
from snakemake_wrapper.scripts.reporting import (
    export_tables,
    plot_enrichment,
    plot_ligand_activities,
    plot_top_genes_heatmap,
    plot_volcano,
    top_gene_matrix,
)


def _results() -> pd.DataFrame:
    rng = np.random.default_rng(3)
    genes = [f"GENE{i}" for i in range(40)]
    df = pd.DataFrame(
        {
            "baseMean": rng.uniform(5, 50, 40),
            "log2FoldChange": rng.normal(0, 1, 40),
            "pvalue": rng.uniform(0, 1, 40),
        },
        index=pd.Index(genes, name="gene"),
    )
    df.loc["GENE0", ["log2FoldChange", "pvalue"]] = [3.0, 1e-12]
    df.loc["GENE8", ["log2FoldChange", "pvalue"]] = [-2.0, 1e-8]
    df["padj"] = np.minimum(df["pvalue"] * 40, 1.0)
    return df.sort_values("padj")


def _significant(results: pd.DataFrame) -> pd.DataFrame:
    sig = results.loc[["GENE0", "GENE8"]].copy()
    sig["direction"] = ["up", "down"]
    return sig


def test_volcano_written_even_without_significant_genes(tmp_path: Path):
    results = _results()
    results["padj"] = 1.0
    path = plot_volcano(results, str(tmp_path / "volcano_plot.png"))
    assert path == str(tmp_path / "volcano_plot.png")
    assert Path(path).stat().st_size > 0

    assert plot_volcano(results.iloc[0:0], str(tmp_path / "empty.png")) is None
    assert not (tmp_path / "empty.png").exists()


def test_heatmap_skipped_without_significant_genes(tmp_path: Path, drugseq_adata):
    results = _results()
    path = tmp_path / "heatmap_top_genes.png"
    assert plot_top_genes_heatmap(drugseq_adata, results.iloc[0:0], str(path)) is None
    assert not path.exists()


def test_heatmap_of_top_genes(tmp_path: Path, drugseq_adata):
    significant = _significant(_results())
    path = plot_top_genes_heatmap(drugseq_adata, significant, str(tmp_path / "figs" / "heatmap.png"))
    assert path is not None and Path(path).exists()


def test_top_gene_matrix_is_zscored_and_grouped(drugseq_adata):
    z = top_gene_matrix(drugseq_adata, ["GENE0", "GENE1", "NOT_MEASURED"])
    assert z.index.tolist() == ["GENE0", "GENE1"]
    assert np.allclose(z.mean(axis=1), 0.0, atol=1e-8)
    conditions = drugseq_adata.obs.loc[z.columns, "condition"].astype(str).tolist()
    assert conditions == sorted(conditions)


def test_enrichment_and_ligand_plots(tmp_path: Path):
    assert plot_enrichment({"GO": empty_enrichment_table()}, str(tmp_path / "enr.png")) is None
    go = pd.DataFrame({"term": ["t1", "t2"], "padj": [1e-4, 1e-2]})
    assert plot_enrichment({"GO": go, "KEGG": empty_enrichment_table()}, str(tmp_path / "enr.png"))

    assert plot_ligand_activities(None, str(tmp_path / "lig.png")) is None
    activities = pd.DataFrame({"test_ligand": ["A", "B"], "aupr_corrected": [0.3, 0.1], "rank": [1, 2]})
    assert plot_ligand_activities(activities, str(tmp_path / "lig.png"))


def test_export_tables(tmp_path: Path):
    results = _results()
    significant = _significant(results)
    mapping = pd.DataFrame({"SYMBOL": ["GENE0"], "ENTREZID": ["1000"]})
    written = export_tables(
        results,
        significant,
        {"GO": empty_enrichment_table(), "KEGG": empty_enrichment_table()},
        None,
        str(tmp_path),
        mapping,
    )
    assert set(written) == {
        "de_results.tsv",
        "significant_genes.tsv",
        "entrez_mapping.tsv",
        "enrichment_GO.tsv",
        "enrichment_KEGG.tsv",
    }
    reread = pd.read_csv(written["significant_genes.tsv"], sep="\t", index_col=0)
    assert reread.index.tolist() == ["GENE0", "GENE8"]
    assert set(reread.index) <= set(pd.read_csv(written["de_results.tsv"], sep="\t", index_col=0).index)
