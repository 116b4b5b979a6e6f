#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
reporting.py
============

Static plots and table exports for a DRUG-seq run.

Figures:
- volcano_plot.png: log2 fold change vs -log10 adjusted p-value
- heatmap_top_genes.png: z-scored expression of the top significant genes
- enrichment_barplot.png: top GO / KEGG terms
- ligand_activity.png: top ranked ligands

Every plotting function returns the written path, or None when there was
nothing to draw.
"""

import os
import logging

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import sparse

logger = logging.getLogger(__name__)


DEFAULT_REPORT_PARAMS = {
    'volcano_file': 'volcano_plot.png',
    'heatmap_file': 'heatmap_top_genes.png',
    'enrichment_file': 'enrichment_barplot.png',
    'ligand_file': 'ligand_activity.png',
    'n_volcano_labels': 10,
    'n_heatmap_genes': 30,
    'n_terms': 15,
    'n_ligands': 20,
    'dpi': 150,
}

CONDITION_COLORS = {'Control': '#4C72B0', 'Drug': '#DD8452'}


def _prepare_output(output_path):
    output_dir = os.path.dirname(output_path)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)


# =============================================================================
# Volcano Plot
# =============================================================================

def plot_volcano(results, output_path, padj_threshold=0.05, lfc_threshold=0.5, n_labels=10, dpi=150):
    """
    Draw a volcano plot of a DE table.

    Parameters
    ----------
    results : pd.DataFrame
        DE table with log2FoldChange and padj columns
    output_path : str
        PNG path
    padj_threshold, lfc_threshold : float
        Significance thresholds drawn as guide lines
    n_labels : int
        Number of significant genes (lowest padj) to label

    Returns
    -------
    str or None
        output_path, or None when the table is empty
    """
    if results is None or results.empty:
        logger.info("Empty DE table, skipping volcano plot")
        return None

    _prepare_output(output_path)
    logger.info(f"Drawing volcano plot: {output_path}")

    lfc = results['log2FoldChange'].astype(float)
    neg_log_p = -np.log10(results['padj'].astype(float).clip(lower=1e-300))
    significant = (results['padj'] < padj_threshold) & (lfc.abs() > lfc_threshold)
    status = np.where(significant & (lfc > 0), 'up', np.where(significant & (lfc < 0), 'down', 'ns'))

    fig, ax = plt.subplots(figsize=(8, 7))
    palette = {'up': '#D62728', 'down': '#1F77B4', 'ns': '#BBBBBB'}
    for label in ('ns', 'down', 'up'):
        mask = status == label
        ax.scatter(lfc[mask], neg_log_p[mask], s=8, c=palette[label], alpha=0.7,
                   label=f"{label} ({int(mask.sum())})", edgecolors='none')

    ax.axhline(-np.log10(padj_threshold), color='black', linestyle='--', linewidth=0.8)
    ax.axvline(lfc_threshold, color='black', linestyle='--', linewidth=0.8)
    ax.axvline(-lfc_threshold, color='black', linestyle='--', linewidth=0.8)

    top = results[significant].sort_values('padj').head(n_labels)
    for gene, row in top.iterrows():
        ax.annotate(
            str(gene),
            (row['log2FoldChange'], -np.log10(max(row['padj'], 1e-300))),
            fontsize=7,
            xytext=(3, 3),
            textcoords='offset points',
        )

    ax.set_xlabel('log2 fold change (Drug vs Control)')
    ax.set_ylabel('-log10 adjusted p-value')
    ax.set_title('Differential expression')
    ax.legend(frameon=False, loc='upper left')

    plt.tight_layout()
    plt.savefig(output_path, dpi=dpi, bbox_inches='tight')
    plt.close(fig)
    return output_path


# =============================================================================
# Heatmap
# =============================================================================

def top_gene_matrix(adata, genes, condition_key='condition'):
    """Per-gene z-scored expression (genes x cells), cells ordered by condition."""
    genes = [g for g in genes if g in adata.var_names]
    sub = adata[:, genes]
    X = sub.X.toarray() if sparse.issparse(sub.X) else np.asarray(sub.X)
    df = pd.DataFrame(X.T, index=genes, columns=sub.obs_names)

    std = df.std(axis=1).replace(0, np.nan)
    z = df.sub(df.mean(axis=1), axis=0).div(std, axis=0).fillna(0.0)

    if condition_key in sub.obs.columns:
        order = sub.obs[condition_key].astype(str).sort_values(kind='stable').index
        z = z[order]
    return z


def plot_top_genes_heatmap(adata, significant, output_path, n_genes=30, condition_key='condition', dpi=150):
    """
    Heatmap of the top significant genes across cells.

    Parameters
    ----------
    adata : AnnData
        Normalized AnnData
    significant : pd.DataFrame
        Significant-gene table (sorted or sortable by padj)
    output_path : str
        PNG path
    n_genes : int
        Number of genes with the lowest padj to show

    Returns
    -------
    str or None
        output_path, or None when there are no significant genes
    """
    if significant is None or significant.empty:
        logger.info("No significant genes, skipping heatmap")
        return None

    genes = significant.sort_values('padj').head(n_genes).index.tolist()
    z = top_gene_matrix(adata, genes, condition_key)
    if z.empty:
        logger.warning("Significant genes not found in expression matrix, skipping heatmap")
        return None

    _prepare_output(output_path)
    logger.info(f"Drawing heatmap of {len(z)} genes: {output_path}")

    col_colors = None
    if condition_key in adata.obs.columns:
        conditions = adata.obs.loc[z.columns, condition_key].astype(str)
        palette = dict(CONDITION_COLORS)
        extra = [c for c in conditions.unique() if c not in palette]
        palette.update(zip(extra, sns.color_palette('Set2', len(extra))))
        col_colors = conditions.map(palette).rename(condition_key)

    g = sns.clustermap(
        z,
        row_cluster=len(z) > 1,
        col_cluster=False,
        col_colors=col_colors,
        cmap='RdBu_r',
        center=0,
        vmin=-3,
        vmax=3,
        xticklabels=False,
        yticklabels=True,
        figsize=(10, max(4, 0.25 * len(z) + 2)),
        cbar_kws={'label': 'z-score'},
    )
    g.ax_heatmap.set_xlabel('Cells')
    g.savefig(output_path, dpi=dpi, bbox_inches='tight')
    plt.close(g.fig)
    return output_path


# =============================================================================
# Enrichment and Ligand Plots
# =============================================================================

def plot_enrichment(enrichment, output_path, n_terms=15, dpi=150):
    """Bar plots of the top terms per database; None when every table is empty."""
    tables = {db: t for db, t in (enrichment or {}).items() if t is not None and not t.empty}
    if not tables:
        logger.info("No enriched terms, skipping enrichment plot")
        return None

    _prepare_output(output_path)
    logger.info(f"Drawing enrichment plot: {output_path}")

    heights = [min(n_terms, len(t)) for t in tables.values()]
    fig, axes = plt.subplots(
        len(tables), 1,
        figsize=(10, 1.5 + 0.35 * sum(heights)),
        gridspec_kw={'height_ratios': heights},
        squeeze=False,
    )
    for ax, (db, table) in zip(axes[:, 0], tables.items()):
        top = table.sort_values('padj').head(n_terms)
        score = -np.log10(top['padj'].astype(float).clip(lower=1e-300))
        ax.barh(top['term'].astype(str)[::-1], score[::-1], color='#55A868')
        ax.set_xlabel('-log10 adjusted p-value')
        ax.set_title(db)
        ax.tick_params(axis='y', labelsize=8)

    plt.tight_layout()
    plt.savefig(output_path, dpi=dpi, bbox_inches='tight')
    plt.close(fig)
    return output_path


def plot_ligand_activities(activities, output_path, n_ligands=20, dpi=150):
    """Bar plot of the top ranked ligands; None when the table is empty."""
    if activities is None or activities.empty:
        logger.info("No ligand activities, skipping ligand plot")
        return None

    _prepare_output(output_path)
    logger.info(f"Drawing ligand activity plot: {output_path}")

    top = activities.sort_values('rank').head(n_ligands)
    fig, ax = plt.subplots(figsize=(6, 1.5 + 0.3 * len(top)))
    ax.barh(top['test_ligand'][::-1], top['aupr_corrected'][::-1], color='#8172B2')
    ax.set_xlabel('Corrected AUPR')
    ax.set_title('Predicted ligand activity')

    plt.tight_layout()
    plt.savefig(output_path, dpi=dpi, bbox_inches='tight')
    plt.close(fig)
    return output_path


# =============================================================================
# Table Export
# =============================================================================

def export_tables(results, significant, enrichment, activities, output_dir, mapping=None):
    """
    Write every derived table as TSV.

    Returns
    -------
    dict
        {table name: written path}
    """
    os.makedirs(output_dir, exist_ok=True)
    written = {}

    def _write(df, name, index=True):
        path = os.path.join(output_dir, name)
        df.to_csv(path, sep='\t', index=index)
        written[name] = path

    _write(results, 'de_results.tsv')
    _write(significant, 'significant_genes.tsv')
    if mapping is not None:
        _write(mapping, 'entrez_mapping.tsv', index=False)
    for db, table in (enrichment or {}).items():
        _write(table, f'enrichment_{db}.tsv', index=False)
    if activities is not None:
        _write(activities, 'ligand_activities.tsv', index=False)

    logger.info(f"Exported {len(written)} tables to {output_dir}")
    return written
