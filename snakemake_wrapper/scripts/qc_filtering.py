#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
qc_filtering.py
===============

Per-cell quality control for DRUG-seq wells.

This script:
1. Computes feature count, total count, mitochondrial percentage and
   genes-per-UMI complexity for every cell
2. Filters cells failing fixed thresholds and genes detected in too few cells
3. Draws diagnostic plots before and after filtering
4. Exports a per-condition QC summary

Usage:
    python qc_filtering.py --input adata_raw.h5ad --output adata_qc.h5ad --figures-dir figures/qc
"""

import os
import logging
import argparse

import numpy as np
import pandas as pd
import scanpy as sc
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import seaborn as sns

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration and Defaults
# =============================================================================

DEFAULT_QC_PARAMS = {
    'min_genes': 200,
    'max_genes': 6000,
    'min_counts': 500,
    'max_counts': None,
    'max_mito_pct': 20,
    'min_log10_genes_per_umi': 0.80,
    'min_cells': 3,
    'mito_prefixes': ['MT-', 'mt-'],
    'condition_key': 'condition',
    'drop_unlabelled': True,
}

QC_METRICS = ['n_genes_by_counts', 'total_counts', 'pct_counts_mt', 'log10_genes_per_umi']


# =============================================================================
# QC Functions
# =============================================================================

def calculate_qc_metrics(adata, mito_prefixes=('MT-', 'mt-')):
    """
    Calculate QC metrics for all cells.

    Parameters
    ----------
    adata : AnnData
        Input AnnData with raw counts in X
    mito_prefixes : sequence of str
        Gene symbol prefixes marking mitochondrial genes

    Returns
    -------
    AnnData
        AnnData with QC metrics added to obs
    """
    logger.info("Calculating QC metrics...")

    adata.var['mt'] = adata.var_names.str.startswith(tuple(mito_prefixes))
    logger.info(f"  {int(adata.var['mt'].sum())} mitochondrial genes")

    sc.pp.calculate_qc_metrics(
        adata,
        qc_vars=['mt'],
        percent_top=None,
        log1p=False,
        inplace=True
    )

    n_genes = adata.obs['n_genes_by_counts'].to_numpy(dtype=float)
    total = adata.obs['total_counts'].to_numpy(dtype=float)
    with np.errstate(divide='ignore', invalid='ignore'):
        complexity = np.log10(n_genes) / np.log10(total)
    complexity[~np.isfinite(complexity) | (total <= 1)] = 0.0
    adata.obs['log10_genes_per_umi'] = complexity

    logger.info(f"  Mean genes/cell: {adata.obs['n_genes_by_counts'].mean():.1f}")
    logger.info(f"  Mean counts/cell: {adata.obs['total_counts'].mean():.1f}")
    logger.info(f"  Mean % mito: {adata.obs['pct_counts_mt'].mean():.1f}%")
    logger.info(f"  Mean log10 genes/UMI: {adata.obs['log10_genes_per_umi'].mean():.3f}")

    return adata


def qc_pass_mask(obs, params):
    """Boolean Series of cells passing every cell-level threshold."""
    params = {**DEFAULT_QC_PARAMS, **(params or {})}
    keep = pd.Series(True, index=obs.index)

    if params.get('min_genes') is not None:
        keep &= obs['n_genes_by_counts'] >= params['min_genes']
    if params.get('max_genes') is not None:
        keep &= obs['n_genes_by_counts'] <= params['max_genes']
    if params.get('min_counts') is not None:
        keep &= obs['total_counts'] >= params['min_counts']
    if params.get('max_counts') is not None:
        keep &= obs['total_counts'] <= params['max_counts']
    if params.get('max_mito_pct') is not None:
        keep &= obs['pct_counts_mt'] < params['max_mito_pct']
    if params.get('min_log10_genes_per_umi') is not None:
        keep &= obs['log10_genes_per_umi'] > params['min_log10_genes_per_umi']

    key = params.get('condition_key')
    if params.get('drop_unlabelled') and key in obs.columns:
        keep &= obs[key].notna()

    return keep


def filter_cells_and_genes(adata, params):
    """
    Filter cells and genes based on QC thresholds.

    Parameters
    ----------
    adata : AnnData
        Input AnnData with QC metrics
    params : dict
        QC parameters (from config.yaml qc section)

    Returns
    -------
    AnnData
        Filtered copy; never larger than the input in either dimension
    """
    params = {**DEFAULT_QC_PARAMS, **(params or {})}
    logger.info("Filtering cells and genes...")
    logger.info(f"  Thresholds: min_genes={params['min_genes']}, max_genes={params['max_genes']}, "
                f"min_counts={params['min_counts']}, max_mito={params['max_mito_pct']}%, "
                f"min_log10_genes_per_umi={params['min_log10_genes_per_umi']}")

    n_cells_before = adata.n_obs
    n_genes_before = adata.n_vars

    keep = qc_pass_mask(adata.obs, params)
    adata = adata[keep.to_numpy(), :].copy()

    if params.get('min_cells'):
        sc.pp.filter_genes(adata, min_cells=params['min_cells'])

    key = params.get('condition_key')
    if key in adata.obs.columns and hasattr(adata.obs[key], 'cat'):
        adata.obs[key] = adata.obs[key].cat.remove_unused_categories()

    logger.info(f"  Cells: {n_cells_before} -> {adata.n_obs} ({n_cells_before - adata.n_obs} removed)")
    logger.info(f"  Genes: {n_genes_before} -> {adata.n_vars} ({n_genes_before - adata.n_vars} removed)")

    if adata.n_obs == 0:
        raise ValueError("No cells passed QC filtering")

    return adata


# =============================================================================
# Visualization Functions
# =============================================================================

def generate_qc_plots(adata, output_dir, prefix='', groupby='condition'):
    """
    Generate QC visualization plots.

    Parameters
    ----------
    adata : AnnData
        AnnData with QC metrics
    output_dir : str
        Directory to save plots
    prefix : str
        Prefix for output files (e.g., 'pre_filter_' or 'post_filter_')
    groupby : str
        obs column used to split the violins
    """
    os.makedirs(output_dir, exist_ok=True)
    logger.info(f"Generating QC plots in {output_dir}...")

    obs = adata.obs.copy()
    if groupby in obs.columns:
        obs[groupby] = obs[groupby].astype(object).fillna('unlabelled').astype(str)
    else:
        obs[groupby] = 'all'

    # Violin plots of QC metrics
    titles = ['Genes per Cell', 'UMI Counts per Cell', '% Mitochondrial', 'log10 Genes per UMI']
    fig, axes = plt.subplots(1, 4, figsize=(20, 5))
    for ax, metric, title in zip(axes, QC_METRICS, titles):
        sns.violinplot(data=obs, x=groupby, y=metric, ax=ax, cut=0, inner=None)
        sns.stripplot(data=obs, x=groupby, y=metric, ax=ax, size=1.5, color='black', alpha=0.4)
        ax.set_title(title)
        ax.set_xlabel('')
        ax.tick_params(axis='x', rotation=45)

    plt.tight_layout()
    plt.savefig(os.path.join(output_dir, f'{prefix}qc_violin_plots.png'), dpi=150, bbox_inches='tight')
    plt.close(fig)

    # Scatter plots
    fig, axes = plt.subplots(1, 2, figsize=(12, 5))

    sc.pl.scatter(adata, x='total_counts', y='n_genes_by_counts', color='pct_counts_mt',
                  ax=axes[0], show=False)
    axes[0].set_title('Counts vs Genes (colored by % mito)')

    sc.pl.scatter(adata, x='total_counts', y='pct_counts_mt', color='n_genes_by_counts',
                  ax=axes[1], show=False)
    axes[1].set_title('Counts vs % Mito (colored by genes)')

    plt.savefig(os.path.join(output_dir, f'{prefix}qc_scatter_plots.png'), dpi=150, bbox_inches='tight')
    plt.close(fig)


def export_qc_metrics(adata, output_path, groupby='condition'):
    """
    Export QC metrics summary to TSV.

    Parameters
    ----------
    adata : AnnData
        AnnData with QC metrics
    output_path : str
        Output file path
    groupby : str
        obs column to summarise by
    """
    output_dir = os.path.dirname(output_path)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
    logger.info(f"Exporting QC metrics to {output_path}")

    qc_summary = adata.obs.groupby(groupby, observed=True).agg({
        'n_genes_by_counts': ['count', 'mean', 'median', 'std'],
        'total_counts': ['mean', 'median', 'std'],
        'pct_counts_mt': ['mean', 'median', 'std'],
        'log10_genes_per_umi': ['mean', 'median'],
    })

    qc_summary.columns = ['_'.join(col).strip() for col in qc_summary.columns.values]
    qc_summary = qc_summary.rename(columns={'n_genes_by_counts_count': 'n_cells'})

    qc_summary.to_csv(output_path, sep='\t')
    return qc_summary


# =============================================================================
# CLI Entry Point
# =============================================================================

def main():
    """Main function for standalone CLI usage."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(description='DRUG-seq QC filtering')
    parser.add_argument('--input', required=True, help='Input .h5ad with raw counts')
    parser.add_argument('--output', required=True, help='Output .h5ad path')
    parser.add_argument('--figures-dir', required=True, help='Directory for QC plots')
    parser.add_argument('--min-genes', type=int, default=200, help='Minimum genes per cell')
    parser.add_argument('--min-counts', type=int, default=500, help='Minimum counts per cell')
    parser.add_argument('--max-mito-pct', type=float, default=20,
                        help='Maximum mitochondrial percentage')
    parser.add_argument('--min-log10-genes-per-umi', type=float, default=0.80,
                        help='Minimum log10 genes per UMI')

    args = parser.parse_args()

    adata = sc.read_h5ad(args.input)
    adata = calculate_qc_metrics(adata)
    generate_qc_plots(adata, args.figures_dir, prefix='pre_filter_')
    adata = filter_cells_and_genes(adata, {
        'min_genes': args.min_genes,
        'min_counts': args.min_counts,
        'max_mito_pct': args.max_mito_pct,
        'min_log10_genes_per_umi': args.min_log10_genes_per_umi,
    })
    generate_qc_plots(adata, args.figures_dir, prefix='post_filter_')
    adata.write(args.output)


if __name__ == '__main__':
    main()
