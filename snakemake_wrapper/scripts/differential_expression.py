#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
differential_expression.py
==========================

Drug vs Control differential expression for DRUG-seq data.

Methods:
- deseq2: negative binomial GLM on raw counts with a ~condition design
  (PyDESeq2). Wells are treated as samples, or counts are summed into
  pseudobulk samples when a grouping column is configured.
- wilcoxon: Seurat FindMarkers-style Wilcoxon rank-sum test on
  log-normalized counts (scanpy rank_genes_groups).

Both methods return the same table: one row per gene with baseMean,
log2FoldChange, pvalue and padj. select_significant() then applies the
fixed significance thresholds (padj < 0.05 and |log2FC| > 0.5).
"""

import logging

import numpy as np
import pandas as pd
import scanpy as sc
import anndata as ad
from scipy import sparse

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration and Defaults
# =============================================================================

DEFAULT_DE_PARAMS = {
    'method': 'deseq2',
    'condition_key': 'condition',
    'test_level': 'Drug',
    'reference_level': 'Control',
    'pseudobulk_key': None,
    'min_samples_per_group': 2,
    'min_gene_counts': 10,
    'alpha': 0.05,
    'shrink_lfc': False,
    'n_cpus': 1,
    'padj_threshold': 0.05,
    'lfc_threshold': 0.5,
}

RESULT_COLUMNS = ['baseMean', 'log2FoldChange', 'pvalue', 'padj']
METHODS = ('deseq2', 'wilcoxon')


# =============================================================================
# Helpers
# =============================================================================

def _raw_counts(adata):
    """Raw counts as a dense cells x genes DataFrame."""
    X = adata.layers['counts'] if 'counts' in adata.layers else adata.X
    if sparse.issparse(X):
        X = X.toarray()
    return pd.DataFrame(
        np.round(np.asarray(X)).astype(np.int64),
        index=adata.obs_names,
        columns=adata.var_names,
    )


def subset_to_contrast(adata, condition_key, test_level, reference_level):
    """Keep only cells labelled with one of the two compared levels."""
    if condition_key not in adata.obs.columns:
        raise KeyError(f"Condition column '{condition_key}' not found in obs")

    labels = adata.obs[condition_key].astype(object)
    present = set(labels.dropna().unique())
    for level in (test_level, reference_level):
        if level not in present:
            raise ValueError(
                f"Level '{level}' not found in '{condition_key}' (found: {sorted(present)})"
            )

    mask = labels.isin([test_level, reference_level]).to_numpy()
    n_other = int((~mask).sum())
    if n_other:
        logger.info(f"  Excluding {n_other} cells outside {test_level}/{reference_level}")

    sub = adata[mask, :].copy()
    sub.obs[condition_key] = pd.Categorical(
        sub.obs[condition_key].astype(str),
        categories=[reference_level, test_level],
    )
    return sub


def aggregate_pseudobulk(counts, metadata, sample_key, condition_key):
    """
    Sum counts per (sample, condition) group.

    Parameters
    ----------
    counts : pd.DataFrame
        Cells x genes raw counts
    metadata : pd.DataFrame
        Cell metadata with sample_key and condition_key columns
    sample_key : str
        Column identifying the biological sample / replicate
    condition_key : str
        Condition column

    Returns
    -------
    tuple
        (pseudobulk counts, pseudobulk metadata)
    """
    if sample_key not in metadata.columns:
        raise KeyError(f"Pseudobulk column '{sample_key}' not found in obs")

    groups = (metadata[sample_key].astype(str) + '__' + metadata[condition_key].astype(str))
    pb_counts = counts.groupby(groups.values).sum()
    pb_meta = (
        metadata.assign(_group=groups.values)
        .groupby('_group', observed=True)[[condition_key]]
        .first()
        .loc[pb_counts.index]
    )
    pb_meta['n_cells'] = pd.Series(groups.values).value_counts().reindex(pb_counts.index).values
    logger.info(f"  Aggregated {len(counts)} cells into {len(pb_counts)} pseudobulk samples")
    return pb_counts, pb_meta


def _check_group_sizes(metadata, condition_key, min_samples):
    sizes = metadata[condition_key].value_counts()
    for level, n in sizes.items():
        logger.info(f"  {level}: {n} samples")
    small = sizes[sizes < min_samples]
    if len(small):
        raise ValueError(
            f"Too few samples per condition for differential expression "
            f"(need >= {min_samples}): {small.to_dict()}"
        )


def _finalize_results(results):
    """Fill missing p-values and sort by adjusted p-value."""
    results = results.copy()
    results['pvalue'] = results['pvalue'].fillna(1.0)
    results['padj'] = results['padj'].fillna(1.0)
    results['log2FoldChange'] = results['log2FoldChange'].fillna(0.0)
    results.index.name = 'gene'
    return results.sort_values(['padj', 'pvalue'])


# =============================================================================
# DE Methods
# =============================================================================

def run_deseq2(adata, params):
    """
    Fit a ~condition negative binomial model with PyDESeq2.

    Parameters
    ----------
    adata : AnnData
        AnnData restricted to the two compared levels, raw counts in
        layers['counts'] (or X)
    params : dict
        DE parameters

    Returns
    -------
    pd.DataFrame
        DESeq2 results (baseMean, log2FoldChange, lfcSE, stat, pvalue, padj)
    """
    try:
        from pydeseq2.dds import DeseqDataSet
        from pydeseq2.default_inference import DefaultInference
        from pydeseq2.ds import DeseqStats
    except ImportError:
        raise ImportError("PyDESeq2 required. Install with: pip install pydeseq2")

    key = params['condition_key']
    counts = _raw_counts(adata)
    metadata = adata.obs[[c for c in (key, params.get('pseudobulk_key')) if c]].copy()
    metadata[key] = metadata[key].astype(str)

    if params.get('pseudobulk_key'):
        counts, metadata = aggregate_pseudobulk(counts, metadata, params['pseudobulk_key'], key)

    _check_group_sizes(metadata, key, params['min_samples_per_group'])

    # Filter low-count genes
    keep = counts.sum(axis=0) >= params['min_gene_counts']
    n_removed = int((~keep).sum())
    if n_removed:
        logger.info(f"  Filtered {n_removed} low-count genes ({int(keep.sum())} remaining)")
    counts = counts.loc[:, keep]
    if counts.shape[1] == 0:
        raise ValueError("No genes left for differential expression after count filtering")

    inference = DefaultInference(n_cpus=params['n_cpus'])

    logger.info("  Initializing DESeq2 dataset...")
    dds = DeseqDataSet(
        counts=counts,
        metadata=metadata[[key]],
        design=f"~{key}",
        refit_cooks=True,
        inference=inference,
        quiet=True,
    )

    logger.info("  Fitting DESeq2 model...")
    dds.deseq2()

    contrast = [key, params['test_level'], params['reference_level']]
    logger.info(f"  Running Wald tests for contrast: {contrast}")
    ds = DeseqStats(dds, contrast=contrast, alpha=params['alpha'], inference=inference, quiet=True)
    ds.summary()

    if params.get('shrink_lfc'):
        logger.info("  Applying log fold change shrinkage...")
        coeff_names = [
            f"{key}[T.{params['test_level']}]",
            f"{key}_{params['test_level']}_vs_{params['reference_level']}",
        ]
        for coeff in coeff_names:
            try:
                ds.lfc_shrink(coeff=coeff)
                break
            except (KeyError, ValueError) as e:
                logger.debug(f"  Coefficient {coeff} not usable for shrinkage: {e}")
        else:
            logger.warning("  LFC shrinkage failed, continuing with unshrunk estimates")

    return ds.results_df.copy()


def run_wilcoxon(adata, params):
    """
    Wilcoxon rank-sum test on log-normalized counts.

    Parameters
    ----------
    adata : AnnData
        AnnData restricted to the two compared levels
    params : dict
        DE parameters

    Returns
    -------
    pd.DataFrame
        Results with baseMean, log2FoldChange, stat, pvalue, padj,
        pct_test and pct_reference
    """
    key = params['condition_key']
    test, ref = params['test_level'], params['reference_level']

    counts = _raw_counts(adata)
    _check_group_sizes(adata.obs, key, params['min_samples_per_group'])

    lognorm = ad.AnnData(
        X=sparse.csr_matrix(counts.to_numpy(dtype=np.float32)),
        obs=adata.obs[[key]].copy(),
        var=pd.DataFrame(index=counts.columns),
    )
    sc.pp.normalize_total(lognorm, target_sum=1e4)
    sc.pp.log1p(lognorm)

    logger.info(f"  Ranking genes ({test} vs {ref}, wilcoxon)...")
    sc.tl.rank_genes_groups(
        lognorm,
        groupby=key,
        groups=[test],
        reference=ref,
        method='wilcoxon',
        pts=True,
        tie_correct=True,
    )
    df = sc.get.rank_genes_groups_df(lognorm, group=test).set_index('names')

    results = pd.DataFrame({
        'baseMean': counts.mean(axis=0).reindex(df.index),
        'log2FoldChange': df['logfoldchanges'],
        'stat': df['scores'],
        'pvalue': df['pvals'],
        'padj': df['pvals_adj'],
    })
    if 'pct_nz_group' in df.columns:
        results['pct_test'] = df['pct_nz_group']
    if 'pct_nz_reference' in df.columns:
        results['pct_reference'] = df['pct_nz_reference']
    return results


def run_differential_expression(adata, params=None):
    """
    Compute Drug vs Control differential expression.

    Parameters
    ----------
    adata : AnnData
        Normalized AnnData with raw counts in layers['counts']
    params : dict, optional
        DE parameters (see DEFAULT_DE_PARAMS)

    Returns
    -------
    pd.DataFrame
        One row per gene, sorted by padj
    """
    params = {**DEFAULT_DE_PARAMS, **(params or {})}
    method = params['method']
    if method not in METHODS:
        raise ValueError(f"Unknown DE method '{method}', expected one of {METHODS}")

    logger.info(f"Running differential expression ({method}): "
                f"{params['test_level']} vs {params['reference_level']}")

    sub = subset_to_contrast(
        adata, params['condition_key'], params['test_level'], params['reference_level']
    )

    if method == 'deseq2':
        results = run_deseq2(sub, params)
    else:
        results = run_wilcoxon(sub, params)

    results = _finalize_results(results)
    logger.info(f"  {len(results)} genes tested")
    return results


def select_significant(results, padj_threshold=0.05, lfc_threshold=0.5):
    """
    Threshold a DE table into the significant-gene subset.

    Parameters
    ----------
    results : pd.DataFrame
        DE table with padj and log2FoldChange columns
    padj_threshold : float
        Keep genes with padj strictly below this value
    lfc_threshold : float
        Keep genes with |log2FoldChange| strictly above this value

    Returns
    -------
    pd.DataFrame
        Rows of results passing both thresholds, with a direction column
    """
    missing = [c for c in ('padj', 'log2FoldChange') if c not in results.columns]
    if missing:
        raise KeyError(f"DE results missing columns: {missing}")

    mask = (results['padj'] < padj_threshold) & (results['log2FoldChange'].abs() > lfc_threshold)
    significant = results.loc[mask].copy()
    significant['direction'] = np.where(significant['log2FoldChange'] > 0, 'up', 'down')

    logger.info(f"Significant genes (padj < {padj_threshold}, |log2FC| > {lfc_threshold}): "
                f"{len(significant)} ({int((significant['direction'] == 'up').sum())} up, "
                f"{int((significant['direction'] == 'down').sum())} down)")
    return significant


def summarize_de(results, significant):
    """Counts for the run summary."""
    return {
        'n_genes_tested': int(len(results)),
        'n_significant': int(len(significant)),
        'n_up': int((significant['log2FoldChange'] > 0).sum()),
        'n_down': int((significant['log2FoldChange'] < 0).sum()),
    }
