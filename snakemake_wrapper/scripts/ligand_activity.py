#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
ligand_activity.py
==================

Optional ligand activity prediction (NicheNet-style).

Given the significant gene set and a prior ligand-target regulatory potential
matrix (targets as rows, ligands as columns), every candidate ligand is scored
by how well its target potentials predict membership of a background gene in
the gene set of interest:

- auroc: area under the ROC curve
- aupr: area under the precision-recall curve (average precision)
- aupr_corrected: aupr minus the gene set prevalence
- pearson: Pearson correlation between potentials and membership

Ligands are ranked by aupr_corrected. The stage is skipped with a notice when
no prior matrix is configured or the file is missing.
"""

import os
import logging

import numpy as np
import pandas as pd
from scipy import sparse
from scipy.stats import pearsonr
from sklearn.metrics import average_precision_score, roc_auc_score

logger = logging.getLogger(__name__)


DEFAULT_LIGAND_PARAMS = {
    'enabled': True,
    'ligand_target_matrix': None,
    'ligands': None,
    'expressed_ligands_only': True,
    'min_expressed_fraction': 0.10,
    'geneset': 'all',        # all, up or down
}

ACTIVITY_COLUMNS = ['test_ligand', 'auroc', 'aupr', 'aupr_corrected', 'pearson', 'rank']


def empty_activity_table():
    return pd.DataFrame(columns=ACTIVITY_COLUMNS)


def load_ligand_target_matrix(path):
    """
    Load a targets x ligands regulatory potential matrix.

    Parameters
    ----------
    path : str or None
        CSV/TSV file (optionally gzipped), first column = target gene

    Returns
    -------
    pd.DataFrame or None
        None when the prior is not configured or not found
    """
    if not path:
        logger.info("No ligand-target prior configured, skipping ligand activity prediction")
        return None
    if not os.path.exists(path):
        logger.warning(f"Ligand-target prior not found at {path}, skipping ligand activity prediction")
        return None

    name = str(path).lower()
    if name.endswith('.gz'):
        name = name[:-3]
    sep = ',' if name.endswith('.csv') else '\t'

    logger.info(f"Loading ligand-target matrix from {path}...")
    matrix = pd.read_csv(path, sep=sep, index_col=0)
    matrix.index = matrix.index.astype(str)
    matrix.columns = matrix.columns.astype(str)
    matrix = matrix.apply(pd.to_numeric, errors='coerce').fillna(0.0)
    logger.info(f"  {matrix.shape[0]} targets x {matrix.shape[1]} ligands")
    return matrix


def score_ligand(potentials, response):
    """Activity metrics for one ligand's target potentials."""
    prevalence = response.mean()
    if np.ptp(potentials) == 0:
        return {'auroc': 0.5, 'aupr': prevalence, 'aupr_corrected': 0.0, 'pearson': 0.0}

    aupr = average_precision_score(response, potentials)
    pearson = pearsonr(potentials, response)[0]
    return {
        'auroc': roc_auc_score(response, potentials),
        'aupr': aupr,
        'aupr_corrected': aupr - prevalence,
        'pearson': 0.0 if np.isnan(pearson) else pearson,
    }


def predict_ligand_activities(geneset, background, ligand_target_matrix, ligands=None):
    """
    Rank ligands by how well they explain the gene set of interest.

    Parameters
    ----------
    geneset : list of str
        Genes of interest (e.g. significant DE genes)
    background : list of str
        Background genes; restricted to genes present in the matrix
    ligand_target_matrix : pd.DataFrame
        Targets x ligands regulatory potentials
    ligands : list of str, optional
        Candidate ligands (all matrix columns when None)

    Returns
    -------
    pd.DataFrame
        One row per ligand, sorted by aupr_corrected (rank 1 = most active)
    """
    background = [g for g in dict.fromkeys(background) if g in ligand_target_matrix.index]
    bg_set = set(background)
    geneset = [g for g in dict.fromkeys(geneset) if g in bg_set]

    if not geneset:
        logger.warning("  No genes of interest in the ligand-target matrix background")
        return empty_activity_table()
    if len(geneset) == len(background):
        logger.warning("  Gene set covers the whole background, ligand activities undefined")
        return empty_activity_table()

    if ligands is None:
        ligands = list(ligand_target_matrix.columns)
    missing = [l for l in ligands if l not in ligand_target_matrix.columns]
    if missing:
        logger.warning(f"  {len(missing)} candidate ligands not in the prior matrix: {missing[:10]}")
    ligands = [l for l in ligands if l in ligand_target_matrix.columns]
    if not ligands:
        return empty_activity_table()

    logger.info(f"  Scoring {len(ligands)} ligands on {len(geneset)} genes of interest "
                f"({len(background)} background genes)...")

    geneset_set = set(geneset)
    response = np.array([g in geneset_set for g in background], dtype=int)
    sub = ligand_target_matrix.loc[background, ligands]

    rows = []
    for ligand in ligands:
        metrics = score_ligand(sub[ligand].to_numpy(dtype=float), response)
        rows.append({'test_ligand': ligand, **metrics})

    activities = pd.DataFrame(rows).sort_values(
        ['aupr_corrected', 'pearson'], ascending=False
    ).reset_index(drop=True)
    activities['rank'] = np.arange(1, len(activities) + 1)
    return activities[ACTIVITY_COLUMNS]


def expressed_genes(adata, min_fraction):
    """Genes with nonzero raw counts in at least min_fraction of cells."""
    X = adata.layers['counts'] if 'counts' in adata.layers else adata.X
    if sparse.issparse(X):
        detected = np.asarray((X > 0).mean(axis=0)).ravel()
    else:
        detected = (np.asarray(X) > 0).mean(axis=0)
    return list(adata.var_names[detected >= min_fraction])


def run_ligand_activity(adata, significant, params=None):
    """
    Predict ligand activities for the significant gene set.

    Parameters
    ----------
    adata : AnnData
        Filtered AnnData with raw counts in layers['counts']
    significant : pd.DataFrame
        Significant-gene table (index = symbol, direction column)
    params : dict, optional
        Ligand activity parameters (see DEFAULT_LIGAND_PARAMS)

    Returns
    -------
    pd.DataFrame or None
        Ligand activity table, or None when the stage was skipped
    """
    params = {**DEFAULT_LIGAND_PARAMS, **(params or {})}

    matrix = load_ligand_target_matrix(params.get('ligand_target_matrix'))
    if matrix is None:
        return None

    logger.info("Predicting ligand activities...")

    if params['geneset'] in ('up', 'down') and 'direction' in significant.columns:
        significant = significant[significant['direction'] == params['geneset']]
    if significant.empty:
        logger.info("  No significant genes, skipping ligand activity prediction")
        return empty_activity_table()

    expressed = expressed_genes(adata, params['min_expressed_fraction'])
    background = [g for g in expressed if g in matrix.index]

    ligands = params.get('ligands') or list(matrix.columns)
    if params['expressed_ligands_only']:
        expressed_set = set(expressed)
        ligands = [l for l in ligands if l in expressed_set]
        if not ligands:
            logger.warning("  No candidate ligands expressed in the dataset")
            return empty_activity_table()

    activities = predict_ligand_activities(list(significant.index), background, matrix, ligands)
    if not activities.empty:
        top = activities.head(5)['test_ligand'].tolist()
        logger.info(f"  Top ligands: {', '.join(top)}")
    return activities
