#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
normalization.py
================

Variance-stabilizing normalization of QC-filtered DRUG-seq counts.

Two flavors are available:
- pearson_residuals: analytic Pearson residuals of a regularized negative
  binomial model (scanpy's SCTransform-style transform), default
- log1p: library-size normalization followed by log1p

Configured covariates (mitochondrial percentage by default) are regressed out
of the normalized values afterwards. Raw counts are kept in
adata.layers['counts'] for count-based differential expression.
"""

import logging

import numpy as np
import scanpy as sc
from scipy import sparse

logger = logging.getLogger(__name__)


DEFAULT_NORMALIZATION_PARAMS = {
    'flavor': 'pearson_residuals',
    'theta': 100,            # NB overdispersion for Pearson residuals
    'clip': None,            # None clips at sqrt(n_cells)
    'target_sum': 1e4,       # log1p flavor only
    'regress_out': ['pct_counts_mt'],
}

FLAVORS = ('pearson_residuals', 'log1p')


def normalize_data(adata, params=None):
    """
    Normalize counts and regress out covariates.

    Parameters
    ----------
    adata : AnnData
        QC-filtered AnnData with raw counts in X
    params : dict, optional
        Normalization parameters (see DEFAULT_NORMALIZATION_PARAMS)

    Returns
    -------
    AnnData
        AnnData with normalized values in X and raw counts in layers['counts']
    """
    params = {**DEFAULT_NORMALIZATION_PARAMS, **(params or {})}
    flavor = params['flavor']
    if flavor not in FLAVORS:
        raise ValueError(f"Unknown normalization flavor '{flavor}', expected one of {FLAVORS}")

    logger.info(f"Normalizing data (flavor={flavor})...")

    # Store raw counts
    adata.layers['counts'] = adata.X.copy()

    adata.X = adata.X.astype(np.float32)

    if flavor == 'pearson_residuals':
        clip = params['clip'] if params['clip'] is not None else float(np.sqrt(adata.n_obs))
        sc.experimental.pp.normalize_pearson_residuals(
            adata,
            theta=params['theta'],
            clip=clip,
        )
    else:
        sc.pp.normalize_total(adata, target_sum=params['target_sum'])
        sc.pp.log1p(adata)

    covariates = [c for c in (params.get('regress_out') or []) if c in adata.obs.columns]
    missing = set(params.get('regress_out') or []) - set(covariates)
    if missing:
        logger.warning(f"  Covariates not found in obs, not regressed: {sorted(missing)}")

    if covariates:
        if adata.obs[covariates].nunique().min() <= 1:
            logger.warning(f"  Covariates {covariates} are constant, skipping regression")
            covariates = []
        else:
            logger.info(f"  Regressing out {covariates}...")
            if sparse.issparse(adata.X):
                adata.X = adata.X.toarray()
            sc.pp.regress_out(adata, covariates)

    adata.uns['normalization'] = {
        'flavor': flavor,
        'regress_out': list(covariates),
    }

    logger.info(f"  Normalized matrix: {adata.n_obs} cells x {adata.n_vars} genes")
    return adata
