#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
load_counts.py
==============

Load a DRUG-seq count matrix into an AnnData object and attach per-cell
condition labels.

Supported inputs:
- 10x-style matrix directory (matrix.mtx[.gz], features.tsv[.gz] or genes.tsv,
  barcodes.tsv[.gz])
- 10x HDF5 file (.h5)
- AnnData file (.h5ad)
- Delimited text table with genes as rows and wells/cells as columns
  (.csv, .tsv, .txt, optionally gzipped)

Condition labels come either from pattern-matching the cell identifiers
(e.g. 'Drug_A01', 'DMSO_B07') or from an external metadata table with one
row per cell.

Usage:
    python load_counts.py --data /path/to/counts --output adata_raw.h5ad
"""

import os
import re
import logging
import argparse
from collections import OrderedDict

import numpy as np
import pandas as pd
import scanpy as sc
import anndata as ad
from scipy import sparse

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration and Defaults
# =============================================================================

# Checked in order, first match wins
DEFAULT_CONDITION_PATTERNS = OrderedDict([
    ('Control', r'dmso|ctrl|control|vehicle'),
    ('Drug', r'drug|treat'),
])

DEFAULT_INPUT_PARAMS = {
    'data_path': None,
    'metadata_path': None,
    'cell_column': None,
    'condition_column': 'condition',
    'condition_key': 'condition',
    'condition_patterns': dict(DEFAULT_CONDITION_PATTERNS),
    'default_condition': None,
}

TEXT_SUFFIXES = ('.csv', '.tsv', '.txt', '.csv.gz', '.tsv.gz', '.txt.gz')


# =============================================================================
# Count Matrix Loading
# =============================================================================

def _table_separator(path):
    """Pick the column separator from the file extension."""
    name = str(path).lower()
    if name.endswith('.gz'):
        name = name[:-3]
    return ',' if name.endswith('.csv') else '\t'


def _as_integer_counts(X):
    """Return X with integer dtype, rounding non-integer values with a warning."""
    values = X.data if sparse.issparse(X) else np.asarray(X)
    if values.size and np.any(values < 0):
        raise ValueError("Count matrix contains negative values")
    if values.size and not np.allclose(values, np.round(values)):
        logger.warning("  Count matrix contains non-integer values, rounding to nearest integer")
    if sparse.issparse(X):
        X = X.copy()
        X.data = np.round(X.data).astype(np.int64)
        return X
    return np.round(np.asarray(X)).astype(np.int64)


def read_count_table(path):
    """
    Read a genes x cells delimited count table.

    Parameters
    ----------
    path : str
        Path to a .csv/.tsv/.txt file (optionally gzipped). The first column
        holds gene symbols, the header holds cell/well identifiers.

    Returns
    -------
    AnnData
        Cells x genes AnnData with a sparse count matrix
    """
    df = pd.read_csv(path, sep=_table_separator(path), index_col=0)
    df.index = df.index.astype(str)
    df.columns = df.columns.astype(str)

    non_numeric = [c for c in df.columns if not pd.api.types.is_numeric_dtype(df[c])]
    if non_numeric:
        raise ValueError(f"Non-numeric columns in count table {path}: {non_numeric[:5]}")

    adata = ad.AnnData(
        X=sparse.csr_matrix(df.T.to_numpy()),
        obs=pd.DataFrame(index=df.columns),
        var=pd.DataFrame(index=df.index),
    )
    return adata


def load_count_matrix(data_path):
    """
    Load a count matrix from disk.

    Parameters
    ----------
    data_path : str
        Matrix directory, .h5, .h5ad or delimited text table

    Returns
    -------
    AnnData
        Cells x genes AnnData with integer raw counts in X
    """
    if data_path is None or not os.path.exists(data_path):
        raise FileNotFoundError(f"Count matrix not found: {data_path}")

    logger.info(f"Loading count matrix from {data_path}...")
    lower = str(data_path).lower()

    if os.path.isdir(data_path):
        logger.info("  Reading 10x matrix directory...")
        adata = sc.read_10x_mtx(data_path, var_names='gene_symbols', cache=False)
    elif lower.endswith('.h5ad'):
        logger.info("  Reading AnnData file...")
        adata = sc.read_h5ad(data_path)
    elif lower.endswith('.h5'):
        logger.info("  Reading 10x H5 file...")
        adata = sc.read_10x_h5(data_path)
    elif lower.endswith(TEXT_SUFFIXES):
        logger.info("  Reading delimited count table (genes x cells)...")
        adata = read_count_table(data_path)
    else:
        raise ValueError(
            f"Unrecognised count matrix format: {data_path} "
            f"(expected a matrix directory, .h5, .h5ad or one of {TEXT_SUFFIXES})"
        )

    adata.var_names_make_unique()
    adata.obs_names_make_unique()
    adata.X = _as_integer_counts(adata.X)

    # Add gene_symbol column for compatibility
    adata.var['gene_symbol'] = adata.var_names

    logger.info(f"  Loaded {adata.n_obs} cells, {adata.n_vars} genes")
    return adata


# =============================================================================
# Condition Assignment
# =============================================================================

def assign_conditions_by_pattern(adata, patterns=None, key='condition', default=None):
    """
    Label cells by matching their identifiers against regular expressions.

    Parameters
    ----------
    adata : AnnData
        Input AnnData
    patterns : dict, optional
        Ordered {label: regex} mapping; matching is case-insensitive and the
        first matching label wins
    key : str
        obs column to write
    default : str, optional
        Label for cells matching no pattern (left missing when None)

    Returns
    -------
    AnnData
        The same object with adata.obs[key] set
    """
    patterns = patterns or DEFAULT_CONDITION_PATTERNS
    logger.info(f"Assigning conditions from cell identifiers ({len(patterns)} patterns)...")

    names = pd.Series(adata.obs_names, index=adata.obs_names)
    labels = pd.Series(np.nan, index=adata.obs_names, dtype=object)

    for label, pattern in patterns.items():
        regex = re.compile(pattern, flags=re.IGNORECASE)
        hits = names.map(lambda name: bool(regex.search(name))) & labels.isna()
        labels[hits] = label
        logger.info(f"  {label}: {int(hits.sum())} cells (pattern '{pattern}')")

    n_unmatched = int(labels.isna().sum())
    if n_unmatched:
        if default is not None:
            logger.info(f"  {n_unmatched} unmatched cells labelled '{default}'")
            labels = labels.fillna(default)
        else:
            logger.warning(f"  {n_unmatched} cells matched no condition pattern")

    adata.obs[key] = pd.Categorical(labels.values)
    return adata


def read_metadata_table(metadata_path, cell_column=None):
    """Read a per-cell metadata table indexed by cell identifier."""
    if not os.path.exists(metadata_path):
        raise FileNotFoundError(f"Metadata table not found: {metadata_path}")

    meta = pd.read_csv(metadata_path, sep=_table_separator(metadata_path))
    if cell_column is None:
        cell_column = meta.columns[0]
    if cell_column not in meta.columns:
        raise KeyError(f"Cell column '{cell_column}' not in metadata columns {list(meta.columns)}")

    meta[cell_column] = meta[cell_column].astype(str)
    if meta[cell_column].duplicated().any():
        dups = meta.loc[meta[cell_column].duplicated(), cell_column].tolist()
        raise ValueError(f"Duplicate cell identifiers in metadata: {dups[:10]}")

    return meta.set_index(cell_column)


def assign_conditions_from_metadata(
    adata,
    metadata_path,
    cell_column=None,
    condition_column='condition',
    key='condition',
):
    """
    Join an external per-cell metadata table onto adata.obs.

    Parameters
    ----------
    adata : AnnData
        Input AnnData
    metadata_path : str
        CSV/TSV table with one row per cell
    cell_column : str, optional
        Column holding cell identifiers (first column when None)
    condition_column : str
        Column holding the condition label
    key : str
        obs column receiving the condition label

    Returns
    -------
    AnnData
        The same object with metadata columns added to obs
    """
    logger.info(f"Joining cell metadata from {metadata_path}...")
    meta = read_metadata_table(metadata_path, cell_column)

    if condition_column not in meta.columns:
        raise KeyError(
            f"Condition column '{condition_column}' not in metadata columns {list(meta.columns)}"
        )

    meta = meta.reindex(adata.obs_names)
    n_missing = int(meta[condition_column].isna().sum())
    if n_missing:
        logger.warning(f"  {n_missing} cells have no metadata row or condition label")

    for col in meta.columns:
        if col == condition_column:
            target = key
        elif col == key:
            # Never let another column overwrite the condition labels
            target = f'{col}_metadata'
            logger.info(f"  Metadata column '{col}' stored as '{target}'")
        else:
            target = col
        adata.obs[target] = meta[col].values

    adata.obs[key] = pd.Categorical(adata.obs[key])
    for label, count in adata.obs[key].value_counts().items():
        logger.info(f"  {label}: {count} cells")

    return adata


def load_and_annotate(input_params):
    """
    Load the count matrix and attach condition labels.

    Parameters
    ----------
    input_params : dict
        Input section of the pipeline config (see DEFAULT_INPUT_PARAMS)

    Returns
    -------
    AnnData
        Labelled AnnData
    """
    params = {**DEFAULT_INPUT_PARAMS, **(input_params or {})}
    adata = load_count_matrix(params['data_path'])

    if params.get('metadata_path'):
        adata = assign_conditions_from_metadata(
            adata,
            params['metadata_path'],
            cell_column=params.get('cell_column'),
            condition_column=params.get('condition_column', 'condition'),
            key=params['condition_key'],
        )
    else:
        adata = assign_conditions_by_pattern(
            adata,
            patterns=params.get('condition_patterns'),
            key=params['condition_key'],
            default=params.get('default_condition'),
        )

    return adata


# =============================================================================
# CLI Entry Point
# =============================================================================

def main():
    """Main function for standalone CLI usage."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(description='Load a DRUG-seq count matrix')
    parser.add_argument('--data', required=True, help='Count matrix directory or file')
    parser.add_argument('--metadata', help='Optional per-cell metadata table')
    parser.add_argument('--cell-column', help='Cell identifier column in metadata')
    parser.add_argument('--condition-column', default='condition',
                        help='Condition column in metadata (default: condition)')
    parser.add_argument('--output', required=True, help='Output .h5ad path')

    args = parser.parse_args()

    adata = load_and_annotate({
        'data_path': args.data,
        'metadata_path': args.metadata,
        'cell_column': args.cell_column,
        'condition_column': args.condition_column,
    })

    output_dir = os.path.dirname(args.output)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
    adata.write(args.output)
    logger.info(f"Saved {args.output}")


if __name__ == '__main__':
    main()
