#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
pathway_enrichment.py
=====================

GO and KEGG over-representation analysis of the significant gene set.

This script:
1. Maps significant gene symbols to Entrez IDs with mygene.info and reports
   the symbols that fail to map
2. Runs over-representation tests with GSEApy against GO and KEGG gene set
   libraries: Enrichr libraries are queried with symbols, local GMT files
   with symbols or, when gmt_id_type is 'entrez', with the mapped Entrez IDs
3. Returns one standardized table per database

Requirements:
    - gseapy
    - mygene (optional, for Entrez mapping)
"""

import os
import logging

import pandas as pd

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration and Defaults
# =============================================================================

DEFAULT_ENRICHMENT_PARAMS = {
    'enabled': True,
    'species': 'human',
    'map_ids': True,
    'gmt_id_type': 'symbol',     # 'entrez' for local GMT files keyed by Entrez ID
    'go_libraries': ['GO_Biological_Process_2023'],
    'kegg_libraries': None,      # organism default when None
    'use_background': False,
    'padj_cutoff': 0.05,
}

KEGG_LIBRARIES = {
    'human': ['KEGG_2021_Human'],
    'mouse': ['KEGG_2019_Mouse'],
}

ENRICHMENT_COLUMNS = [
    'term', 'overlap', 'pvalue', 'padj', 'odds_ratio', 'combined_score', 'genes', 'library',
]

COLUMN_RENAMES = {
    'Term': 'term',
    'Overlap': 'overlap',
    'P-value': 'pvalue',
    'Adjusted P-value': 'padj',
    'Odds Ratio': 'odds_ratio',
    'Combined Score': 'combined_score',
    'Genes': 'genes',
}


def empty_enrichment_table():
    """Enrichment table with the standard columns and no rows."""
    return pd.DataFrame(columns=ENRICHMENT_COLUMNS)


# =============================================================================
# Identifier Mapping
# =============================================================================

def map_symbols_to_entrez(symbols, species='human'):
    """
    Map gene symbols to Entrez gene IDs.

    Parameters
    ----------
    symbols : list of str
        Gene symbols
    species : str
        Species name understood by mygene.info

    Returns
    -------
    pd.DataFrame
        Columns SYMBOL and ENTREZID, one row per mapped symbol
    """
    symbols = [str(s) for s in dict.fromkeys(symbols)]
    if not symbols:
        return pd.DataFrame(columns=['SYMBOL', 'ENTREZID'])

    try:
        import mygene
    except ImportError:
        raise ImportError("mygene package required for ID mapping. Install with: pip install mygene")

    logger.info(f"  Mapping {len(symbols)} gene symbols to Entrez IDs ({species})...")
    mg = mygene.MyGeneInfo()
    results = mg.querymany(
        symbols,
        scopes='symbol',
        fields='entrezgene',
        species=species,
        returnall=True,
        verbose=False,
    )

    mapping = {}
    for hit in results.get('out', []):
        if hit.get('notfound') or 'entrezgene' not in hit or 'query' not in hit:
            continue
        # First hit per query wins
        mapping.setdefault(hit['query'], str(hit['entrezgene']))

    table = pd.DataFrame(
        [(s, mapping[s]) for s in symbols if s in mapping],
        columns=['SYMBOL', 'ENTREZID'],
    )

    n_failed = len(symbols) - len(table)
    if n_failed:
        logger.warning(f"  {100 * n_failed / len(symbols):.1f}% of input gene symbols failed to map")
    return table


def try_map_symbols_to_entrez(symbols, species='human'):
    """Entrez mapping that logs a warning and returns None instead of raising."""
    try:
        return map_symbols_to_entrez(symbols, species)
    except Exception as e:
        logger.warning(f"  Entrez ID mapping failed ({e}); continuing with gene symbols")
        return None


# =============================================================================
# Enrichment
# =============================================================================

def _standardize(df, library):
    df = df.rename(columns=COLUMN_RENAMES)
    df['library'] = library
    for col in ENRICHMENT_COLUMNS:
        if col not in df.columns:
            df[col] = pd.NA
    return df[ENRICHMENT_COLUMNS]


def is_local_gmt(library):
    return str(library).endswith('.gmt') and os.path.exists(library)


def run_library(gp, gene_list, library, organism, background=None, entrez_ids=None):
    """
    Run one over-representation test with GSEApy.

    Local .gmt files are tested offline with gseapy.enrich; anything else is
    treated as an Enrichr library name (Enrichr gene sets are symbol-keyed).
    When entrez_ids is given, local GMT files are assumed to be keyed by
    Entrez ID and are tested with those identifiers instead of the symbols.
    """
    if is_local_gmt(library):
        if entrez_ids is not None:
            logger.info(f"  Testing local Entrez gene sets {library} ({len(entrez_ids)} IDs)...")
            if not entrez_ids:
                return empty_enrichment_table()
            gene_list, background = entrez_ids, None
        else:
            logger.info(f"  Testing local gene sets {library}...")
        enr = gp.enrich(
            gene_list=gene_list,
            gene_sets=library,
            background=background,
            outdir=None,
            cutoff=1.0,
        )
    else:
        logger.info(f"  Testing Enrichr library {library}...")
        enr = gp.enrichr(
            gene_list=gene_list,
            gene_sets=[library],
            organism=organism,
            background=background,
            outdir=None,
            cutoff=1.0,
        )

    if enr.results is None or enr.results.empty:
        return empty_enrichment_table()
    return _standardize(enr.results.copy(), os.path.basename(str(library)))


def run_database(gp, gene_list, libraries, organism, background, padj_cutoff, entrez_ids=None):
    """Combine every library of one database into a single filtered table."""
    tables = []
    for library in libraries:
        try:
            table = run_library(gp, gene_list, library, organism, background, entrez_ids)
        except Exception as e:
            logger.warning(f"  Failed to run enrichment for {library}: {e}")
            continue
        if not table.empty:
            tables.append(table)

    if not tables:
        return empty_enrichment_table()

    combined = pd.concat(tables, ignore_index=True)
    combined['padj'] = pd.to_numeric(combined['padj'], errors='coerce')
    combined = combined[combined['padj'] < padj_cutoff]
    return combined.sort_values('padj').reset_index(drop=True)


def run_enrichment(significant, background=None, params=None, mapping=None):
    """
    Run GO and KEGG over-representation on the significant genes.

    Parameters
    ----------
    significant : pd.DataFrame or list
        Significant-gene table indexed by symbol, or a list of symbols
    background : list, optional
        Gene universe (used only when params['use_background'] is set)
    params : dict, optional
        Enrichment parameters (see DEFAULT_ENRICHMENT_PARAMS)
    mapping : pd.DataFrame, optional
        Precomputed SYMBOL/ENTREZID table from map_symbols_to_entrez

    Returns
    -------
    dict
        {'GO': DataFrame, 'KEGG': DataFrame}
    """
    params = {**DEFAULT_ENRICHMENT_PARAMS, **(params or {})}
    genes = list(significant.index) if isinstance(significant, pd.DataFrame) else list(significant)
    tables = {'GO': empty_enrichment_table(), 'KEGG': empty_enrichment_table()}

    if not genes:
        logger.info("No significant genes, skipping pathway enrichment")
        return tables

    logger.info(f"Running pathway enrichment on {len(genes)} genes...")

    entrez_ids = None
    if params['map_ids']:
        if mapping is None:
            mapping = try_map_symbols_to_entrez(genes, params['species'])
        if mapping is not None and params['gmt_id_type'] == 'entrez':
            entrez_ids = mapping['ENTREZID'].tolist()
    elif params['gmt_id_type'] == 'entrez':
        logger.warning("  gmt_id_type is 'entrez' but ID mapping is disabled; testing GMT files with symbols")

    try:
        import gseapy as gp
    except ImportError:
        logger.warning("GSEApy not installed, skipping pathway enrichment")
        logger.warning("Install with: pip install gseapy")
        return tables

    species = params['species'].lower()
    kegg_libraries = params.get('kegg_libraries') or KEGG_LIBRARIES.get(species, KEGG_LIBRARIES['human'])
    universe = list(background) if (params['use_background'] and background is not None) else None

    tables['GO'] = run_database(
        gp, genes, params['go_libraries'], species, universe, params['padj_cutoff'], entrez_ids
    )
    tables['KEGG'] = run_database(
        gp, genes, kegg_libraries, species, universe, params['padj_cutoff'], entrez_ids
    )

    for database, table in tables.items():
        logger.info(f"  {database}: {len(table)} enriched terms (padj < {params['padj_cutoff']})")

    return tables
