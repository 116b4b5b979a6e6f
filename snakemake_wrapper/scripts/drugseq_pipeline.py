#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
drugseq_pipeline.py
===================

Single-run DRUG-seq analysis: Drug vs Control differential expression with
pathway enrichment and optional ligand activity prediction.

This script performs, strictly in order and in memory:
1. Loading the count matrix and attaching condition labels
2. Quality control metrics, filtering and before/after QC plots
3. Variance-stabilizing normalization regressing out mitochondrial content
4. Differential expression (PyDESeq2 or Wilcoxon) and significance thresholds
5. GO / KEGG over-representation of the significant genes
6. Ligand activity prediction (only when a ligand-target prior is configured)
7. Volcano plot, top-gene heatmap and table exports

Usage:
    Called via Snakemake rule with snakemake.params/output

    Or standalone:
    python drugseq_pipeline.py --config config.yaml
    python drugseq_pipeline.py --data /path/to/counts --output-dir results

Requirements:
    - scanpy, anndata
    - pydeseq2 (deseq2 method)
    - gseapy, mygene (enrichment)
    - scikit-learn (ligand activity)
    - pandas, numpy, matplotlib, seaborn
"""

import os
import copy
import yaml
import logging
import argparse
import warnings

from snakemake_wrapper.scripts.load_counts import DEFAULT_INPUT_PARAMS, load_and_annotate
from snakemake_wrapper.scripts.qc_filtering import (
    DEFAULT_QC_PARAMS,
    calculate_qc_metrics,
    export_qc_metrics,
    filter_cells_and_genes,
    generate_qc_plots,
)
from snakemake_wrapper.scripts.normalization import DEFAULT_NORMALIZATION_PARAMS, normalize_data
from snakemake_wrapper.scripts.differential_expression import (
    DEFAULT_DE_PARAMS,
    run_differential_expression,
    select_significant,
    summarize_de,
)
from snakemake_wrapper.scripts.pathway_enrichment import (
    DEFAULT_ENRICHMENT_PARAMS,
    empty_enrichment_table,
    run_enrichment,
    try_map_symbols_to_entrez,
)
from snakemake_wrapper.scripts.ligand_activity import DEFAULT_LIGAND_PARAMS, run_ligand_activity
from snakemake_wrapper.scripts.reporting import (
    DEFAULT_REPORT_PARAMS,
    export_tables,
    plot_enrichment,
    plot_ligand_activities,
    plot_top_genes_heatmap,
    plot_volcano,
)
from snakemake_wrapper.scripts.dependencies import check_dependencies
from snakemake_wrapper.scripts.generate_summary import generate_summary

# Suppress warnings for cleaner output
warnings.filterwarnings('ignore')

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

DEFAULT_CONFIG = {
    'output_dir': '.',
    'save_adata': True,
    'auto_install': False,
    'input': DEFAULT_INPUT_PARAMS,
    'qc': DEFAULT_QC_PARAMS,
    'normalization': DEFAULT_NORMALIZATION_PARAMS,
    'differential_expression': DEFAULT_DE_PARAMS,
    'enrichment': DEFAULT_ENRICHMENT_PARAMS,
    'ligand_activity': DEFAULT_LIGAND_PARAMS,
    'report': DEFAULT_REPORT_PARAMS,
}

SECTIONS = ('input', 'qc', 'normalization', 'differential_expression',
            'enrichment', 'ligand_activity', 'report')


def load_config(config_path):
    """
    Load a YAML pipeline configuration.

    Parameters
    ----------
    config_path : str
        Path to config.yaml

    Returns
    -------
    dict
        Parsed configuration (empty file -> empty dict)
    """
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Config file not found: {config_path}")
    with open(config_path) as f:
        config = yaml.safe_load(f) or {}
    if not isinstance(config, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping, got {type(config).__name__}")
    return config


def merge_config(config=None):
    """Overlay a user config onto DEFAULT_CONFIG, section by section."""
    config = config or {}
    merged = copy.deepcopy(DEFAULT_CONFIG)
    for key, value in config.items():
        if key in SECTIONS:
            if value is not None and not isinstance(value, dict):
                raise ValueError(f"Config section '{key}' must be a mapping")
            merged[key] = {**merged[key], **(value or {})}
        else:
            merged[key] = value

    # The condition column name flows from the input section to every stage
    condition_key = merged['input']['condition_key']
    for section in ('qc', 'differential_expression'):
        if 'condition_key' not in (config.get(section) or {}):
            merged[section]['condition_key'] = condition_key
    return merged


# =============================================================================
# Main Pipeline Function
# =============================================================================

def run_drugseq_pipeline(config=None):
    """
    Run the complete DRUG-seq analysis.

    Parameters
    ----------
    config : dict, optional
        Pipeline configuration (see DEFAULT_CONFIG); missing keys use defaults

    Returns
    -------
    dict
        adata, de_results, significant, enrichment, ligand_activities,
        outputs and summary
    """
    config = merge_config(config)
    output_dir = config['output_dir']
    report = config['report']
    de_params = config['differential_expression']
    condition_key = config['input']['condition_key']

    figures_dir = os.path.join(output_dir, 'figures')
    qc_figures_dir = os.path.join(figures_dir, 'qc')
    tables_dir = os.path.join(output_dir, 'tables')
    os.makedirs(qc_figures_dir, exist_ok=True)

    stats = {}
    outputs = {}

    logger.info("="*60)
    logger.info("Starting DRUG-seq Analysis Pipeline")
    logger.info("="*60)
    logger.info(f"Count matrix: {config['input']['data_path']}")
    logger.info(f"Output: {output_dir}")

    dependency_status = check_dependencies(auto_install=config.get('auto_install', False))

    # Step 1: Load data
    logger.info("\n[Step 1/7] Loading count matrix...")
    adata = load_and_annotate(config['input'])
    stats['input'] = {
        'n_cells': adata.n_obs,
        'n_genes': adata.n_vars,
        'conditions': {str(k): int(v) for k, v in adata.obs[condition_key].value_counts().items()},
    }

    # Step 2: QC
    logger.info("\n[Step 2/7] Quality control...")
    adata = calculate_qc_metrics(adata, config['qc']['mito_prefixes'])
    generate_qc_plots(adata, qc_figures_dir, prefix='pre_filter_', groupby=condition_key)
    n_cells_before, n_genes_before = adata.n_obs, adata.n_vars
    adata = filter_cells_and_genes(adata, config['qc'])
    generate_qc_plots(adata, qc_figures_dir, prefix='post_filter_', groupby=condition_key)
    outputs['qc_metrics'] = os.path.join(tables_dir, 'qc_metrics.tsv')
    export_qc_metrics(adata, outputs['qc_metrics'], groupby=condition_key)
    stats['qc'] = {
        'cells_before': n_cells_before,
        'cells_after': adata.n_obs,
        'genes_before': n_genes_before,
        'genes_after': adata.n_vars,
    }

    # Step 3: Normalization
    logger.info("\n[Step 3/7] Normalizing...")
    adata = normalize_data(adata, config['normalization'])
    stats['normalization'] = dict(adata.uns['normalization'])

    # Step 4: Differential expression
    logger.info("\n[Step 4/7] Differential expression...")
    de_results = run_differential_expression(adata, de_params)
    significant = select_significant(
        de_results,
        padj_threshold=de_params['padj_threshold'],
        lfc_threshold=de_params['lfc_threshold'],
    )
    stats['de'] = {'method': de_params['method'], **summarize_de(de_results, significant)}
    if significant.empty:
        logger.warning("No significant genes: enrichment, ligand activity and heatmap will be skipped")

    # Step 5: Enrichment
    enrichment = {'GO': empty_enrichment_table(), 'KEGG': empty_enrichment_table()}
    mapping = None
    enrichment_params = config['enrichment']
    if not enrichment_params.get('enabled', True):
        logger.info("\n[Step 5/7] Skipping pathway enrichment (disabled)...")
    elif significant.empty:
        logger.info("\n[Step 5/7] Skipping pathway enrichment (no significant genes)...")
    elif not dependency_status.get('gseapy', False):
        logger.warning("\n[Step 5/7] GSEApy not available, skipping pathway enrichment...")
    else:
        logger.info("\n[Step 5/7] Pathway enrichment...")
        if enrichment_params['map_ids'] and dependency_status.get('mygene', False):
            mapping = try_map_symbols_to_entrez(significant.index.tolist(), enrichment_params['species'])
        enrichment = run_enrichment(
            significant,
            background=de_results.index.tolist(),
            params={**enrichment_params, 'map_ids': mapping is not None},
            mapping=mapping,
        )
        stats['enrichment'] = {
            'n_mapped': None if mapping is None else int(len(mapping)),
            **{f'n_terms_{db}': int(len(t)) for db, t in enrichment.items()},
        }

    # Step 6: Ligand activity
    activities = None
    ligand_params = config['ligand_activity']
    if not ligand_params.get('enabled', True):
        logger.info("\n[Step 6/7] Skipping ligand activity prediction (disabled)...")
    else:
        logger.info("\n[Step 6/7] Ligand activity prediction...")
        activities = run_ligand_activity(adata, significant, ligand_params)
        if activities is not None:
            stats['ligand_activity'] = {'n_ligands': int(len(activities))}

    # Step 7: Reporting
    logger.info("\n[Step 7/7] Writing plots and tables...")
    plots = {
        'volcano': plot_volcano(
            de_results,
            os.path.join(output_dir, report['volcano_file']),
            padj_threshold=de_params['padj_threshold'],
            lfc_threshold=de_params['lfc_threshold'],
            n_labels=report['n_volcano_labels'],
            dpi=report['dpi'],
        ),
        'heatmap': plot_top_genes_heatmap(
            adata,
            significant,
            os.path.join(output_dir, report['heatmap_file']),
            n_genes=report['n_heatmap_genes'],
            condition_key=condition_key,
            dpi=report['dpi'],
        ),
        'enrichment': plot_enrichment(
            enrichment,
            os.path.join(figures_dir, report['enrichment_file']),
            n_terms=report['n_terms'],
            dpi=report['dpi'],
        ),
        'ligand_activity': plot_ligand_activities(
            activities,
            os.path.join(figures_dir, report['ligand_file']),
            n_ligands=report['n_ligands'],
            dpi=report['dpi'],
        ),
    }
    outputs.update({name: path for name, path in plots.items() if path})
    outputs.update(export_tables(de_results, significant, enrichment, activities, tables_dir, mapping))

    if config.get('save_adata', True):
        outputs['adata'] = os.path.join(output_dir, 'adata_drugseq.h5ad')
        logger.info(f"\nSaving AnnData to {outputs['adata']}...")
        adata.write(outputs['adata'])

    stats['outputs'] = outputs
    summary_path = os.path.join(output_dir, 'drugseq_summary.yaml')
    summary = generate_summary(stats, config, summary_path)

    logger.info("\n" + "="*60)
    logger.info("Pipeline completed successfully!")
    logger.info("="*60)
    logger.info(f"Final cells: {adata.n_obs}")
    logger.info(f"Genes tested: {stats['de']['n_genes_tested']}")
    logger.info(f"Significant genes: {stats['de']['n_significant']}")

    return {
        'adata': adata,
        'de_results': de_results,
        'significant': significant,
        'enrichment': enrichment,
        'ligand_activities': activities,
        'outputs': outputs,
        'summary': summary,
    }


# =============================================================================
# Snakemake Integration
# =============================================================================

def run_from_snakemake():
    """Run pipeline from Snakemake rule."""
    config = dict(snakemake.params.pipeline_config)
    config['output_dir'] = snakemake.params.output_dir

    # Set up logging to file
    log_file = snakemake.log[0] if snakemake.log else None
    if log_file:
        os.makedirs(os.path.dirname(log_file), exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
        logging.getLogger().addHandler(file_handler)

    run_drugseq_pipeline(config)


# =============================================================================
# CLI Entry Point
# =============================================================================

def main(argv=None):
    """Main function for standalone CLI usage."""

    parser = argparse.ArgumentParser(
        description='DRUG-seq Drug vs Control analysis pipeline'
    )
    parser.add_argument('--config', help='Pipeline config YAML (from create-config)')
    parser.add_argument('--data', help='Count matrix directory or file (overrides config)')
    parser.add_argument('--metadata', help='Per-cell metadata table (overrides config)')
    parser.add_argument('--output-dir', help='Output directory (overrides config)')
    parser.add_argument('--de-method', choices=['deseq2', 'wilcoxon'],
                        help='Differential expression method (overrides config)')
    parser.add_argument('--ligand-target-matrix',
                        help='Ligand-target prior matrix (enables ligand activity prediction)')

    args = parser.parse_args(argv)

    config = load_config(args.config) if args.config else {}
    config.setdefault('input', {})
    if args.data:
        config['input']['data_path'] = args.data
    if args.metadata:
        config['input']['metadata_path'] = args.metadata
    if args.output_dir:
        config['output_dir'] = args.output_dir
    if args.de_method:
        config.setdefault('differential_expression', {})['method'] = args.de_method
    if args.ligand_target_matrix:
        config.setdefault('ligand_activity', {})['ligand_target_matrix'] = args.ligand_target_matrix

    if not config['input'].get('data_path'):
        parser.error('a count matrix is required (--data or input.data_path in --config)')

    run_drugseq_pipeline(config)


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == '__main__':
    try:
        snakemake
        run_from_snakemake()
    except NameError:
        main()
