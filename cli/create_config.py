#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
create_config.py
================

CLI command to create the DrugSeqFlow pipeline configuration file.

Usage:
    python create_config.py [OPTIONS]
    DrugSeqFlow create-config [OPTIONS]
"""

import os
import sys
import yaml
import argparse
from pathlib import Path


def validate_path(path, name, must_exist=True, create_dir=False):
    """Validate a file or directory path."""
    if path is None:
        return None

    path = Path(path).resolve()

    if create_dir and not path.exists():
        path.mkdir(parents=True, exist_ok=True)
        print(f"  Created directory: {path}")

    if must_exist and not path.exists():
        raise FileNotFoundError(f"{name} not found: {path}")

    return str(path)


def create_config(args):
    """Create the pipeline configuration file."""
    print("="*70)
    print("DRUGSEQFLOW - CREATE CONFIGURATION")
    print("="*70)

    # Validate and process paths
    print("\nValidating input paths...")

    output_dir = validate_path(args.output_dir, "Output directory",
                               must_exist=False, create_dir=True)

    data_path = validate_path(args.data, "Count matrix")
    print(f"  Count matrix: {data_path}")

    metadata_path = validate_path(args.metadata, "Metadata table") if args.metadata else None
    if metadata_path:
        print(f"  Conditions from metadata table: {metadata_path}")
    else:
        print(f"  Conditions from cell identifiers: "
              f"{args.control_level}='{args.control_pattern}', {args.drug_level}='{args.drug_pattern}'")

    # Optional modules
    print("\nConfiguring optional modules...")

    ligand_matrix = None
    if args.ligand_target_matrix:
        ligand_matrix = validate_path(args.ligand_target_matrix, "Ligand-target matrix")
    print(f"  Pathway enrichment: {'DISABLED' if args.skip_enrichment else 'ENABLED'}")
    print(f"  Ligand activity: {'ENABLED' if ligand_matrix else 'DISABLED (no ligand-target matrix)'}")

    # Build configuration
    print("\nBuilding configuration...")

    config = {
        'output_dir': output_dir,
        'log_dir': os.path.join(output_dir, 'logs'),
        'threads': args.threads,
        'auto_install': args.auto_install,
        'save_adata': not args.no_save_adata,

        'input': {
            'data_path': data_path,
            'metadata_path': metadata_path,
            'cell_column': args.cell_column,
            'condition_column': args.condition_column,
            'condition_key': 'condition',
            'condition_patterns': {
                args.control_level: args.control_pattern,
                args.drug_level: args.drug_pattern,
            },
            'default_condition': args.default_condition,
        },

        'qc': {
            'min_genes': args.min_genes,
            'max_genes': args.max_genes,
            'min_counts': args.min_counts,
            'max_mito_pct': args.max_mito_pct,
            'min_log10_genes_per_umi': args.min_log10_genes_per_umi,
            'min_cells': args.min_cells,
        },

        'normalization': {
            'flavor': args.normalization,
            'regress_out': args.regress_out,
        },

        'differential_expression': {
            'method': args.de_method,
            'test_level': args.drug_level,
            'reference_level': args.control_level,
            'pseudobulk_key': args.pseudobulk_key,
            'padj_threshold': args.padj_threshold,
            'lfc_threshold': args.lfc_threshold,
            'n_cpus': args.threads,
        },

        'enrichment': {
            'enabled': not args.skip_enrichment,
            'species': args.species,
            'go_libraries': args.go_libraries,
            'kegg_libraries': args.kegg_libraries,
            'gmt_id_type': args.gmt_id_type,
        },

        'ligand_activity': {
            'enabled': ligand_matrix is not None,
            'ligand_target_matrix': ligand_matrix,
            'ligands': args.ligands,
        },
    }

    # Write configuration file
    config_path = os.path.join(output_dir, 'config.yaml')
    print(f"\nWriting configuration to: {config_path}")

    with open(config_path, 'w') as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)

    print("\n" + "="*70)
    print("CONFIGURATION CREATED SUCCESSFULLY")
    print("="*70)
    print(f"\nConfiguration file: {config_path}")
    print(f"Contrast: {args.drug_level} vs {args.control_level} ({args.de_method})")
    print(f"\nTo run the pipeline:")
    print(f"  DrugSeqFlow run-config {config_path} --cores {args.threads}")

    return config_path


def build_parser():
    parser = argparse.ArgumentParser(
        prog='DrugSeqFlow create-config',
        description='Create DrugSeqFlow pipeline configuration',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Conditions parsed from well identifiers (e.g. Drug_A01, DMSO_B07)
  python create_config.py \\
    --output-dir /path/to/output \\
    --data /path/to/filtered_feature_bc_matrix

  # Conditions from a metadata table, Wilcoxon test, ligand activity
  python create_config.py \\
    --output-dir /path/to/output \\
    --data counts.tsv.gz \\
    --metadata cell_metadata.tsv \\
    --de-method wilcoxon \\
    --ligand-target-matrix ligand_target_matrix.tsv.gz
        """)

    # Required arguments
    required = parser.add_argument_group('Required Arguments')
    required.add_argument('--output-dir', required=True, help='Output directory')
    required.add_argument('--data', required=True,
                          help='Count matrix (10x directory, .h5, .h5ad or genes x cells table)')

    # Conditions
    conditions = parser.add_argument_group('Condition Labels')
    conditions.add_argument('--metadata', help='Per-cell metadata table (overrides patterns)')
    conditions.add_argument('--cell-column', help='Cell identifier column in metadata (default: first column)')
    conditions.add_argument('--condition-column', default='condition',
                            help='Condition column in metadata (default: condition)')
    conditions.add_argument('--drug-level', default='Drug', help='Treated condition label (default: Drug)')
    conditions.add_argument('--control-level', default='Control',
                            help='Reference condition label (default: Control)')
    conditions.add_argument('--drug-pattern', default='drug|treat',
                            help='Regex marking treated cell identifiers (default: drug|treat)')
    conditions.add_argument('--control-pattern', default='dmso|ctrl|control|vehicle',
                            help='Regex marking control cell identifiers (default: dmso|ctrl|control|vehicle)')
    conditions.add_argument('--default-condition',
                            help='Label for identifiers matching no pattern (default: leave unlabelled)')

    # Resource settings
    resources = parser.add_argument_group('Resource Settings')
    resources.add_argument('--threads', type=int, default=1, help='Number of threads (default: 1)')
    resources.add_argument('--auto-install', action='store_true',
                           help='Try to pip-install missing optional libraries at run time')
    resources.add_argument('--no-save-adata', action='store_true', help='Do not write the final .h5ad')

    # QC settings
    qc = parser.add_argument_group('QC Settings')
    qc.add_argument('--min-genes', type=int, default=200, help='Min genes per cell (default: 200)')
    qc.add_argument('--max-genes', type=int, default=6000, help='Max genes per cell (default: 6000)')
    qc.add_argument('--min-counts', type=int, default=500, help='Min counts per cell (default: 500)')
    qc.add_argument('--max-mito-pct', type=float, default=20, help='Max mitochondrial %% (default: 20)')
    qc.add_argument('--min-log10-genes-per-umi', type=float, default=0.80,
                    help='Min log10 genes per UMI (default: 0.80)')
    qc.add_argument('--min-cells', type=int, default=3, help='Min cells per gene (default: 3)')

    # Normalization
    norm = parser.add_argument_group('Normalization')
    norm.add_argument('--normalization', default='pearson_residuals', choices=['pearson_residuals', 'log1p'],
                      help='Normalization flavor (default: pearson_residuals)')
    norm.add_argument('--regress-out', nargs='*', default=['pct_counts_mt'],
                      help='obs covariates to regress out (default: pct_counts_mt)')

    # Differential expression
    de = parser.add_argument_group('Differential Expression')
    de.add_argument('--de-method', default='deseq2', choices=['deseq2', 'wilcoxon'],
                    help='DE method (default: deseq2)')
    de.add_argument('--pseudobulk-key', help='obs column to sum counts by before DESeq2')
    de.add_argument('--padj-threshold', type=float, default=0.05, help='Adjusted p cutoff (default: 0.05)')
    de.add_argument('--lfc-threshold', type=float, default=0.5, help='|log2FC| cutoff (default: 0.5)')

    # Enrichment
    enrich = parser.add_argument_group('Pathway Enrichment')
    enrich.add_argument('--skip-enrichment', action='store_true', help='Disable GO/KEGG enrichment')
    enrich.add_argument('--species', default='human', choices=['human', 'mouse'],
                        help='Species (default: human)')
    enrich.add_argument('--go-libraries', nargs='+', default=['GO_Biological_Process_2023'],
                        help='GO Enrichr libraries or .gmt files (default: GO_Biological_Process_2023)')
    enrich.add_argument('--kegg-libraries', nargs='+',
                        help='KEGG Enrichr libraries or .gmt files (default: species KEGG library)')
    enrich.add_argument('--gmt-id-type', default='symbol', choices=['symbol', 'entrez'],
                        help='Identifier type of local .gmt gene sets (default: symbol)')

    # Ligand activity
    ligand = parser.add_argument_group('Ligand Activity')
    ligand.add_argument('--ligand-target-matrix',
                        help='Targets x ligands regulatory potential matrix (enables the stage)')
    ligand.add_argument('--ligands', nargs='+', help='Candidate ligands (default: all expressed)')

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        create_config(args)
    except Exception as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
