#!/usr/bin/env python3
"""
DrugSeqFlow CLI
===============

DRUG-seq analysis pipeline for:
- Count matrix loading and Drug / Control labelling
- Cell QC and filtering (Scanpy)
- Variance-stabilizing normalization
- Differential expression (PyDESeq2 or Wilcoxon)
- GO / KEGG over-representation (GSEApy)
- Ligand activity prediction from a ligand-target prior

Three main commands:
1. sample-information: Validate per-cell metadata and write a normalized table
2. create-config: Generate master config YAML for pipeline
3. run-config: Execute the pipeline
"""

import click

from cli import __version__
from cli.create_config import main as create_config_main
from cli.sample_information import sample_information
from cli.run_config import run_config


@click.group()
@click.version_option(version=__version__, prog_name='DrugSeqFlow')
def main():
    """
    DrugSeqFlow: DRUG-seq Drug vs Control analysis pipeline

    Takes a gene x cell count matrix with Drug and Control cells through QC,
    normalization and differential expression, then annotates the significant
    genes with GO / KEGG enrichment and, optionally, ligand activities.

    \b
    Typical workflow:
    1. DrugSeqFlow sample-information --input wells.csv --output cell_metadata.tsv
    2. DrugSeqFlow create-config --output-dir ./results --data counts/ --metadata cell_metadata.tsv
    3. DrugSeqFlow run-config ./results/config.yaml

    \b
    Condition labels from cell identifiers (no metadata):
    DrugSeqFlow create-config \\
        --output-dir ./results \\
        --data /path/to/filtered_feature_bc_matrix \\
        --drug-pattern 'drug|cpd' --control-pattern 'dmso'
    """
    pass


@main.command(
    'create-config',
    context_settings={'ignore_unknown_options': True, 'help_option_names': []},
    add_help_option=False,
)
@click.argument('args', nargs=-1, type=click.UNPROCESSED)
def create_config_cmd(args):
    """
    Generate pipeline configuration file.

    Arguments are forwarded to create_config.py; run
    `DrugSeqFlow create-config --help` for the full option list.
    """
    create_config_main(list(args))


# Register subcommands
main.add_command(sample_information)
main.add_command(run_config)


if __name__ == '__main__':
    main()
