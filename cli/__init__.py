"""
DrugSeqFlow CLI Package
=======================

Command-line interface for the DrugSeqFlow DRUG-seq analysis pipeline.

Commands:
- sample-information: Validate per-cell metadata and write a normalized table
- create-config: Generate master config YAML for pipeline
- run-config: Execute the pipeline (Snakemake or in-process)
"""

__version__ = '0.1.0'

from cli.sample_information import sample_information
from cli.run_config import run_config

__all__ = ['sample_information', 'run_config']
