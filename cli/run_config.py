#!/usr/bin/env python3
"""
run-config command
==================

Execute the DrugSeqFlow pipeline described by a config.yaml, either through
Snakemake (default) or directly in the current Python process (--direct).
"""

import click
import os
import shutil
import subprocess
import sys

import snakemake_wrapper


SNAKEFILE = os.path.join(os.path.dirname(snakemake_wrapper.__file__), 'Snakefile')


def build_snakemake_command(config_file, cores=1, dry_run=False, snakefile=SNAKEFILE, extra_args=()):
    """Assemble the snakemake command line for a config file."""
    cmd = [
        'snakemake',
        '--snakefile', snakefile,
        '--configfile', config_file,
        '--cores', str(cores),
    ]
    if dry_run:
        cmd.append('--dry-run')
    cmd.extend(extra_args)
    return cmd


@click.command('run-config', context_settings={'ignore_unknown_options': True})
@click.argument('config_file', type=click.Path(exists=True))
@click.option(
    '--cores', '-j',
    type=int,
    default=1,
    show_default=True,
    help='Number of cores passed to Snakemake'
)
@click.option(
    '--dry-run', '-n',
    is_flag=True,
    default=False,
    help='Show what Snakemake would do without running it'
)
@click.option(
    '--direct',
    is_flag=True,
    default=False,
    help='Run the analysis in this process instead of through Snakemake'
)
@click.option(
    '--snakefile',
    type=click.Path(exists=True),
    default=SNAKEFILE,
    help='Alternative Snakefile'
)
@click.argument('snakemake_args', nargs=-1, type=click.UNPROCESSED)
def run_config(config_file, cores, dry_run, direct, snakefile, snakemake_args):
    """
    Run the pipeline from a configuration file.

    Any arguments after CONFIG_FILE that DrugSeqFlow does not recognise are
    forwarded to Snakemake.

    \b
    Usage examples:

      DrugSeqFlow run-config results/config.yaml --cores 8
      DrugSeqFlow run-config results/config.yaml --dry-run
      DrugSeqFlow run-config results/config.yaml --direct
    """
    config_file = os.path.abspath(config_file)

    click.echo(f"\n{'='*60}")
    click.echo("DrugSeqFlow: run-config")
    click.echo(f"{'='*60}\n")
    click.echo(f"Config: {config_file}")

    if direct:
        from snakemake_wrapper.scripts.drugseq_pipeline import load_config, run_drugseq_pipeline

        if dry_run:
            click.echo("--dry-run has no effect with --direct; nothing to do")
            return
        click.echo("Mode: direct (in-process)\n")
        try:
            result = run_drugseq_pipeline(load_config(config_file))
        except (FileNotFoundError, KeyError, ValueError, ImportError) as e:
            click.echo(f"ERROR: {e}", err=True)
            sys.exit(1)
        click.echo("\nOutputs:")
        for name, path in result['outputs'].items():
            click.echo(f"  {name}: {path}")
        return

    if shutil.which('snakemake') is None:
        click.echo("ERROR: snakemake executable not found on PATH (use --direct to run without it)", err=True)
        sys.exit(1)

    cmd = build_snakemake_command(config_file, cores, dry_run, snakefile, snakemake_args)
    click.echo(f"Mode: snakemake ({cores} cores)")
    click.echo(f"Command: {' '.join(cmd)}\n")

    returncode = subprocess.call(cmd)
    if returncode != 0:
        click.echo(f"\nERROR: Snakemake exited with status {returncode}", err=True)
        sys.exit(returncode)

    click.echo(f"\n{'='*60}")
    click.echo("SUCCESS: Pipeline finished")
    click.echo(f"{'='*60}")
