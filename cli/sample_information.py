#!/usr/bin/env python3
"""
sample-information command
==========================

Validate a per-cell (per-well) metadata CSV and write the normalized
metadata table used by create-config --metadata.

Expected CSV columns:
- cell_id: Cell / well identifier matching the count matrix columns
  (sample_id is accepted as an alias)
- condition: Experimental condition (e.g. Drug, Control)
- compound, dose, plate, replicate: optional

Additional optional columns will be preserved in the metadata.
"""

import click
import os
import sys
import pandas as pd


ID_COLUMNS = ['cell_id', 'sample_id', 'barcode', 'well']


def validate_metadata(df, id_column, condition_column, levels):
    """
    Validate the metadata table.

    Parameters
    ----------
    df : pd.DataFrame
        Raw metadata
    id_column : str
        Cell identifier column
    condition_column : str
        Condition column
    levels : tuple
        Condition levels that must be present

    Returns
    -------
    tuple
        (is_valid, error_messages)
    """
    errors = []

    for col in (id_column, condition_column):
        if col not in df.columns:
            errors.append(f"Missing required column: {col}")
    if errors:
        return False, errors

    if df[id_column].isna().any():
        errors.append(f"{int(df[id_column].isna().sum())} rows have no {id_column}")

    ids = df[id_column].astype(str)
    if ids.duplicated().any():
        dups = ids[ids.duplicated()].tolist()
        errors.append(f"Duplicate {id_column} values found: {dups[:10]}")

    n_missing = int(df[condition_column].isna().sum())
    if n_missing:
        errors.append(f"{n_missing} rows have no {condition_column}")

    present = set(df[condition_column].dropna().astype(str))
    for level in levels:
        if level not in present:
            errors.append(f"Condition '{level}' not present (found: {sorted(present)})")

    return len(errors) == 0, errors


def normalize_metadata(df, id_column, condition_column):
    """Rename identifier and condition columns to cell_id / condition, keep the rest."""
    out = df.rename(columns={id_column: 'cell_id', condition_column: 'condition'})
    out['cell_id'] = out['cell_id'].astype(str)
    out['condition'] = out['condition'].astype(str).str.strip()
    ordered = ['cell_id', 'condition'] + [c for c in out.columns if c not in ('cell_id', 'condition')]
    return out[ordered]


@click.command('sample-information')
@click.option(
    '--input', '-i', 'input_csv',
    required=True,
    type=click.Path(exists=True),
    help='Path to CSV file containing per-cell metadata'
)
@click.option(
    '--output', '-o', 'output_tsv',
    required=True,
    type=click.Path(),
    help='Path for output metadata TSV'
)
@click.option(
    '--id-column',
    default=None,
    help='Cell identifier column (default: first of cell_id, sample_id, barcode, well)'
)
@click.option(
    '--condition-column',
    default='condition',
    show_default=True,
    help='Condition column'
)
@click.option(
    '--drug-level',
    default='Drug',
    show_default=True,
    help='Treated condition label that must be present'
)
@click.option(
    '--control-level',
    default='Control',
    show_default=True,
    help='Reference condition label that must be present'
)
@click.option(
    '--verbose', '-v',
    is_flag=True,
    default=False,
    help='Print verbose output'
)
def sample_information(input_csv, output_tsv, id_column, condition_column, drug_level, control_level, verbose):
    """
    Validate per-cell metadata and write the normalized metadata table.

    \b
    Required CSV columns:
      - cell_id (or sample_id/barcode/well): identifier matching the count matrix
      - condition: experimental condition

    \b
    Example CSV format:
      cell_id,condition,compound,dose,plate
      P1_A01,Drug,CPD-17,10uM,P1
      P1_A02,Control,DMSO,0,P1

    \b
    Usage examples:

      DrugSeqFlow sample-information -i wells.csv -o cell_metadata.tsv
      DrugSeqFlow sample-information -i wells.csv -o cell_metadata.tsv --control-level DMSO
    """

    click.echo(f"\n{'='*60}")
    click.echo("DrugSeqFlow: sample-information")
    click.echo(f"{'='*60}\n")

    # Read CSV
    click.echo(f"Reading cell metadata from: {input_csv}")
    try:
        df = pd.read_csv(input_csv)
    except Exception as e:
        click.echo(f"ERROR: Failed to read CSV file: {e}", err=True)
        sys.exit(1)

    if id_column is None:
        candidates = [c for c in ID_COLUMNS if c in df.columns]
        if not candidates:
            click.echo(f"ERROR: No cell identifier column found (tried {ID_COLUMNS})", err=True)
            click.echo(f"Found columns: {list(df.columns)}", err=True)
            sys.exit(1)
        id_column = candidates[0]

    click.echo(f"Found {len(df)} cells (identifier column: {id_column})")

    if verbose:
        click.echo(f"\nColumns found: {list(df.columns)}")

    # Validate
    click.echo("\nValidating metadata...")
    is_valid, errors = validate_metadata(df, id_column, condition_column, (drug_level, control_level))
    if not is_valid:
        click.echo("ERROR: Metadata validation failed:", err=True)
        for err in errors[:10]:
            click.echo(f"  - {err}", err=True)
        if len(errors) > 10:
            click.echo(f"  ... and {len(errors) - 10} more errors", err=True)
        sys.exit(1)
    click.echo("  Metadata validated successfully")

    metadata = normalize_metadata(df, id_column, condition_column)

    counts = metadata['condition'].value_counts()
    for level, n in counts.items():
        click.echo(f"  {level}: {n} cells")

    # Create output directory if needed
    output_dir = os.path.dirname(output_tsv)
    if output_dir and not os.path.exists(output_dir):
        os.makedirs(output_dir, exist_ok=True)

    click.echo(f"Saving to: {output_tsv}")
    metadata.to_csv(output_tsv, sep='\t', index=False)

    click.echo(f"\n{'='*60}")
    click.echo("SUCCESS: Cell metadata processed")
    click.echo(f"{'='*60}")
    click.echo(f"\nOutput: {output_tsv}")

    click.echo("\nNext step: Create pipeline configuration")
    click.echo(f"\n  DrugSeqFlow create-config \\")
    click.echo(f"    --output-dir ./results \\")
    click.echo(f"    --data /path/to/counts \\")
    click.echo(f"    --metadata {output_tsv}")
    click.echo("")


if __name__ == '__main__':
    sample_information()
