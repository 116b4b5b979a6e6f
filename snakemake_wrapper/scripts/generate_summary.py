#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
generate_summary.py
===================

Generate the run summary YAML file combining the metrics of every pipeline
stage.
"""

import os
import yaml
import logging
from datetime import datetime

import numpy as np

logger = logging.getLogger(__name__)

PIPELINE_NAME = 'DrugSeqFlow'
PIPELINE_VERSION = '0.1.0'


def _plain(value):
    """Convert numpy scalars and containers into YAML-safe Python objects."""
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, np.generic):
        return value.item()
    return value


def generate_summary(stats, config, output_file):
    """
    Write the pipeline summary.

    Parameters
    ----------
    stats : dict
        Per-stage metrics collected by the pipeline ({'qc': {...}, 'de': {...}, ...})
    config : dict
        Effective configuration of the run
    output_file : str
        Output YAML path

    Returns
    -------
    dict
        The summary written to disk
    """
    logger.info("="*60)
    logger.info("GENERATING RUN SUMMARY")
    logger.info("="*60)

    summary = {
        'pipeline': {
            'name': PIPELINE_NAME,
            'version': PIPELINE_VERSION,
            'completion_time': datetime.now().isoformat(),
        },
        'configuration': _plain(config),
        'results': {},
    }

    for stage in ('input', 'qc', 'normalization', 'de', 'enrichment', 'ligand_activity'):
        if stage in stats:
            summary['results'][stage] = {'status': 'completed', 'metrics': _plain(stats[stage])}
        else:
            summary['results'][stage] = {'status': 'skipped'}

    summary['outputs'] = _plain(stats.get('outputs', {}))

    output_dir = os.path.dirname(output_file)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
    with open(output_file, 'w') as f:
        yaml.dump(summary, f, default_flow_style=False, sort_keys=False)

    logger.info(f"Summary written to: {output_file}")
    return summary
