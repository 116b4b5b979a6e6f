"""
DrugSeqFlow workflow
====================

Snakefile and analysis scripts for the DRUG-seq pipeline.
"""
