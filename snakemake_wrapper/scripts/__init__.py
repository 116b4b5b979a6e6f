"""Analysis stages of the DRUG-seq pipeline, importable or runnable as scripts."""
