#!/usr/bin/env python3

from setuptools import setup, find_packages

setup(
    name='DrugSeqFlow',
    version='0.1.0',
    description='DRUG-seq analysis pipeline: QC, normalization, Drug vs Control differential expression, '
                'pathway enrichment and ligand activity prediction',
    author='',
    author_email='',
    license='GPL-3.0',
    packages=find_packages(exclude=['tests', 'tests.*']),
    include_package_data=True,
    package_data={
        'snakemake_wrapper': ['Snakefile', 'scripts/*'],
    },
    entry_points={
        'console_scripts': [
            'DrugSeqFlow=cli.cli:main',
        ],
    },
    install_requires=[
        'click',
        'snakemake>=7.0',
        'pyyaml',
        'pandas',
        'numpy',
        'scipy',
        'scanpy>=1.10',
        'anndata',
        'matplotlib',
        'seaborn',
        'scikit-learn',
        'pydeseq2>=0.5',
        'gseapy>=1.0',
        'mygene',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    python_requires='>=3.9',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Science/Research',
        'License :: OSI Approved :: GNU General Public License v3 (GPLv3)',
        'Natural Language :: English',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Topic :: Scientific/Engineering :: Bio-Informatics',
    ],
    keywords='drug-seq rna-seq differential-expression enrichment bioinformatics',
)
