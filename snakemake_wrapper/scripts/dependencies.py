#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
dependencies.py
===============

Best-effort checks (and optional installation) of the libraries used by the
optional pipeline stages. Installation failures are logged and never stop
the run.
"""

import sys
import logging
import subprocess
import importlib.util

logger = logging.getLogger(__name__)


# import name -> pip name
OPTIONAL_PACKAGES = {
    'pydeseq2': 'pydeseq2',
    'gseapy': 'gseapy',
    'mygene': 'mygene',
}


def is_available(module_name):
    """True when module_name can be imported."""
    try:
        return importlib.util.find_spec(module_name) is not None
    except (ImportError, ValueError):
        return False


def install_package(pip_name, timeout=600):
    """
    Try to pip-install a package into the running interpreter.

    Returns
    -------
    bool
        True on success; failures are logged as warnings
    """
    cmd = [sys.executable, '-m', 'pip', 'install', pip_name]
    logger.info(f"  Installing {pip_name}: {' '.join(cmd)}")
    try:
        subprocess.run(cmd, check=True, capture_output=True, text=True, timeout=timeout)
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or '').strip().splitlines()
        logger.warning(f"  Could not install {pip_name}: {stderr[-1] if stderr else e}")
        return False
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning(f"  Could not install {pip_name}: {e}")
        return False
    importlib.invalidate_caches()
    return True


def check_dependencies(packages=None, auto_install=False):
    """
    Report which optional packages are importable.

    Parameters
    ----------
    packages : dict, optional
        {import name: pip name}; defaults to OPTIONAL_PACKAGES
    auto_install : bool
        Attempt to pip-install missing packages

    Returns
    -------
    dict
        {import name: available}
    """
    packages = packages or OPTIONAL_PACKAGES
    logger.info("Checking optional dependencies...")

    status = {}
    for module_name, pip_name in packages.items():
        available = is_available(module_name)
        if not available and auto_install:
            available = install_package(pip_name) and is_available(module_name)
        status[module_name] = available
        logger.info(f"  {module_name}: {'available' if available else 'MISSING'}")

    return status
