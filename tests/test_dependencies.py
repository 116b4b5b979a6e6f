from __future__ import annotations

import subprocess

from snakemake_wrapper.scripts import dependencies
from snakemake_wrapper.scripts.dependencies import check_dependencies, install_package, is_available


def test_is_available():
    assert is_available("json")
    assert not is_available("drugseqflow_no_such_module")


def test_install_failure_is_a_warning(monkeypatch, caplog):
    def failing_run(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd, stderr="ERROR: No matching distribution found")

    monkeypatch.setattr(dependencies.subprocess, "run", failing_run)
    assert install_package("drugseqflow-no-such-package") is False
    assert "Could not install drugseqflow-no-such-package" in caplog.text
    assert "No matching distribution" in caplog.text


def test_check_dependencies_never_raises(monkeypatch):
    attempts = []

    def fake_install(pip_name, timeout=600):
        attempts.append(pip_name)
        return False

    monkeypatch.setattr(dependencies, "install_package", fake_install)
    status = check_dependencies(
        {"json": "json", "drugseqflow_no_such_module": "drugseqflow-no-such-package"},
        auto_install=True,
    )
    assert status == {"json": True, "drugseqflow_no_such_module": False}
    assert attempts == ["drugseqflow-no-such-package"]


def test_missing_packages_not_installed_by_default(monkeypatch):
    monkeypatch.setattr(dependencies, "install_package", _unexpected_install)
    status = check_dependencies({"drugseqflow_no_such_module": "x"})
    assert status == {"drugseqflow_no_such_module": False}


def _unexpected_install(*args, **kwargs):
    raise AssertionError("install_package should not be called")
