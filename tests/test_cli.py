from __future__ import annotations

import importlib
from pathlib import Path

import pandas as pd
import yaml
from click.testing import CliRunner

from cli.cli import main

run_config_module = importlib.import_module("cli.run_config")


def test_help_lists_commands():
    result = CliRunner().invoke(main, ["--help"])
    assert result.exit_code == 0
    for command in ("create-config", "sample-information", "run-config"):
        assert command in result.output


def test_create_config_writes_all_sections(tmp_path: Path, counts_table):
    out = tmp_path / "results"
    result = CliRunner().invoke(
        main,
        [
            "create-config",
            "--output-dir", str(out),
            "--data", counts_table,
            "--de-method", "wilcoxon",
            "--control-pattern", "dmso",
            "--skip-enrichment",
            "--threads", "4",
        ],
    )
    assert result.exit_code == 0, result.output

    config = yaml.safe_load((out / "config.yaml").read_text(encoding="utf-8"))
    for section in ("input", "qc", "normalization", "differential_expression", "enrichment", "ligand_activity"):
        assert section in config
    assert config["input"]["data_path"] == str(Path(counts_table).resolve())
    assert config["input"]["condition_patterns"] == {"Control": "dmso", "Drug": "drug|treat"}
    assert config["differential_expression"]["method"] == "wilcoxon"
    assert config["differential_expression"]["padj_threshold"] == 0.05
    assert config["differential_expression"]["lfc_threshold"] == 0.5
    assert config["enrichment"]["enabled"] is False
    assert config["ligand_activity"]["enabled"] is False
    assert config["threads"] == 4


def test_create_config_missing_data(tmp_path: Path):
    result = CliRunner().invoke(
        main, ["create-config", "--output-dir", str(tmp_path), "--data", str(tmp_path / "absent")]
    )
    assert result.exit_code == 1
    assert not (tmp_path / "config.yaml").exists()


def test_sample_information_normalizes_metadata(tmp_path: Path):
    csv = tmp_path / "wells.csv"
    pd.DataFrame(
        {
            "sample_id": ["P1_A01", "P1_A02", "P1_A03"],
            "treatment": ["Drug", "Control", " Drug "],
            "dose": ["10uM", "0", "1uM"],
        }
    ).to_csv(csv, index=False)
    out = tmp_path / "meta" / "cell_metadata.tsv"

    result = CliRunner().invoke(
        main,
        ["sample-information", "-i", str(csv), "-o", str(out), "--condition-column", "treatment"],
    )
    assert result.exit_code == 0, result.output

    meta = pd.read_csv(out, sep="\t")
    assert meta.columns.tolist() == ["cell_id", "condition", "dose"]
    assert meta["condition"].tolist() == ["Drug", "Control", "Drug"]


def test_sample_information_rejects_bad_metadata(tmp_path: Path):
    csv = tmp_path / "wells.csv"
    pd.DataFrame({"cell_id": ["a", "a"], "condition": ["Drug", "Drug"]}).to_csv(csv, index=False)

    result = CliRunner().invoke(main, ["sample-information", "-i", str(csv), "-o", str(tmp_path / "m.tsv")])
    assert result.exit_code == 1
    assert "Duplicate cell_id" in result.output
    assert "Condition 'Control' not present" in result.output
    assert not (tmp_path / "m.tsv").exists()


def test_run_config_calls_snakemake(tmp_path: Path, monkeypatch):
    config = tmp_path / "config.yaml"
    config.write_text("output_dir: .\n", encoding="utf-8")
    calls = []

    monkeypatch.setattr(run_config_module.shutil, "which", lambda name: "/usr/bin/snakemake")
    monkeypatch.setattr(run_config_module.subprocess, "call", lambda cmd: calls.append(cmd) or 0)

    result = CliRunner().invoke(main, ["run-config", str(config), "--cores", "3", "--dry-run"])
    assert result.exit_code == 0, result.output
    cmd = calls[0]
    assert cmd[0] == "snakemake"
    assert cmd[cmd.index("--configfile") + 1] == str(config.resolve())
    assert cmd[cmd.index("--cores") + 1] == "3"
    assert "--dry-run" in cmd
    assert cmd[cmd.index("--snakefile") + 1].endswith("Snakefile")


def test_run_config_without_snakemake(tmp_path: Path, monkeypatch):
    config = tmp_path / "config.yaml"
    config.write_text("output_dir: .\n", encoding="utf-8")
    monkeypatch.setattr(run_config_module.shutil, "which", lambda name: None)

    result = CliRunner().invoke(main, ["run-config", str(config)])
    assert result.exit_code == 1
    assert "--direct" in result.output


def test_build_snakemake_command_forwards_extra_args():
    cmd = run_config_module.build_snakemake_command(
        "config.yaml", cores=2, snakefile="Snakefile", extra_args=("--rerun-incomplete",)
    )
    assert cmd == [
        "snakemake", "--snakefile", "Snakefile", "--configfile", "config.yaml",
        "--cores", "2", "--rerun-incomplete",
    ]
