from __future__ import annotations

import numpy as np
import pytest

from snakemake_wrapper.scripts.normalization import normalize_data
from snakemake_wrapper.scripts.qc_filtering import calculate_qc_metrics


@pytest.fixture
def qc_adata(drugseq_adata):
    return calculate_qc_metrics(drugseq_adata)


def test_pearson_residuals_keep_raw_counts(qc_adata):
    raw = qc_adata.X.toarray().copy()
    adata = normalize_data(qc_adata)

    assert np.array_equal(adata.layers["counts"].toarray(), raw)
    assert adata.uns["normalization"] == {"flavor": "pearson_residuals", "regress_out": ["pct_counts_mt"]}
    X = np.asarray(adata.X)
    assert X.shape == raw.shape
    assert np.isfinite(X).all()


def test_log1p_flavor_without_regression(qc_adata):
    adata = normalize_data(qc_adata, {"flavor": "log1p", "regress_out": []})
    X = adata.X.toarray()
    expected = np.log1p(
        adata.layers["counts"].toarray() / adata.layers["counts"].toarray().sum(axis=1, keepdims=True) * 1e4
    )
    assert np.allclose(X, expected, atol=1e-4)
    assert adata.uns["normalization"]["regress_out"] == []


def test_missing_covariate_is_skipped(qc_adata, caplog):
    adata = normalize_data(qc_adata, {"flavor": "log1p", "regress_out": ["batch_score"]})
    assert adata.uns["normalization"]["regress_out"] == []
    assert "batch_score" in caplog.text


def test_unknown_flavor(qc_adata):
    with pytest.raises(ValueError, match="Unknown normalization flavor"):
        normalize_data(qc_adata, {"flavor": "sctransform_v3"})
