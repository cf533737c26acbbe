from __future__ import annotations

import numpy as np
import pytest

from tenurebayes.analyse import DiagnosticReport, autocorrelation, diagnose, gelman_rubin, rhat_table, trace
from tenurebayes.errors import NonConvergence


@pytest.fixture
def rng():
    return np.random.default_rng(42)


def test_gelman_rubin_same_distribution(rng):
    psrf = gelman_rubin(rng.standard_normal((4, 2000)))
    assert psrf.point == pytest.approx(1.0, abs=0.01)
    assert psrf.upper >= psrf.point


def test_gelman_rubin_separated_chains(rng):
    draws = rng.standard_normal((2, 1000))
    draws[1] += 3.0
    psrf = gelman_rubin(draws)
    assert psrf.point > 1.05
    assert psrf.upper > psrf.point


def test_gelman_rubin_upper_bound_grows_with_confidence(rng):
    draws = rng.standard_normal((3, 200))
    assert gelman_rubin(draws, 0.99).upper >= gelman_rubin(draws, 0.9).upper


def test_gelman_rubin_constant_chains():
    assert gelman_rubin(np.ones((2, 10))) == (1.0, 1.0)
    same = np.ones((2, 10))
    same[1] = 2.0
    assert gelman_rubin(same).point == np.inf


@pytest.mark.parametrize(
    "shape, message",
    [((1, 100), "at least 2 chains"), ((3, 1), "at least 2 draws"), ((100,), "Expected")],
)
def test_gelman_rubin_bad_input(shape, message):
    with pytest.raises(ValueError, match=message):
        gelman_rubin(np.zeros(shape))


def test_rhat_table_rows(fitted):
    table = rhat_table(fitted)

    # intercept, beta_male, 5 age levels, 9 province contrasts
    assert len(table) == 16
    assert table["parameter"].iloc[0] == "intercept"
    assert "age_effects[Under 20]" in table["parameter"].tolist()
    assert "province_effects[Alberta]" not in table["parameter"].tolist()
    assert table["passed"].all()
    assert (table["psrf_upper"] >= table["psrf"]).all()
    assert np.allclose(table["psrf"], 1.0, atol=0.05)


def test_diagnose_converged(fitted):
    report = diagnose(fitted)

    assert isinstance(report, DiagnosticReport)
    assert report.converged
    assert report.failed == []
    assert not any(w.category is NonConvergence for w in report.warnings)
    assert report.to_dict()["converged"] is True


def test_diagnose_flags_offset_chain(fitted_factory):
    report = diagnose(fitted_factory(offset=1.0))

    assert not report.converged
    assert "intercept" in report.failed
    flagged = {w.parameter for w in report.warnings if w.category is NonConvergence}
    assert flagged == set(report.failed)


def test_diagnose_single_chain(fitted_factory):
    report = diagnose(fitted_factory(chains=1))

    assert not report.converged
    assert report.table["psrf"].isna().all()
    assert any(
        w.category is NonConvergence and w.parameter is None for w in report.warnings
    )


def test_trace(fitted):
    series = trace(fitted, "age_effects[30-39]")
    assert series.shape == (2, 300)
    np.testing.assert_array_equal(series, fitted.draws("age_effects")[..., 2])
    with pytest.raises(KeyError, match="Unknown coefficient"):
        trace(fitted, "age_effects[70+]")


def test_autocorrelation(fitted):
    acf = autocorrelation(fitted, "beta_male", max_lag=10)
    assert acf.shape == (2, 11)
    np.testing.assert_allclose(acf[:, 0], 1.0)
    # independent draws decorrelate immediately
    assert np.all(np.abs(acf[:, 1:]) < 0.25)


def test_gelman_rubin_identical_chains(rng):
    chain = rng.standard_normal(1000)
    psrf = gelman_rubin(np.stack([chain, chain, chain]))
    assert psrf.point == pytest.approx(1.0, abs=1e-3)
    assert psrf.upper == pytest.approx(psrf.point, abs=1e-3)
