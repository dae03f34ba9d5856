import logging

import numpy as np
import pytest
from scipy.optimize import OptimizeResult

from appj_sysid.estimators import (
    IterativeEstimator,
    SubspaceEstimator,
    _check_stabilizable_detectable,
    estimator_from_config,
    get_estimator,
)
from appj_sysid.evaluate import fit_percent, simulate
from appj_sysid.exceptions import (
    ConfigurationError,
    EstimationDivergedError,
    InsufficientDataError,
)

from conftest import A_TRUE, B_TRUE, C_TRUE, random_steps, simulate_plant


def markov(A, B, C, count=5):
    out, Ak = [], np.eye(A.shape[0])
    for _ in range(count):
        out.append(C @ Ak @ B)
        Ak = Ak @ A
    return np.array(out)


@pytest.fixture
def noisy_experiment():
    rng = np.random.default_rng(3)
    u = random_steps(rng, 400, 2, hold=4)
    y = simulate_plant(u, noise=0.01, rng=rng)
    return u, y


def test_iterative_fit_matches_plant(noisy_experiment):
    u, y = noisy_experiment
    model = IterativeEstimator().fit(u, y, Ts=0.5, order=2)

    assert model.A.shape == (2, 2)
    assert model.B.shape == (2, 2)
    assert model.C.shape == (2, 2)
    assert model.Ts == 0.5
    assert model.is_stable()
    np.testing.assert_allclose(markov(model.A, model.B, model.C), markov(A_TRUE, B_TRUE, C_TRUE), atol=0.05)
    assert np.all(fit_percent(y, simulate(model, u)) > 90.0)


def test_subspace_fit_is_in_canonical_form(noisy_experiment):
    u, y = noisy_experiment
    model = SubspaceEstimator().fit(u, y, Ts=0.5, order=2)
    # Two outputs and two states: each output starts a chain of length one
    np.testing.assert_allclose(model.C, np.eye(2), atol=1e-10)
    assert model.is_stable()


def test_weighted_fit_runs(noisy_experiment):
    u, y = noisy_experiment
    model = IterativeEstimator(output_weight=np.diag([1.0, 4.0])).fit(u, y, Ts=0.5, order=2)
    assert np.all(fit_percent(y, simulate(model, u)) > 90.0)


@pytest.mark.parametrize("estimator", [IterativeEstimator(), SubspaceEstimator()])
def test_too_few_samples(estimator):
    u = np.ones((4, 2))
    with pytest.raises(InsufficientDataError):
        estimator.fit(u, u, Ts=0.5, order=2)


def test_length_mismatch():
    with pytest.raises(ValueError):
        IterativeEstimator().fit(np.zeros((50, 2)), np.zeros((49, 2)), Ts=0.5, order=2)


def test_order_must_be_positive(noisy_experiment):
    u, y = noisy_experiment
    with pytest.raises(ConfigurationError):
        SubspaceEstimator().fit(u, y, Ts=0.5, order=0)


def test_exhausted_budget_is_divergence(noisy_experiment):
    u, y = noisy_experiment
    with pytest.raises(EstimationDivergedError):
        IterativeEstimator(max_iterations=1).fit(u, y, Ts=0.5, order=2)


@pytest.mark.parametrize(
    "weight",
    [
        np.array([[1.0, 0.5], [0.0, 1.0]]),  # not symmetric
        np.diag([1.0, -1.0]),  # indefinite
        np.eye(3),  # wrong size
    ],
)
def test_invalid_output_weight(noisy_experiment, weight):
    u, y = noisy_experiment
    with pytest.raises(ConfigurationError):
        IterativeEstimator(output_weight=weight).fit(u, y, Ts=0.5, order=2)


@pytest.mark.parametrize(
    "name, kind, method",
    [
        ("iterative", IterativeEstimator, None),
        ("ssest", IterativeEstimator, None),
        ("subspace", SubspaceEstimator, "n4sid"),
        ("N4SID", SubspaceEstimator, "n4sid"),
        ("moesp", SubspaceEstimator, "moesp"),
    ],
)
def test_get_estimator_aliases(name, kind, method):
    estimator = get_estimator(name)
    assert isinstance(estimator, kind)
    if method is not None:
        assert estimator.method == method


def test_unknown_estimator_falls_back_with_one_warning(caplog):
    with caplog.at_level(logging.WARNING):
        estimator = get_estimator("arx")
    assert isinstance(estimator, IterativeEstimator)
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "Invalid estimation function" in warnings[0].getMessage()


def test_estimator_from_config_passes_options(make_config):
    config = make_config(
        est_function="ssest",
        output_weight=[[2.0, 0.0], [0.0, 1.0]],
        tolerance=1e-6,
        max_iterations=50,
        subspace_horizon=6,
    )
    estimator = estimator_from_config(config)
    assert isinstance(estimator, IterativeEstimator)
    np.testing.assert_array_equal(estimator.output_weight, np.diag([2.0, 1.0]))
    assert estimator.tolerance == 1e-6
    assert estimator.max_iterations == 50
    assert estimator.horizon == 6


def test_non_finite_solution_is_divergence(noisy_experiment, monkeypatch):
    def blown_up(fun, x0, **kwargs):
        return OptimizeResult(x=np.full_like(x0, np.nan), cost=np.nan, status=1, nfev=3, message="")

    monkeypatch.setattr("appj_sysid.estimators.least_squares", blown_up)
    u, y = noisy_experiment
    with pytest.raises(EstimationDivergedError, match="non-finite"):
        IterativeEstimator().fit(u, y, Ts=0.5, order=2)


def test_unreachable_unstable_pole_is_divergence():
    # The pole at 1.2 is not driven by the input
    A = np.diag([1.2, 0.5])
    B = np.array([[0.0], [1.0]])
    with pytest.raises(EstimationDivergedError, match="not stabilizable"):
        _check_stabilizable_detectable(A, B, np.eye(2))


def test_unobservable_unstable_pole_is_divergence():
    A = np.diag([1.2, 0.5])
    C = np.array([[0.0, 1.0]])
    with pytest.raises(EstimationDivergedError, match="not detectable"):
        _check_stabilizable_detectable(A, np.eye(2), C)


def test_stable_uncontrollable_pole_is_accepted():
    A = np.diag([0.9, 0.5])
    B = np.array([[0.0], [1.0]])
    _check_stabilizable_detectable(A, B, np.array([[0.0, 1.0]]))


@pytest.mark.parametrize(
    "name, label",
    [("ssest", "iterative"), ("arx", "iterative"), ("subspace", "n4sid"), ("MOESP", "moesp")],
)
def test_label_names_the_variant_that_runs(name, label):
    assert get_estimator(name).label == label
