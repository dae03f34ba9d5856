import logging

import numpy as np
import pytest

from appj_sysid.evaluate import (
    ErrorBounds,
    combine_bounds,
    error_bounds,
    error_stats,
    evaluate,
    fit_percent,
    simulate,
)
from appj_sysid.model import StateSpaceModel
from appj_sysid.split import IOSegments

from conftest import A_TRUE, B_TRUE, C_TRUE, random_steps, simulate_plant


@pytest.fixture
def plant():
    return StateSpaceModel(A=A_TRUE, B=B_TRUE, C=C_TRUE, Ts=0.5)


def test_simulate_matches_recursion(plant):
    u = random_steps(np.random.default_rng(0), 50, 2)
    np.testing.assert_allclose(simulate(plant, u), simulate_plant(u))


def test_simulate_is_strictly_proper(plant):
    u = np.ones((3, 2))
    y_hat = simulate(plant, u)
    np.testing.assert_array_equal(y_hat[0], [0.0, 0.0])
    np.testing.assert_allclose(y_hat[1], C_TRUE @ B_TRUE @ [1.0, 1.0])


def test_simulate_from_initial_state(plant):
    x0 = np.array([1.0, -2.0])
    y_hat, x_end = simulate(plant, np.zeros((2, 2)), x0=x0, return_state=True)
    np.testing.assert_allclose(y_hat[0], x0)
    np.testing.assert_allclose(y_hat[1], A_TRUE @ x0)
    np.testing.assert_allclose(x_end, A_TRUE @ A_TRUE @ x0)


def test_simulate_clips_unstable_models():
    model = StateSpaceModel(A=[[2.0]], B=[[1.0]], C=[[1.0]], Ts=1.0)
    y_hat = simulate(model, np.ones((200, 1)))
    assert np.all(np.isfinite(y_hat))
    assert y_hat.max() == 1e6


def test_error_bounds_per_output():
    y = np.array([[1.0, 0.0], [3.0, -1.0], [2.0, 2.0]])
    y_hat = np.array([[0.0, 0.0], [1.0, 0.0], [3.0, 0.5]])
    bounds = error_bounds(y, y_hat)
    np.testing.assert_array_equal(bounds.max_errors, [2.0, 1.5])
    np.testing.assert_array_equal(bounds.min_errors, [-1.0, -1.0])


def test_combined_bounds_envelope_both_segments():
    rng = np.random.default_rng(5)
    train = error_bounds(rng.normal(size=(40, 3)), np.zeros((40, 3)))
    valid = error_bounds(rng.normal(size=(20, 3)), np.zeros((20, 3)))
    bounds = combine_bounds(train, valid)
    for part in (train, valid):
        assert np.all(bounds.max_errors >= part.max_errors)
        assert np.all(bounds.min_errors <= part.min_errors)
    assert np.all(bounds.max_errors >= bounds.min_errors)


def test_combine_without_validation_keeps_training_bounds():
    train = ErrorBounds(max_errors=np.array([1.0]), min_errors=np.array([-1.0]))
    assert combine_bounds(train, None) is train


def test_fit_percent():
    y = np.column_stack([np.linspace(0, 1, 20), np.linspace(1, 0, 20)])
    np.testing.assert_allclose(fit_percent(y, y), [100.0, 100.0])
    mean_model = np.tile(y.mean(axis=0), (20, 1))
    np.testing.assert_allclose(fit_percent(y, mean_model), [0.0, 0.0], atol=1e-12)
    assert np.isnan(fit_percent(np.ones((5, 1)), np.ones((5, 1)))[0])


def test_error_stats():
    residual = np.array([[1.0, 0.0], [-1.0, 2.0]])
    stats = error_stats(residual, ["T", "I"])
    assert stats["T"] == {"mse": 1.0, "std": 1.0}
    assert stats["I"] == {"mse": 2.0, "std": 1.0}


def test_evaluate_exact_model_with_validation(plant, caplog):
    u = random_steps(np.random.default_rng(2), 100, 2)
    y = simulate_plant(u)
    data = IOSegments(u_train=u[:70], y_train=y[:70], u_valid=u[70:], y_valid=y[70:])

    with caplog.at_level(logging.INFO):
        evaluation = evaluate(plant, data)

    # The validation run continues from the final training state
    np.testing.assert_allclose(evaluation.y_valid_sim, y[70:], atol=1e-10)
    np.testing.assert_allclose(evaluation.bounds.max_errors, 0.0, atol=1e-10)
    np.testing.assert_allclose(evaluation.bounds.min_errors, 0.0, atol=1e-10)
    np.testing.assert_allclose(evaluation.valid_fit, 100.0)
    assert "Maximum Output Errors" in caplog.text
    assert "Minimum Output Errors" in caplog.text


def test_evaluate_without_validation(plant):
    u = random_steps(np.random.default_rng(2), 60, 2)
    y = simulate_plant(u) + 0.1
    evaluation = evaluate(plant, IOSegments(u_train=u, y_train=y))
    assert evaluation.y_valid_sim is None
    assert evaluation.valid_bounds is None
    assert evaluation.bounds is evaluation.train_bounds
    np.testing.assert_allclose(evaluation.bounds.max_errors, 0.1)


def test_evaluate_empty_validation_segment_warns(plant, caplog):
    u = random_steps(np.random.default_rng(2), 30, 2)
    y = simulate_plant(u)
    data = IOSegments(u_train=u, y_train=y, u_valid=np.zeros((0, 2)), y_valid=np.zeros((0, 2)))
    with caplog.at_level(logging.WARNING):
        evaluation = evaluate(plant, data)
    assert evaluation.valid_bounds is None
    assert "Validation segment is empty" in caplog.text
