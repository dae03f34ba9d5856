from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .model import StateSpaceModel
from .split import IOSegments

logger = logging.getLogger(__name__)

STATE_CLIP = 1e6
OUTPUT_CLIP = 1e6


@dataclass(frozen=True)
class ErrorBounds:
    """Per-output extreme residuals (actual - simulated)."""

    max_errors: np.ndarray
    min_errors: np.ndarray


@dataclass(frozen=True)
class Evaluation:
    """Simulated trajectories and error bounds of a fitted model.

    Attributes:
        y_train_sim: Simulated training outputs (N_train x p).
        train_bounds: Error bounds on the training segment.
        bounds: Envelope of the training and validation bounds.
        train_fit: NRMSE fit in percent per output on the training segment.
        y_valid_sim: Simulated validation outputs, None without validation.
        valid_bounds: Error bounds on the validation segment, None without validation.
        valid_fit: NRMSE fit on the validation segment, None without validation.
    """

    y_train_sim: np.ndarray
    train_bounds: ErrorBounds
    bounds: ErrorBounds
    train_fit: np.ndarray
    y_valid_sim: np.ndarray | None = None
    valid_bounds: ErrorBounds | None = None
    valid_fit: np.ndarray | None = None


def simulate(
    model: StateSpaceModel,
    u: np.ndarray,
    x0: np.ndarray | None = None,
    return_state: bool = False,
):
    """Simulate the output sequence of ``model`` driven by ``u``.

    State and output magnitudes are clipped so that unstable models stay
    finite over long horizons.

    Args:
        model: Identified model.
        u: Inputs, shape (N, m), rows in time order.
        x0: Initial state (zeros if None).
        return_state: Also return the state after the last sample.

    Returns:
        y_hat of shape (N, p), or ``(y_hat, x_final)`` if ``return_state``.
    """
    A, B, C = model.A, model.B, model.C
    u = np.asarray(u, dtype=float).reshape(len(u), -1)
    N = u.shape[0]

    x = np.zeros(model.order) if x0 is None else np.asarray(x0, dtype=float).reshape(model.order)
    y_hat = np.zeros((N, model.n_outputs))

    for k in range(N):
        y_hat[k] = np.clip(C @ x, -OUTPUT_CLIP, OUTPUT_CLIP)
        x = np.clip(A @ x + B @ u[k], -STATE_CLIP, STATE_CLIP)

    if return_state:
        return y_hat, x
    return y_hat


def error_bounds(y: np.ndarray, y_hat: np.ndarray) -> ErrorBounds:
    """Per-output max and min of the residual ``y - y_hat`` over the horizon."""
    residual = np.asarray(y, dtype=float) - np.asarray(y_hat, dtype=float)
    return ErrorBounds(max_errors=residual.max(axis=0), min_errors=residual.min(axis=0))


def combine_bounds(train: ErrorBounds, valid: ErrorBounds | None) -> ErrorBounds:
    """Conservative envelope of two bounds: elementwise max of maxima, min of minima."""
    if valid is None:
        return train
    return ErrorBounds(
        max_errors=np.maximum(train.max_errors, valid.max_errors),
        min_errors=np.minimum(train.min_errors, valid.min_errors),
    )


def fit_percent(y: np.ndarray, y_hat: np.ndarray) -> np.ndarray:
    """Normalized root-mean-square fit per output, 100 = perfect."""
    y = np.asarray(y, dtype=float)
    err = np.linalg.norm(y - y_hat, axis=0)
    spread = np.linalg.norm(y - y.mean(axis=0), axis=0)
    spread = np.where(spread < 1e-12, np.nan, spread)
    return 100.0 * (1.0 - err / spread)


def error_stats(residual: np.ndarray, labels: Sequence[str]) -> dict[str, dict[str, float]]:
    """Mean squared error and standard deviation of each output's residual."""
    stats = {}
    for idx, label in enumerate(labels):
        e = residual[:, idx]
        stats[label] = {"mse": float(np.mean(e**2)), "std": float(np.std(e))}
    return stats


def evaluate(model: StateSpaceModel, data: IOSegments) -> Evaluation:
    """Simulate ``model`` on the training and validation segments.

    The training run starts from the zero state. The validation segment
    directly follows the training segment, so its run starts from the
    state reached at the end of the training run.
    """
    y_train_sim, x_end = simulate(model, data.u_train, return_state=True)
    train_bounds = error_bounds(data.y_train, y_train_sim)
    train_fit = fit_percent(data.y_train, y_train_sim)

    y_valid_sim = valid_bounds = valid_fit = None
    if data.has_validation and data.n_valid == 0:
        logger.warning("Validation segment is empty; bounds use the training data only.")
    elif data.has_validation:
        y_valid_sim = simulate(model, data.u_valid, x0=x_end)
        valid_bounds = error_bounds(data.y_valid, y_valid_sim)
        valid_fit = fit_percent(data.y_valid, y_valid_sim)

    bounds = combine_bounds(train_bounds, valid_bounds)
    logger.info(f"Maximum Output Errors: {np.array2string(bounds.max_errors, precision=6)}")
    logger.info(f"Minimum Output Errors: {np.array2string(bounds.min_errors, precision=6)}")

    return Evaluation(
        y_train_sim=y_train_sim,
        train_bounds=train_bounds,
        bounds=bounds,
        train_fit=train_fit,
        y_valid_sim=y_valid_sim,
        valid_bounds=valid_bounds,
        valid_fit=valid_fit,
    )
