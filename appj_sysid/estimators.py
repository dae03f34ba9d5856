"""
State-space estimators.

Two interchangeable strategies fit a model of fixed order to deviation data:

- SubspaceEstimator: non-iterative N4SID/MOESP fit (fast, no search).
- IterativeEstimator: prediction-error refinement of the subspace estimate in
  observability canonical form, minimizing the weighted simulation error

      V(theta) = sum_k e_k^T W e_k,   e_k = y_k - y_hat_k(theta)

Both return a StateSpaceModel in canonical form without disturbance model.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import numpy as np
from scipy.optimize import least_squares

from .canonical import to_canonical
from .config import IdentificationConfig
from .evaluate import simulate
from .exceptions import ConfigurationError, EstimationDivergedError, InsufficientDataError
from .model import StateSpaceModel
from .subspace import SubspaceMethod, subspace_fit

logger = logging.getLogger(__name__)

MIN_SAMPLES_PER_STATE = 2


class Estimator(ABC):
    """Fits (A, B, C) of a given order to training inputs and outputs."""

    name: str = ""

    @property
    def label(self) -> str:
        """Name of the variant that runs, as recorded in saved artifacts."""
        return self.name

    def fit(self, u: np.ndarray, y: np.ndarray, Ts: float, order: int) -> StateSpaceModel:
        """Identify a model from inputs ``u`` (N x m) and outputs ``y`` (N x p).

        Raises:
            InsufficientDataError: If N does not exceed the sample floor for ``order``.
        """
        u = np.asarray(u, dtype=float).reshape(len(u), -1)
        y = np.asarray(y, dtype=float).reshape(len(y), -1)
        if u.shape[0] != y.shape[0]:
            raise ValueError(f"Input and output must have same length: {u.shape[0]} != {y.shape[0]}")
        if order < 1:
            raise ConfigurationError("model order must be at least 1")
        if u.shape[0] <= MIN_SAMPLES_PER_STATE * order:
            raise InsufficientDataError(
                f"{u.shape[0]} training samples are too few for a model of order {order} "
                f"(need more than {MIN_SAMPLES_PER_STATE * order})."
            )
        return self._fit(u, y, Ts, order)

    @abstractmethod
    def _fit(self, u: np.ndarray, y: np.ndarray, Ts: float, order: int) -> StateSpaceModel:
        ...


class SubspaceEstimator(Estimator):
    """Direct subspace fit from the data covariances."""

    name = "subspace"

    def __init__(self, method: SubspaceMethod = "n4sid", horizon: int = 10):
        self.method = method
        self.horizon = horizon

    @property
    def label(self) -> str:
        return self.method.lower()

    def _fit(self, u, y, Ts, order):
        result = subspace_fit(u, y, order, method=self.method, horizon=self.horizon)
        try:
            A, B, C, _ = to_canonical(result.A, result.B, result.C)
        except (ValueError, np.linalg.LinAlgError) as exc:
            logger.warning(f"Subspace model has no observability canonical form ({exc}); "
                           f"returning the balanced realization.")
            A, B, C = result.A, result.B, result.C
        return StateSpaceModel(A=A, B=B, C=C, Ts=Ts)


class IterativeEstimator(Estimator):
    """Weighted output-error fit over the free canonical-form parameters.

    Args:
        output_weight: Symmetric positive semi-definite p x p matrix W
            (identity if None).
        tolerance: ``ftol``/``xtol``/``gtol`` of the nonlinear least-squares solver.
        max_iterations: Budget of residual evaluations (200 per parameter if None).
        horizon: Block rows of the subspace initialization.
    """

    name = "iterative"

    def __init__(
        self,
        output_weight: np.ndarray | None = None,
        tolerance: float = 1e-8,
        max_iterations: int | None = None,
        horizon: int = 10,
    ):
        self.output_weight = None if output_weight is None else np.asarray(output_weight, dtype=float)
        self.tolerance = tolerance
        self.max_iterations = max_iterations
        self.horizon = horizon

    def _weight_root(self, p: int) -> np.ndarray:
        """Symmetric square root of W, so that ||e @ W^(1/2)||^2 = e^T W e."""
        if self.output_weight is None:
            return np.eye(p)
        W = self.output_weight
        if W.shape != (p, p) or not np.allclose(W, W.T):
            raise ConfigurationError(f"output_weight must be a symmetric {p}x{p} matrix")
        w, V = np.linalg.eigh(W)
        if w.min() < -1e-12 * max(1.0, abs(w).max()):
            raise ConfigurationError("output_weight must be positive semi-definite")
        return (V * np.sqrt(np.clip(w, 0.0, None))) @ V.T

    def _fit(self, u, y, Ts, order):
        initial = subspace_fit(u, y, order, method="n4sid", horizon=self.horizon)
        try:
            A0, B0, C0, structure = to_canonical(initial.A, initial.B, initial.C)
        except (ValueError, np.linalg.LinAlgError) as exc:
            raise EstimationDivergedError(f"Initial subspace estimate is unusable: {exc}") from exc

        W_root = self._weight_root(y.shape[1])
        theta0 = structure.parameters(A0, B0, C0)

        def residual(theta: np.ndarray) -> np.ndarray:
            A, B, C = structure.build(theta)
            y_hat = simulate(StateSpaceModel(A=A, B=B, C=C, Ts=Ts), u)
            return ((y - y_hat) @ W_root).ravel()

        max_nfev = self.max_iterations if self.max_iterations is not None else 200 * theta0.size
        res = least_squares(
            residual,
            theta0,
            method="trf",
            x_scale="jac",
            ftol=self.tolerance,
            xtol=self.tolerance,
            gtol=self.tolerance,
            max_nfev=max_nfev,
        )
        logger.info(f"Iterative fit: status={res.status}, nfev={res.nfev}, cost={res.cost:.6g}")

        if res.status <= 0:
            raise EstimationDivergedError(
                f"Iterative estimator did not converge within {max_nfev} evaluations: {res.message}"
            )
        if not (np.all(np.isfinite(res.x)) and np.isfinite(res.cost)):
            raise EstimationDivergedError("Iterative estimator produced non-finite parameters.")

        A, B, C = structure.build(res.x)
        _check_stabilizable_detectable(A, B, C)
        return StateSpaceModel(A=A, B=B, C=C, Ts=Ts)


def _check_stabilizable_detectable(A: np.ndarray, B: np.ndarray, C: np.ndarray) -> None:
    """PBH test on every pole on or outside the unit circle.

    Models built by CanonicalStructure are observable, so for them only the
    stabilizability test can fail.
    """
    n = A.shape[0]
    for lam in np.linalg.eigvals(A):
        if abs(lam) < 1.0:
            continue
        M = lam * np.eye(n) - A
        if np.linalg.matrix_rank(np.hstack([M, B])) < n:
            raise EstimationDivergedError(f"Identified model is not stabilizable (pole {lam:.4g}).")
        if np.linalg.matrix_rank(np.vstack([M, C])) < n:
            raise EstimationDivergedError(f"Identified model is not detectable (pole {lam:.4g}).")


ESTIMATOR_ALIASES = {
    "iterative": "iterative",
    "ssest": "iterative",
    "subspace": "subspace",
    "n4sid": "subspace",
    "moesp": "subspace",
}


def get_estimator(
    name: str,
    output_weight: np.ndarray | None = None,
    tolerance: float = 1e-8,
    max_iterations: int | None = None,
    horizon: int = 10,
) -> Estimator:
    """Estimator for ``name``; unknown names fall back to the iterative one."""
    key = str(name).lower()
    kind = ESTIMATOR_ALIASES.get(key)
    if kind is None:
        logger.warning(f"Invalid estimation function '{name}'! Using 'iterative'...")
        kind = "iterative"

    if kind == "subspace":
        method = "moesp" if key == "moesp" else "n4sid"
        return SubspaceEstimator(method=method, horizon=horizon)
    return IterativeEstimator(
        output_weight=output_weight,
        tolerance=tolerance,
        max_iterations=max_iterations,
        horizon=horizon,
    )


def estimator_from_config(config: IdentificationConfig) -> Estimator:
    return get_estimator(
        config.est_function,
        output_weight=config.weight_matrix,
        tolerance=config.tolerance,
        max_iterations=config.max_iterations,
        horizon=config.subspace_horizon,
    )
