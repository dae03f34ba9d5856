from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.signal import StateSpace


@dataclass(frozen=True)
class StateSpaceModel:
    """Discrete LTI model without feedthrough or disturbance model.

        x[k+1] = A @ x[k] + B @ u[k]
        y[k]   = C @ x[k]

    Attributes:
        A: State transition matrix (n x n).
        B: Input matrix (n x m).
        C: Output matrix (p x n).
        Ts: Sampling period in seconds.
    """

    A: np.ndarray
    B: np.ndarray
    C: np.ndarray
    Ts: float

    def __post_init__(self) -> None:
        for name in ("A", "B", "C"):
            arr = np.array(getattr(self, name), dtype=float)
            if arr.ndim != 2:
                raise ValueError(f"{name} must be a 2D matrix, got shape {arr.shape}")
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

        n = self.A.shape[0]
        if self.A.shape != (n, n):
            raise ValueError(f"A must be square, got shape {self.A.shape}")
        if self.B.shape[0] != n or self.C.shape[1] != n:
            raise ValueError(
                f"inconsistent shapes: A {self.A.shape}, B {self.B.shape}, C {self.C.shape}"
            )

    @property
    def order(self) -> int:
        return self.A.shape[0]

    @property
    def n_inputs(self) -> int:
        return self.B.shape[1]

    @property
    def n_outputs(self) -> int:
        return self.C.shape[0]

    @property
    def poles(self) -> np.ndarray:
        return np.linalg.eigvals(self.A)

    def is_stable(self) -> bool:
        """True if every pole lies strictly inside the unit circle."""
        return bool(np.all(np.abs(self.poles) < 1.0))

    def to_ss(self) -> StateSpace:
        """Convert to a scipy discrete StateSpace with D = 0."""
        D = np.zeros((self.n_outputs, self.n_inputs))
        return StateSpace(self.A, self.B, self.C, D, dt=self.Ts)
