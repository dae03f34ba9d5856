"""
Subspace identification of strictly proper discrete state-space models.

Implements two non-iterative methods on block Hankel matrices of the data:
- N4SID: oblique projection of future outputs along future inputs onto the past
- MOESP: orthogonal projection of outputs onto the complement of the inputs

Both identify
    x[k+1] = A @ x[k] + B @ u[k]
    y[k]   = C @ x[k]
with the feedthrough forced to zero.

References:
    - Van Overschee & De Moor (1994). N4SID: Subspace algorithms for the
      identification of combined deterministic-stochastic systems.
    - Verhaegen & Dewilde (1992). Subspace model identification.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import numpy as np
from numpy.linalg import lstsq, svd
from scipy.linalg import pinv, qr

from .exceptions import InsufficientDataError

SubspaceMethod = Literal["n4sid", "moesp"]

# Relative cutoff for pseudo-inverses of rank-deficient LQ blocks
PINV_RTOL = 1e-10


@dataclass
class SubspaceResult:
    """Matrices and diagnostics of a subspace fit.

    Attributes:
        A: State transition matrix (n x n).
        B: Input matrix (n x m).
        C: Output matrix (p x n).
        horizon: Number of block rows actually used.
        singular_values: Singular values of the projected data (order diagnostics).
    """

    A: np.ndarray
    B: np.ndarray
    C: np.ndarray
    horizon: int
    singular_values: np.ndarray


def block_hankel(x: np.ndarray, rows: int, cols: int) -> np.ndarray:
    """Block Hankel matrix of ``x`` (n_vars x n_samples) with ``rows`` block rows."""
    n_vars, n_samples = x.shape
    if rows < 1 or cols < 1:
        raise ValueError("block Hankel dimensions must be positive")
    if cols > n_samples - rows + 1:
        raise ValueError(f"cols={cols} too large for {n_samples} samples and {rows} block rows")

    H = np.empty((n_vars * rows, cols))
    for k in range(rows):
        H[k * n_vars : (k + 1) * n_vars, :] = x[:, k : k + cols]
    return H


def _pinv(M: np.ndarray) -> np.ndarray:
    return pinv(M, rtol=PINV_RTOL)


def _lq(M: np.ndarray) -> np.ndarray:
    """Lower-triangular factor L of M = L @ Q."""
    _, R = qr(M.T, mode="economic")
    return R.T


def _observability(U: np.ndarray, S: np.ndarray, order: int) -> np.ndarray:
    """Extended observability matrix from the leading singular subspace."""
    return U[:, :order] * np.sqrt(S[:order])


def _shift_invariance(Ok: np.ndarray, ny: int, order: int) -> tuple[np.ndarray, np.ndarray]:
    """A and C from Ok = [C; CA; CA^2; ...]; A solves Ok[ny:] = Ok[:-ny] @ A."""
    C = Ok[:ny, :order]
    A = lstsq(Ok[:-ny, :order], Ok[ny:, :order], rcond=None)[0]
    return A, C


def max_horizon(n_samples: int, n_inputs: int, n_outputs: int) -> int:
    """Largest number of block rows for which the LQ factor stays square."""
    return (n_samples + 1) // (2 * (n_inputs + n_outputs + 1))


def _n4sid(u: np.ndarray, y: np.ndarray, k: int, order: int) -> SubspaceResult:
    nu, N = u.shape
    ny = y.shape[0]
    j = N - 2 * k + 1

    U = block_hankel(u, 2 * k, j)
    Y = block_hankel(y, 2 * k, j)
    km, kl = k * nu, k * ny
    Up, Uf = U[:km], U[km:]
    Yp, Yf = Y[:kl], Y[kl:]

    L = _lq(np.vstack([Uf, Up, Yp, Yf]))

    # Row blocks of L: Uf | Up | Yp | Yf
    uf, up, yp = slice(0, km), slice(km, 2 * km), slice(2 * km, 2 * km + kl)
    yf = slice(2 * km + kl, None)

    R_past = np.block([[L[up, up], np.zeros((km, kl))], [L[yp, up], L[yp, yp]]])
    R_future = np.hstack([L[yf, up], L[yf, yp]])
    projector = R_future @ _pinv(R_past)

    # Oblique projection of Yf along Uf onto the past data
    Wp = np.vstack([Up, Yp])
    UU, S, _ = svd(projector @ Wp, full_matrices=False)
    Ok = _observability(UU, S, order)
    A, C = _shift_invariance(Ok, ny, order)

    # Lower block Toeplitz matrix of Markov parameters [D; CB; CAB; ...]
    R_input = np.vstack([L[up, uf], L[yp, uf]])
    toeplitz = (L[yf, uf] - projector @ R_input) @ _pinv(L[uf, uf])

    n_markov = min(k - 1, max(4, -(-order // ny) + 1))
    markov = np.vstack([toeplitz[(i + 1) * ny : (i + 2) * ny, :nu] for i in range(n_markov)])
    B = lstsq(Ok[: n_markov * ny, :order], markov, rcond=None)[0]

    return SubspaceResult(A=A, B=B, C=C, horizon=k, singular_values=S)


def _moesp(u: np.ndarray, y: np.ndarray, k: int, order: int) -> SubspaceResult:
    nu, N = u.shape
    ny = y.shape[0]
    j = N - k + 1

    U = block_hankel(u, k, j)
    Y = block_hankel(y, k, j)
    km, kp = k * nu, k * ny

    L = _lq(np.vstack([U, Y]))
    L11 = L[:km, :km]
    L21 = L[km : km + kp, :km]
    L22 = L[km : km + kp, km : km + kp]

    UU, S, _ = svd(L22, full_matrices=False)
    Ok = _observability(UU, S, order)
    A, C = _shift_invariance(Ok, ny, order)

    # B from the orthogonal complement of the column space of Ok
    U2 = UU[:, order:]
    if U2.shape[1] == 0:
        return SubspaceResult(A=A, B=np.zeros((order, nu)), C=C, horizon=k, singular_values=S)

    Z = U2.T @ L21 @ _pinv(L11)
    lhs, rhs = [], []
    for i in range(k):
        rhs.append(Z[:, i * nu : (i + 1) * nu])
        # With D = 0 only the Ok rows below block i multiply B
        Ok_below = Ok[: (k - 1 - i) * ny, :]
        Ri = np.vstack([np.zeros(((i + 1) * ny, order)), Ok_below])
        lhs.append(U2.T @ Ri)
    B = lstsq(np.vstack(lhs), np.vstack(rhs), rcond=None)[0]

    return SubspaceResult(A=A, B=B, C=C, horizon=k, singular_values=S)


_METHODS = {"n4sid": _n4sid, "moesp": _moesp}


def subspace_fit(
    u: np.ndarray,
    y: np.ndarray,
    order: int,
    method: SubspaceMethod = "n4sid",
    horizon: int = 10,
    normalize: bool = True,
) -> SubspaceResult:
    """Identify (A, B, C) of a given order from input/output samples.

    Args:
        u: Inputs, shape (N, m), rows in time order.
        y: Outputs, shape (N, p), rows in time order.
        order: State dimension n.
        method: ``"n4sid"`` or ``"moesp"``.
        horizon: Upper bound on the number of block rows; reduced to what
            the data length supports.
        normalize: Scale each channel to unit variance before the fit and
            transform the matrices back afterwards.

    Raises:
        InsufficientDataError: If the data cannot support ``order`` states.
    """
    u = np.asarray(u, dtype=float).reshape(len(u), -1).T
    y = np.asarray(y, dtype=float).reshape(len(y), -1).T
    nu, N = u.shape
    ny = y.shape[0]

    try:
        algorithm = _METHODS[method.lower()]
    except KeyError:
        raise ValueError(f"Unknown subspace method: {method}. Use 'n4sid' or 'moesp'") from None

    k_min = -(-order // ny) + 1
    k = min(horizon, max_horizon(N, nu, ny))
    if k < k_min:
        raise InsufficientDataError(
            f"{N} samples are too few for a subspace fit of order {order} "
            f"with {nu} inputs and {ny} outputs."
        )

    if normalize:
        u_mean = u.mean(axis=1, keepdims=True)
        y_mean = y.mean(axis=1, keepdims=True)
        u_std = u.std(axis=1, keepdims=True)
        y_std = y.std(axis=1, keepdims=True)
        u_std = np.where(u_std < 1e-10, 1.0, u_std)
        y_std = np.where(y_std < 1e-10, 1.0, y_std)
        result = algorithm((u - u_mean) / u_std, (y - y_mean) / y_std, k, order)
        # y = y_std * y_norm and u_norm = u / u_std: B /= u_std, C *= y_std
        result.B = result.B / u_std.T
        result.C = result.C * y_std
    else:
        result = algorithm(u, y, k, order)

    return result
