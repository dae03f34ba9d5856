"""
Observability canonical form for multi-output state-space models.

For observability indices (nu_1, ..., nu_p) with sum n the state basis is

    z = T @ x,   T = [c_1; c_1 A; ...; c_1 A^(nu_1 - 1); c_2; ...]

In that basis each output with nu_i > 0 reads one state directly, every
state inside a chain is shifted into the next one, and only the last row of
each chain of A, all of B and the C rows of outputs with nu_i = 0 are free.
The iterative estimator searches over exactly those free entries.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class CanonicalStructure:
    """Parameter layout of the observability canonical form.

    Attributes:
        indices: Observability index nu_i of every output.
        n_inputs: Number of inputs m.
    """

    indices: tuple[int, ...]
    n_inputs: int

    @property
    def order(self) -> int:
        return int(sum(self.indices))

    @property
    def n_outputs(self) -> int:
        return len(self.indices)

    @property
    def chain_starts(self) -> list[int]:
        return list(np.cumsum((0,) + self.indices[:-1]))

    @property
    def free_a_rows(self) -> list[int]:
        """Last state of every non-empty chain."""
        return [s + nu - 1 for s, nu in zip(self.chain_starts, self.indices) if nu > 0]

    @property
    def free_c_rows(self) -> list[int]:
        """Outputs that do not start a chain."""
        return [i for i, nu in enumerate(self.indices) if nu == 0]

    @property
    def n_parameters(self) -> int:
        n = self.order
        return (len(self.free_a_rows) + len(self.free_c_rows)) * n + n * self.n_inputs

    def build(self, theta: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(A, B, C) from the free parameter vector."""
        n, m, p = self.order, self.n_inputs, self.n_outputs
        theta = np.asarray(theta, dtype=float)
        if theta.size != self.n_parameters:
            raise ValueError(f"expected {self.n_parameters} parameters, got {theta.size}")

        A = np.zeros((n, n))
        C = np.zeros((p, n))
        for i, (start, nu) in enumerate(zip(self.chain_starts, self.indices)):
            if nu == 0:
                continue
            C[i, start] = 1.0
            for j in range(nu - 1):
                A[start + j, start + j + 1] = 1.0

        a_rows, c_rows = self.free_a_rows, self.free_c_rows
        pos = 0
        A[a_rows, :] = theta[pos : pos + len(a_rows) * n].reshape(len(a_rows), n)
        pos += len(a_rows) * n
        C[c_rows, :] = theta[pos : pos + len(c_rows) * n].reshape(len(c_rows), n)
        pos += len(c_rows) * n
        B = theta[pos:].reshape(n, m).copy()
        return A, B, C

    def parameters(self, A: np.ndarray, B: np.ndarray, C: np.ndarray) -> np.ndarray:
        """Free parameter vector of a model already in canonical form."""
        return np.concatenate([
            A[self.free_a_rows, :].ravel(),
            C[self.free_c_rows, :].ravel(),
            B.ravel(),
        ])


def observability_indices(A: np.ndarray, C: np.ndarray, rtol: float = 1e-9) -> tuple[int, ...]:
    """Observability indices from the first n independent rows c_i A^k.

    Rows are scanned power by power (k = 0, 1, ...) and output by output;
    once c_i A^k depends on the rows already picked, output i is done.

    Raises:
        ValueError: If (A, C) is not observable.
    """
    n = A.shape[0]
    p = C.shape[0]
    indices = [0] * p
    active = [True] * p
    picked: list[np.ndarray] = []
    scale = max(np.linalg.norm(C), 1.0)

    rows = C.copy()
    for _ in range(n):
        for i in range(p):
            if not active[i] or len(picked) == n:
                continue
            candidate = np.vstack(picked + [rows[i]])
            s = np.linalg.svd(candidate, compute_uv=False)
            if s[-1] > rtol * max(s[0], scale):
                picked.append(rows[i])
                indices[i] += 1
            else:
                active[i] = False
        if len(picked) == n:
            break
        rows = rows @ A

    if len(picked) < n:
        raise ValueError(f"(A, C) is not observable: rank {len(picked)} < {n}")
    return tuple(indices)


def to_canonical(
    A: np.ndarray, B: np.ndarray, C: np.ndarray
) -> tuple[np.ndarray, np.ndarray, np.ndarray, CanonicalStructure]:
    """Similarity transform of (A, B, C) into observability canonical form."""
    indices = observability_indices(A, C)
    blocks = []
    for i, nu in enumerate(indices):
        row = C[i]
        for _ in range(nu):
            blocks.append(row)
            row = row @ A
    T = np.vstack(blocks)
    T_inv = np.linalg.inv(T)

    structure = CanonicalStructure(indices=indices, n_inputs=B.shape[1])
    Ac = T @ A @ T_inv
    Bc = T @ B
    Cc = C @ T_inv
    # Clean up the structural entries so that build(parameters(...)) is exact
    Ac, Bc, Cc = structure.build(structure.parameters(Ac, Bc, Cc))
    return Ac, Bc, Cc, structure
