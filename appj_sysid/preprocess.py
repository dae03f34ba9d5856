"""
Data cleaning and deviation variables.

The raw table is cleaned in three steps, recording order preserved:
  1. trim:      drop the startup transient (first ``k`` samples)
  2. normalize: scale the intensity channel by a fixed factor
  3. center:    subtract nominal steady states computed from the first
                ``num_pts2center`` training samples

so that the identified model works in deviation variables
    u_dev = u - uss,  y_dev = y - yss.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from .config import IdentificationConfig
from .exceptions import ConfigurationError, DataFormatError, InsufficientDataError
from .split import IOSegments

logger = logging.getLogger(__name__)

STARTUP_ROWS = 4


@dataclass(frozen=True)
class SteadyState:
    """Nominal operating point; one entry per input (uss) and output (yss)."""

    uss: np.ndarray
    yss: np.ndarray

    def __post_init__(self) -> None:
        for name in ("uss", "yss"):
            arr = np.array(getattr(self, name), dtype=float).ravel()
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    @classmethod
    def zeros(cls, n_inputs: int, n_outputs: int) -> "SteadyState":
        return cls(uss=np.zeros(n_inputs), yss=np.zeros(n_outputs))


def trim(table: np.ndarray, k: int = STARTUP_ROWS) -> np.ndarray:
    """Drop the first ``k`` rows (startup transient)."""
    table = np.asarray(table, dtype=float)
    if table.shape[0] <= k:
        raise InsufficientDataError(
            f"Need more than {k} samples to discard the startup transient, got {table.shape[0]}."
        )
    return table[k:]


def normalize(table: np.ndarray, I_col: int | None, I_norm_factor: float) -> np.ndarray:
    """Divide the intensity channel ``I_col`` by ``I_norm_factor``.

    A missing ``I_col`` is not fatal: the table is returned unchanged and a
    warning is logged.
    """
    if I_col is None:
        logger.warning(
            "Row/column for Intensity is not specified even though normalization "
            "was requested. Intensity data NOT normalized."
        )
        return table
    if not I_norm_factor > 0:
        raise ConfigurationError(f"I_norm_factor must be positive, got {I_norm_factor!r}.")
    if I_col >= table.shape[1]:
        raise DataFormatError(
            f"Intensity channel {I_col} out of range for a table with {table.shape[1]} channels."
        )

    table = np.array(table, dtype=float, copy=True)
    table[:, I_col] = table[:, I_col] / I_norm_factor
    return table


def preprocess(table: np.ndarray, config: IdentificationConfig) -> np.ndarray:
    """Trim and (optionally) normalize the raw table."""
    table = trim(table, config.trim_rows)
    if config.norm_intensity:
        table = normalize(table, config.I_col, config.I_norm_factor)
    return table


def compute_steady_state(u: np.ndarray, y: np.ndarray, num_pts2center: int) -> SteadyState:
    """Mean of the first ``num_pts2center`` samples of each channel."""
    n = u.shape[0]
    if n < num_pts2center:
        raise InsufficientDataError(
            f"Need at least {num_pts2center} training samples to compute steady states, got {n}."
        )
    return SteadyState(
        uss=np.mean(u[:num_pts2center, :], axis=0),
        yss=np.mean(y[:num_pts2center, :], axis=0),
    )


def center(data: IOSegments, steady_state: SteadyState) -> IOSegments:
    """Subtract the steady states from training and validation segments."""
    uss, yss = steady_state.uss, steady_state.yss
    if data.has_validation:
        return IOSegments(
            u_train=data.u_train - uss,
            y_train=data.y_train - yss,
            u_valid=data.u_valid - uss,
            y_valid=data.y_valid - yss,
        )
    return IOSegments(u_train=data.u_train - uss, y_train=data.y_train - yss)


def to_deviation(data: IOSegments, config: IdentificationConfig) -> tuple[IOSegments, SteadyState]:
    """Express ``data`` in deviation variables according to ``config``.

    With ``center_data`` disabled the steady states are zero and the data are
    returned in absolute coordinates.
    """
    if not config.center_data:
        logger.warning("Steady states not calculated! Data not centered.")
        return data, SteadyState.zeros(data.u_train.shape[1], data.y_train.shape[1])

    steady_state = compute_steady_state(data.u_train, data.y_train, config.num_pts2center)
    logger.info(f"Input nominal steady states: {np.array2string(steady_state.uss, precision=6)}")
    logger.info(f"Output nominal steady states: {np.array2string(steady_state.yss, precision=6)}")
    return center(data, steady_state), steady_state
