from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .exceptions import ConfigurationError, DataFormatError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IOSegments:
    """Input/output data split into a training and an optional validation segment.

    Attributes:
        u_train: Training inputs (N_train x m).
        y_train: Training outputs (N_train x p).
        u_valid: Validation inputs (N_valid x m), None without validation.
        y_valid: Validation outputs (N_valid x p), None without validation.
    """

    u_train: np.ndarray
    y_train: np.ndarray
    u_valid: np.ndarray | None = None
    y_valid: np.ndarray | None = None

    @property
    def has_validation(self) -> bool:
        return self.u_valid is not None

    @property
    def n_train(self) -> int:
        return self.u_train.shape[0]

    @property
    def n_valid(self) -> int:
        return 0 if self.u_valid is None else self.u_valid.shape[0]


def split_index(n_samples: int, valid_split: float) -> int:
    """Index of the first validation sample, ``round(N * (1 - f))``."""
    if not 0.0 <= valid_split < 1.0:
        raise ConfigurationError(f"valid_split must lie in [0, 1), got {valid_split!r}")
    return int(round(n_samples * (1.0 - valid_split)))


def split_data(
    table: np.ndarray,
    y_idxs: Sequence[int],
    u_idxs: Sequence[int],
    valid_split: float = 0.0,
) -> IOSegments:
    """Select the input/output channels and split them by time.

    Rows ``[0, split)`` train the model and rows ``[split, N)`` validate it.
    ``valid_split = 0`` keeps every row for training and no validation
    segment. Minimum segment sizes are not checked here.
    """
    table = np.asarray(table, dtype=float)
    n_channels = table.shape[1]
    for idx in (*y_idxs, *u_idxs):
        if idx >= n_channels:
            raise DataFormatError(
                f"Channel index {idx} out of range for a table with {n_channels} channels."
            )

    y_all = table[:, list(y_idxs)]
    u_all = table[:, list(u_idxs)]

    if valid_split == 0.0:
        return IOSegments(u_train=u_all, y_train=y_all)

    n_data = table.shape[0]
    split = split_index(n_data, valid_split)
    logger.info(f"Training on samples [0, {split}), validating on [{split}, {n_data})")
    return IOSegments(
        u_train=u_all[:split],
        y_train=y_all[:split],
        u_valid=u_all[split:],
        y_valid=y_all[split:],
    )
