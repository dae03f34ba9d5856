from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pandas as pd

from .exceptions import DataFormatError

logger = logging.getLogger(__name__)


def _sniff_delimiter(path: Path) -> str:
    """Pick the delimiter from the first non-empty line of the file."""
    with open(path, "r") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            for delim in (",", ";", "\t"):
                if delim in line:
                    return delim
            return r"\s+"
    raise DataFormatError(f"{path} is empty.")


def load_table(path: str | Path, data_direction: int = 0, delimiter: str | None = None) -> np.ndarray:
    """Read a header-less numeric table and orient it as (samples x channels).

    Args:
        path: Delimited text file.
        data_direction: 0 if columns are channels (one row per sample),
            1 if rows are channels (one column per sample).
        delimiter: Field separator; sniffed from the file when None.

    Returns:
        Float array of shape (N, n_channels), rows in time order.

    Raises:
        DataFormatError: If the file is missing, empty, ragged or non-numeric.
    """
    path = Path(path)
    if not path.is_file():
        raise DataFormatError(f"Data file not found: {path}")

    sep = delimiter if delimiter is not None else _sniff_delimiter(path)
    try:
        df = pd.read_csv(path, header=None, sep=sep, engine="python", skip_blank_lines=True)
    except pd.errors.EmptyDataError as exc:
        raise DataFormatError(f"{path} is empty.") from exc
    except pd.errors.ParserError as exc:
        raise DataFormatError(f"{path} is not a rectangular table: {exc}") from exc

    try:
        data = df.to_numpy(dtype=float)
    except (TypeError, ValueError) as exc:
        raise DataFormatError(f"{path} contains non-numeric entries.") from exc

    if data.size == 0:
        raise DataFormatError(f"{path} is empty.")
    # Short rows are padded with NaN by the parser
    if np.isnan(data).any():
        rows = np.unique(np.nonzero(np.isnan(data))[0])
        raise DataFormatError(
            f"{path} is not a rectangular numeric table (missing values in row(s) {rows[:5].tolist()})."
        )

    if data_direction:
        data = data.T

    logger.info(f"Loaded {data.shape[0]} samples x {data.shape[1]} channels from {path}")
    return np.ascontiguousarray(data)
