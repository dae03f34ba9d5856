"""
Saving and loading identified models as MAT files.

An artifact holds the model matrices, the nominal steady states, the output
error bounds and a record of the data the model came from:

    A, B, C, yss, uss, maxErrors, minErrors, dataInfo, fitInfo

Artifacts are named after the experiment timestamp, so collisions between
runs on the same data are common; an existing file is only replaced after
confirmation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import numpy as np
from scipy.io import loadmat, savemat

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "APPJmodel_"
STAMP_LENGTH = 20


@dataclass(frozen=True)
class DataInfo:
    """Provenance of the data a model was identified from."""

    y_labels: tuple[str, ...]
    u_labels: tuple[str, ...]
    sampling_time: float
    file_name: str
    I_norm_factor: float

    def to_mat(self) -> dict:
        return {
            "yLabels": np.array(self.y_labels, dtype=object),
            "uLabels": np.array(self.u_labels, dtype=object),
            "samplingTime": float(self.sampling_time),
            "fileName": str(self.file_name),
            "InormFactor": float(self.I_norm_factor),
        }

    @classmethod
    def from_mat(cls, record: dict) -> "DataInfo":
        return cls(
            y_labels=_as_labels(record["yLabels"]),
            u_labels=_as_labels(record["uLabels"]),
            sampling_time=float(record["samplingTime"]),
            file_name=str(record["fileName"]),
            I_norm_factor=float(record["InormFactor"]),
        )


@dataclass(frozen=True)
class FitInfo:
    """Performance of the identified model."""

    estimator: str
    model_order: int
    train_fit_percent: np.ndarray
    valid_fit_percent: np.ndarray = field(default_factory=lambda: np.zeros(0))

    def to_mat(self) -> dict:
        return {
            "estimator": self.estimator,
            "modelOrder": int(self.model_order),
            "trainFitPercent": np.asarray(self.train_fit_percent, dtype=float),
            "validFitPercent": np.asarray(self.valid_fit_percent, dtype=float),
        }

    @classmethod
    def from_mat(cls, record: dict) -> "FitInfo":
        return cls(
            estimator=str(record["estimator"]),
            model_order=int(record["modelOrder"]),
            train_fit_percent=np.atleast_1d(np.asarray(record["trainFitPercent"], dtype=float)),
            valid_fit_percent=np.atleast_1d(np.asarray(record["validFitPercent"], dtype=float)).ravel(),
        )


@dataclass(frozen=True)
class ModelArtifact:
    """Everything persisted for one identification run."""

    A: np.ndarray
    B: np.ndarray
    C: np.ndarray
    yss: np.ndarray
    uss: np.ndarray
    max_errors: np.ndarray
    min_errors: np.ndarray
    data_info: DataInfo
    fit_info: FitInfo | None = None

    def to_mat(self) -> dict:
        record = {
            "A": np.asarray(self.A, dtype=float),
            "B": np.asarray(self.B, dtype=float),
            "C": np.asarray(self.C, dtype=float),
            "yss": np.asarray(self.yss, dtype=float),
            "uss": np.asarray(self.uss, dtype=float),
            "maxErrors": np.asarray(self.max_errors, dtype=float),
            "minErrors": np.asarray(self.min_errors, dtype=float),
            "dataInfo": self.data_info.to_mat(),
        }
        if self.fit_info is not None:
            record["fitInfo"] = self.fit_info.to_mat()
        return record


def _as_labels(value) -> tuple[str, ...]:
    # Single-entry cell arrays come back as a bare string
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in np.atleast_1d(value))


def _mat_path(path: str | Path) -> Path:
    path = Path(path)
    if path.suffix != ".mat":
        path = path.with_name(path.name + ".mat")
    return path


def default_output_name(filename: str | Path, prefix: str = DEFAULT_PREFIX) -> str:
    """Artifact name from the timestamp prefix of the data file name."""
    stamp = Path(filename).name[:STAMP_LENGTH]
    return f"{prefix}{stamp}.mat"


def save_artifact(path: str | Path, artifact: ModelArtifact) -> Path:
    """Write ``artifact`` to ``path`` unconditionally."""
    path = _mat_path(path)
    savemat(str(path), artifact.to_mat(), oned_as="row")
    logger.info(f"Identified system saved to {path}")
    return path


def load_artifact(path: str | Path) -> ModelArtifact:
    """Read an artifact written by ``save_artifact``."""
    record = loadmat(str(_mat_path(path)), simplify_cells=True)

    # Squeezed on load: restore matrix and vector shapes
    A = np.atleast_2d(np.asarray(record["A"], dtype=float))
    n = A.shape[0]
    B = np.asarray(record["B"], dtype=float).reshape(n, -1)
    C = np.asarray(record["C"], dtype=float).reshape(-1, n)

    def vector(key: str) -> np.ndarray:
        return np.atleast_1d(np.asarray(record[key], dtype=float))

    fit_info = FitInfo.from_mat(record["fitInfo"]) if "fitInfo" in record else None
    return ModelArtifact(
        A=A,
        B=B,
        C=C,
        yss=vector("yss"),
        uss=vector("uss"),
        max_errors=vector("maxErrors"),
        min_errors=vector("minErrors"),
        data_info=DataInfo.from_mat(record["dataInfo"]),
        fit_info=fit_info,
    )


# ---------------------------------------------------------------------------
# Overwrite guard
# ---------------------------------------------------------------------------


class ConfirmationProvider(Protocol):
    """Resolves a collision with an existing artifact."""

    def overwrite(self, path: Path) -> bool:
        ...

    def alternative_name(self, path: Path) -> str:
        ...


class PromptConfirmation:
    """Ask the operator on stdin; blocks until answered."""

    def __init__(self, input_fn=input):
        self.input_fn = input_fn

    def overwrite(self, path: Path) -> bool:
        answer = self.input_fn(
            f"Warning: File {path} already exists! Do you want to overwrite? [1 for yes, 0 for no]: "
        )
        return answer.strip().lower() in ("1", "y", "yes")

    def alternative_name(self, path: Path) -> str:
        return self.input_fn(
            "Input a new filename (ensure .mat is included in your filename) or press Enter "
            "if you no longer want to save the identified model: \n"
        ).strip()


class AlwaysOverwrite:
    def overwrite(self, path: Path) -> bool:
        return True

    def alternative_name(self, path: Path) -> str:
        return str(path)


class NeverOverwrite:
    """Keep the existing file and abandon the save."""

    def overwrite(self, path: Path) -> bool:
        return False

    def alternative_name(self, path: Path) -> str:
        return ""


_POLICIES = {
    "prompt": PromptConfirmation,
    "always": AlwaysOverwrite,
    "never": NeverOverwrite,
}


def confirmation_for_policy(policy: str) -> ConfirmationProvider:
    try:
        return _POLICIES[policy]()
    except KeyError:
        raise ValueError(f"Unknown overwrite policy: {policy}. Use one of {sorted(_POLICIES)}") from None


def persist(
    artifact: ModelArtifact,
    out_filename: str | Path,
    confirm: ConfirmationProvider,
) -> Path | None:
    """Write ``artifact`` without silently replacing an existing file.

    If the target exists, ``confirm`` decides whether to overwrite it; if not,
    it supplies an alternative name, which is written without a second check.
    An empty alternative abandons the save.

    Returns:
        The written path, or None if nothing was saved.
    """
    path = _mat_path(out_filename)
    if not path.exists():
        return save_artifact(path, artifact)

    logger.warning(f"File {path} already exists.")
    if confirm.overwrite(path):
        return save_artifact(path, artifact)

    alternative = confirm.alternative_name(path)
    if not alternative:
        logger.info("Identified system not saved.")
        return None
    return save_artifact(alternative, artifact)
