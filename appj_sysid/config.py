"""
Immutable configuration for the identification pipeline.

Option names mirror the keys of the experiment configuration files, so a
YAML file written for one run can be loaded straight into
``IdentificationConfig.from_yaml``. Channel indices are zero-based.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np
import yaml

from .exceptions import ConfigurationError

OVERWRITE_POLICIES = ("prompt", "always", "never")


def _as_index_tuple(name: str, values) -> tuple[int, ...]:
    if values is None:
        return ()
    if isinstance(values, (int, np.integer)):
        values = [values]
    try:
        idxs = tuple(int(v) for v in values)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be a list of integers, got {values!r}") from exc
    return idxs


@dataclass(frozen=True)
class IdentificationConfig:
    """Options for one identification run.

    Attributes:
        filename: Delimited data file with one channel per column (or row).
        data_direction: 0 if columns are channels, 1 if rows are channels.
        y_idxs: Zero-based channel indices of the outputs.
        u_idxs: Zero-based channel indices of the inputs.
        y_labels: Display labels for the outputs (same length as y_idxs).
        u_labels: Display labels for the inputs (same length as u_idxs).
        Ts: Sampling period in seconds.
        norm_intensity: Divide the intensity channel by ``I_norm_factor``.
        I_col: Zero-based channel index of the intensity data, or None.
        I_norm_factor: Positive intensity normalization factor.
        plot_fit: Plot the model against training (and validation) data.
        center_data: Express the data in deviation variables.
        num_pts2center: Number of leading samples averaged into the steady state.
        est_function: ``"iterative"`` (alias ``"ssest"``) or ``"subspace"``
            (alias ``"n4sid"``).
        validate_sys: Reserve a trailing validation segment.
        valid_split: Fraction of the data reserved for validation.
        saveModel: Persist the identified model.
        out_filename: Target artifact name; derived from ``filename`` if None.
        model_order: Dimension of the state vector.
        trim_rows: Number of leading startup samples to discard.
        output_weight: p x p output weighting matrix for the iterative fit.
        tolerance: Solver tolerance of the iterative fit.
        max_iterations: Evaluation budget of the iterative fit (None = solver default).
        subspace_horizon: Upper bound on the number of block rows in the
            subspace Hankel matrices.
        plot_data: Plot the raw output and input traces.
        overwrite_policy: ``"prompt"``, ``"always"`` or ``"never"``.
    """

    filename: str | None = None
    data_direction: int = 1
    y_idxs: tuple[int, ...] = (0, 1)
    u_idxs: tuple[int, ...] = (2, 3)
    y_labels: tuple[str, ...] = ("T (degC)", "I (a.u.)")
    u_labels: tuple[str, ...] = ("P (W)", "q (slm)")
    Ts: float = 0.5
    norm_intensity: bool = True
    I_col: int | None = 1
    I_norm_factor: float = 1 / 25000 * 3e6
    plot_fit: bool = True
    center_data: bool = True
    num_pts2center: int = 10
    est_function: str = "iterative"
    validate_sys: bool = False
    valid_split: float = 0.3
    saveModel: bool = False
    out_filename: str | None = None
    model_order: int = 2
    trim_rows: int = 4
    output_weight: tuple[tuple[float, ...], ...] | None = field(default=None, repr=False)
    tolerance: float = 1e-8
    max_iterations: int | None = None
    subspace_horizon: int = 10
    plot_data: bool = True
    overwrite_policy: str = "prompt"

    def __post_init__(self) -> None:
        def set_(name: str, value: Any) -> None:
            object.__setattr__(self, name, value)

        set_("y_idxs", _as_index_tuple("y_idxs", self.y_idxs))
        set_("u_idxs", _as_index_tuple("u_idxs", self.u_idxs))
        for name in ("y_idxs", "u_idxs"):
            idxs = getattr(self, name)
            if not idxs:
                raise ConfigurationError(f"{name} must name at least one channel.")
            if min(idxs) < 0:
                raise ConfigurationError(f"{name} must be zero-based non-negative indices, got {idxs}.")
            if len(set(idxs)) != len(idxs):
                raise ConfigurationError(f"{name} contains duplicate channels: {idxs}.")

        # Missing labels fall back to generic channel names
        for name, idx_name, prefix in (("y_labels", "y_idxs", "y"), ("u_labels", "u_idxs", "u")):
            labels = getattr(self, name)
            idxs = getattr(self, idx_name)
            if labels is None or len(labels) == 0:
                labels = tuple(f"{prefix}{i}" for i in range(len(idxs)))
            elif isinstance(labels, str):
                labels = (labels,)
            labels = tuple(str(lbl) for lbl in labels)
            if len(labels) != len(idxs):
                raise ConfigurationError(
                    f"{name} has {len(labels)} entries but {idx_name} has {len(idxs)}."
                )
            set_(name, labels)

        if self.data_direction not in (0, 1):
            raise ConfigurationError(f"data_direction must be 0 or 1, got {self.data_direction!r}.")
        if not self.Ts > 0:
            raise ConfigurationError(f"Ts must be positive, got {self.Ts!r}.")
        if not self.I_norm_factor > 0:
            raise ConfigurationError(f"I_norm_factor must be positive, got {self.I_norm_factor!r}.")
        if self.I_col is not None:
            set_("I_col", int(self.I_col))
            if self.I_col < 0:
                raise ConfigurationError(f"I_col must be a zero-based index, got {self.I_col}.")
        if int(self.num_pts2center) < 1:
            raise ConfigurationError("num_pts2center must be a positive integer.")
        if not 0.0 <= float(self.valid_split) < 1.0:
            raise ConfigurationError(f"valid_split must lie in [0, 1), got {self.valid_split!r}.")
        if int(self.model_order) < 1:
            raise ConfigurationError("model_order must be at least 1.")
        if int(self.trim_rows) < 0:
            raise ConfigurationError("trim_rows must be non-negative.")
        if int(self.subspace_horizon) < 2:
            raise ConfigurationError("subspace_horizon must be at least 2.")
        if not self.tolerance > 0:
            raise ConfigurationError("tolerance must be positive.")
        if self.max_iterations is not None and int(self.max_iterations) < 1:
            raise ConfigurationError("max_iterations must be a positive integer or None.")
        if self.overwrite_policy not in OVERWRITE_POLICIES:
            raise ConfigurationError(
                f"overwrite_policy must be one of {OVERWRITE_POLICIES}, got {self.overwrite_policy!r}."
            )

        for name in ("norm_intensity", "plot_fit", "center_data", "validate_sys", "saveModel", "plot_data"):
            set_(name, bool(getattr(self, name)))
        for name in ("num_pts2center", "model_order", "trim_rows", "subspace_horizon"):
            set_(name, int(getattr(self, name)))
        set_("Ts", float(self.Ts))
        set_("valid_split", float(self.valid_split))
        set_("I_norm_factor", float(self.I_norm_factor))
        set_("est_function", str(self.est_function))

        if self.output_weight is not None:
            W = np.asarray(self.output_weight, dtype=float)
            p = len(self.y_idxs)
            if W.shape != (p, p):
                raise ConfigurationError(f"output_weight must be {p}x{p}, got shape {W.shape}.")
            set_("output_weight", tuple(tuple(float(v) for v in row) for row in W))

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------
    @classmethod
    def from_dict(cls, options: dict[str, Any]) -> "IdentificationConfig":
        """Build a config from a plain mapping, rejecting unknown keys."""
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration option(s): {', '.join(unknown)}")
        return cls(**options)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "IdentificationConfig":
        """Load a config from a YAML mapping.

        A relative ``filename`` is resolved against the YAML file's directory.
        """
        path = Path(path)
        try:
            with open(path, "r") as f:
                options = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Unable to read configuration {path}: {exc}") from exc
        if not isinstance(options, dict):
            raise ConfigurationError(f"Configuration {path} must contain a mapping.")

        filename = options.get("filename")
        if filename is not None and not Path(filename).is_absolute():
            options["filename"] = str(path.parent / filename)
        return cls.from_dict(options)

    def replace(self, **changes: Any) -> "IdentificationConfig":
        """Return a validated copy with ``changes`` applied."""
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        options = dataclasses.asdict(self)
        for key, value in options.items():
            if isinstance(value, tuple):
                options[key] = [list(v) if isinstance(v, tuple) else v for v in value]
        return options

    @property
    def n_outputs(self) -> int:
        return len(self.y_idxs)

    @property
    def n_inputs(self) -> int:
        return len(self.u_idxs)

    @property
    def weight_matrix(self) -> np.ndarray | None:
        if self.output_weight is None:
            return None
        return np.asarray(self.output_weight, dtype=float)
