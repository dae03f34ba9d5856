from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.figure import Figure

from .config import IdentificationConfig
from .estimators import estimator_from_config
from .evaluate import Evaluation, evaluate
from .exceptions import ConfigurationError
from .loader import load_table
from .model import StateSpaceModel
from .persist import (
    ConfirmationProvider,
    DataInfo,
    FitInfo,
    ModelArtifact,
    confirmation_for_policy,
    default_output_name,
    persist,
)
from .plotting import plot_comparison, plot_inputs, plot_outputs
from .preprocess import SteadyState, preprocess, to_deviation
from .split import IOSegments, split_data

logger = logging.getLogger(__name__)


@dataclass
class IdentificationResult:
    """Outcome of one pipeline run.

    ``output_path`` is None when saving was disabled or abandoned. The
    figures stay open until ``close_figures`` is called.
    """

    config: IdentificationConfig
    model: StateSpaceModel
    steady_state: SteadyState
    data: IOSegments
    evaluation: Evaluation
    artifact: ModelArtifact
    output_path: Path | None = None
    figures: dict[str, Figure] = field(default_factory=dict)

    def close_figures(self) -> None:
        for fig in self.figures.values():
            plt.close(fig)
        self.figures.clear()


def build_artifact(
    config: IdentificationConfig,
    model: StateSpaceModel,
    steady_state: SteadyState,
    evaluation: Evaluation,
    estimator_name: str | None = None,
) -> ModelArtifact:
    """Collect everything persisted for one run.

    ``estimator_name`` is the estimator that actually ran; it defaults to
    ``config.est_function``.
    """
    data_info = DataInfo(
        y_labels=config.y_labels,
        u_labels=config.u_labels,
        sampling_time=config.Ts,
        file_name=str(config.filename),
        I_norm_factor=config.I_norm_factor,
    )
    fit_info = FitInfo(
        estimator=estimator_name or config.est_function,
        model_order=model.order,
        train_fit_percent=evaluation.train_fit,
        valid_fit_percent=evaluation.valid_fit if evaluation.valid_fit is not None else np.zeros(0),
    )
    return ModelArtifact(
        A=model.A,
        B=model.B,
        C=model.C,
        yss=steady_state.yss,
        uss=steady_state.uss,
        max_errors=evaluation.bounds.max_errors,
        min_errors=evaluation.bounds.min_errors,
        data_info=data_info,
        fit_info=fit_info,
    )


def prepare_data(config: IdentificationConfig) -> tuple[np.ndarray, IOSegments, SteadyState]:
    """Load, clean, split and center the data of ``config``.

    Returns:
        The cleaned table, the deviation data and the steady states.
    """
    if config.filename is None:
        raise ConfigurationError("No data file configured (filename).")

    table = load_table(config.filename, config.data_direction)
    table = preprocess(table, config)

    valid_split = config.valid_split if config.validate_sys else 0.0
    segments = split_data(table, config.y_idxs, config.u_idxs, valid_split)
    data, steady_state = to_deviation(segments, config)
    return table, data, steady_state


def identify(config: IdentificationConfig, confirm: ConfirmationProvider | None = None) -> IdentificationResult:
    """Run load -> preprocess -> split -> estimate -> evaluate -> persist once.

    Args:
        config: Options of the run.
        confirm: Resolves a collision with an existing artifact; defaults to
            the provider for ``config.overwrite_policy``.

    Figures requested by ``plot_data``/``plot_fit`` are returned open in
    ``IdentificationResult.figures``; callers running many identifications
    should call ``close_figures`` on each result.

    Raises:
        SysIdError: Any fatal condition; nothing is written in that case.
    """
    table, data, steady_state = prepare_data(config)

    figures: dict[str, Figure] = {}
    if config.plot_data:
        logger.info("Plotting data to visualize it...")
        figures["outputs"] = plot_outputs(table[:, list(config.y_idxs)], config.y_labels)
        figures["inputs"] = plot_inputs(table[:, list(config.u_idxs)], config.u_labels)

    logger.info("Identifying the model...")
    estimator = estimator_from_config(config)
    model = estimator.fit(data.u_train, data.y_train, config.Ts, config.model_order)
    logger.info(f"Identified {estimator.name} model of order {model.order}, poles {np.round(model.poles, 4)}")

    evaluation = evaluate(model, data)

    if config.plot_fit:
        logger.info("Verifying model graphically...")
        figures["training_fit"] = plot_comparison(
            data.y_train, evaluation.y_train_sim, config.y_labels, config.Ts,
            title="Trained Model", fit=evaluation.train_fit,
        )
        if evaluation.y_valid_sim is not None:
            figures["validation_fit"] = plot_comparison(
                data.y_valid, evaluation.y_valid_sim, config.y_labels, config.Ts,
                title="Validation", data_label="Validation Data", fit=evaluation.valid_fit,
            )

    artifact = build_artifact(config, model, steady_state, evaluation, estimator_name=estimator.label)

    output_path = None
    if config.saveModel:
        out_filename = config.out_filename or default_output_name(config.filename)
        if confirm is None:
            confirm = confirmation_for_policy(config.overwrite_policy)
        output_path = persist(artifact, out_filename, confirm)

    return IdentificationResult(
        config=config,
        model=model,
        steady_state=steady_state,
        data=data,
        evaluation=evaluation,
        artifact=artifact,
        output_path=output_path,
        figures=figures,
    )
