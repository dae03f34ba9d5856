from __future__ import annotations

import logging
import os
from typing import Sequence

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.figure import Figure

logger = logging.getLogger(__name__)


def plot_outputs(y: np.ndarray, labels: Sequence[str]) -> Figure:
    """Raw output traces, one subplot per channel."""
    ny = y.shape[1]
    fig, axes = plt.subplots(ny, 1, figsize=(10, 2.5 * ny), sharex=True, squeeze=False)
    for i in range(ny):
        axes[i, 0].plot(y[:, i])
        axes[i, 0].set_ylabel(labels[i])
    axes[-1, 0].set_xlabel("Time Step")
    fig.suptitle("Output data")
    fig.tight_layout()
    return fig


def plot_inputs(u: np.ndarray, labels: Sequence[str]) -> Figure:
    """Raw input traces as staircases, one subplot per channel."""
    nu = u.shape[1]
    steps = np.arange(u.shape[0])
    fig, axes = plt.subplots(nu, 1, figsize=(10, 2.5 * nu), sharex=True, squeeze=False)
    for i in range(nu):
        axes[i, 0].step(steps, u[:, i], where="post")
        axes[i, 0].set_ylabel(labels[i])
    axes[-1, 0].set_xlabel("Time Step")
    fig.suptitle("Input data")
    fig.tight_layout()
    return fig


def plot_comparison(
    y: np.ndarray,
    y_hat: np.ndarray,
    labels: Sequence[str],
    Ts: float,
    title: str,
    data_label: str = "Experimental Data",
    fit: np.ndarray | None = None,
) -> Figure:
    """Measured vs. simulated outputs over time."""
    ny = y.shape[1]
    time = Ts * np.arange(y.shape[0])
    fig, axes = plt.subplots(ny, 1, figsize=(10, 2.5 * ny), sharex=True, squeeze=False)
    for i in range(ny):
        ax = axes[i, 0]
        model_label = "Linear Model"
        if fit is not None and np.isfinite(fit[i]):
            model_label += f" (fit {fit[i]:.1f}%)"
        ax.plot(time, y[:, i], label=data_label)
        ax.plot(time, y_hat[:, i], "--", label=model_label)
        ax.set_ylabel(labels[i])
        ax.legend(loc="best")
    axes[-1, 0].set_xlabel("Time/s")
    fig.suptitle(title)
    fig.tight_layout()
    return fig


def save_figures(figures: dict[str, Figure], output_dir: str) -> list[str]:
    """Write each figure to ``output_dir/<name>.png``."""
    os.makedirs(output_dir, exist_ok=True)
    paths = []
    for name, fig in figures.items():
        path = os.path.join(output_dir, f"{name}.png")
        fig.savefig(path, dpi=150)
        paths.append(path)
        logger.info(f"Saved figure {path}")
    return paths
