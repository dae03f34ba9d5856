import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from appj_sysid import IdentificationConfig


# Plant used to generate the synthetic experiments: 2 states, 2 inputs, 2 outputs
A_TRUE = np.array([[0.8, 0.1], [-0.05, 0.7]])
B_TRUE = np.array([[0.5, 0.2], [0.1, 0.4]])
C_TRUE = np.eye(2)

USS_TRUE = np.array([10.0, 2.0])
YSS_TRUE = np.array([35.0, 4.0])


def random_steps(rng, n_samples, n_channels, hold=5, flat=0):
    """Piecewise-constant excitation, zero for the first ``flat`` samples."""
    levels = rng.uniform(-1.0, 1.0, size=(n_samples // hold + 1, n_channels))
    u = np.repeat(levels, hold, axis=0)[:n_samples]
    u[:flat] = 0.0
    return u


def simulate_plant(u, A=A_TRUE, B=B_TRUE, C=C_TRUE, noise=0.0, rng=None):
    x = np.zeros(A.shape[0])
    y = np.zeros((len(u), C.shape[0]))
    for k, uk in enumerate(u):
        y[k] = C @ x
        x = A @ x + B @ uk
    if noise:
        y = y + noise * rng.standard_normal(y.shape)
    return y


def make_table(n_rows=104, noise=0.02, seed=0, flat=15):
    """Columns: output 0, output 1, input 0, input 1 (absolute values)."""
    rng = np.random.default_rng(seed)
    u_dev = random_steps(rng, n_rows, 2, flat=flat)
    y_dev = simulate_plant(u_dev, noise=noise, rng=rng)
    return np.hstack([y_dev + YSS_TRUE, u_dev + USS_TRUE])


@pytest.fixture
def process_table():
    return make_table()


@pytest.fixture
def csv_file(tmp_path, process_table):
    """104-sample experiment, one channel per column, timestamp-style name."""
    path = tmp_path / "2020_12_07_17h05m08s_systemIdentOutputs.csv"
    np.savetxt(path, process_table, delimiter=",")
    return path


@pytest.fixture
def make_config(csv_file):
    """Factory for quiet, non-interactive configs on ``csv_file``."""

    def _make(**overrides):
        options = dict(
            filename=str(csv_file),
            data_direction=0,
            y_idxs=(0, 1),
            u_idxs=(2, 3),
            y_labels=("T (degC)", "I (a.u.)"),
            u_labels=("P (W)", "q (slm)"),
            Ts=0.5,
            norm_intensity=False,
            plot_fit=False,
            plot_data=False,
            center_data=True,
            num_pts2center=10,
            est_function="iterative",
            validate_sys=False,
            saveModel=False,
            overwrite_policy="never",
        )
        options.update(overrides)
        return IdentificationConfig(**options)

    return _make
