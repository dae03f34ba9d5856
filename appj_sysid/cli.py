"""
Command line entry point.

    appj-sysid identify experiment.yaml --data 2020_12_07_17h05m08s_systemIdentOutputs.csv
    appj-sysid compare experiment.yaml --output identification_error_stats.yaml
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import yaml
from tqdm import tqdm

from .config import OVERWRITE_POLICIES, IdentificationConfig
from .estimators import get_estimator
from .evaluate import error_stats, fit_percent, simulate
from .exceptions import SysIdError
from .pipeline import identify, prepare_data
from .plotting import save_figures

logger = logging.getLogger("appj_sysid")

COMPARE_METHODS = ["iterative", "n4sid", "moesp"]


def _load_config(args: argparse.Namespace) -> IdentificationConfig:
    config = IdentificationConfig.from_yaml(args.config) if args.config else IdentificationConfig()
    overrides = {
        "filename": args.data,
        "est_function": getattr(args, "estimator", None),
        "model_order": args.order,
        "out_filename": getattr(args, "out", None),
        "overwrite_policy": getattr(args, "overwrite", None),
    }
    if args.validate is not None:
        overrides["validate_sys"] = args.validate > 0
        overrides["valid_split"] = args.validate
    if getattr(args, "save", False):
        overrides["saveModel"] = True
    if getattr(args, "no_plot", False):
        overrides["plot_fit"] = False
        overrides["plot_data"] = False
    return config.replace(**{k: v for k, v in overrides.items() if v is not None})


def run_identify(args: argparse.Namespace) -> int:
    config = _load_config(args)
    result = identify(config)

    model = result.model
    print("\n" + "=" * 60)
    print(f"IDENTIFIED MODEL (order {model.order}, Ts = {model.Ts})")
    print("=" * 60)
    for name in ("A", "B", "C"):
        print(f"\n{name}:")
        print(np.array2string(getattr(model, name), precision=6, suppress_small=True))
    print(f"\nuss: {result.steady_state.uss}")
    print(f"yss: {result.steady_state.yss}")
    print(f"maxErrors: {result.evaluation.bounds.max_errors}")
    print(f"minErrors: {result.evaluation.bounds.min_errors}")

    if result.figures:
        if args.save_figures:
            save_figures(result.figures, args.save_figures)
        if args.show:
            plt.show()
        result.close_figures()
    return 0


def run_compare(args: argparse.Namespace) -> int:
    config = _load_config(args)
    _, data, _ = prepare_data(config)

    stats: dict = {}
    for method in tqdm(COMPARE_METHODS, desc="Identification", unit="method"):
        estimator = get_estimator(
            method,
            output_weight=config.weight_matrix,
            tolerance=config.tolerance,
            max_iterations=config.max_iterations,
            horizon=config.subspace_horizon,
        )
        try:
            model = estimator.fit(data.u_train, data.y_train, config.Ts, config.model_order)
        except (SysIdError, np.linalg.LinAlgError) as exc:
            # Keep going with the remaining methods
            stats[method] = {"error": type(exc).__name__}
            continue

        y_train_sim, x_end = simulate(model, data.u_train, return_state=True)
        method_stats = {
            "stable": model.is_stable(),
            "train": error_stats(data.y_train - y_train_sim, config.y_labels),
            "train_fit_percent": [float(v) for v in fit_percent(data.y_train, y_train_sim)],
        }
        if data.has_validation and data.n_valid > 0:
            y_valid_sim = simulate(model, data.u_valid, x0=x_end)
            method_stats["valid"] = error_stats(data.y_valid - y_valid_sim, config.y_labels)
            method_stats["valid_fit_percent"] = [float(v) for v in fit_percent(data.y_valid, y_valid_sim)]
        stats[method] = method_stats

    out_path = Path(args.output)
    with open(out_path, "w") as f:
        yaml.safe_dump(stats, f, sort_keys=False, allow_unicode=True)
    logger.info(f"Error statistics written to {out_path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="appj-sysid",
        description="Identify a discrete linear state-space model from recorded process data.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("config", nargs="?", help="YAML configuration file")
        p.add_argument("--data", help="Data file (overrides 'filename')")
        p.add_argument("--order", type=int, help="Model order (overrides 'model_order')")
        p.add_argument("--validate", type=float, metavar="FRACTION",
                       help="Reserve this fraction of the data for validation (0 disables)")

    p_id = sub.add_parser("identify", help="Run the identification pipeline once")
    add_common(p_id)
    p_id.add_argument("--estimator", help="iterative | subspace (aliases: ssest, n4sid, moesp)")
    p_id.add_argument("--out", help="Artifact file name (overrides 'out_filename')")
    p_id.add_argument("--save", action="store_true", help="Save the identified model")
    p_id.add_argument("--overwrite", choices=OVERWRITE_POLICIES,
                      help="What to do if the artifact already exists")
    p_id.add_argument("--no-plot", action="store_true", help="Skip all figures")
    p_id.add_argument("--save-figures", metavar="DIR", help="Write figures as PNG files to DIR")
    p_id.add_argument("--show", action="store_true", help="Show figures interactively")
    p_id.set_defaults(func=run_identify)

    p_cmp = sub.add_parser("compare", help="Compare all estimators on the same data")
    add_common(p_cmp)
    p_cmp.add_argument("--output", default="identification_error_stats.yaml",
                       help="YAML file for the error statistics")
    p_cmp.set_defaults(func=run_compare)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        return args.func(args)
    except SysIdError as exc:
        logger.error(f"{type(exc).__name__}: {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
