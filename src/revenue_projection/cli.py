from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional, Sequence

import pandas as pd

from .config import load_config
from .data import load_artifact_bundle
from .pipeline import PipelineResult, default_specs, run_pipeline

logger = logging.getLogger(__name__)


def summarize_accuracy(accuracy: pd.DataFrame) -> str:
    if accuracy.empty:
        return "No accuracy metrics were generated."

    lines: list[str] = []
    ranked = accuracy.sort_values("rmse").set_index("model_id")
    lines.append("Holdout accuracy (lower is better, rsq higher is better):")
    lines.append(
        ranked[["label", "mae", "mape", "mase", "smape", "rmse", "rsq"]].to_string(
            float_format=lambda x: f"{x:.4f}", na_rep="n/a"
        )
    )

    undefined = accuracy[accuracy["undefined"].str.len().gt(0)]
    if not undefined.empty:
        lines.append("\nUndefined metrics:")
        for _, row in undefined.iterrows():
            lines.append(f"- model {row['model_id']}: {row['undefined']}")

    return "\n".join(lines)


def summarize_failures(result: PipelineResult) -> str:
    stages = {
        "fit": result.fit.failures,
        "calibrate": result.calibration.failures,
        "refit": result.refit.failures,
        "forecast": result.future_forecast.failures,
    }
    lines = [
        f"- {stage}: model {model_id} -> {failure.message}"
        for stage, failures in stages.items()
        for model_id, failure in failures.items()
    ]
    return "\n".join(["Warnings:", *lines]) if lines else ""


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Calibrate, combine and refit ARIMA, Prophet and ETS models, then forecast revenue.",
    )
    parser.add_argument(
        "--bundle",
        type=Path,
        required=True,
        help="Pickled artifact bundle with data_prepared, forecast_data, splits and transform_params.",
    )
    parser.add_argument("--config", type=Path, help="Optional JSON file with pipeline settings.")
    parser.add_argument("--assess", type=int, help="Rows held out for testing when the bundle has no splits.")
    parser.add_argument("--conf-level", type=float, help="Two-sided interval coverage (default: 0.95).")
    parser.add_argument(
        "--interval-method",
        choices=("normal", "conformal"),
        help="How calibration residuals size the interval (default: normal).",
    )
    parser.add_argument(
        "--seasonal-period",
        type=int,
        default=12,
        help="Season length used by the seasonal model variants (default: 12).",
    )
    parser.add_argument("--max-workers", type=int, help="Models processed in parallel (default: 1).")
    parser.add_argument("--timeout", type=float, help="Per-model timeout in seconds for fit and predict.")
    parser.add_argument("--accuracy-output", type=Path, help="Optional path to write holdout accuracy as CSV.")
    parser.add_argument("--forecast-output", type=Path, help="Optional path to write the final forecast as CSV.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO).")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = build_argument_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("prophet").setLevel(logging.WARNING)
    logging.getLogger("cmdstanpy").setLevel(logging.WARNING)

    config = load_config(args.config).with_overrides(
        assess=args.assess,
        conf_level=args.conf_level,
        interval_method=args.interval_method,
        max_workers=args.max_workers,
        timeout=args.timeout,
    )
    bundle = load_artifact_bundle(
        args.bundle, date_col=config.date_col, target_col=config.target_col, assess=config.assess
    )
    result = run_pipeline(bundle, default_specs(args.seasonal_period), config)

    print(summarize_accuracy(result.accuracy))
    warnings = summarize_failures(result)
    if warnings:
        print("\n" + warnings)

    final = result.final_forecast.frame
    print(f"\nFinal forecast on the {result.final_forecast.scale} scale (first 10 rows):")
    print(final.head(10).to_string(index=False, float_format=lambda x: f"{x:.2f}"))

    if args.accuracy_output:
        result.accuracy.to_csv(args.accuracy_output, index=False)
        print(f"\nSaved accuracy to {args.accuracy_output}")

    if args.forecast_output:
        final.to_csv(args.forecast_output, index=False)
        print(f"Saved forecasts to {args.forecast_output}")


if __name__ == "__main__":
    main()
