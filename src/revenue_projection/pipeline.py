from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import pandas as pd

from .calibration import CalibrationResult, calibrate
from .combine import combine_tables
from .config import PipelineConfig
from .data import ArtifactBundle
from .forecast import ForecastResult, forecast
from .metrics import accuracy_table
from .models import (
    ArimaBoostSpec,
    ArimaConfig,
    ArimaSpec,
    ExponentialSmoothingSpec,
    ModelSpec,
    ProphetBoostSpec,
    ProphetSpec,
)
from .refit import RefitResult, refit
from .registry import FitResult, ModelTable, fit_table
from .transforms import TransformChain, invert_forecast

logger = logging.getLogger(__name__)


def default_specs(seasonal_period: int = 12) -> List[ModelSpec]:
    """ARIMA, Prophet and exponential smoothing variants compared by default."""
    return [
        ArimaSpec(use_regressors=False, search=ArimaConfig(seasonal_period=seasonal_period)),
        ArimaSpec(use_regressors=True, search=ArimaConfig(seasonal_period=seasonal_period)),
        ArimaBoostSpec(base=ArimaSpec(use_regressors=False, search=ArimaConfig(seasonal_period=seasonal_period))),
        ProphetSpec(use_regressors=False),
        ProphetSpec(use_regressors=True),
        ProphetBoostSpec(),
        ExponentialSmoothingSpec(trend="add", seasonal=None),
        ExponentialSmoothingSpec(trend="add", damped_trend=True, seasonal="add", seasonal_periods=seasonal_period),
    ]


@dataclass(frozen=True)
class PipelineResult:
    fit: FitResult
    calibration: CalibrationResult
    table: ModelTable
    accuracy: pd.DataFrame
    holdout_forecast: ForecastResult
    refit: RefitResult
    future_forecast: ForecastResult
    final_forecast: ForecastResult


def _calibrated(table: ModelTable, bundle: ArtifactBundle, config: PipelineConfig) -> ModelTable:
    if all(entry.is_calibrated or entry.failure is not None for entry in table):
        return table
    return calibrate(
        table,
        bundle.split.testing,
        date_col=config.date_col,
        max_workers=config.max_workers,
        timeout=config.timeout,
    ).table


def run_pipeline(
    bundle: ArtifactBundle,
    specs: Optional[Sequence[ModelSpec]] = None,
    config: Optional[PipelineConfig] = None,
    extra_tables: Sequence[ModelTable] = (),
) -> PipelineResult:
    """Fit, calibrate, score, combine, refit, forecast and invert.

    ``extra_tables`` are tables fitted elsewhere on the same training
    window; they are calibrated if needed and must not share ids with the
    table built from ``specs`` (which starts numbering at 1).
    """
    config = config or PipelineConfig()
    specs = list(specs) if specs is not None else default_specs()
    split = bundle.split
    chain = TransformChain(bundle.transform_params)
    pool = {"max_workers": config.max_workers, "timeout": config.timeout}

    fit_result = fit_table(specs, split.training, target=config.target_col, date_col=config.date_col, **pool)
    if len(fit_result.table) == 0:
        raise RuntimeError("No model could be fitted on the training window.")

    calibration = calibrate(fit_result.table, split.testing, date_col=config.date_col, **pool)
    table = calibration.table
    if extra_tables:
        table = combine_tables(table, *(_calibrated(extra, bundle, config) for extra in extra_tables))

    accuracy = accuracy_table(table, season_length=config.season_length)
    logger.info("Accuracy computed for %s models", len(accuracy))

    forecast_args = {"conf_level": config.conf_level, "interval_method": config.interval_method, "date_col": config.date_col}
    calibrated_ids = [entry.model_id for entry in table if entry.is_calibrated]
    holdout = forecast(table.select(calibrated_ids), split.testing, **forecast_args, **pool)

    refit_result = refit(table.select(calibrated_ids), split.full, date_col=config.date_col, **pool)
    if refit_result.failures:
        logger.warning("Models dropped at refit: %s", list(refit_result.dropped_ids))
    future = forecast(refit_result.table, bundle.forecast_data, **forecast_args, **pool)
    final = invert_forecast(future, chain)

    return PipelineResult(
        fit=fit_result,
        calibration=calibration,
        table=table,
        accuracy=accuracy,
        holdout_forecast=invert_forecast(holdout, chain),
        refit=refit_result,
        future_forecast=future,
        final_forecast=final,
    )
