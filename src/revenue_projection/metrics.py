from __future__ import annotations

import logging
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from .registry import ModelTable

logger = logging.getLogger(__name__)

METRIC_COLUMNS = ["mae", "mape", "mase", "smape", "rmse", "rsq"]


def mae(actual: pd.Series | np.ndarray, predicted: pd.Series | np.ndarray) -> float:
    actual_arr = np.asarray(actual, dtype=float)
    predicted_arr = np.asarray(predicted, dtype=float)
    return float(np.mean(np.abs(actual_arr - predicted_arr)))


def rmse(actual: pd.Series | np.ndarray, predicted: pd.Series | np.ndarray) -> float:
    actual_arr = np.asarray(actual, dtype=float)
    predicted_arr = np.asarray(predicted, dtype=float)
    return float(np.sqrt(np.mean((actual_arr - predicted_arr) ** 2)))


def mape(actual: pd.Series | np.ndarray, predicted: pd.Series | np.ndarray) -> float:
    """Mean of |residual / actual| as a fraction; NaN when any actual is zero."""
    actual_arr = np.asarray(actual, dtype=float)
    predicted_arr = np.asarray(predicted, dtype=float)
    if actual_arr.size == 0 or (actual_arr == 0).any():
        return np.nan
    return float(np.mean(np.abs((actual_arr - predicted_arr) / actual_arr)))


def smape(actual: pd.Series | np.ndarray, predicted: pd.Series | np.ndarray) -> float:
    """Symmetric MAPE as a fraction of the mean of |actual| and |predicted|."""
    actual_arr = np.asarray(actual, dtype=float)
    predicted_arr = np.asarray(predicted, dtype=float)
    denom = (np.abs(actual_arr) + np.abs(predicted_arr)) / 2
    if actual_arr.size == 0 or (denom == 0).any():
        return np.nan
    return float(np.mean(np.abs(actual_arr - predicted_arr) / denom))


def mase(
    actual: pd.Series | np.ndarray,
    predicted: pd.Series | np.ndarray,
    insample: pd.Series | np.ndarray,
    season_length: int = 1,
) -> float:
    insample_arr = np.asarray(insample, dtype=float)
    if season_length < 1:
        season_length = 1
    if insample_arr.size <= season_length:
        return np.nan
    denom = np.mean(np.abs(insample_arr[season_length:] - insample_arr[:-season_length]))
    if denom == 0:
        return np.nan
    return mae(actual, predicted) / float(denom)


def rsq(actual: pd.Series | np.ndarray, predicted: pd.Series | np.ndarray) -> float:
    """Coefficient of determination, 1 - SS_res / SS_tot; NaN when SS_tot is zero."""
    actual_arr = np.asarray(actual, dtype=float)
    predicted_arr = np.asarray(predicted, dtype=float)
    ss_tot = np.sum((actual_arr - actual_arr.mean()) ** 2) if actual_arr.size else 0.0
    if ss_tot == 0:
        return np.nan
    ss_res = np.sum((actual_arr - predicted_arr) ** 2)
    return float(1 - ss_res / ss_tot)


def accuracy_metrics(
    actual: pd.Series | np.ndarray,
    predicted: pd.Series | np.ndarray,
    insample: Optional[pd.Series | np.ndarray] = None,
    season_length: int = 1,
) -> Dict[str, float]:
    """Every metric for one model; the scale for MASE defaults to the actuals."""
    scale_source = actual if insample is None else insample
    return {
        "mae": mae(actual, predicted),
        "mape": mape(actual, predicted),
        "mase": mase(actual, predicted, scale_source, season_length),
        "smape": smape(actual, predicted),
        "rmse": rmse(actual, predicted),
        "rsq": rsq(actual, predicted),
    }


def accuracy_table(
    table: ModelTable,
    insample: Optional[pd.Series | np.ndarray] = None,
    season_length: int = 1,
) -> pd.DataFrame:
    """One row of metrics per calibrated model, in table order.

    Models without calibration records are left out. Metrics that are not
    defined for a model's records are NaN and named in ``undefined``.
    """
    records: List[dict] = []
    for entry in table:
        if not entry.is_calibrated:
            continue
        calibration = entry.calibration.records
        metrics = accuracy_metrics(
            calibration["actual"], calibration["prediction"], insample=insample, season_length=season_length
        )
        undefined = [name for name in METRIC_COLUMNS if np.isnan(metrics[name])]
        if undefined:
            logger.debug("Model %s: metrics not defined: %s", entry.model_id, undefined)
        records.append(
            {
                "model_id": entry.model_id,
                "label": entry.label,
                "n": len(calibration),
                **metrics,
                "undefined": ",".join(undefined),
                "stale": entry.calibration.stale,
            }
        )
    return pd.DataFrame.from_records(
        records,
        columns=["model_id", "label", "n", *METRIC_COLUMNS, "undefined", "stale"],
    )
