from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
from scipy.stats import norm

from .data import DATE_COLUMN, validate_dataset
from .errors import ModelFailure, NotCalibrated
from .executor import run_per_model
from .registry import ModelTable, RegistryEntry

logger = logging.getLogger(__name__)

SCALE_TRANSFORMED = "transformed"
SCALE_ORIGINAL = "original"
SCALES = (SCALE_TRANSFORMED, SCALE_ORIGINAL)
INTERVAL_METHODS = ("normal", "conformal")
FORECAST_COLUMNS = ["model_id", "label", "ds", "prediction", "lower", "upper"]


@dataclass(frozen=True)
class ForecastResult:
    frame: pd.DataFrame
    scale: str
    conf_level: float
    failures: Dict[int, ModelFailure]

    @property
    def model_ids(self):
        return tuple(pd.unique(self.frame["model_id"]))

    def for_model(self, model_id: int) -> pd.DataFrame:
        return self.frame[self.frame["model_id"] == model_id].reset_index(drop=True)


def interval_half_width(residuals: np.ndarray, conf_level: float = 0.95, method: str = "normal") -> float:
    """Half-width of a symmetric interval sized from calibration residuals.

    ``normal`` scales the residual standard deviation by the two-sided
    normal quantile; ``conformal`` takes the empirical quantile of the
    absolute residuals.
    """
    residuals = np.asarray(residuals, dtype=float)
    if residuals.size == 0:
        raise ValueError("Need at least one residual to size an interval.")
    if not 0 < conf_level < 1:
        raise ValueError("conf_level must be between 0 and 1.")
    if method == "normal":
        spread = np.std(residuals, ddof=1) if residuals.size > 1 else abs(residuals[0])
        return float(norm.ppf(0.5 + conf_level / 2) * spread)
    if method == "conformal":
        return float(np.quantile(np.abs(residuals), conf_level, method="higher"))
    raise ValueError(f"Unknown interval method '{method}'; expected one of {INTERVAL_METHODS}.")


def forecast_model(
    entry: RegistryEntry,
    rows: pd.DataFrame,
    conf_level: float = 0.95,
    interval_method: str = "normal",
    date_col: str = DATE_COLUMN,
) -> pd.DataFrame:
    if not entry.is_calibrated:
        raise NotCalibrated(entry.model_id)
    if entry.calibration.stale:
        logger.debug("Model %s: sizing interval from pre-refit residuals", entry.model_id)
    half_width = interval_half_width(entry.calibration.residuals, conf_level, interval_method)
    point = np.asarray(entry.model.predict(rows), dtype=float).reshape(-1)
    if point.shape[0] != len(rows):
        raise ValueError(f"predict returned {point.shape[0]} values for {len(rows)} rows")
    frame = pd.DataFrame(
        {
            "model_id": entry.model_id,
            "label": entry.label,
            "ds": pd.to_datetime(rows[date_col]).to_numpy(),
            "prediction": point,
            "lower": point - half_width,
            "upper": point + half_width,
        },
        columns=FORECAST_COLUMNS,
    )
    target = entry.model.target
    if target in rows.columns:
        frame["actual"] = rows[target].to_numpy(dtype=float)
    return frame


def forecast(
    table: ModelTable,
    rows: pd.DataFrame,
    conf_level: float = 0.95,
    interval_method: str = "normal",
    scale: str = SCALE_TRANSFORMED,
    date_col: str = DATE_COLUMN,
    max_workers: Optional[int] = 1,
    timeout: Optional[float] = None,
) -> ForecastResult:
    """Point forecasts and residual-sized intervals for every model.

    ``rows`` is either the testing window (actuals are kept in an ``actual``
    column) or future rows without a target. ``scale`` records which scale
    the models were trained on. Models without calibration fail with
    ``NotCalibrated``; like prediction errors, that failure is reported per
    model. If no model produces a forecast the first failure is raised.
    """
    if scale not in SCALES:
        raise ValueError(f"scale must be one of {SCALES}.")
    if interval_method not in INTERVAL_METHODS:
        raise ValueError(f"Unknown interval method '{interval_method}'; expected one of {INTERVAL_METHODS}.")
    if not 0 < conf_level < 1:
        raise ValueError("conf_level must be between 0 and 1.")
    rows = validate_dataset(rows, date_col, target_col=None)

    outcomes = run_per_model(
        {
            entry.model_id: (
                lambda entry=entry: forecast_model(entry, rows, conf_level, interval_method, date_col)
            )
            for entry in table
        },
        max_workers=max_workers,
        timeout=timeout,
    )

    frames: List[pd.DataFrame] = []
    failures: Dict[int, ModelFailure] = {}
    for entry in table:
        frame, error = outcomes[entry.model_id]
        if error is None:
            frames.append(frame)
            continue
        if isinstance(error, ModelFailure):
            failure = error
        else:
            failure = ModelFailure(entry.model_id, f"forecast failed: {error}")
            failure.__cause__ = error
        failures[entry.model_id] = failure
        logger.warning("Forecast failed for model %s (%s): %s", entry.model_id, entry.label, failure.message)

    if not frames:
        if failures:
            raise next(iter(failures.values()))
        raise ValueError("Cannot forecast with an empty model table.")

    logger.info("Forecast %s rows for %s of %s models", len(rows), len(frames), len(table))
    return ForecastResult(
        frame=pd.concat(frames, ignore_index=True),
        scale=scale,
        conf_level=conf_level,
        failures=failures,
    )
