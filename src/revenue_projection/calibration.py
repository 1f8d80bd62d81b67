from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, Optional

import numpy as np
import pandas as pd

from .data import DATE_COLUMN, validate_dataset
from .errors import AllCalibrationsFailed, CalibrationFailure
from .executor import run_per_model
from .models import FittedModel
from .registry import Calibration, ModelTable

logger = logging.getLogger(__name__)

RECORD_COLUMNS = ["ds", "actual", "prediction", "residual"]


@dataclass(frozen=True)
class CalibrationResult:
    table: ModelTable
    failures: Dict[int, CalibrationFailure]

    @property
    def calibrated_ids(self):
        return tuple(entry.model_id for entry in self.table if entry.is_calibrated)


def calibration_records(
    model: FittedModel,
    testing: pd.DataFrame,
    target: Optional[str] = None,
    date_col: str = DATE_COLUMN,
) -> pd.DataFrame:
    target = target or model.target
    predictions = np.asarray(model.predict(testing), dtype=float).reshape(-1)
    if predictions.shape[0] != len(testing):
        raise ValueError(f"predict returned {predictions.shape[0]} values for {len(testing)} rows")
    if not np.isfinite(predictions).all():
        raise ValueError("predict returned non-finite values")
    actual = testing[target].to_numpy(dtype=float)
    return pd.DataFrame(
        {
            "ds": pd.to_datetime(testing[date_col]).to_numpy(),
            "actual": actual,
            "prediction": predictions,
            "residual": actual - predictions,
        },
        columns=RECORD_COLUMNS,
    )


def calibrate(
    table: ModelTable,
    testing: pd.DataFrame,
    target: Optional[str] = None,
    date_col: str = DATE_COLUMN,
    max_workers: Optional[int] = 1,
    timeout: Optional[float] = None,
) -> CalibrationResult:
    """Predict the testing window with every model and keep the residuals.

    Returns a new table; prior calibration on ``table`` is replaced, never
    appended to. A model whose prediction fails is kept in the table with
    its failure recorded and no calibration. Raises ``AllCalibrationsFailed``
    when no model calibrates.
    """
    if len(table) == 0:
        raise ValueError("Cannot calibrate an empty model table.")
    testing = validate_dataset(testing, date_col, target_col=target)

    outcomes = run_per_model(
        {
            entry.model_id: (lambda model=entry.model: calibration_records(model, testing, target, date_col))
            for entry in table
        },
        max_workers=max_workers,
        timeout=timeout,
    )

    entries = []
    failures: Dict[int, CalibrationFailure] = {}
    for entry in table:
        records, error = outcomes[entry.model_id]
        if error is not None:
            failure = CalibrationFailure(entry.model_id, str(error))
            failure.__cause__ = error
            failures[entry.model_id] = failure
            logger.warning("Calibration failed for model %s (%s): %s", entry.model_id, entry.label, error)
            entries.append(replace(entry, calibration=None, failure=failure))
        else:
            entries.append(replace(entry, calibration=Calibration(records), failure=None))

    if len(failures) == len(table):
        raise AllCalibrationsFailed(failures)
    logger.info("Calibrated %s of %s models on %s rows", len(table) - len(failures), len(table), len(testing))
    return CalibrationResult(table=table.with_entries(entries), failures=failures)


def calibration_frame(table: ModelTable) -> pd.DataFrame:
    """Long-format view of every calibrated model's records."""
    frames = []
    for entry in table:
        if not entry.is_calibrated:
            continue
        frame = entry.calibration.records.copy()
        frame.insert(0, "label", entry.label)
        frame.insert(0, "model_id", entry.model_id)
        frames.append(frame)
    if not frames:
        return pd.DataFrame(columns=["model_id", "label", *RECORD_COLUMNS])
    return pd.concat(frames, ignore_index=True)
