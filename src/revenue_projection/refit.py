from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, Optional, Tuple

import pandas as pd

from .data import DATE_COLUMN, validate_dataset
from .errors import FitFailure
from .executor import run_per_model
from .registry import ModelTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefitResult:
    table: ModelTable
    failures: Dict[int, FitFailure]

    @property
    def dropped_ids(self) -> Tuple[int, ...]:
        return tuple(self.failures)


def refit(
    table: ModelTable,
    data: pd.DataFrame,
    date_col: str = DATE_COLUMN,
    max_workers: Optional[int] = 1,
    timeout: Optional[float] = None,
) -> RefitResult:
    """Refit every model on ``data`` with its original spec and columns.

    Ids and labels are kept. Calibration records from the old fit ride along
    marked stale: they can still size forecast intervals, but the accuracy
    they describe belongs to the previous fit. Models that fail to refit are
    dropped and reported in ``failures``.
    """
    data = validate_dataset(data, date_col, target_col=None)
    outcomes = run_per_model(
        {entry.model_id: (lambda model=entry.model: model.refit(data)) for entry in table},
        max_workers=max_workers,
        timeout=timeout,
    )

    entries = []
    failures: Dict[int, FitFailure] = {}
    for entry in table:
        model, error = outcomes[entry.model_id]
        if error is not None:
            failure = FitFailure(entry.model_id, str(error))
            failure.__cause__ = error
            failures[entry.model_id] = failure
            logger.warning("Refit failed for model %s (%s): %s", entry.model_id, entry.label, error)
            continue
        calibration = None if entry.calibration is None else replace(entry.calibration, stale=True)
        entries.append(replace(entry, model=model, calibration=calibration, failure=None))

    logger.info("Refit %s of %s models on %s rows", len(entries), len(table), len(data))
    return RefitResult(table=table.with_entries(entries), failures=failures)
