from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
import pytest

from revenue_projection.data import time_series_split
from revenue_projection.models import FittedModel, ModelSpec
from revenue_projection.registry import ModelTable


def make_revenue_frame(n_periods: int = 48, start: str = "2019-01-01", seed: int = 42) -> pd.DataFrame:
    """Monthly revenue-like series with trend, yearly seasonality and a promo flag."""
    rng = np.random.default_rng(seed)
    t = np.arange(n_periods)
    promo = (t % 6 == 0).astype(float)
    values = 100 + 2.0 * t + 10 * np.sin(2 * np.pi * t / 12) + 8 * promo + rng.normal(0, 2, n_periods)
    return pd.DataFrame(
        {
            "ds": pd.date_range(start=start, periods=n_periods, freq="MS"),
            "y": values,
            "promo": promo,
        }
    )


class FittedTrend(FittedModel):
    def __init__(self, spec, target, date_col, training_dates, intercept, slope):
        super().__init__(spec, target, (), date_col, training_dates)
        self.intercept = intercept
        self.slope = slope

    def predict(self, rows: pd.DataFrame) -> np.ndarray:
        if self.spec.fail_predict:
            raise RuntimeError("induced predict failure")
        if self.spec.sleep:
            time.sleep(self.spec.sleep)
        steps = self._steps_ahead(rows)
        values = self.intercept + self.slope * (self.n_obs - 1 + steps)
        if self.spec.emit_nan:
            values = values.astype(float)
            values[0] = np.nan
        return values

    def fitted_values(self) -> np.ndarray:
        return self.intercept + self.slope * np.arange(self.n_obs)


@dataclass
class TrendSpec(ModelSpec):
    """Deterministic straight-line backend used in place of a real model family."""

    use_regressors: bool = False
    offset: float = 0.0
    fail_predict: bool = False
    emit_nan: bool = False
    fail_fit_above: Optional[int] = None
    sleep: float = 0.0

    family = "trend"

    def fit(self, data, target="y", regressors=None, date_col="ds") -> FittedTrend:
        if self.fail_fit_above is not None and len(data) > self.fail_fit_above:
            raise RuntimeError("induced fit failure")
        y = data[target].to_numpy(dtype=float)
        slope, intercept = np.polyfit(np.arange(len(y)), y, 1)
        return FittedTrend(self, target, date_col, data[date_col], intercept + self.offset, slope)


@pytest.fixture
def revenue_frame() -> pd.DataFrame:
    return make_revenue_frame()


@pytest.fixture
def split(revenue_frame):
    return time_series_split(revenue_frame, assess=12)


@pytest.fixture
def make_table(split):
    """Build a table of fitted trend models with caller-chosen ids."""

    def _make(specs, start_id: int = 1) -> ModelTable:
        table = ModelTable()
        for offset, spec in enumerate(specs):
            table.register(spec.fit(split.training), model_id=start_id + offset)
        return table

    return _make
