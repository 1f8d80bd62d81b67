from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.ensemble import GradientBoostingRegressor
from statsmodels.tsa.holtwinters import ExponentialSmoothing
from statsmodels.tsa.statespace.sarimax import SARIMAX

from .data import DATE_COLUMN, TARGET_COLUMN, regressor_columns

logger = logging.getLogger(__name__)


class FittedModel(ABC):
    """A fitted backend: knows its spec, its columns and where its training data ended."""

    def __init__(
        self,
        spec: "ModelSpec",
        target: str,
        regressors: Sequence[str],
        date_col: str,
        training_dates: pd.Series,
    ) -> None:
        self.spec = spec
        self.target = target
        self.regressors = tuple(regressors)
        self.date_col = date_col
        dates = pd.DatetimeIndex(pd.to_datetime(training_dates))
        self.last_timestamp = dates[-1]
        self.freq = pd.infer_freq(dates) if len(dates) >= 3 else None
        self.n_obs = len(dates)

    @property
    def description(self) -> str:
        return self.spec.description

    @abstractmethod
    def predict(self, rows: pd.DataFrame) -> np.ndarray:
        ...

    @abstractmethod
    def fitted_values(self) -> np.ndarray:
        """In-sample one-step predictions aligned with the training rows."""

    def native_interval(self, rows: pd.DataFrame, level: float) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        return None

    def refit(self, data: pd.DataFrame) -> "FittedModel":
        """Fit the same spec and columns against ``data``."""
        return self.spec.fit(data, target=self.target, regressors=list(self.regressors), date_col=self.date_col)

    def _steps_ahead(self, rows: pd.DataFrame) -> np.ndarray:
        dates = pd.DatetimeIndex(pd.to_datetime(rows[self.date_col]))
        if len(dates) == 0:
            raise ValueError("Cannot predict an empty row-set.")
        if dates[0] <= self.last_timestamp:
            raise ValueError(
                f"Rows start at {dates[0]} but the model was trained through {self.last_timestamp}."
            )
        if self.freq is None:
            return np.arange(1, len(dates) + 1)
        grid = pd.date_range(start=self.last_timestamp, end=dates[-1], freq=self.freq)
        positions = grid.get_indexer(dates)
        if (positions < 0).any():
            raise ValueError(f"Rows do not fall on the training frequency '{self.freq}'.")
        return positions

    def _exog(self, rows: pd.DataFrame) -> Optional[np.ndarray]:
        if not self.regressors:
            return None
        missing = set(self.regressors) - set(rows.columns)
        if missing:
            raise ValueError(f"Rows missing regressor columns: {sorted(missing)}")
        return rows[list(self.regressors)].to_numpy(dtype=float)


@dataclass
class ModelSpec(ABC):
    """Family and hyperparameters of a model; ``fit`` turns it into a FittedModel."""

    use_regressors: bool = True

    family = "base"

    @property
    def hyperparameters(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def description(self) -> str:
        return self.family

    def resolve_regressors(
        self,
        data: pd.DataFrame,
        target: str,
        date_col: str,
        regressors: Optional[Sequence[str]],
    ) -> List[str]:
        if not self.use_regressors:
            return []
        if regressors is None:
            return regressor_columns(data, date_col=date_col, target_col=target)
        return list(regressors)

    @abstractmethod
    def fit(
        self,
        data: pd.DataFrame,
        target: str = TARGET_COLUMN,
        regressors: Optional[Sequence[str]] = None,
        date_col: str = DATE_COLUMN,
    ) -> FittedModel:
        ...


@dataclass
class ArimaConfig:
    max_p: int = 2
    max_d: int = 1
    max_q: int = 2
    seasonal: bool = True
    max_P: int = 1
    max_D: int = 1
    max_Q: int = 1
    seasonal_period: int = 12


def _sarimax(endog, exog, order, seasonal_order) -> SARIMAX:
    return SARIMAX(
        endog,
        exog=exog,
        order=order,
        seasonal_order=seasonal_order,
        enforce_stationarity=False,
        enforce_invertibility=False,
        initialization="approximate_diffuse",
    )


def select_sarima_order(
    series: np.ndarray,
    config: ArimaConfig,
    exog: Optional[np.ndarray] = None,
) -> Tuple[Tuple[int, int, int], Tuple[int, int, int, int]]:
    best_aic = np.inf
    best_order = (1, 0, 0)
    best_seasonal = (0, 0, 0, 0)

    p_values = range(0, config.max_p + 1)
    d_values = range(0, config.max_d + 1)
    q_values = range(0, config.max_q + 1)

    seasonal_orders = [(0, 0, 0, 0)]
    if config.seasonal and config.seasonal_period > 1 and len(series) > 2 * config.seasonal_period:
        seasonal_orders.extend(
            (P, D, Q, config.seasonal_period)
            for P in range(0, config.max_P + 1)
            for D in range(0, config.max_D + 1)
            for Q in range(0, config.max_Q + 1)
            if (P, D, Q) != (0, 0, 0)
        )

    for order in [(p, d, q) for p in p_values for d in d_values for q in q_values]:
        for seasonal_order in seasonal_orders:
            if order == (0, 0, 0) and seasonal_order == (0, 0, 0, 0):
                continue
            try:
                fitted = _sarimax(series, exog, order, seasonal_order).fit(disp=False)
            except (ValueError, np.linalg.LinAlgError):
                continue
            if fitted.aic < best_aic:
                best_aic = fitted.aic
                best_order = order
                best_seasonal = seasonal_order
    logger.debug("Selected ARIMA%s x %s (AIC %.2f)", best_order, best_seasonal, best_aic)
    return best_order, best_seasonal


def _format_arima(order, seasonal_order, regressors) -> str:
    p, d, q = order
    P, D, Q, m = seasonal_order
    label = f"ARIMA({p},{d},{q})({P},{D},{Q})[{m}]"
    return f"{label} W/ XREGS" if regressors else label


class FittedArima(FittedModel):
    def __init__(self, spec, target, regressors, date_col, training_dates, result, order, seasonal_order):
        super().__init__(spec, target, regressors, date_col, training_dates)
        self.result = result
        self.order = order
        self.seasonal_order = seasonal_order

    @property
    def description(self) -> str:
        return _format_arima(self.order, self.seasonal_order, self.regressors)

    def _forecast(self, rows: pd.DataFrame):
        steps = self._steps_ahead(rows)
        horizon = int(steps.max())
        exog = self._exog(rows)
        if exog is not None and horizon != len(rows):
            raise ValueError("Regressor rows must continue directly after the training window.")
        return steps, self.result.get_forecast(steps=horizon, exog=exog)

    def predict(self, rows: pd.DataFrame) -> np.ndarray:
        steps, forecast = self._forecast(rows)
        return np.asarray(forecast.predicted_mean, dtype=float)[steps - 1]

    def fitted_values(self) -> np.ndarray:
        return np.asarray(self.result.fittedvalues, dtype=float)

    def native_interval(self, rows: pd.DataFrame, level: float):
        steps, forecast = self._forecast(rows)
        conf = np.asarray(forecast.conf_int(alpha=1.0 - level), dtype=float)
        return conf[steps - 1, 0], conf[steps - 1, 1]


@dataclass
class ArimaSpec(ModelSpec):
    """SARIMAX with optional regressors; an unset order is chosen by AIC search."""

    order: Optional[Tuple[int, int, int]] = None
    seasonal_order: Optional[Tuple[int, int, int, int]] = None
    search: ArimaConfig = field(default_factory=ArimaConfig)

    family = "arima"

    @property
    def description(self) -> str:
        if self.order is None:
            return "ARIMA (auto)"
        return _format_arima(self.order, self.seasonal_order or (0, 0, 0, 0), self.use_regressors)

    def fit(self, data, target=TARGET_COLUMN, regressors=None, date_col=DATE_COLUMN) -> FittedArima:
        columns = self.resolve_regressors(data, target, date_col, regressors)
        endog = data[target].to_numpy(dtype=float)
        exog = data[columns].to_numpy(dtype=float) if columns else None
        if self.order is None:
            order, seasonal_order = select_sarima_order(endog, self.search, exog)
        else:
            order, seasonal_order = self.order, self.seasonal_order or (0, 0, 0, 0)
        result = _sarimax(endog, exog, order, seasonal_order).fit(disp=False)
        return FittedArima(self, target, columns, date_col, data[date_col], result, order, seasonal_order)


class FittedExponentialSmoothing(FittedModel):
    def __init__(self, spec, target, date_col, training_dates, result):
        super().__init__(spec, target, (), date_col, training_dates)
        self.result = result

    def predict(self, rows: pd.DataFrame) -> np.ndarray:
        steps = self._steps_ahead(rows)
        forecast = np.asarray(self.result.forecast(int(steps.max())), dtype=float)
        return forecast[steps - 1]

    def fitted_values(self) -> np.ndarray:
        return np.asarray(self.result.fittedvalues, dtype=float)


@dataclass
class ExponentialSmoothingSpec(ModelSpec):
    """Holt-Winters smoothing; regressors are never used."""

    use_regressors: bool = False
    trend: Optional[str] = "add"
    damped_trend: bool = False
    seasonal: Optional[str] = None
    seasonal_periods: Optional[int] = None

    family = "ets"

    @property
    def description(self) -> str:
        parts = [
            "A" if self.trend == "add" else "M" if self.trend == "mul" else "N",
            "d" if self.damped_trend and self.trend else "",
        ]
        season = "A" if self.seasonal == "add" else "M" if self.seasonal == "mul" else "N"
        return f"ETS(A,{''.join(parts)},{season})"

    def fit(self, data, target=TARGET_COLUMN, regressors=None, date_col=DATE_COLUMN) -> FittedExponentialSmoothing:
        model = ExponentialSmoothing(
            data[target].to_numpy(dtype=float),
            trend=self.trend,
            damped_trend=self.damped_trend and self.trend is not None,
            seasonal=self.seasonal,
            seasonal_periods=self.seasonal_periods,
            initialization_method="estimated",
        )
        result = model.fit()
        return FittedExponentialSmoothing(self, target, date_col, data[date_col], result)


def _import_prophet():
    try:
        from prophet import Prophet
    except ModuleNotFoundError as exc:  # pragma: no cover
        raise ModuleNotFoundError(
            "prophet package not found. Install with `pip install prophet` to enable the Prophet backend."
        ) from exc
    return Prophet


class FittedProphet(FittedModel):
    def __init__(self, spec, target, regressors, date_col, training, model):
        super().__init__(spec, target, regressors, date_col, training[date_col])
        self.model = model
        self._training = training

    def _frame(self, rows: pd.DataFrame) -> pd.DataFrame:
        frame = pd.DataFrame({"ds": pd.to_datetime(rows[self.date_col]).to_numpy()})
        exog = self._exog(rows)
        if exog is not None:
            for idx, column in enumerate(self.regressors):
                frame[column] = exog[:, idx]
        return frame

    def predict(self, rows: pd.DataFrame) -> np.ndarray:
        return self.model.predict(self._frame(rows))["yhat"].to_numpy(dtype=float)

    def fitted_values(self) -> np.ndarray:
        return self.model.predict(self._frame(self._training))["yhat"].to_numpy(dtype=float)

    def native_interval(self, rows: pd.DataFrame, level: float):
        if abs(level - self.spec.interval_width) > 1e-9:
            return None
        forecast = self.model.predict(self._frame(rows))
        return forecast["yhat_lower"].to_numpy(dtype=float), forecast["yhat_upper"].to_numpy(dtype=float)


@dataclass
class ProphetSpec(ModelSpec):
    growth: str = "linear"
    seasonality_mode: str = "additive"
    yearly_seasonality: Any = "auto"
    weekly_seasonality: Any = False
    daily_seasonality: Any = False
    changepoint_prior_scale: float = 0.05
    seasonality_prior_scale: float = 10.0
    interval_width: float = 0.95

    family = "prophet"

    @property
    def description(self) -> str:
        return "PROPHET W/ REGRESSORS" if self.use_regressors else "PROPHET"

    def fit(self, data, target=TARGET_COLUMN, regressors=None, date_col=DATE_COLUMN) -> FittedProphet:
        Prophet = _import_prophet()
        columns = self.resolve_regressors(data, target, date_col, regressors)
        params = self.hyperparameters
        params.pop("use_regressors")
        model = Prophet(**params)
        for column in columns:
            model.add_regressor(column)
        history = pd.DataFrame({"ds": pd.to_datetime(data[date_col]).to_numpy(), "y": data[target].to_numpy(dtype=float)})
        for column in columns:
            history[column] = data[column].to_numpy(dtype=float)
        model.fit(history)
        return FittedProphet(self, target, columns, date_col, data.reset_index(drop=True), model)


class FittedBoosted(FittedModel):
    def __init__(self, spec, target, regressors, date_col, training_dates, base, booster, features):
        super().__init__(spec, target, regressors, date_col, training_dates)
        self.base = base
        self.booster = booster
        self._features = features

    @property
    def description(self) -> str:
        return f"{self.base.description} W/ BOOSTED ERRORS"

    def predict(self, rows: pd.DataFrame) -> np.ndarray:
        return self.base.predict(rows) + self.booster.predict(self._exog(rows))

    def fitted_values(self) -> np.ndarray:
        return self.base.fitted_values() + self.booster.predict(self._features)


@dataclass
class BoostedSpec(ModelSpec):
    """A base model whose residuals are learned from the regressors by gradient boosting."""

    base: ModelSpec = field(default_factory=lambda: ArimaSpec(use_regressors=False))
    n_estimators: int = 200
    learning_rate: float = 0.05
    max_depth: int = 3
    min_samples_leaf: int = 2
    random_state: int = 42

    family = "boosted"

    @property
    def description(self) -> str:
        return f"{self.base.description} W/ BOOSTED ERRORS"

    def fit(self, data, target=TARGET_COLUMN, regressors=None, date_col=DATE_COLUMN) -> FittedBoosted:
        columns = self.resolve_regressors(data, target, date_col, regressors)
        if not columns:
            raise ValueError("Boosted models need at least one regressor column.")
        base = self.base.fit(data, target=target, regressors=None, date_col=date_col)
        residuals = data[target].to_numpy(dtype=float) - base.fitted_values()
        features = data[columns].to_numpy(dtype=float)
        booster = GradientBoostingRegressor(
            n_estimators=self.n_estimators,
            learning_rate=self.learning_rate,
            max_depth=self.max_depth,
            min_samples_leaf=self.min_samples_leaf,
            random_state=self.random_state,
        )
        booster.fit(features, residuals)
        return FittedBoosted(self, target, columns, date_col, data[date_col], base, booster, features)


@dataclass
class ArimaBoostSpec(BoostedSpec):
    base: ModelSpec = field(default_factory=lambda: ArimaSpec(use_regressors=False))

    family = "arima_boost"


@dataclass
class ProphetBoostSpec(BoostedSpec):
    base: ModelSpec = field(
        default_factory=lambda: ProphetSpec(use_regressors=False, yearly_seasonality=False)
    )

    family = "prophet_boost"


def ensemble_average(arrays: Iterable[np.ndarray], method: str = "mean") -> np.ndarray:
    stacked = np.vstack(list(arrays))
    if method == "median":
        return np.nanmedian(stacked, axis=0)
    return np.nanmean(stacked, axis=0)


class FittedEnsemble(FittedModel):
    def __init__(self, spec: "EnsembleSpec", members: Sequence[FittedModel]) -> None:
        if not members:
            raise ValueError("An ensemble needs at least one member.")
        first = members[0]
        self.spec = spec
        self.target = first.target
        self.regressors = ()
        self.date_col = first.date_col
        self.last_timestamp = max(member.last_timestamp for member in members)
        self.freq = first.freq
        self.n_obs = first.n_obs
        self.members = tuple(members)

    @property
    def description(self) -> str:
        return f"ENSEMBLE ({self.spec.method.upper()}): {len(self.members)} MODELS"

    def predict(self, rows: pd.DataFrame) -> np.ndarray:
        return ensemble_average((member.predict(rows) for member in self.members), self.spec.method)

    def fitted_values(self) -> np.ndarray:
        return ensemble_average((member.fitted_values() for member in self.members), self.spec.method)

    def refit(self, data: pd.DataFrame) -> "FittedEnsemble":
        return FittedEnsemble(self.spec, [member.refit(data) for member in self.members])


@dataclass
class EnsembleSpec(ModelSpec):
    """Mean or median of member models; refitting refits every member."""

    members: Sequence[ModelSpec] = ()
    method: str = "mean"

    family = "ensemble"

    @property
    def description(self) -> str:
        return f"ENSEMBLE ({self.method.upper()}): {len(self.members)} MODELS"

    @property
    def hyperparameters(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "members": [{"family": member.family, **member.hyperparameters} for member in self.members],
        }

    def fit(self, data, target=TARGET_COLUMN, regressors=None, date_col=DATE_COLUMN) -> FittedEnsemble:
        if self.method not in ("mean", "median"):
            raise ValueError(f"Unsupported ensemble method '{self.method}'.")
        members = [member.fit(data, target=target, regressors=regressors, date_col=date_col) for member in self.members]
        return FittedEnsemble(self, members)


def ensemble_from_models(models: Sequence[FittedModel], method: str = "mean") -> FittedEnsemble:
    """Wrap already-fitted models into an ensemble without refitting them."""
    spec = EnsembleSpec(members=[model.spec for model in models], method=method)
    if method not in ("mean", "median"):
        raise ValueError(f"Unsupported ensemble method '{method}'.")
    return FittedEnsemble(spec, models)
