"""Backends fitted for real on a short monthly series."""

import numpy as np
import pytest

from revenue_projection.calibration import calibrate
from revenue_projection.models import (
    ArimaBoostSpec,
    ArimaConfig,
    ArimaSpec,
    EnsembleSpec,
    ExponentialSmoothingSpec,
    ProphetSpec,
    ensemble_average,
    ensemble_from_models,
)
from revenue_projection.registry import fit_table


def test_arima_with_regressors_predicts_the_testing_window(split):
    model = ArimaSpec(order=(1, 1, 0)).fit(split.training)
    predictions = model.predict(split.testing)

    assert model.regressors == ("promo",)
    assert model.description == "ARIMA(1,1,0)(0,0,0)[0] W/ XREGS"
    assert predictions.shape == (12,)
    assert np.isfinite(predictions).all()


def test_arima_native_interval_contains_point(split):
    model = ArimaSpec(order=(1, 0, 0), use_regressors=False).fit(split.training)
    lower, upper = model.native_interval(split.testing, 0.9)
    point = model.predict(split.testing)

    assert (lower <= point).all() and (point <= upper).all()


def test_auto_arima_picks_an_order(split):
    spec = ArimaSpec(use_regressors=False, search=ArimaConfig(max_p=1, max_d=1, max_q=1, seasonal=False))
    model = spec.fit(split.training)

    assert spec.description == "ARIMA (auto)"
    assert model.description.startswith("ARIMA(")
    assert model.order != (0, 0, 0)


def test_exponential_smoothing_skips_regressors(split):
    model = ExponentialSmoothingSpec(trend="add").fit(split.training)

    assert model.regressors == ()
    assert np.isfinite(model.predict(split.testing)).all()
    assert model.fitted_values().shape == (len(split.training),)


def test_predicting_a_later_window_skips_ahead(split):
    model = ExponentialSmoothingSpec(trend="add").fit(split.training)
    full = model.predict(split.testing)
    tail = model.predict(split.testing.iloc[6:])

    np.testing.assert_allclose(tail, full[6:])


def test_boosted_arima_needs_regressors(split):
    spec = ArimaBoostSpec(base=ArimaSpec(order=(1, 1, 0), use_regressors=False), n_estimators=20)
    model = spec.fit(split.training)

    assert model.regressors == ("promo",)
    assert "BOOSTED ERRORS" in model.description
    assert np.isfinite(model.predict(split.testing)).all()

    with pytest.raises(ValueError):
        spec.fit(split.training.drop(columns=["promo"]))


def test_ensemble_averages_and_refits_members(split):
    members = [ExponentialSmoothingSpec(trend="add"), ArimaSpec(order=(1, 1, 0), use_regressors=False)]
    ensemble = EnsembleSpec(members=members, method="median").fit(split.training)
    member_predictions = [member.predict(split.testing) for member in ensemble.members]

    np.testing.assert_allclose(ensemble.predict(split.testing), np.median(np.vstack(member_predictions), axis=0))

    refitted = ensemble.refit(split.full)
    assert len(refitted.members) == 2
    assert refitted.last_timestamp == split.testing["ds"].iloc[-1]


def test_ensemble_from_fitted_table(split):
    specs = [ExponentialSmoothingSpec(trend="add"), ExponentialSmoothingSpec(trend=None)]
    table = fit_table(specs, split.training).table
    ensemble = ensemble_from_models([entry.model for entry in table])
    table.register(ensemble)

    calibrated = calibrate(table, split.testing).table
    assert calibrated.entry(3).is_calibrated
    np.testing.assert_allclose(
        ensemble.predict(split.testing),
        ensemble_average([table.get(1).predict(split.testing), table.get(2).predict(split.testing)]),
    )


def test_prophet_with_regressors(split):
    pytest.importorskip("prophet")
    model = ProphetSpec(yearly_seasonality=False).fit(split.training)
    lower, upper = model.native_interval(split.testing, 0.95)
    point = model.predict(split.testing)

    assert model.regressors == ("promo",)
    assert point.shape == (12,)
    assert (lower <= upper).all()
