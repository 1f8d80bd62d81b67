import json

import numpy as np
import pandas as pd
import pytest

from conftest import TrendSpec, make_revenue_frame
from revenue_projection import cli
from revenue_projection.config import PipelineConfig, load_config
from revenue_projection.data import bundle_from_mapping, future_frame
from revenue_projection.errors import AllCalibrationsFailed, DuplicateModelId
from revenue_projection.pipeline import run_pipeline
from revenue_projection.registry import ModelTable
from revenue_projection.transforms import apply_chain

CHAIN = [{"kind": "log"}, {"kind": "standardize", "mean": 5.0, "sd": 0.3}]


def _raw_bundle():
    frame = make_revenue_frame()
    prepared = frame.copy()
    prepared["y"] = apply_chain(frame["y"], CHAIN)
    return {
        "data_prepared": prepared,
        "forecast_data": future_frame(prepared, periods=6),
        "transform_params": CHAIN,
        "assess": 12,
    }


@pytest.fixture
def bundle():
    return bundle_from_mapping(_raw_bundle())


def test_pipeline_end_to_end(bundle):
    specs = [TrendSpec(), TrendSpec(offset=0.1), TrendSpec(fail_predict=True)]
    result = run_pipeline(bundle, specs)

    assert list(result.calibration.failures) == [3]
    assert list(result.accuracy["model_id"]) == [1, 2]
    assert result.refit.table.ids == (1, 2)

    final = result.final_forecast
    assert final.scale == "original"
    assert len(final.frame) == 12
    assert (final.frame["lower"] <= final.frame["prediction"]).all()
    assert (final.frame["prediction"] <= final.frame["upper"]).all()
    # Back on the revenue scale: the series runs roughly 100-200.
    assert final.frame["prediction"].between(50, 1000).all()

    holdout = result.holdout_forecast.frame
    actual = make_revenue_frame()["y"].iloc[-12:].to_numpy()
    np.testing.assert_allclose(holdout[holdout["model_id"] == 1]["actual"], actual)


def test_pipeline_reports_refit_failures(bundle):
    specs = [TrendSpec(), TrendSpec(fail_fit_above=len(bundle.split.training))]
    result = run_pipeline(bundle, specs)

    assert result.refit.dropped_ids == (2,)
    assert set(result.final_forecast.frame["model_id"]) == {1}


def test_pipeline_combines_extra_tables(bundle):
    extra = ModelTable()
    extra.register(TrendSpec(offset=-0.2).fit(bundle.split.training), model_id=10)
    result = run_pipeline(bundle, [TrendSpec()], extra_tables=[extra])

    assert result.table.ids == (1, 10)
    assert result.table.entry(10).is_calibrated
    assert set(result.final_forecast.frame["model_id"]) == {1, 10}

    clashing = ModelTable()
    clashing.register(TrendSpec().fit(bundle.split.training), model_id=1)
    with pytest.raises(DuplicateModelId):
        run_pipeline(bundle, [TrendSpec()], extra_tables=[clashing])


def test_pipeline_aborts_when_nothing_calibrates(bundle):
    with pytest.raises(AllCalibrationsFailed):
        run_pipeline(bundle, [TrendSpec(fail_predict=True)])


def test_config_file_and_overrides(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"conf_level": 0.8, "interval_method": "conformal"}))
    config = load_config(path).with_overrides(conf_level=None, max_workers=2)

    assert config == PipelineConfig(conf_level=0.8, interval_method="conformal", max_workers=2)

    path.write_text(json.dumps({"confidence": 0.8}))
    with pytest.raises(ValueError, match="Unknown configuration keys"):
        load_config(path)


def test_cli_writes_outputs(tmp_path, monkeypatch, capsys):
    bundle_path = tmp_path / "bundle.pkl"
    pd.to_pickle(_raw_bundle(), bundle_path)
    monkeypatch.setattr(cli, "default_specs", lambda seasonal_period: [TrendSpec(), TrendSpec(offset=0.05)])

    cli.main(
        [
            "--bundle",
            str(bundle_path),
            "--accuracy-output",
            str(tmp_path / "accuracy.csv"),
            "--forecast-output",
            str(tmp_path / "forecast.csv"),
            "--log-level",
            "WARNING",
        ]
    )

    output = capsys.readouterr().out
    assert "Holdout accuracy" in output
    assert "original scale" in output
    assert len(pd.read_csv(tmp_path / "accuracy.csv")) == 2
    assert len(pd.read_csv(tmp_path / "forecast.csv")) == 12
