import numpy as np
import pytest

from conftest import TrendSpec
from revenue_projection.calibration import calibrate, calibration_frame
from revenue_projection.errors import AllCalibrationsFailed, CalibrationFailure
from revenue_projection.metrics import accuracy_table


def test_one_failing_model_does_not_abort_calibration(split, make_table):
    table = make_table([TrendSpec(), TrendSpec(offset=5.0), TrendSpec(fail_predict=True)])
    result = calibrate(table, split.testing)

    assert result.calibrated_ids == (1, 2)
    assert list(result.failures) == [3]
    assert isinstance(result.failures[3], CalibrationFailure)
    assert result.table.entry(3).failure is result.failures[3]

    accuracy = accuracy_table(result.table)
    assert list(accuracy["model_id"]) == [1, 2]


def test_records_hold_actual_prediction_and_residual(split, make_table):
    result = calibrate(make_table([TrendSpec()]), split.testing)
    records = result.table.entry(1).calibration.records

    assert len(records) == len(split.testing)
    np.testing.assert_allclose(records["actual"], split.testing["y"])
    np.testing.assert_allclose(records["residual"], records["actual"] - records["prediction"])
    assert list(records["ds"]) == list(split.testing["ds"])


def test_non_finite_predictions_are_calibration_failures(split, make_table):
    result = calibrate(make_table([TrendSpec(), TrendSpec(emit_nan=True)]), split.testing)

    assert list(result.failures) == [2]
    assert "non-finite" in str(result.failures[2])


def test_every_model_failing_raises(split, make_table):
    table = make_table([TrendSpec(fail_predict=True), TrendSpec(fail_predict=True)])
    with pytest.raises(AllCalibrationsFailed) as excinfo:
        calibrate(table, split.testing)
    assert excinfo.value.model_ids == (1, 2)


def test_recalibration_replaces_records(split, make_table):
    table = make_table([TrendSpec()])
    first = calibrate(table, split.testing).table
    second = calibrate(first, split.testing.iloc[:6]).table

    assert len(first.entry(1).calibration) == 12
    assert len(second.entry(1).calibration) == 6
    assert not table.entry(1).is_calibrated


def test_calibration_runs_on_a_worker_pool(split, make_table):
    table = make_table([TrendSpec(), TrendSpec(offset=1.0), TrendSpec(sleep=1.0)])
    result = calibrate(table, split.testing, max_workers=3, timeout=0.2)

    assert result.calibrated_ids == (1, 2)
    assert "timeout" in str(result.failures[3])


def test_calibration_frame_is_long_format(split, make_table):
    table = calibrate(make_table([TrendSpec(), TrendSpec(fail_predict=True)]), split.testing).table
    frame = calibration_frame(table)

    assert set(frame["model_id"]) == {1}
    assert list(frame.columns) == ["model_id", "label", "ds", "actual", "prediction", "residual"]
